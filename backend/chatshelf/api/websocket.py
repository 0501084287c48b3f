from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from chatshelf.services.event_bus import event_bus

router = APIRouter()


# TODO: [SECURITY] Add WebSocket authentication before production deployment
# See: https://fastapi.tiangolo.com/advanced/websockets/#handling-disconnections-and-multiple-clients
@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Clients listen here for view_refresh_requested events."""
    await event_bus.connect(websocket)
    try:
        while True:
            # Keep connection alive; clients do not send anything meaningful
            await websocket.receive_text()
    except WebSocketDisconnect:
        await event_bus.disconnect(websocket)
