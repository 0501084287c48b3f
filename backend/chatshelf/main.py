import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

# Load environment variables
load_dotenv()

from chatshelf.api.routes import organization, events, settings
from chatshelf.api import websocket
from chatshelf.core.config import settings as app_settings
from chatshelf.services.engine import shutdown_engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Rate limiter setup
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Chatshelf API",
    version="1.0.0",
    description="Pinned chats, folders and identity reconciliation for a host chat collection"
)

# Attach limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(organization.router, prefix="/api")
app.include_router(events.router, prefix="/api")
app.include_router(settings.router, prefix="/api")
app.include_router(websocket.router)


@app.get("/")
async def root():
    return {
        "name": "Chatshelf API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.on_event("shutdown")
async def shutdown():
    """Flush pending state writes and stop scheduled reconciliation."""
    await shutdown_engine()


def main():
    import uvicorn

    uvicorn.run("chatshelf.main:app", host="0.0.0.0", port=app_settings.backend_port)
