"""
Tests for the HTTP surface, run against a real engine over local chat files.

These tests verify:
1. Views, folders, pinned chats and assignments round-trip through the API
2. Validation errors map to 400 / 404 / 409
3. Upstream events are accepted and handed to the engine
4. Import and wipe require confirmation
"""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from chatshelf.api.deps import get_organization_engine
from chatshelf.api.routes import organization as organization_routes
from chatshelf.api.routes import settings as settings_routes
from chatshelf.core import config as config_module
from chatshelf.core.config import Settings
from chatshelf.core.events import EventType, OrganizationEvent
from chatshelf.main import app
from chatshelf.schemas.organization import ChatKey
from chatshelf.services import engine as engine_module
from chatshelf.services.engine import OrganizationEngine
from chatshelf.services.local_chats import LocalChatSource


def write_chat(path, send_date, text="..."):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"mes": text, "send_date": send_date}) + "\n", encoding="utf-8")


@pytest.fixture
def engine(tmp_path):
    chats = tmp_path / "chats"
    write_chat(chats / "characters" / "alice" / "first.jsonl", "2024-05-12T10:00:00Z", "the castle")
    write_chat(chats / "characters" / "alice" / "second.jsonl", "2024-05-11T10:00:00Z")
    write_chat(chats / "groups" / "g1" / "party.jsonl", "2024-05-10T10:00:00Z")

    settings = Settings(
        state_file=str(tmp_path / "state.json"),
        local_chats_dir=str(chats),
        remap_followup_delay=0,
    )
    return OrganizationEngine.from_settings(settings, source=LocalChatSource(chats))


@pytest.fixture
def client(engine):
    organization_routes.limiter.reset()
    settings_routes.limiter.reset()
    app.dependency_overrides[get_organization_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_folder(client, name, parent=None):
    response = client.post("/api/organization/folders", json={"name": name, "parent": parent})
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestViews:
    def test_recent_chats(self, client):
        data = client.get("/api/organization/recent").json()

        assert [c["fileName"] for c in data["chats"]] == ["first", "second", "party"]
        assert data["totalChats"] == 3
        assert data["hasMore"] is False
        assert [g["date"] for g in data["dateGroups"]] == ["2024-05-12", "2024-05-11", "2024-05-10"]

    def test_recent_chats_filter(self, client):
        data = client.get("/api/organization/recent", params={"filter": "castle"}).json()
        assert [c["fileName"] for c in data["chats"]] == ["first"]

    def test_pinned_chat_leaves_recent_list(self, client):
        client.post("/api/organization/pinned/toggle", json={"ownerId": "alice", "fileName": "first"})

        data = client.get("/api/organization/recent").json()

        assert [c["fileName"] for c in data["pinned"]] == ["first"]
        assert [c["fileName"] for c in data["chats"]] == ["second", "party"]

    def test_folder_view(self, client):
        folder = create_folder(client, "Arcs")
        client.post(
            "/api/organization/assignments",
            json={"ownerId": "g1", "fileName": "party", "folderId": folder["id"]},
        )

        data = client.get("/api/organization/folders/view").json()

        assert data["superseded"] is False
        assert [n["name"] for n in data["tree"]] == ["Arcs"]
        assert [c["fileName"] for c in data["chatsByFolder"][folder["id"]]] == ["party"]

    def test_folder_view_while_refresh_in_flight(self, client, engine):
        engine.store.is_refreshing_folders = True

        assert client.get("/api/organization/folders/view").json() == {"superseded": True}

    def test_reload(self, client):
        assert client.post("/api/organization/reload").json() == {"reloaded": True}


class TestPinned:
    def test_toggle(self, client):
        chat = {"ownerId": "alice", "fileName": "first"}

        assert client.post("/api/organization/pinned/toggle", json=chat).json() == {"pinned": True}
        assert client.get("/api/organization/pinned").json() == {"pinned": [chat]}
        assert client.post("/api/organization/pinned/toggle", json=chat).json() == {"pinned": False}


class TestFolders:
    def test_create_nested_and_picker(self, client):
        top = create_folder(client, "Top")
        create_folder(client, "Child", parent=top["id"])

        data = client.get("/api/organization/folders").json()

        assert [(p["name"], p["level"]) for p in data["picker"]] == [("Top", 0), ("Child", 1)]

    def test_empty_name_rejected(self, client):
        response = client.post("/api/organization/folders", json={"name": "   "})
        assert response.status_code == 400

    def test_rename(self, client):
        folder = create_folder(client, "Arcs")

        response = client.patch(f"/api/organization/folders/{folder['id']}", json={"name": "Story"})

        assert response.json() == {"id": folder["id"], "name": "Story"}
        assert client.patch("/api/organization/folders/missing", json={"name": "x"}).status_code == 404

    def test_delete_prunes_assignments(self, client, engine):
        folder = create_folder(client, "Arcs")
        client.post(
            "/api/organization/assignments",
            json={"ownerId": "alice", "fileName": "first", "folderId": folder["id"]},
        )

        assert client.delete(f"/api/organization/folders/{folder['id']}").status_code == 200
        assert engine.store.get_assignment_map() == {}
        assert client.delete(f"/api/organization/folders/{folder['id']}").status_code == 404


class TestAssignments:
    def test_assign_and_unassign(self, client):
        folder = create_folder(client, "Arcs")
        body = {"ownerId": "alice", "fileName": "first", "folderId": folder["id"]}

        assert client.post("/api/organization/assignments", json=body).json() == {"folderIds": [folder["id"]]}
        assert client.post("/api/organization/assignments", json=body).json() == {"folderIds": [folder["id"]]}

        response = client.get("/api/organization/assignments", params={"ownerId": "alice", "fileName": "first"})
        assert response.json() == {"folderIds": [folder["id"]]}

        assert client.request("DELETE", "/api/organization/assignments", json=body).json() == {"folderIds": []}

    def test_unknown_folder(self, client):
        body = {"ownerId": "alice", "fileName": "first", "folderId": "nope"}
        assert client.post("/api/organization/assignments", json=body).status_code == 404


class TestChatRename:
    def test_rename_carries_folders(self, client, engine):
        folder = create_folder(client, "Arcs")
        client.post(
            "/api/organization/assignments",
            json={"ownerId": "alice", "fileName": "first", "folderId": folder["id"]},
        )

        response = client.post(
            "/api/organization/chats/rename",
            json={"ownerId": "alice", "oldFileName": "first", "newFileName": "renamed"},
        )

        assert response.status_code == 200
        assert engine.store.chat_folder_ids(ChatKey("alice", "renamed")) == [folder["id"]]
        assert engine.store.chat_folder_ids(ChatKey("alice", "first")) == []

    def test_collision(self, client):
        response = client.post(
            "/api/organization/chats/rename",
            json={"ownerId": "alice", "oldFileName": "first", "newFileName": "second"},
        )
        assert response.status_code == 409


class TestEvents:
    def test_event_accepted(self, client, engine):
        engine.notify = MagicMock()

        response = client.post("/api/events", json={"type": "owner_renamed", "oldOwnerId": "0", "newOwnerId": "1"})

        assert response.status_code == 202
        assert response.json()["accepted"] is True
        event = engine.notify.call_args[0][0]
        assert event.type == EventType.OWNER_RENAMED
        assert (event.old_owner_id, event.new_owner_id) == ("0", "1")

    def test_owner_deleted_needs_owner(self, client, engine):
        engine.notify = MagicMock()
        assert client.post("/api/events", json={"type": "owner_deleted"}).status_code == 400
        engine.notify.assert_not_called()

    def test_outbound_event_rejected(self, client, engine):
        engine.notify = MagicMock()
        assert client.post("/api/events", json={"type": "view_refresh_requested"}).status_code == 400


class TestBackup:
    def test_export(self, client):
        create_folder(client, "Arcs")

        response = client.get("/api/settings/export")

        assert "attachment" in response.headers["content-disposition"]
        assert [f["name"] for f in response.json()["folders"]] == ["Arcs"]

    def test_import_requires_confirmation(self, client, engine):
        document = json.dumps({"folders": [{"id": "f9", "name": "Imported"}]})

        response = client.post("/api/settings/import", json={"document": document})
        assert response.status_code == 409
        assert engine.store.get_folders() == []

        response = client.post("/api/settings/import", json={"document": document, "confirm": True})
        assert response.status_code == 200
        assert [f.id for f in engine.store.get_folders()] == ["f9"]

    def test_import_rejects_malformed(self, client):
        response = client.post("/api/settings/import", json={"document": "{nope", "confirm": True})
        assert response.status_code == 400

    def test_wipe(self, client, engine):
        create_folder(client, "Arcs")

        assert client.post("/api/settings/wipe", json={}).status_code == 409
        assert client.post("/api/settings/wipe", json={"confirm": True}).status_code == 200
        assert engine.store.get_folders() == []

    def test_preferences(self, client):
        response = client.post("/api/settings/preferences", json={"defaultTab": "folders"})
        assert response.json() == {"defaultTab": "folders", "enabled": True}
        assert client.post("/api/settings/preferences", json={"defaultTab": "nope"}).status_code == 422


class TestServiceSettingsUpdate:
    @pytest.fixture
    def settings_file(self, tmp_path, monkeypatch):
        """Point the settings file at tmp_path and restore module singletons afterwards."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "state_file": str(tmp_path / "state.json"),
            "local_chats_dir": str(tmp_path / "chats"),
        }))
        monkeypatch.setattr(config_module, "SETTINGS_FILE", path)
        monkeypatch.setattr(config_module, "settings", config_module.settings)
        monkeypatch.setattr(engine_module, "_engine_instance", None)
        return path

    @pytest.mark.asyncio
    async def test_pending_state_survives_engine_rebuild(self, settings_file, engine):
        engine_module._engine_instance = engine
        engine.toggle_pinned(ChatKey("alice", "first"))

        await settings_routes.update_settings(settings_routes.SettingsUpdate(page_size=50))

        rebuilt = engine_module.get_engine()
        assert rebuilt is not engine
        assert rebuilt.settings.page_size == 50
        assert rebuilt.store.is_pinned(ChatKey("alice", "first"))

    @pytest.mark.asyncio
    async def test_scheduled_reconciliation_is_cancelled(self, settings_file, engine):
        engine_module._engine_instance = engine
        task = engine.notify(OrganizationEvent.owner_deleted("alice"))

        await settings_routes.update_settings(settings_routes.SettingsUpdate(page_size=50))
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
