"""Tests for export, import and wipe of the organization record."""

import json
from unittest.mock import MagicMock

import pytest

from chatshelf.services.backup import (
    ConfirmationRequiredError,
    ImportRejectedError,
    export_state,
    import_state,
    parse_import,
    wipe_state,
)
from chatshelf.services.organization import OrganizationStore
from chatshelf.services.state_store import StateStore

STORED = {
    "pinnedChats": [{"ownerId": "1", "fileName": "a"}],
    "folders": [{"id": "f1", "name": "Arcs", "parent": None}],
    "chatFolders": {"1:a": ["f1"]},
    "defaultTab": "folders",
    "enabled": True,
}


@pytest.fixture
def store():
    state_store = MagicMock(spec=StateStore)
    state_store.load.return_value = json.loads(json.dumps(STORED))
    return OrganizationStore(state_store)


class TestExport:
    def test_export_is_full_record(self, store):
        assert json.loads(export_state(store)) == STORED


class TestImport:
    def test_import_replaces_record(self, store):
        document = json.dumps({"folders": [{"id": "f9", "name": "New"}], "chatFolders": {}})

        import_state(store, document, confirm=True)

        assert [f.id for f in store.get_folders()] == ["f9"]
        assert store.get_pinned() == []
        assert store.get_assignment_map() == {}

    @pytest.mark.parametrize("document", [
        "{not json",
        "[1, 2]",
        json.dumps({"folders": "f1"}),
        json.dumps({"pinnedChats": {"ownerId": "1"}}),
        json.dumps({"chatFolders": ["1:a"]}),
    ])
    def test_rejected_import_leaves_state_untouched(self, store, document):
        before = store.to_document()

        with pytest.raises(ImportRejectedError):
            import_state(store, document, confirm=True)

        assert store.to_document() == before
        store.state_store.save_debounced.assert_not_called()

    def test_import_requires_confirmation(self, store):
        before = store.to_document()

        with pytest.raises(ConfirmationRequiredError):
            import_state(store, json.dumps({"folders": []}))

        assert store.to_document() == before

    def test_malformed_document_rejected_before_confirmation(self, store):
        with pytest.raises(ImportRejectedError):
            import_state(store, "{not json")

    def test_parse_keeps_unknown_settings(self):
        state = parse_import(json.dumps({"autoBackup": True}))
        assert state.to_document()["autoBackup"] is True

    def test_round_trip(self, store):
        exported = export_state(store)
        import_state(store, exported, confirm=True)
        assert store.to_document() == STORED


class TestWipe:
    def test_wipe_requires_confirmation(self, store):
        with pytest.raises(ConfirmationRequiredError):
            wipe_state(store)
        assert store.get_folders()

    def test_wipe_resets_to_defaults(self, store):
        wipe_state(store, confirm=True)
        assert store.get_folders() == []
        assert store.get_pinned() == []
        assert store.get_assignment_map() == {}
        assert store.state.defaultTab == "characters"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
