"""Tests for SchemeSyncClient save and load cycles."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from hydronet.errors import SyncError
from hydronet.model import NodeType
from hydronet.storage.protocol import failed, ok
from hydronet.sync import NiceGUISyncAdapter, SchemeSyncClient, create_scheme_sync


@pytest.fixture
def transport():
    mock = MagicMock()
    mock.delete_objects.return_value = ok()
    mock.update_objects.return_value = ok()
    mock.create_objects.return_value = ok()
    return mock


@pytest.fixture
def client(model, transport):
    return SchemeSyncClient(model, transport, id_scheme=12)


@pytest.fixture
def edited(model):
    """One of each: a created node, an updated pipe, a deleted well."""
    model.add_node(NodeType.WELL, (0, 0))
    model.add_pipe([(0, 0), (1, 0)], 20)
    model.tracker.reset()
    model.add_node(NodeType.PUMP, (5, 5))
    model.set_diameter(1, 40)
    model.delete_node(NodeType.WELL, 1)
    return model


def feature_ids(payload):
    return [f["id"] for f in payload["data"]["features"]]


class TestSaveAll:

    def test_requests_in_order(self, client, transport, edited):
        calls = []
        transport.delete_objects.side_effect = lambda p: calls.append("delete") or ok()
        transport.update_objects.side_effect = lambda p: calls.append("update") or ok()
        transport.create_objects.side_effect = lambda p: calls.append("create") or ok()

        result = client.save_all()

        assert calls == ["delete", "update", "create"]
        assert result.success
        assert [op.operation for op in result.operations] == ["delete", "update", "create"]
        assert not edited.tracker.is_dirty

    def test_payloads(self, client, transport, edited):
        client.save_all()

        delete_payload = transport.delete_objects.call_args.args[0]
        assert delete_payload["data"]["id_scheme"] == 12
        assert delete_payload["data"]["features"][0]["geometry"] is None

        update_payload = transport.update_objects.call_args.args[0]
        assert "id_scheme" not in update_payload["data"]
        assert update_payload["data"]["features"][0]["properties"]["Диаметр"] == 40

        create_payload = transport.create_objects.call_args.args[0]
        assert create_payload["data"]["id_scheme"] == 12
        assert feature_ids(create_payload) == [1]

    def test_nothing_to_send(self, client, transport, model):
        result = client.save_all()
        assert result.success
        assert result.sent == []
        transport.delete_objects.assert_not_called()
        transport.update_objects.assert_not_called()
        transport.create_objects.assert_not_called()

    def test_partial_failure_keeps_only_failed_set(self, client, transport, edited):
        transport.update_objects.return_value = failed("backend down", status_code=503)
        errors = []
        client.on('error', errors.append)

        result = client.save_all()

        assert not result.success
        assert result.get("update").status_code == 503
        assert edited.tracker.get_deleted() == []
        assert edited.tracker.get_created() == []
        assert [e.object_id for e in edited.tracker.get_updated()] == [1]
        assert errors == [{'message': 'Failed to save: update'}]
        assert client.state.error_count == 1
        with pytest.raises(SyncError) as exc_info:
            result.raise_for_failure()
        assert exc_info.value.operation == "update"

    def test_transport_exception_is_a_failure(self, client, transport, edited):
        transport.create_objects.side_effect = ConnectionError("reset by peer")
        result = client.save_all()
        assert result.get("create").success is False
        assert "reset by peer" in result.get("create").message
        assert len(edited.tracker.get_created()) == 1
        assert not client.state.is_saving

    def test_retry_after_failure_sends_again(self, client, transport, edited):
        transport.delete_objects.return_value = failed("nope")
        client.save_all()
        transport.delete_objects.return_value = ok()
        result = client.save_all()
        assert result.success
        assert transport.delete_objects.call_count == 2
        assert transport.update_objects.call_count == 1

    def test_missing_scheme_id(self, model, transport):
        client = SchemeSyncClient(model, transport)
        model.add_node(NodeType.WELL, (0, 0))
        result = client.save_all()
        assert result.error == "No scheme selected"
        transport.create_objects.assert_not_called()
        assert model.tracker.is_dirty

    def test_concurrent_save_rejected(self, client, transport, edited):
        client.state.is_saving = True
        result = client.save_all()
        assert result.error == "Save already in progress"
        transport.delete_objects.assert_not_called()

    def test_edit_during_request_survives(self, client, transport, model):
        model.add_node(NodeType.WELL, (0, 0))

        def move_while_sending(payload):
            model.move_node(NodeType.WELL, 1, (3, 3))
            return ok()

        transport.create_objects.side_effect = move_while_sending
        client.save_all()

        # The moved node is still new to the backend
        updated = model.tracker.get_updated()
        assert [e.data["position"] for e in updated] == [(3.0, 3.0)]

    def test_delete_during_create_leaves_tombstone(self, client, transport, model):
        model.add_node(NodeType.WELL, (0, 0))

        def delete_while_sending(payload):
            model.delete_node(NodeType.WELL, 1)
            return ok()

        transport.create_objects.side_effect = delete_while_sending
        client.save_all()

        # The backend created the well, so it must be deleted there too
        assert model.tracker.get_created() == []
        assert [e.key for e in model.tracker.get_deleted()] == [(NodeType.WELL.object_type, 1)]

        transport.create_objects.side_effect = None
        assert client.save_all().success
        assert feature_ids(transport.delete_objects.call_args.args[0]) == [1]
        assert transport.create_objects.call_count == 1
        assert not model.tracker.is_dirty

    def test_delete_during_failed_create_needs_nothing(self, client, transport, model):
        model.add_node(NodeType.WELL, (0, 0))

        def delete_while_failing(payload):
            model.delete_node(NodeType.WELL, 1)
            return failed("down")

        transport.create_objects.side_effect = delete_while_failing
        client.save_all()

        assert not model.tracker.is_dirty

    def test_saving_flag_cleared_when_planning_raises(self, client, transport, edited):
        with patch.object(client, '_plan', side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                client.save_all()
        assert not client.state.is_saving

        assert client.save_all().success
        assert not edited.tracker.is_dirty

    def test_saved_event(self, client, edited):
        saved = []
        client.on('saved', saved.append)
        client.save_all()
        assert saved[0]['id_scheme'] == 12
        client.off('saved', saved.append)
        client.save_all()
        assert len(saved) == 1


def test_save_all_async(client, transport, edited):
    result = asyncio.run(client.save_all_async())
    assert result.success
    assert [op.count for op in result.operations] == [1, 1, 1]
    assert not edited.tracker.is_dirty
    assert not client.state.is_saving


def test_delete_during_async_create_leaves_tombstone(client, transport, model):
    model.add_node(NodeType.WELL, (0, 0))
    model.add_node(NodeType.PUMP, (5, 5))

    def delete_while_sending(payload):
        model.delete_node(NodeType.WELL, 1)
        return ok()

    transport.create_objects.side_effect = delete_while_sending
    assert asyncio.run(client.save_all_async()).success

    assert [e.key for e in model.tracker.get_deleted()] == [(NodeType.WELL.object_type, 1)]
    assert model.tracker.get_created() == []

    transport.create_objects.side_effect = None
    asyncio.run(client.save_all_async())
    assert feature_ids(transport.delete_objects.call_args.args[0]) == [1]
    assert not model.tracker.is_dirty


class TestLoad:

    SCHEME = {"data": {
        "type": "FeatureCollection", "id_scheme": 4,
        "features": [
            {"type": "Feature", "id": 2, "name_object_type": "Скважина",
             "geometry": {"type": "Point", "coordinates": [0, 0]}, "properties": {}},
            {"type": "Feature", "id": 7, "name_object_type": "Труба",
             "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 0]]},
             "properties": {"Диаметр": 50}},
        ],
    }}

    def test_load_replaces_model(self, model, transport):
        model.add_node(NodeType.PUMP, (9, 9))
        transport.load_scheme.return_value = self.SCHEME
        client = SchemeSyncClient(model, transport)
        loaded = []
        client.on('loaded', loaded.append)

        assert client.load_scheme(4)

        transport.load_scheme.assert_called_once_with(4)
        assert client.id_scheme == 4
        assert model.get_node(NodeType.PUMP, 1) is None
        assert model.get_segment(7).diameter == 50
        assert not model.tracker.is_dirty
        assert loaded == [{'id_scheme': 4, 'nodes': 1, 'segments': 1}]
        # New ids continue after the loaded ones
        assert model.add_pipe([(1, 0), (2, 0)], 50)[0].id == 8

    def test_load_failure_leaves_model(self, model, transport):
        model.add_node(NodeType.PUMP, (9, 9))
        transport.load_scheme.side_effect = SyncError("HTTP 500", "load", 500)
        client = SchemeSyncClient(model, transport, id_scheme=4)
        errors = []
        client.on('error', errors.append)

        assert not client.load_scheme()
        assert model.get_node(NodeType.PUMP, 1) is not None
        assert errors == [{'message': 'HTTP 500'}]

    def test_invalid_payload(self, model, transport):
        transport.load_scheme.return_value = {"data": {"type": "Nope"}}
        client = SchemeSyncClient(model, transport, id_scheme=4)
        assert not client.load_scheme()
        assert client.state.last_error == "Scheme 4 has an invalid format"

    def test_no_scheme_id(self, model, transport):
        client = SchemeSyncClient(model, transport)
        assert not client.load_scheme()
        transport.load_scheme.assert_not_called()

    def test_load_scheme_async(self, model, transport):
        transport.load_scheme.return_value = self.SCHEME
        client = SchemeSyncClient(model, transport, id_scheme=4)

        assert asyncio.run(client.load_scheme_async())

        transport.load_scheme.assert_called_once_with(4)
        assert model.get_node(NodeType.WELL, 2) is not None

    def test_load_scheme_async_failure(self, model, transport):
        transport.load_scheme.side_effect = SyncError("HTTP 502", "load", 502)
        client = SchemeSyncClient(model, transport)

        assert not asyncio.run(client.load_scheme_async(4))
        assert client.state.last_error == "HTTP 502"
        assert client.id_scheme is None


@patch('nicegui.ui')
def test_adapter_toasts(mock_ui, model, transport):
    client, adapter = create_scheme_sync(model, transport, id_scheme=1)
    assert isinstance(adapter, NiceGUISyncAdapter)

    client.save_all()
    assert mock_ui.notify.call_args.args[0] == 'Nothing to save'

    model.add_node(NodeType.WELL, (0, 0))
    client.save_all()
    assert mock_ui.notify.call_args.args[0] == 'Changes saved'

    transport.create_objects.return_value = failed("boom")
    model.add_node(NodeType.WELL, (1, 1))
    client.save_all()
    assert mock_ui.notify.call_args.args[0] == 'Sync error: Failed to save: create'
