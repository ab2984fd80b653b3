"""
Tests for the EditController state machine.

The planar viewport maps 1 unit to 100 px: snap radius 15 px = 0.15 units,
finish radius 10 px = 0.1 units.
"""

import pytest

from hydronet.changeset import ChangeKind
from hydronet.coincidence import PlanarViewport
from hydronet.edit import (
    DragKind, Dragging, DrawingPipe, EditController, Idle, MenuRole, Tool, ToolSelected,
)
from hydronet.model import NodeRef, NodeType


@pytest.fixture
def controller(model):
    return EditController(model)


def draw(controller, *points):
    for p in points:
        controller.click(p)


class TestToolSelection:

    def test_select_and_reselect(self, controller):
        controller.select_tool(Tool.PIPE)
        assert controller.state == ToolSelected(Tool.PIPE)
        controller.select_tool("pipe")
        assert controller.state == Idle()

    def test_dragging_only_with_edit_tool(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        controller.select_tool(Tool.WELL)
        assert not controller.dragging_enabled
        controller.pointer_down((0, 0))
        assert not isinstance(controller.state, Dragging)
        controller.select_tool(Tool.EDIT)
        assert controller.dragging_enabled

    def test_node_tool_adds_node(self, controller, model):
        controller.select_tool(Tool.PUMP)
        pump = controller.click((2, 3))
        assert pump.node_type is NodeType.PUMP
        assert model.get_node(NodeType.PUMP, pump.id).position == (2, 3)
        assert controller.state == ToolSelected(Tool.PUMP)

    def test_state_change_callback(self, controller):
        seen = []
        controller.set_on_state_change(seen.append)
        controller.select_tool(Tool.EDIT)
        controller.select_tool(Tool.PIPE)
        assert seen == [ToolSelected(Tool.EDIT), ToolSelected(Tool.PIPE)]


class TestPipeDrawing:

    def test_snapped_start_needs_no_menu(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        controller.select_tool(Tool.PIPE)
        controller.click((0.05, 0.05))
        assert controller.state == DrawingPipe(vertices=((0, 0),))

    def test_bare_start_opens_menu_and_commits_anchor_last(self, controller, model):
        model.add_node(NodeType.CONSUMER, (2, 0))
        controller.select_tool(Tool.PIPE)
        controller.click((0, 0))
        assert controller.state.menu == MenuRole.START
        controller.choose_object(NodeType.WELL)
        # Not created until the pipe commits
        assert model.get_node(NodeType.WELL, 1) is None

        draw(controller, (1, 0), (2.05, 0), (2.05, 0))
        assert controller.state.awaiting_diameter
        segments = controller.confirm_diameter(110)

        assert len(segments) == 2
        assert segments[-1].vertices[-1] == (2, 0)
        assert model.get_node(NodeType.WELL, 1).position == (0, 0)
        assert controller.state == ToolSelected(Tool.PIPE)

    def test_click_on_last_vertex_finishes_not_degenerate(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        model.add_node(NodeType.WELL, (1, 0))
        controller.select_tool(Tool.PIPE)
        draw(controller, (0, 0), (1, 0), (1.05, 0))
        state = controller.state
        assert state.vertices == ((0, 0), (1, 0))
        assert state.awaiting_diameter

    def test_second_click_on_start_is_ignored(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        controller.select_tool(Tool.PIPE)
        draw(controller, (0, 0), (0.02, 0))
        assert controller.state == DrawingPipe(vertices=((0, 0),))

    def test_unanchored_end_asks_for_end_object(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        controller.select_tool(Tool.PIPE)
        draw(controller, (0, 0), (3, 0), (3, 0))
        controller.confirm_diameter(50)

        assert controller.state.menu == MenuRole.END
        assert model.segments == []
        controller.choose_object("tower")

        assert model.get_node(NodeType.TOWER, 1).position == (3, 0)
        assert len(model.segments) == 1
        assert model.segments[0].diameter == 50

    def test_dismiss_end_menu_resumes_drawing(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        controller.select_tool(Tool.PIPE)
        draw(controller, (0, 0), (3, 0), (3, 0))
        controller.confirm_diameter(50)
        controller.dismiss_menu()
        state = controller.state
        assert isinstance(state, DrawingPipe)
        assert state.menu is None and not state.awaiting_diameter
        controller.click((4, 0))
        assert state.vertices + ((4, 0),) == controller.state.vertices

    def test_dismiss_start_menu_returns_to_tool(self, controller):
        controller.select_tool(Tool.PIPE)
        controller.click((0, 0))
        controller.dismiss_menu()
        assert controller.state == ToolSelected(Tool.PIPE)

    def test_invalid_diameter_rejected(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        model.add_node(NodeType.WELL, (1, 0))
        controller.select_tool(Tool.PIPE)
        draw(controller, (0, 0), (1, 0), (1, 0))
        with pytest.raises(ValueError):
            controller.confirm_diameter(0)
        assert controller.state.awaiting_diameter
        controller.cancel_diameter()
        assert not controller.state.awaiting_diameter

    def test_escape_leaves_model_untouched(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        before = model.snapshot()
        controller.select_tool(Tool.PIPE)
        controller.click((5, 5))
        controller.choose_object(NodeType.PUMP)
        draw(controller, (6, 5), (7, 5))
        controller.press_escape()

        assert controller.state == ToolSelected(Tool.PIPE)
        assert model.segments == []
        assert list(model.iter_nodes()) == list(before.nodes[NodeType.WELL].values())
        assert [e.key for e in model.tracker.get_created()] == [(NodeType.WELL.object_type, 1)]
        assert len(model.tracker) == 1

    def test_hover_preview_snaps(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        model.add_node(NodeType.PUMP, (2, 0))
        controller.select_tool(Tool.PIPE)
        controller.click((0, 0))
        controller.pointer_move((1.95, 0.05))
        assert controller.state.temp_line == ((0, 0), (2, 0))

    def test_closing_loop_onto_deferred_start(self, controller, model):
        controller.select_tool(Tool.PIPE)
        controller.click((0, 0))
        controller.choose_object(NodeType.RESERVOIR)
        draw(controller, (1, 0), (1, 1), (0.05, 0), (0.05, 0))
        segments = controller.confirm_diameter(25)
        assert len(segments) == 3
        assert model.get_node(NodeType.RESERVOIR, 1) is not None
        assert model.get_node(NodeType.RESERVOIR, 2) is None


class TestDragging:

    @pytest.fixture
    def network(self, controller, model):
        model.add_node(NodeType.WELL, (0, 0))
        model.add_pipe([(0, 0), (1, 0), (2, 0)], 10)
        model.tracker.reset()
        controller.select_tool(Tool.EDIT)
        return model

    def test_hit_priority(self, controller, network):
        assert controller.hit_test((0.05, 0)).kind == DragKind.NODE
        assert controller.hit_test((1.02, 0)).kind == DragKind.VERTEX
        body = controller.hit_test((0.5, 0.03))
        assert body.kind == DragKind.SEGMENT and body.ref == 1
        assert controller.hit_test((0.5, 1)) is None

    def test_node_drag_moves_pipe_end(self, controller, network):
        controller.pointer_down((0, 0))
        assert controller.cursor == "grabbing"
        controller.pointer_move((0, 0.5))
        controller.pointer_move((0, 1))
        controller.pointer_up()

        assert network.get_segment(1).vertices[0] == (0, 1)
        assert network.get_node(NodeType.WELL, 1).position == (0, 1)
        assert controller.state == ToolSelected(Tool.EDIT)

    def test_vertex_drag_moves_junction(self, controller, network):
        controller.pointer_down((1, 0))
        controller.pointer_move((1, 0.5))
        controller.pointer_move((1, 1))
        controller.pointer_up()
        assert network.get_segment(1).vertices[1] == (1, 1)
        assert network.get_segment(2).vertices[0] == (1, 1)

    def test_segment_drag_translates_segment_and_node(self, controller, network):
        controller.pointer_down((0.5, 0))
        assert controller.state.target.kind == DragKind.SEGMENT
        controller.pointer_move((0.5, 1))
        controller.pointer_up()
        assert network.get_segment(1).vertices == [(0, 1), (1, 1)]
        assert network.get_node(NodeType.WELL, 1).position == (0, 1)
        assert network.get_segment(2).vertices == [(1, 1), (2, 0)]

    def test_moves_outside_view_are_ignored(self, controller, network):
        network.set_viewport(PlanarViewport(scale=100, bounds=(-5, -5, 5, 5)))
        controller.pointer_down((0, 0))
        controller.pointer_move((10, 10))
        assert network.get_node(NodeType.WELL, 1).position == (0, 0)
        controller.pointer_move((1, 1))
        assert network.get_node(NodeType.WELL, 1).position == (1, 1)

    def test_cancel_restores_model(self, controller, network):
        before = [s.snapshot() for s in network.segments]
        controller.pointer_down((1, 0))
        controller.pointer_move((1, 3))
        controller.pointer_cancel()

        assert [s.snapshot() for s in network.segments] == before
        assert not network.tracker.is_dirty
        assert network.find_segment_by_vertex((1, 0)) is not None

    def test_cancel_keeps_entries_saved_during_drag(self, controller, network):
        network.add_node(NodeType.PUMP, (0, 2))
        controller.pointer_down((0, 2))
        # A save acknowledges the pump while the pointer is still down
        network.tracker.clear_created(network.tracker.checkpoint(ChangeKind.CREATED))
        controller.pointer_move((0, 3))
        controller.pointer_cancel()

        assert network.get_node(NodeType.PUMP, 1).position == (0, 2)
        assert network.tracker.get_created() == []
        assert not network.tracker.is_dirty

    def test_cancel_resends_state_saved_during_drag(self, controller, network):
        controller.pointer_down((0, 0))
        controller.pointer_move((0, 1))
        # The moved geometry reached the backend before the drag was lost
        network.tracker.clear_updated(network.tracker.checkpoint(ChangeKind.UPDATED))
        controller.pointer_cancel()

        assert network.get_node(NodeType.WELL, 1).position == (0, 0)
        updated = {e.key: e.data for e in network.tracker.get_updated()}
        assert updated[(NodeType.WELL.object_type, 1)]["position"] == (0, 0)
        assert updated[(network.get_segment(1).object_type, 1)]["vertices"][0] == (0, 0)

    def test_escape_cancels_drag(self, controller, network):
        controller.pointer_down((0, 0))
        controller.pointer_move((3, 3))
        controller.press_escape()
        assert network.get_node(NodeType.WELL, 1).position == (0, 0)

    def test_drag_after_delete_degrades_silently(self, controller, network):
        controller.pointer_down((0, 0))
        network.delete_node(NodeType.WELL, 1)
        controller.pointer_move((0, 1))
        controller.pointer_up()
        assert controller.state == ToolSelected(Tool.EDIT)

    def test_hover_highlight(self, controller, network):
        controller.pointer_move((0, 0))
        assert controller.highlight.ref == NodeRef(NodeType.WELL, 1)
        assert controller.cursor == "grab"
        controller.pointer_move((5, 5))
        assert controller.highlight is None


def test_point_to_line_distance(controller):
    dist, t = controller._point_to_line_distance((5, 3), (0, 0), (10, 0))
    assert dist == pytest.approx(3)
    assert t == pytest.approx(0.5)
    # Beyond the end clamps to the endpoint
    dist, t = controller._point_to_line_distance((13, 4), (0, 0), (10, 0))
    assert dist == pytest.approx(5)
    assert t == 1.0
    dist, _ = controller._point_to_line_distance((3, 4), (0, 0), (0, 0))
    assert dist == pytest.approx(5)
