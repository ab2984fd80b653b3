"""
Edit Controller - Single source of truth for map editing state.

This controller manages the tool/draw/drag state machine and coordinates:
- Pointer and keyboard events from the UI
- Hit testing and snapping against the NetworkModel
- Committed mutations via EditActions

States:
    Idle -> ToolSelected(tool) -> DrawingPipe(...)   (pipe tool)
                               -> Dragging(...)      (edit tool)

Nothing reaches the model while a pipe is being drawn; the polyline and its
deferred start/end objects are committed together. A drag mutates the model
continuously but keeps a snapshot so a lost pointer restores it.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Union

from hydronet.coincidence import Coord
from hydronet.edit.actions import EditActions, validate_diameter
from hydronet.edit.constants import (
    FINISH_RADIUS_PX,
    NODE_HIT_RADIUS_PX,
    SEGMENT_HIT_TOLERANCE_PX,
    SNAP_RADIUS_PX,
    VERTEX_HIT_RADIUS_PX,
)
from hydronet.model import ModelSnapshot, NetworkModel, NodeRef, NodeType, VertexRef

logger = logging.getLogger(__name__)


class Tool(str, Enum):
    EDIT = "edit"
    PIPE = "pipe"
    WELL = "well"
    CONSUMER = "user"
    CAPTURE = "capture"
    PUMP = "pump"
    RESERVOIR = "reservoir"
    TOWER = "tower"

    @property
    def node_type(self) -> Optional[NodeType]:
        return NodeType.from_key(self.value)


class MenuRole(str, Enum):
    START = "start"
    END = "end"


class DragKind(str, Enum):
    NODE = "node"
    VERTEX = "vertex"
    SEGMENT = "segment"


@dataclass(frozen=True)
class DragTarget:
    kind: DragKind
    ref: Union[NodeRef, VertexRef, int]


# --- States ---

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class ToolSelected:
    tool: Tool
    highlight: Optional[DragTarget] = None


@dataclass(frozen=True)
class DrawingPipe:
    """Uncommitted polyline plus whatever the operator is being asked for."""
    vertices: Tuple[Coord, ...]
    start_anchor: Optional[NodeType] = None
    end_anchor: Optional[NodeType] = None
    menu: Optional[MenuRole] = None
    awaiting_diameter: bool = False
    pending_diameter: Optional[float] = None
    temp_line: Optional[Tuple[Coord, Coord]] = None


@dataclass(frozen=True)
class Dragging:
    target: DragTarget
    anchor: Coord
    snapshot: Optional[ModelSnapshot] = field(default=None, compare=False, repr=False)


EditState = Union[Idle, ToolSelected, DrawingPipe, Dragging]


class EditController:
    """Manages edit state and decides what each pointer event does."""

    def __init__(self, model: NetworkModel, actions: Optional[EditActions] = None,
                 snap_radius_px: float = SNAP_RADIUS_PX,
                 finish_radius_px: float = FINISH_RADIUS_PX):
        self.model = model
        self.actions = actions if actions is not None else EditActions(model)
        self.snap_radius_px = snap_radius_px
        self.finish_radius_px = finish_radius_px
        self._state: EditState = Idle()
        self._on_state_change: Optional[Callable[[EditState], None]] = None

    @property
    def state(self) -> EditState:
        return self._state

    def set_on_state_change(self, callback: Callable[[EditState], None]):
        self._on_state_change = callback

    def _set_state(self, state: EditState) -> EditState:
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)
        return state

    # --- Affordances ---

    @property
    def dragging_enabled(self) -> bool:
        return isinstance(self._state, (ToolSelected, Dragging)) and self.active_tool == Tool.EDIT

    @property
    def active_tool(self) -> Optional[Tool]:
        state = self._state
        if isinstance(state, ToolSelected):
            return state.tool
        if isinstance(state, DrawingPipe):
            return Tool.PIPE
        if isinstance(state, Dragging):
            return Tool.EDIT
        return None

    @property
    def highlight(self) -> Optional[DragTarget]:
        state = self._state
        if isinstance(state, ToolSelected):
            return state.highlight
        if isinstance(state, Dragging):
            return state.target
        return None

    @property
    def cursor(self) -> str:
        state = self._state
        if isinstance(state, Dragging):
            return "grabbing"
        if isinstance(state, DrawingPipe):
            return "crosshair"
        if isinstance(state, ToolSelected):
            if state.tool == Tool.EDIT:
                return "grab" if state.highlight else "default"
            return "crosshair"
        return "default"

    # --- Tools ---

    def select_tool(self, tool: Union[Tool, str]) -> EditState:
        """Pick a tool; picking the active one again returns to Idle."""
        tool = Tool(tool)
        if isinstance(self._state, Dragging):
            self.pointer_cancel()
        if self.active_tool == tool:
            return self._set_state(Idle())
        return self._set_state(ToolSelected(tool))

    def press_escape(self) -> EditState:
        state = self._state
        if isinstance(state, DrawingPipe):
            logger.debug(f"Pipe drawing aborted with {len(state.vertices)} vertices")
            return self._set_state(ToolSelected(Tool.PIPE))
        if isinstance(state, Dragging):
            return self.pointer_cancel()
        return state

    # --- Clicks ---

    def click(self, point: Coord) -> Any:
        """Map click. Returns the created node for node tools."""
        state = self._state
        if isinstance(state, ToolSelected):
            node_type = state.tool.node_type
            if node_type is not None:
                return self.actions.add_node(node_type, point)
            if state.tool == Tool.PIPE:
                self._start_pipe(point)
            return None
        if isinstance(state, DrawingPipe):
            self._add_vertex(state, point)
        return None

    def _start_pipe(self, point: Coord) -> None:
        snapped = self.model.snap_point(point, self.snap_radius_px)
        if snapped is not None:
            self._set_state(DrawingPipe(vertices=(snapped,)))
        else:
            # A pipe may not start at a bare coordinate: ask what sits here
            self._set_state(DrawingPipe(vertices=(tuple(point),), menu=MenuRole.START))

    def _add_vertex(self, state: DrawingPipe, point: Coord) -> None:
        if state.menu is not None or state.awaiting_diameter:
            return
        last = state.vertices[-1]
        if self.model.matcher.is_same(point, last, self.finish_radius_px):
            if len(state.vertices) > 1:
                self._set_state(replace(state, awaiting_diameter=True, temp_line=None))
            # A second click on the start point would be a zero-length segment
            return
        snapped = self.model.snap_point(point, self.snap_radius_px)
        vertex = snapped if snapped is not None else tuple(point)
        self._set_state(replace(state, vertices=state.vertices + (vertex,), temp_line=None))

    # --- Prompts ---

    def choose_object(self, node_type: Union[NodeType, str]):
        """Answer the start/end object menu."""
        state = self._state
        if not isinstance(state, DrawingPipe) or state.menu is None:
            return None
        if not isinstance(node_type, NodeType):
            node_type = NodeType.from_key(node_type) or NodeType.from_object_type(node_type)
            if node_type is None:
                raise ValueError("Unknown object type for pipe anchor")
        if state.menu == MenuRole.START:
            return self._set_state(replace(state, start_anchor=node_type, menu=None))
        return self._commit(replace(state, end_anchor=node_type, menu=None))

    def dismiss_menu(self) -> EditState:
        state = self._state
        if not isinstance(state, DrawingPipe) or state.menu is None:
            return state
        if state.menu == MenuRole.START:
            return self._set_state(ToolSelected(Tool.PIPE))
        return self._set_state(replace(state, menu=None, pending_diameter=None))

    def confirm_diameter(self, diameter: Any):
        """Diameter prompt answered. Commits, or asks for the end object first."""
        state = self._state
        if not isinstance(state, DrawingPipe) or not state.awaiting_diameter:
            return None
        value = validate_diameter(diameter)
        state = replace(state, awaiting_diameter=False, pending_diameter=value)
        if not self._end_is_anchored(state):
            return self._set_state(replace(state, menu=MenuRole.END))
        return self._commit(state)

    def cancel_diameter(self) -> EditState:
        state = self._state
        if not isinstance(state, DrawingPipe) or not state.awaiting_diameter:
            return state
        return self._set_state(replace(state, awaiting_diameter=False))

    def _end_is_anchored(self, state: DrawingPipe) -> bool:
        end = state.vertices[-1]
        if self.model.is_near_any_object(end, self.snap_radius_px):
            return True
        # Closing onto a start object that is not created yet
        return state.start_anchor is not None and self.model.matcher.is_same(
            end, state.vertices[0], self.snap_radius_px
        )

    def _commit(self, state: DrawingPipe):
        segments = self.actions.commit_pipe(
            state.vertices, state.pending_diameter,
            start_anchor=state.start_anchor, end_anchor=state.end_anchor,
        )
        self._set_state(ToolSelected(Tool.PIPE))
        return segments

    # --- Pointer (edit tool) ---

    def hit_test(self, point: Coord) -> Optional[DragTarget]:
        """Node icon first, then vertex handle, then segment body."""
        node = self.model.hit_node(point, NODE_HIT_RADIUS_PX)
        if node is not None and node.visible:
            return DragTarget(DragKind.NODE, node.ref)
        vertex = self.model.hit_vertex(point, VERTEX_HIT_RADIUS_PX)
        if vertex is not None:
            return DragTarget(DragKind.VERTEX, vertex)
        segment_id = self._find_segment_body_at(point)
        if segment_id is not None:
            return DragTarget(DragKind.SEGMENT, segment_id)
        return None

    def _find_segment_body_at(self, point: Coord) -> Optional[int]:
        matcher = self.model.matcher
        mouse = matcher.to_screen(point)
        for segment in self.model.segments:
            if not segment.visible:
                continue
            for start, end in segment.pairs():
                if matcher.is_same(point, start, VERTEX_HIT_RADIUS_PX) or \
                        matcher.is_same(point, end, VERTEX_HIT_RADIUS_PX):
                    continue
                dist, _ = self._point_to_line_distance(mouse, matcher.to_screen(start), matcher.to_screen(end))
                if dist < SEGMENT_HIT_TOLERANCE_PX:
                    return segment.id
        return None

    def pointer_down(self, point: Coord) -> EditState:
        state = self._state
        if not isinstance(state, ToolSelected) or state.tool != Tool.EDIT:
            return state
        target = self.hit_test(point)
        if target is None:
            return state
        anchor = tuple(point)
        if target.kind == DragKind.VERTEX:
            segment = self.model.get_segment(target.ref.segment_id)
            anchor = segment.vertices[target.ref.index]
        return self._set_state(Dragging(target=target, anchor=anchor, snapshot=self.model.snapshot()))

    def pointer_move(self, point: Coord) -> EditState:
        state = self._state
        if isinstance(state, Dragging):
            return self._drag_to(state, tuple(point))
        if isinstance(state, DrawingPipe):
            if state.menu is not None or state.awaiting_diameter:
                return state
            snapped = self.model.snap_point(point, self.snap_radius_px)
            cursor = snapped if snapped is not None else tuple(point)
            return self._set_state(replace(state, temp_line=(state.vertices[-1], cursor)))
        if isinstance(state, ToolSelected) and state.tool == Tool.EDIT:
            highlight = self.hit_test(point)
            if highlight != state.highlight:
                return self._set_state(replace(state, highlight=highlight))
        return state

    def _drag_to(self, state: Dragging, point: Coord) -> EditState:
        if not self.model.matcher.viewport.contains(point):
            return state
        target = state.target
        if target.kind == DragKind.NODE:
            self.model.move_node(target.ref.node_type, target.ref.id, point)
        elif target.kind == DragKind.VERTEX:
            self.model.move_vertex(state.anchor, point)
        elif target.kind == DragKind.SEGMENT:
            segment = self.model.get_segment(target.ref)
            if segment is not None:
                delta = (point[0] - state.anchor[0], point[1] - state.anchor[1])
                self.model.move_segment_run(segment.id, 0, len(segment.vertices) - 1, delta)
        return self._set_state(replace(state, anchor=point))

    def pointer_up(self, point: Optional[Coord] = None) -> EditState:
        state = self._state
        if not isinstance(state, Dragging):
            return state
        if point is not None:
            state = self._drag_to(state, tuple(point))
        return self._set_state(ToolSelected(Tool.EDIT))

    def pointer_cancel(self) -> EditState:
        """Pointer capture lost: put the model back as it was at pointer_down."""
        state = self._state
        if not isinstance(state, Dragging):
            return state
        if state.snapshot is not None:
            self.model.restore(state.snapshot)
        logger.debug(f"Drag of {state.target.kind.value} cancelled")
        return self._set_state(ToolSelected(Tool.EDIT))

    def _point_to_line_distance(self, point: Tuple[float, float],
                                line_start: Tuple[float, float],
                                line_end: Tuple[float, float]) -> Tuple[float, float]:
        px, py = point
        x1, y1 = line_start
        x2, y2 = line_end
        dx, dy = x2 - x1, y2 - y1

        if dx == 0 and dy == 0:
            return math.sqrt((px - x1)**2 + (py - y1)**2), 0.0

        t = max(0.0, min(1.0, ((px - x1) * dx + (py - y1) * dy) / (dx * dx + dy * dy)))
        closest_x, closest_y = x1 + t * dx, y1 + t * dy
        return math.sqrt((px - closest_x)**2 + (py - closest_y)**2), t
