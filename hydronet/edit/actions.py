"""
Edit Actions Module for map editing.

Executes network mutations based on operator interactions.
Translates controller states and context-menu choices into NetworkModel calls.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from hydronet.coincidence import Coord
from hydronet.model import (
    PIPE_GROUP, PIPE_OBJECT_TYPE,
    NetworkModel, NodeRef, NodeType, PipeSegment, PointObject, VertexRef,
)

logger = logging.getLogger(__name__)

Target = Union[NodeRef, VertexRef, int]


def validate_diameter(diameter: Any) -> float:
    """Coerce operator input to a positive diameter or raise ValueError."""
    value = float(diameter)
    if value <= 0:
        raise ValueError(f"Diameter must be positive, got {diameter!r}")
    return value


class EditActions:
    """
    Handles execution of committed editing actions.

    Each method applies one finished operation to the NetworkModel.
    """

    def __init__(self, model: NetworkModel):
        self.model = model

    def add_node(self, node_type: NodeType, position: Coord) -> PointObject:
        return self.model.add_node(node_type, position)

    def commit_pipe(self, vertices: Sequence[Coord], diameter: float,
                    start_anchor: Optional[NodeType] = None,
                    end_anchor: Optional[NodeType] = None,
                    name: Optional[str] = None) -> List[PipeSegment]:
        """
        Persist a finished drawing.

        Anchors chosen in the object menu are created first, at the pipe's
        first and last vertex, then the polyline is decomposed into segments.
        """
        diameter = validate_diameter(diameter)
        if len(vertices) < 2:
            raise ValueError("A pipe needs at least two vertices")
        if start_anchor is not None:
            self.model.add_node(start_anchor, vertices[0])
        if end_anchor is not None:
            self.model.add_node(end_anchor, vertices[-1])
        segments = self.model.add_pipe(vertices, diameter, name)
        logger.info(f"Committed pipe '{segments[0].name}' with {len(segments)} segments")
        return segments

    def delete(self, target: Target) -> bool:
        return self.model.delete(target)

    def passport(self, target: Target) -> Optional[Dict[str, Any]]:
        """Read-only view of an object's attributes for the passport panel."""
        obj = self.model.get(target)
        if obj is None:
            return None
        info = {
            "object_type": obj.object_type,
            "id": obj.id,
            "visible": obj.visible,
            "properties": dict(obj.properties),
        }
        if isinstance(obj, PipeSegment):
            info["diameter"] = obj.diameter
            info["vertices"] = list(obj.vertices)
        else:
            info["position"] = obj.position
        return info

    @staticmethod
    def resolve_target(action: Dict[str, Any]) -> Optional[Target]:
        """Accept either a ready target or an {object_type, id} pair."""
        if action.get("target") is not None:
            return action["target"]
        object_type, object_id = action.get("object_type"), action.get("id")
        if object_type is None or object_id is None:
            return None
        if object_type == PIPE_OBJECT_TYPE:
            return int(object_id)
        node_type = NodeType.from_object_type(object_type) or NodeType.from_key(object_type)
        if node_type is None:
            return None
        return NodeRef(node_type, int(object_id))

    def commit_context_action(self, action: Dict[str, Any]) -> Any:
        """Execute a context-menu action on one object."""
        name = action.get("action")
        target = self.resolve_target(action)

        if name == "delete":
            if target is None:
                return False
            return self.model.delete(target)

        elif name == "set_diameter":
            segment = self.model.get(target) if target is not None else None
            if not isinstance(segment, PipeSegment):
                return False
            return self.model.set_diameter(segment.id, validate_diameter(action.get("diameter")))

        elif name == "split":
            segment = self.model.get(target) if target is not None else None
            if not isinstance(segment, PipeSegment):
                return False
            return self.model.split_segment(segment.id, int(action.get("index")))

        elif name == "update_properties":
            if target is None:
                return False
            return self.model.update_properties(target, dict(action.get("properties") or {}))

        elif name == "toggle_visibility":
            obj = self.model.get(target) if target is not None else None
            if obj is None:
                return False
            return self.model.set_visible(target, not obj.visible)

        elif name == "toggle_group":
            group = action.get("group")
            if group != PIPE_GROUP and not isinstance(group, NodeType):
                group = NodeType.from_key(group)
                if group is None:
                    logger.warning(f"Unknown visibility group {action.get('group')!r}")
                    return False
            self.model.set_group_visible(group, bool(action.get("visible", True)))
            return True

        elif name == "open_passport":
            return self.passport(target) if target is not None else None

        logger.warning(f"Unknown context action {name!r}")
        return None
