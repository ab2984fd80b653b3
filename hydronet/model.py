"""
In-memory network model.

Holds the typed point-objects and the pipe segments of one scheme and
exposes the mutators the editor uses. Connectivity is never stored: a pipe
is attached to a well only because one of its vertices coincides with the
well's position. Every mutator that moves a point therefore re-derives the
junction (through the spatial index) and drags the coincident points along.

Each mutation is reported to the ChangeSetTracker so the sync client can
later build the create/update/delete requests.

Lookups that miss (stale ids after another handler deleted the object) are
silent no-ops: the UI cannot guarantee handler ordering.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

from hydronet.changeset import ChangeKind, ChangeSetTracker
from hydronet.coincidence import Coord, CoincidenceMatcher, SpatialIndex, Viewport
from hydronet.errors import InvalidSegmentIndices

logger = logging.getLogger(__name__)

PIPE_OBJECT_TYPE = "Труба"
PIPE_GROUP = "pipe"

# Property keys used by the scheme backend
PROP_NAME = "Имя"
PROP_DIAMETER = "Диаметр"


class NodeType(Enum):
    """Point-object kinds: (short key, backend name_object_type)."""
    WELL = ("well", "Скважина")
    CONSUMER = ("user", "Потребитель")
    CAPTURE = ("capture", "Каптаж")
    PUMP = ("pump", "Насос")
    RESERVOIR = ("reservoir", "Контр-резервуар")
    TOWER = ("tower", "Водонапорная башня")

    def __init__(self, key: str, object_type: str):
        self.key = key
        self.object_type = object_type

    @classmethod
    def from_object_type(cls, object_type: str) -> Optional["NodeType"]:
        for node_type in cls:
            if node_type.object_type == object_type:
                return node_type
        return None

    @classmethod
    def from_key(cls, key: str) -> Optional["NodeType"]:
        for node_type in cls:
            if node_type.key == key:
                return node_type
        return None


class NodeRef(NamedTuple):
    node_type: NodeType
    id: int


class VertexRef(NamedTuple):
    segment_id: int
    index: int


def _coord(value: Sequence[float]) -> Coord:
    return float(value[0]), float(value[1])


@dataclass
class PointObject:
    """A single-coordinate network entity (well, consumer, pump, ...)."""
    node_type: NodeType
    id: int
    position: Coord
    visible: bool = True
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def ref(self) -> NodeRef:
        return NodeRef(self.node_type, self.id)

    @property
    def object_type(self) -> str:
        return self.node_type.object_type

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "position": tuple(self.position),
            "visible": self.visible,
            "properties": copy.deepcopy(self.properties),
        }


@dataclass
class PipeSegment:
    """The smallest persisted pipe unit: one drawn edge between two vertices."""
    id: int
    vertices: List[Coord]
    diameter: float = 0.0
    visible: bool = True
    properties: Dict[str, Any] = field(default_factory=dict)

    object_type: ClassVar[str] = PIPE_OBJECT_TYPE

    @property
    def name(self) -> str:
        return self.properties.get(PROP_NAME) or f"Труба #{self.id}"

    def pairs(self) -> List[Tuple[Coord, Coord]]:
        return [(self.vertices[i - 1], self.vertices[i]) for i in range(1, len(self.vertices))]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vertices": [tuple(v) for v in self.vertices],
            "diameter": self.diameter,
            "visible": self.visible,
            "properties": copy.deepcopy(self.properties),
        }


@dataclass
class ModelSnapshot:
    """Opaque copy of the model used to roll back a cancelled edit."""
    nodes: Dict[NodeType, Dict[int, PointObject]]
    segments: Dict[int, PipeSegment]
    counters: Dict[str, int]
    index: Any
    tracker: Any


Target = Union[NodeRef, VertexRef, int]


class NetworkModel:
    """
    Owned, injectable container for one scheme's network.

    Node ids are monotonic per type, segment ids monotonic across pipes.
    """

    def __init__(self, matcher: Optional[CoincidenceMatcher] = None,
                 tracker: Optional[ChangeSetTracker] = None):
        self._matcher = matcher if matcher is not None else CoincidenceMatcher()
        self.tracker = tracker if tracker is not None else ChangeSetTracker()
        self._nodes: Dict[NodeType, Dict[int, PointObject]] = {t: {} for t in NodeType}
        self._segments: Dict[int, PipeSegment] = {}
        self._counters: Dict[str, int] = self._fresh_counters()
        self._index = SpatialIndex(self._matcher)

    @staticmethod
    def _fresh_counters() -> Dict[str, int]:
        counters = {t.key: 1 for t in NodeType}
        counters[PIPE_GROUP] = 1
        return counters

    @property
    def matcher(self) -> CoincidenceMatcher:
        return self._matcher

    @property
    def index(self) -> SpatialIndex:
        return self._index

    def set_viewport(self, viewport: Viewport) -> None:
        """Switch the projection used for coincidence (zoom/pan) and re-bucket the index."""
        self._matcher.viewport = viewport
        self._index.rebuild()

    # --- Internal helpers ---

    def _next_id(self, counter: str) -> int:
        value = self._counters[counter]
        self._counters[counter] = value + 1
        return value

    def _register_node(self, node: PointObject) -> None:
        self._nodes[node.node_type][node.id] = node
        self._index.insert(node.ref, node.position)

    def _register_segment(self, segment: PipeSegment) -> None:
        self._segments[segment.id] = segment
        for i, vertex in enumerate(segment.vertices):
            self._index.insert(VertexRef(segment.id, i), vertex)

    def _unregister_segment_vertices(self, segment: PipeSegment, start: int = 0) -> None:
        for i in range(start, len(segment.vertices)):
            self._index.remove(VertexRef(segment.id, i))

    def _mark_updated(self, obj: Union[PointObject, PipeSegment]) -> None:
        self.tracker.record_updated(obj.object_type, obj.id, obj.snapshot())

    def _mark_created(self, obj: Union[PointObject, PipeSegment]) -> None:
        self.tracker.record_created(obj.object_type, obj.id, obj.snapshot())

    def _coord_of(self, ref: Union[NodeRef, VertexRef]) -> Optional[Coord]:
        if isinstance(ref, NodeRef):
            node = self.get_node(ref.node_type, ref.id)
            return node.position if node else None
        segment = self._segments.get(ref.segment_id)
        if segment is None or ref.index >= len(segment.vertices):
            return None
        return segment.vertices[ref.index]

    def _set_coord(self, ref: Union[NodeRef, VertexRef], coord: Coord) -> Union[PointObject, PipeSegment]:
        if isinstance(ref, NodeRef):
            obj = self._nodes[ref.node_type][ref.id]
            obj.position = coord
        else:
            obj = self._segments[ref.segment_id]
            obj.vertices[ref.index] = coord
        self._index.update(ref, coord)
        return obj

    # --- Queries ---

    def get_node(self, node_type: NodeType, node_id: int) -> Optional[PointObject]:
        return self._nodes[node_type].get(node_id)

    def get_segment(self, segment_id: int) -> Optional[PipeSegment]:
        return self._segments.get(segment_id)

    def get(self, target: Target) -> Optional[Union[PointObject, PipeSegment]]:
        """Resolve a NodeRef, a VertexRef (its segment) or a segment id."""
        if isinstance(target, NodeRef):
            return self.get_node(target.node_type, target.id)
        if isinstance(target, VertexRef):
            return self._segments.get(target.segment_id)
        return self._segments.get(target)

    def iter_nodes(self, node_type: Optional[NodeType] = None) -> Iterator[PointObject]:
        types = [node_type] if node_type else list(NodeType)
        for t in types:
            yield from list(self._nodes[t].values())

    @property
    def segments(self) -> List[PipeSegment]:
        return list(self._segments.values())

    def is_empty(self) -> bool:
        return not self._segments and not any(self._nodes.values())

    def snap_point(self, point: Coord, radius_px: Optional[float] = None) -> Optional[Coord]:
        """Position of the first existing node or vertex within radius_px of point."""
        ref = self._index.nearest(point, radius_px)
        return self._coord_of(ref) if ref is not None else None

    def is_near_any_object(self, point: Coord, radius_px: Optional[float] = None) -> bool:
        return self._index.nearest(point, radius_px) is not None

    def hit_node(self, point: Coord, radius_px: Optional[float] = None) -> Optional[PointObject]:
        ref = self._index.nearest(point, radius_px, predicate=lambda r: isinstance(r, NodeRef))
        return self.get_node(ref.node_type, ref.id) if ref is not None else None

    def hit_vertex(self, point: Coord, radius_px: Optional[float] = None) -> Optional[VertexRef]:
        return self._index.nearest(point, radius_px, predicate=lambda r: isinstance(r, VertexRef))

    def vertices_at(self, point: Coord, radius_px: Optional[float] = None) -> List[VertexRef]:
        """Every segment vertex coincident with point (a junction)."""
        return self._index.query(point, radius_px, predicate=lambda r: isinstance(r, VertexRef))

    def nodes_at(self, point: Coord, radius_px: Optional[float] = None) -> List[PointObject]:
        refs = self._index.query(point, radius_px, predicate=lambda r: isinstance(r, NodeRef))
        return [self._nodes[r.node_type][r.id] for r in refs]

    def find_segment_by_vertex(self, point: Coord) -> Optional[int]:
        ref = self.hit_vertex(point)
        return ref.segment_id if ref is not None else None

    def find_vertex_index(self, point: Coord, segment_id: int) -> Optional[int]:
        segment = self._segments.get(segment_id)
        if segment is None:
            return None
        for i, vertex in enumerate(segment.vertices):
            if self._matcher.is_same(vertex, point):
                return i
        return None

    # --- Creation ---

    def add_node(self, node_type: NodeType, position: Coord,
                 properties: Optional[Dict[str, Any]] = None) -> PointObject:
        node = PointObject(
            node_type=node_type,
            id=self._next_id(node_type.key),
            position=_coord(position),
            properties=dict(properties or {}),
        )
        self._register_node(node)
        self._mark_created(node)
        logger.debug(f"Added {node_type.key} #{node.id} at {node.position}")
        return node

    def add_pipe(self, vertices: Sequence[Coord], diameter: float,
                 name: Optional[str] = None) -> List[PipeSegment]:
        """
        Decompose a drawn polyline into N-1 segment records.

        All segments share name and diameter but get their own id, so one
        stretch can later be deleted or re-diametered on its own.
        """
        if len(vertices) < 2:
            raise ValueError("A pipe needs at least two vertices")
        points = [_coord(v) for v in vertices]
        name = name or f"Труба #{self._counters[PIPE_GROUP]}"

        created = []
        for start, end in zip(points, points[1:]):
            segment = PipeSegment(
                id=self._next_id(PIPE_GROUP),
                vertices=[start, end],
                diameter=diameter,
                properties={PROP_NAME: name, PROP_DIAMETER: diameter},
            )
            self._register_segment(segment)
            self._mark_created(segment)
            created.append(segment)
        logger.debug(f"Added pipe '{name}' as {len(created)} segments")
        return created

    # --- Movement ---

    def _rewrite_vertices(self, old_position: Coord, new_position: Coord) -> List[PipeSegment]:
        refs = self.vertices_at(old_position)
        touched: Dict[int, PipeSegment] = {}
        for ref in refs:
            segment = self._set_coord(ref, new_position)
            touched[segment.id] = segment
        for segment in touched.values():
            self._mark_updated(segment)
        return list(touched.values())

    def move_node(self, node_type: NodeType, node_id: int, new_position: Coord) -> List[PipeSegment]:
        """
        Move a node and every pipe vertex attached to it.

        Returns the segments whose vertices were rewritten.
        """
        node = self.get_node(node_type, node_id)
        if node is None:
            logger.debug(f"move_node: no {node_type.key} #{node_id}")
            return []
        new_position = _coord(new_position)
        old_position = node.position
        touched = self._rewrite_vertices(old_position, new_position)
        self._set_coord(node.ref, new_position)
        self._mark_updated(node)
        return touched

    def move_vertex(self, old_position: Coord, new_position: Coord) -> List[PipeSegment]:
        """Move every segment vertex coincident with old_position as one junction."""
        touched = self._rewrite_vertices(old_position, _coord(new_position))
        if not touched:
            logger.debug(f"move_vertex: nothing at {old_position}")
        return touched

    def move_segment_run(self, segment_id: int, from_index: int, to_index: int,
                         delta: Tuple[float, float]) -> List[PipeSegment]:
        """
        Translate vertices from_index..to_index (inclusive) of one segment by delta.

        Nodes and other segments' vertices coincident with a moved vertex ride
        along. Every affected point is translated exactly once.
        """
        segment = self._segments.get(segment_id)
        if segment is None:
            logger.debug(f"move_segment_run: no segment #{segment_id}")
            return []
        count = len(segment.vertices)
        if not (0 <= from_index <= to_index < count):
            logger.warning(
                f"move_segment_run: indices {from_index}..{to_index} invalid for segment #{segment_id}"
            )
            raise InvalidSegmentIndices(segment_id, from_index, to_index, count)

        # Collect first, then apply: a point reached by two rules moves once
        origins: Dict[Union[NodeRef, VertexRef], Coord] = {}
        for i in range(from_index, to_index + 1):
            vertex = segment.vertices[i]
            origins.setdefault(VertexRef(segment_id, i), vertex)
            for ref in self._index.query(vertex):
                origin = self._coord_of(ref)
                if origin is not None:
                    origins.setdefault(ref, origin)

        dx, dy = delta
        touched_segments: Dict[int, PipeSegment] = {}
        touched_nodes: List[PointObject] = []
        for ref, (x, y) in origins.items():
            obj = self._set_coord(ref, (x + dx, y + dy))
            if isinstance(ref, NodeRef):
                touched_nodes.append(obj)
            else:
                touched_segments[obj.id] = obj

        for obj in list(touched_segments.values()) + touched_nodes:
            self._mark_updated(obj)
        return list(touched_segments.values())

    def split_segment(self, segment_id: int, index: int) -> Optional[Tuple[PipeSegment, PipeSegment]]:
        """
        Split a multi-vertex segment at an interior vertex.

        The segment keeps its id and vertices 0..index; a new segment takes
        index..end. Loaded schemes may contain such polylines.
        """
        segment = self._segments.get(segment_id)
        if segment is None:
            logger.debug(f"split_segment: no segment #{segment_id}")
            return None
        count = len(segment.vertices)
        if not (0 < index < count - 1):
            logger.warning(f"split_segment: index {index} is not interior to segment #{segment_id}")
            raise InvalidSegmentIndices(segment_id, index, index, count)

        tail = PipeSegment(
            id=self._next_id(PIPE_GROUP),
            vertices=list(segment.vertices[index:]),
            diameter=segment.diameter,
            visible=segment.visible,
            properties=copy.deepcopy(segment.properties),
        )
        self._unregister_segment_vertices(segment, start=index + 1)
        segment.vertices = list(segment.vertices[:index + 1])
        self._register_segment(tail)
        self._mark_updated(segment)
        self._mark_created(tail)
        return segment, tail

    # --- Property edits ---

    def set_diameter(self, segment_id: int, diameter: float) -> bool:
        segment = self._segments.get(segment_id)
        if segment is None:
            return False
        segment.diameter = diameter
        segment.properties[PROP_DIAMETER] = diameter
        self._mark_updated(segment)
        return True

    def update_properties(self, target: Target, properties: Dict[str, Any]) -> bool:
        """Merge passport edits into an object's property bag."""
        obj = self.get(target)
        if obj is None:
            return False
        obj.properties.update(properties)
        if isinstance(obj, PipeSegment) and PROP_DIAMETER in properties:
            obj.diameter = properties[PROP_DIAMETER]
        self._mark_updated(obj)
        return True

    # --- Deletion ---

    def delete_node(self, node_type: NodeType, node_id: int) -> bool:
        node = self._nodes[node_type].pop(node_id, None)
        if node is None:
            logger.debug(f"delete_node: no {node_type.key} #{node_id}")
            return False
        self._index.remove(node.ref)
        self.tracker.record_deleted(node.object_type, node.id)
        return True

    def delete_segment(self, segment_id: int) -> bool:
        segment = self._segments.pop(segment_id, None)
        if segment is None:
            logger.debug(f"delete_segment: no segment #{segment_id}")
            return False
        self._unregister_segment_vertices(segment)
        self.tracker.record_deleted(segment.object_type, segment.id)
        return True

    def delete(self, target: Target) -> bool:
        if isinstance(target, NodeRef):
            return self.delete_node(target.node_type, target.id)
        if isinstance(target, VertexRef):
            return self.delete_segment(target.segment_id)
        return self.delete_segment(target)

    # --- Visibility (view concern, never synced) ---

    def set_visible(self, target: Target, visible: bool) -> bool:
        obj = self.get(target)
        if obj is None:
            return False
        obj.visible = visible
        return True

    def set_group_visible(self, group: Union[NodeType, str], visible: bool) -> None:
        if group == PIPE_GROUP:
            for segment in self._segments.values():
                segment.visible = visible
            return
        for node in self._nodes[group].values():
            node.visible = visible

    # --- Lifecycle ---

    def load(self, nodes: Sequence[PointObject], segments: Sequence[PipeSegment]) -> None:
        """Replace the whole network with a loaded scheme. The change-set starts empty."""
        self.clear()
        for node in nodes:
            self._register_node(node)
        for segment in segments:
            self._register_segment(segment)
        for node_type in NodeType:
            ids = list(self._nodes[node_type])
            self._counters[node_type.key] = max(ids, default=0) + 1
        self._counters[PIPE_GROUP] = max(self._segments, default=0) + 1
        self.tracker.reset()
        logger.info(f"Loaded {len(nodes)} nodes and {len(segments)} pipe segments")

    def load_features(self, feature_collection: Dict[str, Any]) -> None:
        """Hydrate from a scheme FeatureCollection as returned by the backend."""
        from hydronet.conversion import parse_scheme

        parsed = parse_scheme(feature_collection)
        self.load(parsed.nodes, parsed.segments)

    def clear(self) -> None:
        self._nodes = {t: {} for t in NodeType}
        self._segments = {}
        self._counters = self._fresh_counters()
        self._index.clear()
        self.tracker.reset()

    def snapshot(self) -> ModelSnapshot:
        return ModelSnapshot(
            nodes=copy.deepcopy(self._nodes),
            segments=copy.deepcopy(self._segments),
            counters=dict(self._counters),
            index=self._index.snapshot(),
            tracker=self.tracker.snapshot(),
        )

    def restore(self, snapshot: ModelSnapshot) -> None:
        """
        Return geometry to snapshot and roll back the changes recorded since.

        Objects a save acknowledged in the meantime are recorded again with
        their restored state so the server converges on it.
        """
        counters = dict(self._counters)
        self._nodes = copy.deepcopy(snapshot.nodes)
        self._segments = copy.deepcopy(snapshot.segments)
        self._counters = dict(snapshot.counters)
        self._index.restore(snapshot.index)
        resync = self.tracker.rollback(snapshot.tracker)
        if resync:
            # Ids the server has seen are never handed out again
            self._counters = {name: max(value, counters[name]) for name, value in self._counters.items()}
        for (object_type, object_id), kind in resync:
            obj = self._object_by_key(object_type, object_id)
            if obj is None:
                self.tracker.record_deleted(object_type, object_id)
            elif kind == ChangeKind.DELETED:
                self._mark_created(obj)
            else:
                self._mark_updated(obj)

    def _object_by_key(self, object_type: str, object_id: int) -> Optional[Union[PointObject, PipeSegment]]:
        if object_type == PIPE_OBJECT_TYPE:
            return self._segments.get(object_id)
        node_type = NodeType.from_object_type(object_type)
        return self.get_node(node_type, object_id) if node_type else None
