"""
Conversion between the network model and the backend's GeoJSON-like wire format.

Outgoing:
    {"type": "FeatureCollection", "id_scheme": 7, "features": [
        {"type": "Feature", "id": 3, "name_object_type": "Скважина",
         "geometry": {"type": "Point", "coordinates": [49.13, 55.82]},
         "properties": {...}},
        {"type": "Feature", "id": 12, "name_object_type": "Труба",
         "geometry": {"type": "LineString", "coordinates": [[..], [..]]},
         "properties": {"Имя": "Труба #1", "Диаметр": 110}},
    ]}

A pipe segment becomes one LineString feature per vertex pair. Identical
pairs are emitted once per collection.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from hydronet.changeset import ChangeEntry
from hydronet.model import (
    PIPE_OBJECT_TYPE, PROP_DIAMETER, PROP_NAME,
    NetworkModel, NodeType, PipeSegment, PointObject,
)
from hydronet.schemas import SchemeFeature, SchemeFeatureCollection

logger = logging.getLogger(__name__)


def build_feature(object_id: Optional[int], object_type: str,
                  geometry: Optional[Dict[str, Any]],
                  properties: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "id": object_id,
        "name_object_type": object_type,
        "geometry": geometry,
        "properties": dict(properties or {}),
    }


def feature_collection(features: List[Dict[str, Any]], id_scheme: Optional[int] = None) -> Dict[str, Any]:
    collection: Dict[str, Any] = {"type": "FeatureCollection"}
    if id_scheme is not None:
        collection["id_scheme"] = id_scheme
    collection["features"] = features
    return collection


def segment_key(start, end) -> str:
    """Canonical dedup key of one vertex pair."""
    return f"{start[0]},{start[1]}-{end[0]},{end[1]}"


def node_features(object_type: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
    position = data.get("position")
    if not position:
        return []
    geometry = {"type": "Point", "coordinates": [position[0], position[1]]}
    return [build_feature(data.get("id"), object_type, geometry, data.get("properties"))]


def segment_features(data: Dict[str, Any], seen: Optional[Set[str]] = None) -> List[Dict[str, Any]]:
    """LineString features for each vertex pair of a segment snapshot, skipping pairs in seen."""
    seen = seen if seen is not None else set()
    vertices = data.get("vertices") or []
    features = []
    for start, end in zip(vertices, vertices[1:]):
        key = segment_key(start, end)
        if key in seen:
            continue
        seen.add(key)
        geometry = {"type": "LineString", "coordinates": [list(start), list(end)]}
        features.append(build_feature(data.get("id"), PIPE_OBJECT_TYPE, geometry, data.get("properties")))
    return features


def entries_to_feature_collection(entries: Iterable[ChangeEntry],
                                  id_scheme: Optional[int] = None) -> Dict[str, Any]:
    """Feature collection for created or updated change-set entries."""
    features: List[Dict[str, Any]] = []
    seen: Set[str] = set()
    for entry in entries:
        if entry.data is None:
            continue
        if entry.object_type == PIPE_OBJECT_TYPE:
            features.extend(segment_features(entry.data, seen))
        else:
            features.extend(node_features(entry.object_type, entry.data))
    return feature_collection(features, id_scheme)


def tombstones_to_feature_collection(entries: Iterable[ChangeEntry],
                                     id_scheme: Optional[int] = None) -> Dict[str, Any]:
    """Delete body: one geometry-less feature per tombstone."""
    features = [
        build_feature(int(entry.object_id), entry.object_type, None, {})
        for entry in entries
    ]
    return feature_collection(features, id_scheme)


def model_to_feature_collection(model: NetworkModel, id_scheme: Optional[int] = None) -> Dict[str, Any]:
    """Full export of the current network."""
    features: List[Dict[str, Any]] = []
    for node in model.iter_nodes():
        features.extend(node_features(node.object_type, node.snapshot()))
    for segment in model.segments:
        data = segment.snapshot()
        vertices = data["vertices"]
        geometry = {"type": "LineString", "coordinates": [list(v) for v in vertices]}
        features.append(build_feature(segment.id, PIPE_OBJECT_TYPE, geometry, data["properties"]))
    return feature_collection(features, id_scheme)


# --- Loading ---

@dataclass
class ParsedScheme:
    nodes: List[PointObject] = field(default_factory=list)
    segments: List[PipeSegment] = field(default_factory=list)
    id_scheme: Optional[int] = None
    skipped: int = 0


def unwrap_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Responses come either bare or wrapped as {"data": FeatureCollection}."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def parse_scheme(payload: Dict[str, Any]) -> ParsedScheme:
    """
    Turn a loaded FeatureCollection into model objects.

    Invalid features and unknown object types are skipped with a warning.
    Pipes are taken from LineString features only. Segments without an id
    get fresh ids above the largest one present.
    """
    envelope = SchemeFeatureCollection.model_validate(unwrap_payload(payload))
    parsed = ParsedScheme(id_scheme=envelope.id_scheme)

    pipe_features: List[SchemeFeature] = []
    for raw in envelope.features:
        try:
            feature = SchemeFeature.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Skipping malformed feature: {e.errors()[0].get('msg', e)}")
            parsed.skipped += 1
            continue

        if feature.name_object_type == PIPE_OBJECT_TYPE:
            if feature.is_line:
                pipe_features.append(feature)
            else:
                parsed.skipped += 1
            continue

        node_type = NodeType.from_object_type(feature.name_object_type)
        if node_type is None:
            logger.warning(f"Skipping feature of unknown type {feature.name_object_type!r}")
            parsed.skipped += 1
            continue
        if not feature.is_point or feature.id is None:
            logger.warning(f"Skipping {node_type.key} feature without id or point geometry")
            parsed.skipped += 1
            continue
        x, y = feature.geometry.coordinates[:2]
        parsed.nodes.append(PointObject(
            node_type=node_type,
            id=feature.id,
            position=(float(x), float(y)),
            properties=dict(feature.properties),
        ))

    parsed.segments = _build_segments(pipe_features)
    return parsed


def _build_segments(features: List[SchemeFeature]) -> List[PipeSegment]:
    next_id = max((f.id or 0 for f in features), default=0) + 1
    segments = []
    used: Set[int] = set()
    for feature in features:
        segment_id = feature.id
        if not segment_id or segment_id in used:
            segment_id = next_id
            next_id += 1
        used.add(segment_id)

        properties = dict(feature.properties)
        diameter = properties.get(PROP_DIAMETER, properties.get("diameter"))
        if diameter is None:
            diameter = 0
        properties.setdefault(PROP_NAME, f"Труба #{segment_id}")
        properties.setdefault(PROP_DIAMETER, diameter)
        segments.append(PipeSegment(
            id=segment_id,
            vertices=[(float(c[0]), float(c[1])) for c in feature.geometry.coordinates],
            diameter=diameter,
            properties=properties,
        ))
    return segments
