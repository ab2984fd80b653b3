"""
File-based Scheme Transport for HydroNet.

Implements the SchemeTransport protocol on local JSON files, applying the
same payloads the HTTP backend receives. Used for offline editing and tests.

Structure:
- {data_dir}/scheme_{id}.json: one FeatureCollection per scheme
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from hydronet.errors import SyncError
from hydronet.model import PIPE_OBJECT_TYPE
from hydronet.storage.protocol import TransportResult, failed, ok

logger = logging.getLogger(__name__)


def _object_key(feature: Dict[str, Any]) -> Tuple[str, Any]:
    return feature.get("name_object_type"), feature.get("id")


def _geometry_key(feature: Dict[str, Any]) -> str:
    geometry = feature.get("geometry") or {}
    return json.dumps(geometry.get("coordinates"))


class FileSchemeTransport:
    """
    Local JSON storage of schemes.

    Update payloads carry no id_scheme, so they apply to the scheme loaded
    last (or the one passed to the constructor).
    """

    def __init__(self, data_dir: str, id_scheme: Optional[int] = None):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.active_scheme = id_scheme

    @property
    def backend_type(self) -> str:
        return "file"

    def scheme_path(self, id_scheme: int) -> Path:
        return self.data_dir / f"scheme_{id_scheme}.json"

    def _read(self, id_scheme: int) -> Dict[str, Any]:
        path = self.scheme_path(id_scheme)
        if not path.exists():
            return {"type": "FeatureCollection", "id_scheme": id_scheme, "features": []}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise SyncError(f"Failed to read {path}: {e}", "load") from e
        data.setdefault("features", [])
        return data

    def _write(self, id_scheme: int, collection: Dict[str, Any]) -> None:
        path = self.scheme_path(id_scheme)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(collection, f, indent=2, ensure_ascii=False)

    def _scheme_for(self, payload: Dict[str, Any]) -> Optional[int]:
        data = payload.get("data") or {}
        return data.get("id_scheme", self.active_scheme)

    def _features(self, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        return list((payload.get("data") or {}).get("features") or [])

    # --- Protocol ---

    def load_scheme(self, id_scheme: int) -> Dict[str, Any]:
        collection = self._read(id_scheme)
        self.active_scheme = id_scheme
        return {"data": collection}

    def _apply(self, payload: Dict[str, Any], operation: str, apply) -> TransportResult:
        id_scheme = self._scheme_for(payload)
        if id_scheme is None:
            return failed(f"{operation}: no scheme selected")
        try:
            collection = self._read(id_scheme)
            count = apply(collection, self._features(payload))
            self._write(id_scheme, collection)
        except (SyncError, IOError, TypeError) as e:
            logger.error(f"{operation} on scheme {id_scheme} failed: {e}")
            return failed(f"{operation} failed: {e}")
        return ok(f"{operation}: {count} features")

    def delete_objects(self, payload: Dict[str, Any]) -> TransportResult:
        def apply(collection, features):
            doomed = {_object_key(f) for f in features}
            before = len(collection["features"])
            collection["features"] = [
                f for f in collection["features"] if _object_key(f) not in doomed
            ]
            return before - len(collection["features"])
        return self._apply(payload, "delete", apply)

    def update_objects(self, payload: Dict[str, Any]) -> TransportResult:
        def apply(collection, features):
            # A pipe update carries all of its vertex pairs: replace them as a whole
            replaced = {_object_key(f) for f in features}
            kept = [f for f in collection["features"] if _object_key(f) not in replaced]
            collection["features"] = kept + features
            return len(features)
        return self._apply(payload, "update", apply)

    def create_objects(self, payload: Dict[str, Any]) -> TransportResult:
        def apply(collection, features):
            existing = {
                (_object_key(f), _geometry_key(f)) if f.get("name_object_type") == PIPE_OBJECT_TYPE
                else _object_key(f)
                for f in collection["features"]
            }
            added = 0
            for feature in features:
                if feature.get("name_object_type") == PIPE_OBJECT_TYPE:
                    key = (_object_key(feature), _geometry_key(feature))
                else:
                    key = _object_key(feature)
                if key in existing:
                    continue
                existing.add(key)
                collection["features"].append(feature)
                added += 1
            return added
        return self._apply(payload, "create", apply)
