"""
SchemeTransport Protocol Definition.

This module defines the interface the sync client talks to. Both
HttpSchemeTransport (backend API) and FileSchemeTransport (local JSON files)
conform to this protocol.

Write operations never raise: they return {"success": bool, "message": str}
so that each change-set can be cleared or retained on its own.
"""

from typing import Any, Dict, Protocol, runtime_checkable

TransportResult = Dict[str, Any]


def ok(message: str = "ok") -> TransportResult:
    return {"success": True, "message": message}


def failed(message: str, status_code: int = None) -> TransportResult:
    result = {"success": False, "message": message}
    if status_code is not None:
        result["status_code"] = status_code
    return result


@runtime_checkable
class SchemeTransport(Protocol):
    """Abstract protocol for scheme transports."""

    @property
    def backend_type(self) -> str:
        """Return the transport type identifier ('http' or 'file')."""
        ...

    def load_scheme(self, id_scheme: int) -> Dict[str, Any]:
        """
        Load one scheme.

        Returns:
            The scheme FeatureCollection, possibly wrapped as {"data": ...}

        Raises:
            SyncError: if the scheme cannot be loaded
        """
        ...

    def delete_objects(self, payload: Dict[str, Any]) -> TransportResult:
        """
        Delete objects.

        Args:
            payload: {"data": FeatureCollection} whose features carry
                     id and name_object_type with geometry None
        """
        ...

    def update_objects(self, payload: Dict[str, Any]) -> TransportResult:
        """Update existing objects from {"data": FeatureCollection}."""
        ...

    def create_objects(self, payload: Dict[str, Any]) -> TransportResult:
        """Create objects from {"data": FeatureCollection} (carries id_scheme)."""
        ...
