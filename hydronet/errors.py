"""
Error taxonomy for network editing and synchronization.

Lookup misses (stale ids, nothing coincident) are not errors at all: the model
treats them as no-ops. Only the conditions below are raised.
"""

from typing import Optional


class NetworkEditError(Exception):
    """Base class for HydroNet errors."""


class InvalidSegmentIndices(NetworkEditError, IndexError):
    """A segment operation referenced vertices outside the segment's vertex array."""

    def __init__(self, segment_id: int, from_index: int, to_index: int, vertex_count: int):
        self.segment_id = segment_id
        self.from_index = from_index
        self.to_index = to_index
        self.vertex_count = vertex_count
        super().__init__(
            f"Segment {segment_id}: indices {from_index}..{to_index} "
            f"outside vertex range 0..{vertex_count - 1}"
        )


class SyncError(NetworkEditError):
    """A request to the scheme backend failed."""

    def __init__(self, message: str, operation: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)
