"""
Spatial coincidence matching.

There is no persisted junction record in a scheme: a node and a pipe vertex
(or two pipe vertices) belong to the same junction when they are closer than
a tolerance. Every "same point" question in the editor is answered here.

Distances are measured in screen pixels through a Viewport, so the same
tolerance behaves identically at every zoom level of the current view.

    matcher = CoincidenceMatcher(WebMercatorViewport(zoom=15), tolerance_px=10)
    matcher.is_same(a, b)                 # -> bool
    matcher.find_nearest(click, points)   # first candidate within tolerance

SpatialIndex keeps a grid of rounded screen coordinates so that a lookup only
inspects neighbouring cells instead of every point of the network.
"""

import math
from dataclasses import dataclass
from typing import (
    Any, Callable, Dict, Hashable, Iterable, Iterator, List, Optional,
    Protocol, Set, Tuple, TypeVar,
)

Coord = Tuple[float, float]
Bounds = Tuple[float, float, float, float]  # west, south, east, north
T = TypeVar("T")

DEFAULT_TOLERANCE_PX = 10.0

# Web-Mercator constants (Leaflet's EPSG:3857 CRS)
TILE_SIZE = 256
MAX_LATITUDE = 85.0511287798


def distance(a: Coord, b: Coord) -> float:
    """Euclidean distance between two coordinates."""
    return math.hypot(a[0] - b[0], a[1] - b[1])


def _check_tolerance(tolerance: float) -> None:
    if not tolerance or tolerance <= 0:
        raise ValueError(f"Tolerance must be positive, got {tolerance!r}")


def is_same(a: Coord, b: Coord, tolerance: float) -> bool:
    """True if a and b are closer than tolerance (same units as the coordinates)."""
    _check_tolerance(tolerance)
    return distance(a, b) < tolerance


def find_nearest(point: Coord, candidates: Iterable[T], tolerance: float,
                 key: Optional[Callable[[T], Coord]] = None) -> Optional[T]:
    """
    Return the first candidate within tolerance of point, or None.

    Enumeration order decides ties, not the smallest distance: the first
    candidate inside the radius wins.
    """
    _check_tolerance(tolerance)
    for candidate in candidates:
        coord = key(candidate) if key else candidate
        if distance(point, coord) < tolerance:
            return candidate
    return None


# --- Viewports ---

class Viewport(Protocol):
    """Projection from map coordinates to screen pixels."""

    def to_screen(self, coord: Coord) -> Coord:
        ...

    def contains(self, coord: Coord) -> bool:
        ...


def _in_bounds(coord: Coord, bounds: Optional[Bounds]) -> bool:
    if bounds is None:
        return True
    west, south, east, north = bounds
    return west <= coord[0] <= east and south <= coord[1] <= north


@dataclass
class WebMercatorViewport:
    """
    Geographic (lon, lat) degrees projected to Web-Mercator layer pixels.

    Matches Leaflet's latLngToLayerPoint up to a constant offset, which does
    not matter for distance comparisons.
    """
    zoom: float = 15
    bounds: Optional[Bounds] = None

    def to_screen(self, coord: Coord) -> Coord:
        lng, lat = coord
        lat = max(min(lat, MAX_LATITUDE), -MAX_LATITUDE)
        scale = TILE_SIZE * (2 ** self.zoom)
        x = (lng + 180.0) / 360.0 * scale
        sin_lat = math.sin(math.radians(lat))
        y = (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)) * scale
        return x, y

    def contains(self, coord: Coord) -> bool:
        return _in_bounds(coord, self.bounds)


@dataclass
class PlanarViewport:
    """Linear projection: scale pixels per coordinate unit (y grows downwards)."""
    scale: float = 1.0
    bounds: Optional[Bounds] = None

    def to_screen(self, coord: Coord) -> Coord:
        return coord[0] * self.scale, -coord[1] * self.scale

    def contains(self, coord: Coord) -> bool:
        return _in_bounds(coord, self.bounds)


class CoincidenceMatcher:
    """Screen-space "same point" rules for one viewport."""

    def __init__(self, viewport: Optional[Viewport] = None,
                 tolerance_px: float = DEFAULT_TOLERANCE_PX):
        _check_tolerance(tolerance_px)
        self.viewport = viewport if viewport is not None else WebMercatorViewport()
        self.tolerance_px = tolerance_px

    def to_screen(self, coord: Coord) -> Coord:
        return self.viewport.to_screen(coord)

    def screen_distance(self, a: Coord, b: Coord) -> float:
        return distance(self.viewport.to_screen(a), self.viewport.to_screen(b))

    def is_same(self, a: Coord, b: Optional[Coord], tolerance_px: Optional[float] = None) -> bool:
        if b is None:
            return False
        tolerance = self.tolerance_px if tolerance_px is None else tolerance_px
        _check_tolerance(tolerance)
        return self.screen_distance(a, b) < tolerance

    def find_nearest(self, point: Coord, candidates: Iterable[T],
                     tolerance_px: Optional[float] = None,
                     key: Optional[Callable[[T], Coord]] = None) -> Optional[T]:
        """First candidate (in enumeration order) within tolerance_px of point on screen."""
        tolerance = self.tolerance_px if tolerance_px is None else tolerance_px
        _check_tolerance(tolerance)
        screen_point = self.viewport.to_screen(point)
        for candidate in candidates:
            coord = key(candidate) if key else candidate
            if distance(screen_point, self.viewport.to_screen(coord)) < tolerance:
                return candidate
        return None


# --- Spatial index ---

@dataclass
class _Entry:
    seq: int
    coord: Coord
    cell: Tuple[int, int]


class SpatialIndex:
    """
    Grid of rounded screen coordinates -> point references.

    References are any hashable value. Each reference keeps the sequence
    number it was first inserted with, and lookups return matches in that
    order, so results are identical to a linear scan in insertion order.
    Call rebuild() whenever the matcher's viewport changes.
    """

    def __init__(self, matcher: CoincidenceMatcher, cell_px: Optional[float] = None):
        self._matcher = matcher
        self._cell_px = cell_px or matcher.tolerance_px
        _check_tolerance(self._cell_px)
        self._entries: Dict[Hashable, _Entry] = {}
        self._cells: Dict[Tuple[int, int], Set[Hashable]] = {}
        self._seq = 0

    @property
    def matcher(self) -> CoincidenceMatcher:
        return self._matcher

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ref: Hashable) -> bool:
        return ref in self._entries

    def __iter__(self) -> Iterator[Hashable]:
        return iter(sorted(self._entries, key=lambda r: self._entries[r].seq))

    def _cell_of(self, coord: Coord) -> Tuple[int, int]:
        sx, sy = self._matcher.to_screen(coord)
        return math.floor(sx / self._cell_px), math.floor(sy / self._cell_px)

    def _attach(self, ref: Hashable, entry: _Entry) -> None:
        self._cells.setdefault(entry.cell, set()).add(ref)

    def _detach(self, ref: Hashable, entry: _Entry) -> None:
        bucket = self._cells.get(entry.cell)
        if bucket is not None:
            bucket.discard(ref)
            if not bucket:
                del self._cells[entry.cell]

    def insert(self, ref: Hashable, coord: Coord) -> None:
        """Add ref at coord; an existing ref is moved and keeps its order."""
        if ref in self._entries:
            self.update(ref, coord)
            return
        self._seq += 1
        entry = _Entry(seq=self._seq, coord=tuple(coord), cell=self._cell_of(coord))
        self._entries[ref] = entry
        self._attach(ref, entry)

    def update(self, ref: Hashable, coord: Coord) -> None:
        entry = self._entries.get(ref)
        if entry is None:
            self.insert(ref, coord)
            return
        self._detach(ref, entry)
        entry.coord = tuple(coord)
        entry.cell = self._cell_of(coord)
        self._attach(ref, entry)

    def remove(self, ref: Hashable) -> None:
        entry = self._entries.pop(ref, None)
        if entry is not None:
            self._detach(ref, entry)

    def position(self, ref: Hashable) -> Optional[Coord]:
        entry = self._entries.get(ref)
        return entry.coord if entry else None

    def query(self, coord: Coord, tolerance_px: Optional[float] = None,
              predicate: Optional[Callable[[Any], bool]] = None) -> List[Hashable]:
        """All refs within tolerance_px of coord, in insertion order."""
        tolerance = self._matcher.tolerance_px if tolerance_px is None else tolerance_px
        _check_tolerance(tolerance)
        screen = self._matcher.to_screen(coord)
        cx, cy = self._cell_of(coord)
        reach = int(math.ceil(tolerance / self._cell_px))

        hits = []
        for dx in range(-reach, reach + 1):
            for dy in range(-reach, reach + 1):
                for ref in self._cells.get((cx + dx, cy + dy), ()):
                    if predicate is not None and not predicate(ref):
                        continue
                    entry = self._entries[ref]
                    if distance(screen, self._matcher.to_screen(entry.coord)) < tolerance:
                        hits.append((entry.seq, ref))
        hits.sort(key=lambda hit: hit[0])
        return [ref for _, ref in hits]

    def nearest(self, coord: Coord, tolerance_px: Optional[float] = None,
                predicate: Optional[Callable[[Any], bool]] = None) -> Optional[Hashable]:
        """First ref (insertion order) within tolerance, or None."""
        hits = self.query(coord, tolerance_px, predicate)
        return hits[0] if hits else None

    def rebuild(self) -> None:
        """Recompute grid cells, e.g. after a zoom change."""
        self._cells = {}
        for ref, entry in self._entries.items():
            entry.cell = self._cell_of(entry.coord)
            self._attach(ref, entry)

    def clear(self) -> None:
        self._entries = {}
        self._cells = {}
        self._seq = 0

    def snapshot(self) -> Tuple[int, Dict[Hashable, Tuple[int, Coord]]]:
        return self._seq, {ref: (e.seq, e.coord) for ref, e in self._entries.items()}

    def restore(self, snapshot: Tuple[int, Dict[Hashable, Tuple[int, Coord]]]) -> None:
        seq, entries = snapshot
        self._seq = seq
        self._entries = {
            ref: _Entry(seq=s, coord=coord, cell=(0, 0)) for ref, (s, coord) in entries.items()
        }
        self.rebuild()
