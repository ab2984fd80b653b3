"""Tests for coincidence matching and the spatial index."""

import pytest

from hydronet.coincidence import (
    CoincidenceMatcher,
    PlanarViewport,
    SpatialIndex,
    WebMercatorViewport,
    distance,
    find_nearest,
    is_same,
)


class TestPlainMatching:

    def test_is_same_below_tolerance(self):
        assert is_same((0, 0), (0.00005, 0), 0.0001)

    def test_is_same_is_strict(self):
        assert not is_same((0, 0), (3, 4), 5)

    def test_zero_tolerance_rejected(self):
        with pytest.raises(ValueError):
            is_same((0, 0), (0, 0), 0)

    def test_find_nearest_is_first_match_not_closest(self):
        candidates = [(0.8, 0), (0.1, 0)]
        assert find_nearest((0, 0), candidates, 1.0) == (0.8, 0)

    def test_find_nearest_with_key(self):
        items = [{"name": "a", "pos": (5, 5)}, {"name": "b", "pos": (0, 1)}]
        hit = find_nearest((0, 0), items, 2, key=lambda item: item["pos"])
        assert hit["name"] == "b"

    def test_find_nearest_none(self):
        assert find_nearest((0, 0), [(10, 10)], 1) is None

    def test_distance(self):
        assert distance((0, 0), (3, 4)) == 5


class TestMatcher:

    def test_snap_within_and_outside_tolerance(self, matcher):
        vertex = (1.0, 1.0)
        # 5 px away: snaps
        assert matcher.find_nearest((1.05, 1.0), [vertex]) == vertex
        # 2x tolerance away: nothing
        assert matcher.find_nearest((1.2, 1.0), [vertex]) is None

    def test_is_same_with_none(self, matcher):
        assert not matcher.is_same((0, 0), None)

    def test_custom_tolerance(self, matcher):
        assert not matcher.is_same((0, 0), (0.12, 0))
        assert matcher.is_same((0, 0), (0.12, 0), tolerance_px=15)

    def test_invalid_tolerance(self):
        with pytest.raises(ValueError):
            CoincidenceMatcher(tolerance_px=0)

    def test_web_mercator_scales_with_zoom(self):
        a, b = (49.1300, 55.8200), (49.1301, 55.8200)
        near = CoincidenceMatcher(WebMercatorViewport(zoom=15))
        far = CoincidenceMatcher(WebMercatorViewport(zoom=5))
        assert near.screen_distance(a, b) > far.screen_distance(a, b)
        # 0.0001 degrees of longitude: ~2 px at zoom 15, ~19 px at zoom 18
        assert near.is_same(a, b)
        assert not CoincidenceMatcher(WebMercatorViewport(zoom=18)).is_same(a, b)

    def test_viewport_bounds(self):
        viewport = PlanarViewport(bounds=(0, 0, 10, 10))
        assert viewport.contains((5, 5))
        assert not viewport.contains((11, 5))
        assert PlanarViewport().contains((1e9, -1e9))


class TestSpatialIndex:

    @pytest.fixture
    def index(self, matcher):
        return SpatialIndex(matcher)

    def test_query_returns_insertion_order(self, index):
        index.insert("b", (0.05, 0))
        index.insert("a", (0, 0))
        index.insert("far", (5, 5))
        assert index.query((0, 0)) == ["b", "a"]
        assert index.nearest((0.01, 0)) == "b"

    def test_update_keeps_order(self, index):
        index.insert("first", (5, 5))
        index.insert("second", (0, 0))
        index.update("first", (0.01, 0))
        assert index.query((0, 0)) == ["first", "second"]

    def test_query_across_cell_boundary(self, index):
        # 0.099 and 0.101 fall in neighbouring 10 px cells
        index.insert("left", (0.099, 0))
        assert index.query((0.101, 0)) == ["left"]

    def test_remove_and_contains(self, index):
        index.insert("x", (1, 1))
        assert "x" in index
        index.remove("x")
        assert "x" not in index
        assert index.query((1, 1)) == []
        index.remove("x")

    def test_predicate(self, index):
        index.insert(("node", 1), (0, 0))
        index.insert(("vertex", 1), (0, 0))
        hits = index.query((0, 0), predicate=lambda ref: ref[0] == "vertex")
        assert hits == [("vertex", 1)]

    def test_rebuild_after_zoom(self, matcher):
        index = SpatialIndex(matcher)
        index.insert("a", (0, 0))
        index.insert("b", (0.5, 0))
        assert index.query((0, 0)) == ["a"]
        matcher.viewport = PlanarViewport(scale=10)
        index.rebuild()
        assert index.query((0, 0)) == ["a", "b"]

    def test_snapshot_restore(self, index):
        index.insert("a", (0, 0))
        snap = index.snapshot()
        index.update("a", (3, 3))
        index.insert("b", (0, 0))
        index.restore(snap)
        assert index.query((0, 0)) == ["a"]
        assert len(index) == 1
        assert list(index) == ["a"]
