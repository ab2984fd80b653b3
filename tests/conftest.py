import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from hydronet.coincidence import CoincidenceMatcher, PlanarViewport
from hydronet.model import NetworkModel


@pytest.fixture
def matcher():
    """100 px per coordinate unit: a 10 px tolerance is 0.1 units."""
    return CoincidenceMatcher(PlanarViewport(scale=100), tolerance_px=10)


@pytest.fixture
def model(matcher):
    return NetworkModel(matcher=matcher)
