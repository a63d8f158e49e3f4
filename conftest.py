import random
from pathlib import Path

import pytest

from sect_chronicle.lore import WorldAtlas

PRESETS_DIR = Path(__file__).parent / "presets"


@pytest.fixture
def data_dir(tmp_path):
    """Fresh data directory per test."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def atlas():
    return WorldAtlas.load(PRESETS_DIR / "world.json")


@pytest.fixture
def rng():
    return random.Random(7)
