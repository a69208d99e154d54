"""
Pytest configuration and fixtures
"""
import os
import sys

import numpy as np
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def sample_channel(rng):
    """A 24x32 channel with values in [0, 255]"""
    return rng.uniform(0, 255, size=(24, 32))


@pytest.fixture
def sample_rgba(rng):
    """Planar RGBA channels, 16x20"""
    color = [rng.uniform(0, 255, size=(16, 20)) for _ in range(3)]
    alpha = np.full((16, 20), 200.0)
    return color + [alpha]


@pytest.fixture
def sample_image_path(tmp_path, rng):
    """An RGB PNG file on disk"""
    from PIL import Image
    pixels = rng.integers(0, 256, size=(30, 40, 3), dtype=np.uint8)
    # A brighter left half so the retinex output is not flat
    pixels[:, :20] = np.clip(pixels[:, :20].astype(int) + 60, 0, 255).astype(np.uint8)
    path = tmp_path / "input.png"
    Image.fromarray(pixels).save(path)
    return str(path)
