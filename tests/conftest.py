"""Shared test fixtures."""

import shutil
import tempfile

import numpy as np
import pytest
from PIL import Image

from TerrainPacker.config import PackerConfig


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return PackerConfig()


def solid_rgba(color, size=512):
    """Return a (size, size, 4) uint8 image filled with ``color``."""
    if len(color) == 3:
        color = (*color, 255)
    arr = np.empty((size, size, 4), dtype=np.uint8)
    arr[:, :] = np.asarray(color, dtype=np.uint8)
    return arr


def solid_gray(value, size=512):
    """Return a (size, size, 4) grey RGBA image whose luminance is ``value``."""
    return solid_rgba((value, value, value, 255), size=size)


def random_rgba(size=512, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, (size, size, 4), dtype=np.uint8)


def save_test_png(path, arr):
    """Write a uint8 array (H, W) / (H, W, 3|4) as PNG and return ``path``."""
    Image.fromarray(np.ascontiguousarray(arr)).save(path)
    return path
