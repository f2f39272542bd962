"""
Conftest: shared fixtures for all Displace test modules.

1. Synthetic frames + maps — gradients, not blanks, so warps are visible
2. Manual loader — futures resolved by the test, for deterministic ordering
3. Encoded assets — PNG bytes, data URLs and files produced with Pillow
"""

import base64
import os
import sys
from concurrent.futures import Future
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.assets import AssetLoader


def _make_test_frame(width=32, height=24):
    """Generate a synthetic RGBA frame where every pixel is distinct."""
    frame = np.zeros((height, width, 4), dtype=np.uint8)
    frame[:, :, 0] = np.linspace(0, 255, width, dtype=np.uint8)[None, :]   # R gradient
    frame[:, :, 1] = np.linspace(0, 255, height, dtype=np.uint8)[:, None]  # G gradient
    frame[:, :, 2] = 200
    frame[:, :, 3] = (np.arange(width)[None, :] + np.arange(height)[:, None]) % 256
    return frame


def _make_map(width=32, height=24, r=128, g=128):
    """Uniform displacement map."""
    dmap = np.zeros((height, width, 4), dtype=np.uint8)
    dmap[:, :, 0] = r
    dmap[:, :, 1] = g
    dmap[:, :, 3] = 255
    return dmap


def _png_bytes(frame):
    buf = BytesIO()
    Image.fromarray(frame).save(buf, format="PNG")
    return buf.getvalue()


def _data_url(frame):
    return "data:image/png;base64," + base64.b64encode(_png_bytes(frame)).decode()


class ManualLoader(AssetLoader):
    """AssetLoader whose background decodes are resolved by the test.

    load_async returns a pending Future and records it; call resolve(i) or
    fail(i) to complete request i. Results come from the normal synchronous
    decode path so data URLs and arrays behave exactly as in production.
    """

    def __init__(self, width, height):
        super().__init__(width, height)
        self.pending = []

    def load_async(self, source):
        future = Future()
        self.pending.append((source, future))
        return future

    def resolve(self, index):
        source, future = self.pending[index]
        future.set_result(self.load(source))

    def fail(self, index, error):
        _, future = self.pending[index]
        future.set_exception(error)


@pytest.fixture
def frame():
    return _make_test_frame()


@pytest.fixture
def neutral():
    return _make_map()


@pytest.fixture
def manual_loader():
    return ManualLoader(32, 24)
