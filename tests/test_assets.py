"""
Displace — Asset Loader & Frame I/O Tests
Decoding from arrays, PIL images, bytes, data URLs, files and http URLs.

Run with: pytest tests/test_assets.py -v
"""

import os
import sys
from unittest.mock import patch, MagicMock

import numpy as np
import pytest
import requests
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.assets import AssetLoader, is_async_reference
from core.image_io import (
    decode_data_url, ensure_rgba, frame_to_data_url, load_frame, save_frame,
)
from core.safety import MAX_DIMENSION, DecodeError, SafetyError
from conftest import _png_bytes, _data_url


@pytest.fixture
def loader():
    return AssetLoader(32, 24)


class TestSyncLoad:

    def test_matching_rgba_array_is_copied(self, loader, frame):
        out = loader.load(frame)
        np.testing.assert_array_equal(out, frame)
        assert out is not frame

    def test_rgb_array_gets_opaque_alpha(self, loader, frame):
        out = loader.load(frame[:, :, :3].copy())
        assert out.shape == (24, 32, 4)
        assert (out[:, :, 3] == 255).all()
        np.testing.assert_array_equal(out[:, :, :3], frame[:, :, :3])

    def test_greyscale_array(self, loader):
        grey = np.full((24, 32), 77, dtype=np.uint8)
        out = loader.load(grey)
        assert (out[:, :, :3] == 77).all()

    def test_mismatched_array_is_resampled(self, loader):
        big = np.full((48, 64, 4), 90, dtype=np.uint8)
        big[:, :, 3] = 255
        out = loader.load(big)
        assert out.shape == (24, 32, 4)
        assert (out[:, :, :3] == 90).all()

    def test_pil_image_is_resampled(self, loader):
        img = Image.new("RGB", (100, 10), (10, 20, 30))
        out = loader.load(img)
        assert out.shape == (24, 32, 4)
        assert tuple(out[5, 5]) == (10, 20, 30, 255)

    def test_png_bytes(self, loader, frame):
        np.testing.assert_array_equal(loader.load(_png_bytes(frame)), frame)

    def test_data_url(self, loader, frame):
        np.testing.assert_array_equal(loader.load(_data_url(frame)), frame)

    def test_file_path_and_file_url(self, loader, frame, tmp_path):
        path = tmp_path / "base.png"
        save_frame(frame, path)
        np.testing.assert_array_equal(loader.load(str(path)), frame)
        np.testing.assert_array_equal(loader.load(path), frame)
        np.testing.assert_array_equal(loader.load(path.as_uri()), frame)

    def test_nearest_resample_keeps_palette(self):
        src = np.zeros((2, 2, 4), dtype=np.uint8)
        src[0, 0] = [255, 0, 0, 255]
        src[1, 1] = [0, 0, 255, 255]
        out = AssetLoader(8, 8, resample="nearest").load(src)
        colours = {tuple(c) for c in out.reshape(-1, 4)}
        assert colours <= {(255, 0, 0, 255), (0, 0, 255, 255), (0, 0, 0, 0)}


class TestDecodeErrors:

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(DecodeError, match="not found"):
            loader.load(str(tmp_path / "missing.png"))

    def test_garbage_bytes(self, loader):
        with pytest.raises(DecodeError, match="decode"):
            loader.load(b"definitely not a png")

    def test_bad_base64(self, loader):
        with pytest.raises(DecodeError):
            loader.load("data:image/png;base64,@@@not-base64@@@")

    def test_non_base64_data_url(self):
        with pytest.raises(DecodeError, match="base64"):
            decode_data_url("data:text/plain,hello")

    def test_float_array_rejected(self, loader):
        with pytest.raises(DecodeError, match="uint8"):
            loader.load(np.zeros((24, 32, 4), dtype=np.float32))

    def test_unsupported_type(self, loader):
        with pytest.raises(DecodeError, match="Unsupported"):
            loader.load(12345)

    def test_decompression_bomb_becomes_decode_error(self, loader):
        with patch("core.image_io.Image.open", side_effect=Image.DecompressionBombError("bomb")):
            with pytest.raises(DecodeError, match="bomb"):
                loader.load(b"x")

    def test_oversized_pixel_dimensions(self, loader):
        wide = np.zeros((1, MAX_DIMENSION + 1), dtype=np.uint8)
        with pytest.raises(DecodeError, match="exceeds"):
            loader.load(_png_bytes(wide))

    def test_oversized_payload(self, loader):
        with patch("core.image_io.validate_asset_size", side_effect=SafetyError("too big")):
            with pytest.raises(DecodeError, match="too big"):
                loader.load(b"x")


class TestHttpFetch:

    def test_http_url_fetched_with_timeout(self, loader, frame):
        response = MagicMock()
        response.content = _png_bytes(frame)
        response.raise_for_status.return_value = None
        with patch("core.assets.requests.get", return_value=response) as mock_get:
            out = loader.load("https://example.com/base.png")
        mock_get.assert_called_once_with("https://example.com/base.png", timeout=loader.timeout)
        np.testing.assert_array_equal(out, frame)

    def test_http_error_becomes_decode_error(self, loader):
        with patch("core.assets.requests.get", side_effect=requests.ConnectionError("offline")):
            with pytest.raises(DecodeError, match="Download failed"):
                loader.load("http://example.com/map.png")


class TestAsyncLoad:

    def test_load_async_resolves(self, loader, frame):
        try:
            future = loader.load_async(_data_url(frame))
            np.testing.assert_array_equal(future.result(timeout=10), frame)
        finally:
            loader.shutdown()

    def test_load_async_failure(self, loader):
        try:
            future = loader.load_async("data:image/png;base64,AAAA")
            assert isinstance(future.exception(timeout=10), DecodeError)
        finally:
            loader.shutdown()

    def test_shutdown_is_idempotent(self, loader):
        loader.shutdown()
        loader.shutdown()

    @pytest.mark.parametrize("source,expected", [
        ("x.png", True),
        (b"raw", True),
        (np.zeros((1, 1, 4), dtype=np.uint8), False),
        (Image.new("RGB", (1, 1)), False),
    ])
    def test_is_async_reference(self, source, expected):
        assert is_async_reference(source) is expected


class TestImageIO:

    def test_save_and_load_roundtrip_keeps_alpha(self, frame, tmp_path):
        path = tmp_path / "nested" / "frame.png"
        save_frame(frame, path)
        np.testing.assert_array_equal(load_frame(path), frame)

    def test_ensure_rgba_copies(self, frame):
        out = ensure_rgba(frame)
        assert out is not frame
        np.testing.assert_array_equal(out, frame)

    def test_frame_to_data_url_formats(self, frame):
        assert frame_to_data_url(frame).startswith("data:image/png;base64,")
        assert frame_to_data_url(frame[:, :, :3].copy()).startswith("data:image/jpeg;base64,")

    def test_data_url_decodes_back(self, frame):
        img = decode_data_url(frame_to_data_url(frame))
        np.testing.assert_array_equal(np.array(img.convert("RGBA")), frame)
