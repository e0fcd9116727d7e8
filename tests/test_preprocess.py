"""Tests for image preprocessing (OpenCV)."""

import cv2
import numpy as np
import pytest

from menureader.exceptions import InvalidImageError
from menureader.preprocess import make_thumbnail, prepare_image, sniff_mime_type


def _encode(width, height, ext=".jpg"):
    frame = np.full((height, width, 3), 127, dtype=np.uint8)
    ok, buf = cv2.imencode(ext, frame)
    assert ok
    return buf.tobytes()


def _size(data):
    frame = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    height, width = frame.shape[:2]
    return width, height


class TestPrepareImage:
    def test_small_image_passed_through(self):
        data = _encode(800, 600, ".png")
        prepared = prepare_image(data)
        assert prepared.data is data
        assert prepared.mime_type == "image/png"
        assert (prepared.width, prepared.height) == (800, 600)

    def test_large_image_downsampled_preserving_aspect(self):
        data = _encode(3000, 1500)
        prepared = prepare_image(data, max_dimension=1024)
        assert prepared.mime_type == "image/jpeg"
        assert (prepared.width, prepared.height) == (1024, 512)
        assert _size(prepared.data) == (1024, 512)

    def test_portrait_image(self):
        prepared = prepare_image(_encode(1000, 2000), max_dimension=1024)
        assert (prepared.width, prepared.height) == (512, 1024)

    def test_exact_bound_passed_through(self):
        data = _encode(1024, 700)
        assert prepare_image(data).data is data

    @pytest.mark.parametrize("data", [b"", b"definitely not an image"])
    def test_invalid_image(self, data):
        with pytest.raises(InvalidImageError):
            prepare_image(data)


class TestThumbnail:
    def test_fits_in_200px(self):
        thumb = make_thumbnail(_encode(1200, 900))
        width, height = _size(thumb)
        assert max(width, height) == 200
        assert (width, height) == (200, 150)
        assert thumb[:2] == b"\xff\xd8"

    def test_small_image_not_upscaled(self):
        assert _size(make_thumbnail(_encode(120, 80))) == (120, 80)


def test_sniff_mime_type():
    assert sniff_mime_type(b"\x89PNG\r\n\x1a\n....") == "image/png"
    assert sniff_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_mime_type(b"\xff\xd8\xff") == "image/jpeg"
