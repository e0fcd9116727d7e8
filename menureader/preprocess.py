"""Image decoding, downsampling and thumbnails using OpenCV."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .exceptions import InvalidImageError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION = 1024
JPEG_QUALITY = 80
THUMBNAIL_SIZE = 200
THUMBNAIL_QUALITY = 70


@dataclass
class PreparedImage:
    data: bytes
    mime_type: str
    width: int
    height: int


def _cv2():
    try:
        import cv2
    except ImportError:
        raise ImportError(
            "opencv-python-headless is required: pip install opencv-python-headless"
        ) from None
    return cv2


def sniff_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def _decode(data: bytes) -> np.ndarray:
    cv2 = _cv2()
    if not data:
        raise InvalidImageError("画像データが空です")
    frame = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise InvalidImageError()
    return frame


def _encode_jpeg(frame: np.ndarray, quality: int) -> bytes:
    cv2 = _cv2()
    ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise InvalidImageError("画像をJPEGに変換できませんでした")
    return buf.tobytes()


def _fit(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    scale = max_dimension / max(width, height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def prepare_image(
    data: bytes, max_dimension: int = DEFAULT_MAX_DIMENSION
) -> PreparedImage:
    """Downsample ``data`` so its longest side is at most ``max_dimension``.

    Images already within bounds are passed through untouched. Larger ones
    are resized with area interpolation, preserving the aspect ratio, and
    re-encoded as JPEG.

    Raises:
        InvalidImageError: If ``data`` is not a decodable image.
    """
    frame = _decode(data)
    height, width = frame.shape[:2]
    if max(width, height) <= max_dimension:
        return PreparedImage(data, sniff_mime_type(data), width, height)

    cv2 = _cv2()
    new_w, new_h = _fit(width, height, max_dimension)
    resized = cv2.resize(frame, (new_w, new_h), interpolation=cv2.INTER_AREA)
    logger.debug("Resized image %dx%d -> %dx%d", width, height, new_w, new_h)
    return PreparedImage(_encode_jpeg(resized, JPEG_QUALITY), "image/jpeg", new_w, new_h)


def make_thumbnail(
    data: bytes, max_size: int = THUMBNAIL_SIZE, quality: int = THUMBNAIL_QUALITY
) -> bytes:
    """Return a JPEG thumbnail no larger than ``max_size`` on either side."""
    frame = _decode(data)
    height, width = frame.shape[:2]
    if max(width, height) > max_size:
        new_w, new_h = _fit(width, height, max_size)
        cv2 = _cv2()
        frame = cv2.resize(frame, (new_w, new_h), interpolation=cv2.INTER_AREA)
    return _encode_jpeg(frame, quality)