"""ORB descriptor extraction with OpenCV.

Frames may arrive as encoded image bytes (uploads, pushed camera frames) or as
already decoded arrays (BGR, BGRA or grayscale).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_FEATURES: int = 500


def decode_image(image_bytes: bytes, *, grayscale: bool = False) -> NDArray[np.uint8]:
    """Decode raw image bytes into a BGR (or grayscale) uint8 array.

    Raises:
        ValueError: If the bytes are empty or not a decodable image.
    """
    if not image_bytes:
        raise ValueError("Empty image data")
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE if grayscale else cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image data")
    return image


def to_grayscale(frame: object) -> NDArray[np.uint8]:
    """Return a grayscale view of a frame given as bytes or an image array."""
    if isinstance(frame, bytes | bytearray | memoryview):
        return decode_image(bytes(frame), grayscale=True)
    if not isinstance(frame, np.ndarray):
        raise TypeError(f"Unsupported frame type: {type(frame).__name__}")
    if frame.ndim == 2:
        return frame
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    raise ValueError(f"Unsupported frame shape: {frame.shape}")


class OrbExtractor:
    """Extracts ORB binary descriptors (32 bytes each)."""

    def __init__(self, n_features: int = DEFAULT_FEATURES) -> None:
        self._n_features = n_features

    def extract(self, frame: object) -> NDArray[np.uint8] | None:
        gray = to_grayscale(frame)
        # A detector per call: ORB instances are not shared across pool threads.
        orb = cv2.ORB_create(nfeatures=self._n_features)
        _keypoints, descriptors = orb.detectAndCompute(gray, None)
        if descriptors is None or len(descriptors) == 0:
            return None
        return descriptors

    def extract_file(self, path: str | Path) -> NDArray[np.uint8] | None:
        """Extract descriptors from a reference image on disk."""
        image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            logger.warning("Could not read reference image %s", path)
            return None
        return self.extract(image)
