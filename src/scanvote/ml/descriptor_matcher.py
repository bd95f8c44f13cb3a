"""Fallback classifier: binary keypoint descriptor matching.

Every known reference descriptor set is compared exhaustively against the
frame's descriptors with an OpenCV brute-force Hamming matcher. For each
query descriptor the two nearest reference descriptors are found and the
correspondence is counted only if it passes the ratio test
``best < ratio * second_best``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Mapping

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_RATIO: float = 0.75


@dataclass(frozen=True)
class DescriptorMatch:
    """Best reference for a frame and its number of validated correspondences."""

    label: str
    validated_count: int


class DescriptorExtractor(Protocol):
    """Protocol for binary descriptor extraction (e.g. ORB)."""

    def extract(self, frame: object) -> NDArray[np.uint8] | None:
        """Extract binary descriptors from a frame.

        Args:
            frame: A captured frame (encoded bytes or decoded image array).

        Returns:
            Descriptor matrix of shape (N, 32), or None if no keypoints were found.
        """
        ...


class FallbackClassifier(Protocol):
    """Protocol for the fallback classification strategy."""

    def match_descriptors(self, frame: object) -> DescriptorMatch | None:
        """Return the reference with the most validated correspondences, or None."""
        ...


def count_validated_matches(
    query: NDArray[np.uint8],
    reference: NDArray[np.uint8],
    ratio: float = DEFAULT_RATIO,
) -> int:
    """Count query descriptors whose nearest reference passes the ratio test.

    A query descriptor needs two reference neighbours to be tested, so a
    reference set with fewer than two descriptors never validates anything.
    """
    if len(query) == 0 or len(reference) < 2:
        return 0

    matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
    pairs = matcher.knnMatch(query, reference, k=2)
    return sum(1 for pair in pairs if len(pair) == 2 and pair[0].distance < ratio * pair[1].distance)


class DescriptorMatcher:
    """Finds the reference with the most validated descriptor correspondences."""

    def __init__(
        self,
        extractor: DescriptorExtractor,
        references: Mapping[str, NDArray[np.uint8]],
        ratio: float = DEFAULT_RATIO,
    ) -> None:
        self._extractor = extractor
        self._references = {
            label: np.asarray(descriptors, dtype=np.uint8)
            for label, descriptors in references.items()
            if descriptors is not None and len(descriptors) > 0
        }
        self._ratio = ratio
        skipped = len(references) - len(self._references)
        if skipped:
            logger.warning("Skipped %d references without descriptors", skipped)

    @property
    def reference_count(self) -> int:
        return len(self._references)

    def match_descriptors(self, frame: object) -> DescriptorMatch | None:
        query = self._extractor.extract(frame)
        if query is None or len(query) == 0:
            return None

        best: DescriptorMatch | None = None
        for label, reference in self._references.items():
            count = count_validated_matches(query, reference, self._ratio)
            # Strictly greater: the first reference wins on equal counts.
            if count > (best.validated_count if best else 0):
                best = DescriptorMatch(label=label, validated_count=count)
        return best
