"""Two-layer frame classification: fast embedding match, then descriptor fallback."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from scanvote.engine.results import (
    Matched,
    NoResult,
    RecognitionMethod,
    RecognitionResult,
    distance_to_confidence,
)

if TYPE_CHECKING:
    from scanvote.catalog import IdentityCatalog
    from scanvote.config import Settings
    from scanvote.ml.descriptor_matcher import FallbackClassifier
    from scanvote.ml.embedding_matcher import FastClassifier

logger = logging.getLogger(__name__)

DEFAULT_DISTANCE_THRESHOLD: float = 0.6
DEFAULT_MIN_VALIDATED_MATCHES: int = 20


class RecognitionDispatcher:
    """Classifies a single frame into a ``RecognitionResult``.

    The fast classifier runs first and short-circuits the fallback when its
    best distance is under the threshold. Classifier errors never escape:
    they are logged and turned into ``NoResult`` so one bad frame cannot
    abort the surrounding attempt.
    """

    def __init__(
        self,
        catalog: IdentityCatalog,
        fallback: FallbackClassifier | None,
        fast: FastClassifier | None = None,
        distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD,
        min_validated_matches: int = DEFAULT_MIN_VALIDATED_MATCHES,
    ) -> None:
        self._catalog = catalog
        self._fallback = fallback
        self._fast = fast
        self._distance_threshold = distance_threshold
        self._min_validated_matches = min_validated_matches

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        catalog: IdentityCatalog,
        fallback: FallbackClassifier | None,
        fast: FastClassifier | None = None,
    ) -> RecognitionDispatcher:
        return cls(
            catalog,
            fallback,
            fast=fast,
            distance_threshold=settings.fast_classifier_distance_threshold,
            min_validated_matches=settings.min_validated_matches_for_fallback,
        )

    @property
    def min_validated_matches(self) -> int:
        return self._min_validated_matches

    def classify(self, frame: object, *, min_matches: int | None = None) -> RecognitionResult:
        """Classify one frame.

        Args:
            frame: The captured frame, passed through to the classifiers.
            min_matches: Fallback match floor for this call; defaults to the
                configured ``min_validated_matches``.
        """
        fast_result = self._classify_fast(frame)
        if fast_result is not None:
            return fast_result
        return self._classify_fallback(frame, self._min_validated_matches if min_matches is None else min_matches)

    def _classify_fast(self, frame: object) -> Matched | None:
        if self._fast is None:
            return None
        try:
            match = self._fast.match_embedding(frame)
        except Exception:
            logger.exception("Fast classifier failed, trying fallback")
            return None

        if match is None or match.distance >= self._distance_threshold:
            return None

        identity = self._catalog.get(match.label)
        if identity is None:
            logger.warning("Fast classifier returned unknown label %r", match.label)
            return None

        confidence = distance_to_confidence(match.distance)
        logger.debug("Fast match %s (distance=%.3f, confidence=%d)", match.label, match.distance, confidence)
        return Matched(identity=identity, method=RecognitionMethod.FAST, quality=confidence)

    def _classify_fallback(self, frame: object, min_matches: int) -> RecognitionResult:
        if self._fallback is None:
            return NoResult(reason="no fallback classifier")
        try:
            match = self._fallback.match_descriptors(frame)
        except Exception as e:
            logger.exception("Fallback classifier failed")
            return NoResult(reason=f"fallback error: {type(e).__name__}")

        if match is None:
            return NoResult(reason="no descriptors matched")
        if match.validated_count < min_matches:
            logger.debug("Fallback best %s has %d matches (need %d)", match.label, match.validated_count, min_matches)
            return NoResult(reason=f"{match.validated_count} validated matches, need {min_matches}")

        identity = self._catalog.get(match.label)
        if identity is None:
            logger.warning("Fallback classifier returned unknown label %r", match.label)
            return NoResult(reason=f"unknown label {match.label}")

        logger.debug("Fallback match %s (%d validated)", match.label, match.validated_count)
        return Matched(identity=identity, method=RecognitionMethod.FALLBACK, quality=match.validated_count)
