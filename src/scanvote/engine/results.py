"""Immutable value types flowing through the recognition consensus engine.

Per-frame results (``Matched`` / ``NoResult``) are produced by the dispatcher,
per-attempt results (``Winner`` / ``Inconclusive`` / ``Empty``) by the
aggregator. Both are closed unions; consumers ``match`` on them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with .5 going up (2.5 -> 3)."""
    return math.floor(value + 0.5)


def distance_to_confidence(distance: float) -> int:
    """Convert an embedding distance into a 0-100 confidence."""
    return max(0, min(100, round_half_up((1.0 - distance) * 100)))


class RecognitionMethod(StrEnum):
    FAST = "face-recognition"
    FALLBACK = "orb-matching"


class InconclusiveReason(StrEnum):
    INSUFFICIENT_CONSENSUS = "insufficient_consensus"
    TIE = "tie"


@dataclass(frozen=True)
class Identity:
    """A known person or artwork."""

    label: str
    name: str
    description: str = ""
    image_url: str = ""


# ---------------------------------------------------------------------------
# Per-frame results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Matched:
    """A frame classified as a known identity.

    ``quality`` is a validated match count for the fallback method, or a
    0-100 confidence for the fast method.
    """

    identity: Identity
    method: RecognitionMethod
    quality: float


@dataclass(frozen=True)
class NoResult:
    """The classifiers ran but produced nothing usable for this frame."""

    reason: str = ""


RecognitionResult = Matched | NoResult


# ---------------------------------------------------------------------------
# Per-attempt results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Candidate:
    """Vote tally for one identity within a single attempt."""

    identity: Identity
    vote_count: int
    total_matches: float
    max_matches: float
    method: RecognitionMethod

    @property
    def avg_matches(self) -> float:
        return self.total_matches / self.vote_count

    @property
    def score(self) -> float:
        # Votes dominate; match quality only separates near-equal vote counts.
        return self.vote_count * 100 + self.avg_matches * 0.5 + self.max_matches * 0.1


@dataclass(frozen=True)
class Winner:
    """A clear per-attempt identification."""

    identity: Identity
    max_matches: float
    avg_matches: int
    vote_count: int
    total_frames: int
    consensus_pct: int
    method: RecognitionMethod = RecognitionMethod.FALLBACK

    @property
    def display_confidence(self) -> int:
        """Confidence shown to the user, 0-100."""
        if self.method is RecognitionMethod.FAST:
            return max(0, min(100, round_half_up(self.max_matches)))
        return min(95, round_half_up(self.max_matches / 500 * 100 + 40))


@dataclass(frozen=True)
class Inconclusive:
    """An attempt whose frames did not agree well enough to name a winner."""

    reason: InconclusiveReason
    top_candidates: tuple[Candidate, ...]
    total_frames: int


@dataclass(frozen=True)
class Empty:
    """No frame in the attempt produced a result."""

    total_frames: int = 0


AggregatedResult = Winner | Inconclusive | Empty
