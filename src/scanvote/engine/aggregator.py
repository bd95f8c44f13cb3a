"""Per-attempt weighted voting over a burst of frame results."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from scanvote.engine.results import (
    AggregatedResult,
    Candidate,
    Empty,
    Identity,
    Inconclusive,
    InconclusiveReason,
    Matched,
    RecognitionMethod,
    RecognitionResult,
    Winner,
    round_half_up,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from scanvote.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class _Tally:
    identity: Identity
    qualities: list[float] = field(default_factory=list)
    methods: Counter[RecognitionMethod] = field(default_factory=Counter)

    def add(self, result: Matched) -> None:
        self.qualities.append(result.quality)
        self.methods[result.method] += 1

    def to_candidate(self) -> Candidate:
        return Candidate(
            identity=self.identity,
            vote_count=len(self.qualities),
            total_matches=sum(self.qualities),
            max_matches=max(self.qualities),
            method=self.methods.most_common(1)[0][0],
        )


class FrameVoteAggregator:
    """Turns one attempt's frame results into a Winner, Inconclusive, or Empty.

    Vote count is the primary signal: each frame is an independent observation.
    Match quality only breaks near-ties, because raw match counts swing with
    lighting and angle much more than identity correctness does.
    """

    def __init__(
        self,
        consensus_threshold: float = 0.80,
        vote_tie_margin: int = 1,
        min_quality_gap: float = 8,
    ) -> None:
        self._consensus_threshold = consensus_threshold
        self._vote_tie_margin = vote_tie_margin
        self._min_quality_gap = min_quality_gap

    @classmethod
    def from_settings(cls, settings: Settings) -> FrameVoteAggregator:
        return cls(
            consensus_threshold=settings.consensus_threshold,
            vote_tie_margin=settings.vote_tie_margin,
            min_quality_gap=settings.min_quality_gap_for_tie_break,
        )

    def rank(self, attempt: Sequence[RecognitionResult]) -> list[Candidate]:
        """Return candidates ordered by descending score, then label."""
        tallies: dict[str, _Tally] = {}
        for result in attempt:
            if isinstance(result, Matched):
                label = result.identity.label
                tally = tallies.setdefault(label, _Tally(identity=result.identity))
                tally.add(result)

        candidates = [tally.to_candidate() for tally in tallies.values()]
        candidates.sort(key=lambda c: (-c.score, c.identity.label))
        return candidates

    def aggregate(self, attempt: Sequence[RecognitionResult]) -> AggregatedResult:
        total_frames = len(attempt)
        candidates = self.rank(attempt)
        if not candidates:
            logger.info("Attempt empty: no results in %d frames", total_frames)
            return Empty(total_frames=total_frames)

        winner = candidates[0]
        runner_up = candidates[1] if len(candidates) > 1 else None
        top = (winner,) if runner_up is None else (winner, runner_up)

        consensus = winner.vote_count / total_frames
        if consensus < self._consensus_threshold:
            logger.info(
                "Attempt inconclusive: %s has %d/%d votes (%.0f%% < %.0f%%)",
                winner.identity.label,
                winner.vote_count,
                total_frames,
                consensus * 100,
                self._consensus_threshold * 100,
            )
            return Inconclusive(
                reason=InconclusiveReason.INSUFFICIENT_CONSENSUS,
                top_candidates=top,
                total_frames=total_frames,
            )

        if runner_up is not None and abs(winner.vote_count - runner_up.vote_count) <= self._vote_tie_margin:
            quality_gap = abs(winner.avg_matches - runner_up.avg_matches)
            if quality_gap < self._min_quality_gap:
                logger.info(
                    "Attempt tied: %s vs %s (votes %d/%d, avg gap %.1f)",
                    winner.identity.label,
                    runner_up.identity.label,
                    winner.vote_count,
                    runner_up.vote_count,
                    quality_gap,
                )
                return Inconclusive(reason=InconclusiveReason.TIE, top_candidates=top, total_frames=total_frames)
            logger.debug("Vote tie resolved by match quality (gap %.1f)", quality_gap)

        result = Winner(
            identity=winner.identity,
            max_matches=winner.max_matches,
            avg_matches=round_half_up(winner.avg_matches),
            vote_count=winner.vote_count,
            total_frames=total_frames,
            consensus_pct=round_half_up(consensus * 100),
            method=winner.method,
        )
        logger.info(
            "Attempt winner: %s (%d/%d frames, max=%s, avg=%d)",
            result.identity.label,
            result.vote_count,
            total_frames,
            result.max_matches,
            result.avg_matches,
        )
        return result
