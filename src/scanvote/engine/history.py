"""Cross-attempt history used to finalize continuous scans."""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import TYPE_CHECKING

from scanvote.engine.results import Winner

if TYPE_CHECKING:
    from scanvote.config import Settings
    from scanvote.engine.results import AggregatedResult

logger = logging.getLogger(__name__)


class ScanHistoryTracker:
    """Bounded FIFO of recent per-attempt Winners.

    A single unanimous, high-quality attempt is accepted on its own. Anything
    weaker has to agree with the recent history before it is trusted.
    """

    def __init__(
        self,
        size: int = 3,
        consistency_threshold: float = 0.67,
        consensus_threshold: float = 0.80,
        perfect_scan_min_matches: float = 25,
    ) -> None:
        self._entries: deque[Winner] = deque(maxlen=size)
        self._consistency_threshold = consistency_threshold
        self._min_consensus_pct = consensus_threshold * 100
        self._perfect_scan_min_matches = perfect_scan_min_matches

    @classmethod
    def from_settings(cls, settings: Settings) -> ScanHistoryTracker:
        return cls(
            size=settings.history_size,
            consistency_threshold=settings.consistency_threshold,
            consensus_threshold=settings.consensus_threshold,
            perfect_scan_min_matches=settings.perfect_single_scan_min_matches,
        )

    def record(self, result: AggregatedResult) -> None:
        """Append a Winner; Inconclusive and Empty results leave history untouched."""
        if isinstance(result, Winner):
            self._entries.append(result)

    def check_confident(self) -> Winner | None:
        """Return the latest Winner if the evidence is strong enough, else None."""
        latest = self.latest
        if latest is None:
            return None

        if latest.consensus_pct == 100 and latest.max_matches >= self._perfect_scan_min_matches:
            logger.info("Perfect scan accepted: %s (max=%s)", latest.identity.label, latest.max_matches)
            return latest

        if len(self._entries) < 2:
            return None

        counts = Counter(entry.identity.label for entry in self._entries)
        latest_count = counts[latest.identity.label]
        if latest_count < max(counts.values()):
            return None

        # 2 of 3 reads as 0.67, so compare at two decimals.
        consistency = round(latest_count / len(self._entries), 2)
        if consistency >= self._consistency_threshold and latest.consensus_pct >= self._min_consensus_pct:
            logger.info(
                "History consistent: %s in %d/%d attempts (consensus %d%%)",
                latest.identity.label,
                latest_count,
                len(self._entries),
                latest.consensus_pct,
            )
            return latest
        return None

    def clear(self) -> None:
        self._entries.clear()

    @property
    def latest(self) -> Winner | None:
        return self._entries[-1] if self._entries else None

    @property
    def entries(self) -> tuple[Winner, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
