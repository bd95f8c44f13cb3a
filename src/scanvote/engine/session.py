"""Scan session: drives the capture -> aggregate -> decide loop.

Two modes share one state machine:

* single-shot (``capture_once``): one attempt, whatever it produces goes to
  the presenter;
* continuous (``run`` / ``start``): attempts repeat until the history tracker
  is confident or ``stop()`` is called.

The ``active`` flag is the only state shared with outside stop requests. It
is read at loop boundaries only, so a stop never interrupts a frame that is
already being classified.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, Protocol

from scanvote.engine.errors import FrameSourceUnavailableError, ScanAlreadyActiveError
from scanvote.engine.results import Empty, NoResult

if TYPE_CHECKING:
    from scanvote.config import Settings
    from scanvote.engine.aggregator import FrameVoteAggregator
    from scanvote.engine.dispatcher import RecognitionDispatcher
    from scanvote.engine.history import ScanHistoryTracker
    from scanvote.engine.results import AggregatedResult, RecognitionResult, Winner
    from scanvote.engine.sources import FrameSource
    from scanvote.ml.inference import ClassifierPool

logger = logging.getLogger(__name__)


class ScanState(StrEnum):
    IDLE = "idle"
    CAPTURING = "capturing"
    AGGREGATING = "aggregating"
    CONTINUING = "continuing"
    FINALIZING = "finalizing"


class ResultPresenter(Protocol):
    """Display boundary: receives final, immutable results."""

    def present(self, result: AggregatedResult) -> None: ...


class ScanSession:
    """Owns the active flag, the scan history, and the attempt loop."""

    def __init__(
        self,
        dispatcher: RecognitionDispatcher,
        aggregator: FrameVoteAggregator,
        history: ScanHistoryTracker,
        presenter: ResultPresenter,
        pool: ClassifierPool | None = None,
        *,
        frames_per_attempt: int = 5,
        inter_frame_delay: float = 0.15,
        inter_attempt_delay: float = 1.0,
        single_shot_min_matches: int | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._aggregator = aggregator
        self._history = history
        self._presenter = presenter
        self._pool = pool
        self._frames_per_attempt = frames_per_attempt
        self._inter_frame_delay = inter_frame_delay
        self._inter_attempt_delay = inter_attempt_delay
        self._single_shot_min_matches = single_shot_min_matches

        self._active = False
        self._state = ScanState.IDLE
        self._task: asyncio.Task[Winner | None] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        dispatcher: RecognitionDispatcher,
        aggregator: FrameVoteAggregator,
        history: ScanHistoryTracker,
        presenter: ResultPresenter,
        pool: ClassifierPool | None = None,
        *,
        mobile: bool = False,
    ) -> ScanSession:
        return cls(
            dispatcher,
            aggregator,
            history,
            presenter,
            pool,
            frames_per_attempt=settings.frames_per_attempt(mobile=mobile),
            inter_frame_delay=settings.inter_frame_delay_ms / 1000,
            inter_attempt_delay=settings.inter_attempt_delay_ms / 1000,
            single_shot_min_matches=settings.single_shot_min_matches,
        )

    # -- Public API ---------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def history(self) -> ScanHistoryTracker:
        return self._history

    @property
    def frames_per_attempt(self) -> int:
        return self._frames_per_attempt

    async def capture_once(self, source: FrameSource, *, frames: int | None = None) -> AggregatedResult:
        """Run one attempt and present its result, whatever it is.

        Raises:
            ValueError: If ``frames`` is less than one.
            ScanAlreadyActiveError: If a scan is already running.
            FrameSourceUnavailableError: If the source cannot deliver frames.
        """
        frame_count = frames if frames is not None else self._frames_per_attempt
        if frame_count < 1:
            raise ValueError(f"An attempt needs at least one frame, got {frame_count}")
        self._activate()
        try:
            try:
                attempt = await self._capture_attempt(source, frame_count, self._single_shot_min_matches)
            except FrameSourceUnavailableError:
                raise
            except Exception:
                logger.exception("Single-shot capture failed")
                result: AggregatedResult = Empty(total_frames=0)
            else:
                self._state = ScanState.AGGREGATING
                result = self._aggregator.aggregate(attempt)
            self._state = ScanState.FINALIZING
            self._presenter.present(result)
            return result
        finally:
            self._deactivate()

    async def run(self, source: FrameSource) -> Winner | None:
        """Scan continuously until a confident Winner is found or ``stop()`` is called.

        Returns:
            The finalized Winner, or None if the scan was stopped.

        Raises:
            ScanAlreadyActiveError: If a scan is already running.
            FrameSourceUnavailableError: If the source cannot deliver frames.
        """
        self._activate()
        return await self._loop(source)

    def start(self, source: FrameSource) -> asyncio.Task[Winner | None]:
        """Start a continuous scan as a background task.

        Raises:
            ScanAlreadyActiveError: If a scan is already running, including a
                stopped one whose task has not finished its current attempt.
        """
        self._activate()
        self._task = asyncio.create_task(self._loop(source), name="scan-session")
        return self._task

    def stop(self) -> None:
        """Request a cooperative stop; takes effect at the next loop boundary."""
        if self._active:
            logger.info("Stop requested")
        self._active = False

    async def wait(self) -> Winner | None:
        """Wait for the background scan started with ``start()``."""
        if self._task is None:
            return None
        return await self._task

    # -- Internal -----------------------------------------------------------

    def _activate(self) -> None:
        if self._active:
            raise ScanAlreadyActiveError("A scan is already in progress")
        if self._task is not None and not self._task.done():
            raise ScanAlreadyActiveError("The previous scan is still finishing its attempt")
        self._active = True
        self._history.clear()

    def _deactivate(self) -> None:
        self._active = False
        self._state = ScanState.IDLE

    async def _loop(self, source: FrameSource) -> Winner | None:
        attempt_no = 0
        try:
            while self._active:
                attempt_no += 1
                started = time.monotonic()
                try:
                    attempt = await self._capture_attempt(source, self._frames_per_attempt, None)
                except FrameSourceUnavailableError:
                    # A source closed after stop() is the normal way out.
                    if not self._active:
                        break
                    logger.error("Frame source unavailable, ending scan")
                    raise
                except Exception:
                    logger.exception("Scan attempt %d failed", attempt_no)
                    attempt = None

                if not self._active:
                    break

                if attempt is not None:
                    self._state = ScanState.AGGREGATING
                    self._history.record(self._aggregator.aggregate(attempt))
                    winner = self._history.check_confident()
                    if winner is not None:
                        self._state = ScanState.FINALIZING
                        self._history.clear()
                        self._active = False
                        logger.info("Scan finalized after %d attempts: %s", attempt_no, winner.identity.label)
                        self._presenter.present(winner)
                        return winner

                self._state = ScanState.CONTINUING
                delay = max(0.0, self._inter_attempt_delay - (time.monotonic() - started))
                await asyncio.sleep(delay)

            logger.info("Scan stopped after %d attempts", attempt_no)
            return None
        finally:
            self._history.clear()
            self._deactivate()

    async def _capture_attempt(
        self,
        source: FrameSource,
        frame_count: int,
        min_matches: int | None,
    ) -> list[RecognitionResult]:
        self._state = ScanState.CAPTURING
        results: list[RecognitionResult] = []
        for index in range(frame_count):
            if index and self._inter_frame_delay:
                await asyncio.sleep(self._inter_frame_delay)
            frame = await source.obtain_frame()
            result = await self._classify(frame, min_matches)
            logger.debug("Frame %d/%d: %s", index + 1, frame_count, result)
            results.append(result)
        return results

    async def _classify(self, frame: object, min_matches: int | None) -> RecognitionResult:
        call = partial(self._dispatcher.classify, frame, min_matches=min_matches)
        try:
            if self._pool is None:
                return call()
            return await self._pool.run(call)
        except TimeoutError:
            logger.warning("Classifier pool busy, frame skipped")
            return NoResult(reason="classifier pool busy")
        except Exception:
            logger.exception("Frame classification failed")
            return NoResult(reason="classification error")
