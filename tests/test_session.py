"""Tests for the scan session state machine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from scanvote.engine.aggregator import FrameVoteAggregator
from scanvote.engine.errors import FrameSourceUnavailableError, ScanAlreadyActiveError
from scanvote.engine.history import ScanHistoryTracker
from scanvote.engine.results import (
    Empty,
    Identity,
    Inconclusive,
    Matched,
    NoResult,
    RecognitionMethod,
    RecognitionResult,
    Winner,
)
from scanvote.engine.session import ScanSession, ScanState
from scanvote.engine.sources import QueueFrameSource, StillFrameSource
from scanvote.ml.inference import ClassifierPool

if TYPE_CHECKING:
    from scanvote.engine.results import AggregatedResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

A = Identity(label="a", name="Portrait A")
B = Identity(label="b", name="Portrait B")
NO = NoResult()


def _hit(identity: Identity, quality: float) -> Matched:
    return Matched(identity=identity, method=RecognitionMethod.FALLBACK, quality=quality)


class ScriptedDispatcher:
    """Returns pre-recorded results; NoResult once the script runs out."""

    def __init__(self, results: list[RecognitionResult] | None = None, error: Exception | None = None) -> None:
        self._results = list(results or [])
        self._error = error
        self.calls: list[tuple[object, int | None]] = []

    def classify(self, frame: object, *, min_matches: int | None = None) -> RecognitionResult:
        self.calls.append((frame, min_matches))
        if self._error is not None:
            raise self._error
        return self._results.pop(0) if self._results else NO


class RecordingPresenter:
    def __init__(self) -> None:
        self.presented: list[AggregatedResult] = []

    def present(self, result: AggregatedResult) -> None:
        self.presented.append(result)


class FlakySource:
    """Fails the first ``failures`` frame requests with a transient error."""

    def __init__(self, failures: int) -> None:
        self._failures = failures
        self.requests = 0

    async def obtain_frame(self) -> object:
        self.requests += 1
        if self.requests <= self._failures:
            raise OSError("camera hiccup")
        return "frame"


class UnavailableSource:
    async def obtain_frame(self) -> object:
        raise FrameSourceUnavailableError("camera permission denied")


def _session(
    dispatcher: ScriptedDispatcher,
    presenter: RecordingPresenter,
    pool: ClassifierPool | None = None,
    frames: int = 5,
    inter_frame_delay: float = 0,
    inter_attempt_delay: float = 0,
) -> ScanSession:
    return ScanSession(
        dispatcher,  # type: ignore[arg-type]
        FrameVoteAggregator(),
        ScanHistoryTracker(),
        presenter,
        pool,
        frames_per_attempt=frames,
        inter_frame_delay=inter_frame_delay,
        inter_attempt_delay=inter_attempt_delay,
        single_shot_min_matches=15,
    )


# ---------------------------------------------------------------------------
# Single-shot
# ---------------------------------------------------------------------------


class TestCaptureOnce:
    async def test_winner_is_presented(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher([_hit(A, 30)] * 5), presenter)

        result = await session.capture_once(StillFrameSource("frame"))

        assert isinstance(result, Winner)
        assert presenter.presented == [result]
        assert session.state is ScanState.IDLE
        assert not session.is_active

    async def test_inconclusive_is_presented(self) -> None:
        presenter = RecordingPresenter()
        script = [_hit(A, 30), _hit(A, 30), _hit(B, 30), _hit(B, 30), NO]
        session = _session(ScriptedDispatcher(script), presenter)

        result = await session.capture_once(StillFrameSource("frame"))

        assert isinstance(result, Inconclusive)
        assert presenter.presented == [result]

    async def test_empty_is_presented(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(), presenter)
        result = await session.capture_once(StillFrameSource("frame"))
        assert result == Empty(total_frames=5)
        assert presenter.presented == [result]

    async def test_uses_single_shot_match_floor(self) -> None:
        dispatcher = ScriptedDispatcher()
        await _session(dispatcher, RecordingPresenter()).capture_once(StillFrameSource("frame"), frames=2)
        assert dispatcher.calls == [("frame", 15), ("frame", 15)]

    async def test_explicit_frame_count_is_honoured(self) -> None:
        dispatcher = ScriptedDispatcher()
        result = await _session(dispatcher, RecordingPresenter()).capture_once(StillFrameSource("frame"), frames=1)
        assert result == Empty(total_frames=1)
        assert len(dispatcher.calls) == 1

    async def test_zero_frames_is_rejected(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(), presenter)
        with pytest.raises(ValueError, match="at least one frame"):
            await session.capture_once(StillFrameSource("frame"), frames=0)
        assert presenter.presented == []
        assert not session.is_active

    async def test_classifier_errors_become_no_result(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(error=RuntimeError("boom")), presenter, frames=3)
        result = await session.capture_once(StillFrameSource("frame"))
        assert result == Empty(total_frames=3)

    async def test_transient_source_error_presents_empty(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(), presenter)
        result = await session.capture_once(FlakySource(failures=1))
        assert result == Empty(total_frames=0)
        assert presenter.presented == [result]
        assert not session.is_active

    async def test_unavailable_source_propagates(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(), presenter)
        with pytest.raises(FrameSourceUnavailableError):
            await session.capture_once(UnavailableSource())
        assert presenter.presented == []
        assert session.state is ScanState.IDLE

    async def test_runs_through_classifier_pool(self) -> None:
        pool = ClassifierPool(max_concurrent=1)
        try:
            session = _session(ScriptedDispatcher([_hit(A, 40)] * 5), RecordingPresenter(), pool=pool)
            result = await session.capture_once(StillFrameSource("frame"))
        finally:
            pool.shutdown()
        assert isinstance(result, Winner)
        assert pool.active_count == 0


# ---------------------------------------------------------------------------
# Continuous
# ---------------------------------------------------------------------------


class TestContinuous:
    async def test_perfect_attempt_finalizes_immediately(self) -> None:
        presenter = RecordingPresenter()
        dispatcher = ScriptedDispatcher([_hit(A, 30)] * 5)
        session = _session(dispatcher, presenter)

        winner = await session.run(StillFrameSource("frame"))

        assert winner is not None
        assert winner.identity == A
        assert presenter.presented == [winner]
        assert len(dispatcher.calls) == 5
        assert dispatcher.calls[0] == ("frame", None)
        assert len(session.history) == 0
        assert session.state is ScanState.IDLE

    async def test_two_consistent_attempts_finalize(self) -> None:
        presenter = RecordingPresenter()
        attempt = [_hit(A, 30)] * 4 + [NO]
        dispatcher = ScriptedDispatcher(attempt * 2)
        session = _session(dispatcher, presenter)

        winner = await session.run(StillFrameSource("frame"))

        assert winner is not None
        assert winner.consensus_pct == 80
        assert len(dispatcher.calls) == 10
        assert presenter.presented == [winner]

    async def test_inconclusive_attempts_do_not_count(self) -> None:
        split = [_hit(A, 30), _hit(A, 30), _hit(B, 30), _hit(B, 30), NO]
        weak = [_hit(A, 20)] * 5
        dispatcher = ScriptedDispatcher(split + weak + weak)
        session = _session(dispatcher, RecordingPresenter())

        winner = await session.run(StillFrameSource("frame"))

        assert winner is not None
        assert winner.identity == A
        assert len(dispatcher.calls) == 15

    async def test_transient_source_errors_are_survived(self) -> None:
        dispatcher = ScriptedDispatcher([_hit(A, 30)] * 5)
        source = FlakySource(failures=2)
        session = _session(dispatcher, RecordingPresenter())

        winner = await session.run(source)

        assert winner is not None
        assert source.requests == 7

    async def test_unavailable_source_ends_scan(self) -> None:
        session = _session(ScriptedDispatcher(), RecordingPresenter())
        with pytest.raises(FrameSourceUnavailableError):
            await session.run(UnavailableSource())
        assert not session.is_active
        assert session.state is ScanState.IDLE

    async def test_stop_ends_scan_without_result(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(), presenter)

        session.start(StillFrameSource("frame"))
        await asyncio.sleep(0.01)
        assert session.is_active
        session.stop()
        result = await session.wait()

        assert result is None
        assert presenter.presented == []
        assert session.state is ScanState.IDLE
        assert len(session.history) == 0

    async def test_stop_takes_effect_after_current_attempt(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher([_hit(A, 30)] * 5), presenter)
        source = QueueFrameSource(timeout=1.0)

        session.start(source)
        source.push("frame")
        await asyncio.sleep(0)
        session.stop()
        for _ in range(4):
            source.push("frame")

        assert await session.wait() is None
        assert presenter.presented == []

    async def test_second_start_is_rejected(self) -> None:
        session = _session(ScriptedDispatcher(), RecordingPresenter())
        session.start(StillFrameSource("frame"))
        try:
            with pytest.raises(ScanAlreadyActiveError):
                session.start(StillFrameSource("frame"))
            with pytest.raises(ScanAlreadyActiveError):
                await session.capture_once(StillFrameSource("frame"))
        finally:
            session.stop()
            await session.wait()

    async def test_wait_without_start(self) -> None:
        assert await _session(ScriptedDispatcher(), RecordingPresenter()).wait() is None

    async def test_restart_waits_for_stopped_scan(self) -> None:
        session = _session(ScriptedDispatcher(), RecordingPresenter())
        source = QueueFrameSource(timeout=1.0)

        session.start(source)
        await asyncio.sleep(0)
        session.stop()
        with pytest.raises(ScanAlreadyActiveError, match="still finishing"):
            session.start(source)
        assert not session.is_active

        source.close()
        assert await session.wait() is None

        restarted = session.start(StillFrameSource("frame"))
        try:
            assert session.is_active
        finally:
            session.stop()
            assert await restarted is None

    async def test_closing_source_after_stop_ends_quietly(self) -> None:
        presenter = RecordingPresenter()
        session = _session(ScriptedDispatcher(), presenter)
        source = QueueFrameSource(timeout=5.0)

        session.start(source)
        await asyncio.sleep(0)
        session.stop()
        source.close()

        assert await asyncio.wait_for(session.wait(), timeout=1.0) is None
        assert presenter.presented == []
        assert session.state is ScanState.IDLE


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------


class TestPacing:
    async def _run_paced(self, session: ScanSession, clock: list[float]) -> list[float]:
        sleep = AsyncMock()
        with (
            patch("scanvote.engine.session.asyncio") as mock_asyncio,
            patch("scanvote.engine.session.time") as mock_time,
        ):
            mock_asyncio.sleep = sleep
            mock_time.monotonic.side_effect = clock
            await session.run(StillFrameSource("frame"))
        return [c.args[0] for c in sleep.await_args_list]

    async def test_frame_delay_between_frames_only(self) -> None:
        # Attempt 1 is inconclusive (1/3 votes), attempt 2 is a perfect scan.
        script = [_hit(A, 30), NO, NO] + [_hit(A, 30)] * 3
        session = _session(
            ScriptedDispatcher(script),
            RecordingPresenter(),
            frames=3,
            inter_frame_delay=0.15,
            inter_attempt_delay=1.0,
        )

        delays = await self._run_paced(session, [10.0, 10.4, 11.0])

        assert delays == pytest.approx([0.15, 0.15, 0.6, 0.15, 0.15])

    async def test_attempt_delay_subtracts_capture_time(self) -> None:
        session = _session(
            ScriptedDispatcher([NO, _hit(A, 30)]),
            RecordingPresenter(),
            frames=1,
            inter_frame_delay=0.15,
            inter_attempt_delay=1.0,
        )

        delays = await self._run_paced(session, [0.0, 0.25, 0.3])

        assert delays == pytest.approx([0.75])

    async def test_slow_attempt_never_waits_negative(self) -> None:
        session = _session(
            ScriptedDispatcher([NO, _hit(A, 30)]),
            RecordingPresenter(),
            frames=1,
            inter_attempt_delay=1.0,
        )

        delays = await self._run_paced(session, [0.0, 2.5, 3.0])

        assert delays == [0.0]
