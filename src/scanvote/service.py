"""Wires the engine together for the HTTP service.

One continuous scan may run at a time, fed by frames that clients push.
Single-shot identifications each get their own short-lived session so
concurrent uploads do not contend for the continuous scan.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from scanvote.catalog import IdentityCatalog
from scanvote.engine.aggregator import FrameVoteAggregator
from scanvote.engine.dispatcher import RecognitionDispatcher
from scanvote.engine.errors import ScanAlreadyActiveError, ScanNotActiveError
from scanvote.engine.history import ScanHistoryTracker
from scanvote.engine.session import ScanSession, ScanState
from scanvote.engine.sources import QueueFrameSource, StillFrameSource
from scanvote.ml.descriptor_matcher import DescriptorMatcher
from scanvote.ml.embedding_matcher import EmbeddingMatcher
from scanvote.ml.inference import ClassifierPool
from scanvote.ml.orb_extractor import OrbExtractor

if TYPE_CHECKING:
    from scanvote.config import Settings
    from scanvote.engine.results import AggregatedResult, Winner
    from scanvote.ml.embedding_matcher import FaceEmbedder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresentedResult:
    result: AggregatedResult
    presented_at: float


class ResultStore:
    """Display boundary for the HTTP service: keeps the last presented result."""

    def __init__(self) -> None:
        self._last: PresentedResult | None = None

    def present(self, result: AggregatedResult) -> None:
        self._last = PresentedResult(result=result, presented_at=time.time())

    @property
    def last(self) -> PresentedResult | None:
        return self._last

    def clear(self) -> None:
        self._last = None


class ScanService:
    """Owns the classifier stack, the continuous scan, and its frame queue."""

    def __init__(
        self,
        settings: Settings,
        catalog: IdentityCatalog,
        dispatcher: RecognitionDispatcher,
        pool: ClassifierPool,
    ) -> None:
        self._settings = settings
        self._catalog = catalog
        self._dispatcher = dispatcher
        self._pool = pool
        self._aggregator = FrameVoteAggregator.from_settings(settings)
        self.results = ResultStore()
        self.identifications = ResultStore()

        self._session: ScanSession | None = None
        self._source: QueueFrameSource | None = None
        self._task: asyncio.Task[Winner | None] | None = None
        self._last_error: str | None = None
        self._has_fast_classifier = False

    @classmethod
    def from_settings(cls, settings: Settings, embedder: FaceEmbedder | None = None) -> ScanService:
        """Build the full classifier stack from configuration.

        Reference descriptors are extracted from the catalog's reference images
        at startup. The fast classifier is only enabled when an embedder is
        supplied and the catalog carries reference embeddings.
        """
        catalog = IdentityCatalog.load(settings.catalog_path) if settings.catalog_path else IdentityCatalog.empty()

        extractor = OrbExtractor(settings.orb_features)
        references = {label: extractor.extract_file(path) for label, path in catalog.reference_images().items()}
        fallback = DescriptorMatcher(extractor, references, ratio=settings.ratio_test)
        logger.info("Prepared descriptors for %d references", fallback.reference_count)

        fast = None
        embeddings = catalog.embeddings()
        if embedder is not None and embeddings:
            fast = EmbeddingMatcher(embedder, embeddings)

        dispatcher = RecognitionDispatcher.from_settings(settings, catalog, fallback, fast=fast)
        service = cls(settings, catalog, dispatcher, ClassifierPool.from_settings(settings))
        service._has_fast_classifier = fast is not None
        return service

    # -- Accessors ----------------------------------------------------------

    @property
    def catalog(self) -> IdentityCatalog:
        return self._catalog

    @property
    def pool(self) -> ClassifierPool:
        return self._pool

    @property
    def has_fast_classifier(self) -> bool:
        return self._has_fast_classifier

    @property
    def scan_active(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def scan_state(self) -> ScanState:
        return self._session.state if self._session is not None else ScanState.IDLE

    @property
    def history_length(self) -> int:
        return len(self._session.history) if self._session is not None else 0

    @property
    def frames_per_attempt(self) -> int | None:
        return self._session.frames_per_attempt if self._session is not None else None

    @property
    def pending_frames(self) -> int:
        return self._source.pending if self._source is not None else 0

    @property
    def last_error(self) -> str | None:
        return self._last_error

    # -- Operations ---------------------------------------------------------

    async def identify(self, frame: object) -> AggregatedResult:
        """Single-shot identification of one still image.

        Results go to ``identifications``, so an upload never replaces the
        continuous scan's last result.
        """
        session = self._new_session(self.identifications, mobile=False)
        return await session.capture_once(StillFrameSource(frame), frames=1)

    def start_scan(self, *, mobile: bool = False) -> None:
        """Start a continuous scan fed by ``push_frame``.

        Raises:
            ScanAlreadyActiveError: If a continuous scan is running or a
                stopped one has not finished yet.
        """
        if self.scan_active or (self._task is not None and not self._task.done()):
            raise ScanAlreadyActiveError("A scan is already in progress")

        self._source = QueueFrameSource(
            maxsize=self._settings.frame_queue_size,
            timeout=self._settings.frame_wait_timeout_s,
        )
        self._session = self._new_session(self.results, mobile=mobile)
        self._last_error = None
        self.results.clear()
        self._task = self._session.start(self._source)
        self._task.add_done_callback(self._on_scan_done)
        logger.info("Continuous scan started (mobile=%s, frames=%d)", mobile, self._session.frames_per_attempt)

    def push_frame(self, frame: object) -> None:
        """Hand a captured frame to the running scan.

        Raises:
            ScanNotActiveError: If no continuous scan is running.
            asyncio.QueueFull: If frames arrive faster than they are consumed.
        """
        if not self.scan_active or self._source is None:
            raise ScanNotActiveError("No scan is in progress")
        self._source.push(frame)

    def stop_scan(self) -> None:
        """Stop the continuous scan and close its frame queue."""
        if self._session is not None:
            self._session.stop()
        if self._source is not None:
            self._source.close()

    async def shutdown(self) -> None:
        """Stop any running scan and release the classifier pool."""
        self.stop_scan()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._pool.shutdown()

    # -- Internal -----------------------------------------------------------

    def _new_session(self, presenter: ResultStore, *, mobile: bool) -> ScanSession:
        return ScanSession.from_settings(
            self._settings,
            self._dispatcher,
            self._aggregator,
            ScanHistoryTracker.from_settings(self._settings),
            presenter,
            self._pool,
            mobile=mobile,
        )

    def _on_scan_done(self, task: asyncio.Task[Winner | None]) -> None:
        if task.cancelled():
            logger.info("Continuous scan cancelled")
            return
        error = task.exception()
        if error is not None:
            self._last_error = str(error)
            logger.error("Continuous scan ended with error: %s", error)
