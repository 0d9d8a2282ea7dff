"""
Per-context registry of extraction resources

A context is whatever the caller is configuring a snapshot for (typically a
camera being added). Each context owns one decoder, one coordinator and one
manual controller so that a new video for the same context supersedes the
previous extraction, while different contexts never interfere.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from snapshot_engine.services.extraction_coordinator import ExtractionCallbacks, ExtractionCoordinator
from snapshot_engine.services.frame_decoder import BaseFrameDecoder, PyAVFrameDecoder
from snapshot_engine.services.manual_capture import ManualCaptureController
from snapshot_engine.services.snapshot_uploader import BaseSnapshotUploader, HttpSnapshotUploader

logger = logging.getLogger(__name__)


@dataclass
class SnapshotContext:
    """Resources and last result for one context id"""
    context_id: str
    decoder: BaseFrameDecoder
    coordinator: ExtractionCoordinator
    manual: ManualCaptureController
    accepted_url: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def _remember_url(self, url: str) -> None:
        self.accepted_url = url


class SnapshotSessionRegistry:
    """
    Creates and releases SnapshotContexts on demand.

    Attributes:
        decoder_factory: Builds a fresh decoder for each new context
        uploader: Uploader shared by every context
    """

    def __init__(
        self,
        decoder_factory: Callable[[], BaseFrameDecoder] = PyAVFrameDecoder,
        uploader: Optional[BaseSnapshotUploader] = None,
        coordinator_factory: Callable[..., ExtractionCoordinator] = ExtractionCoordinator,
    ):
        self.decoder_factory = decoder_factory
        self.uploader = uploader or HttpSnapshotUploader()
        self.coordinator_factory = coordinator_factory
        self._contexts: Dict[str, SnapshotContext] = {}

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, context_id: str) -> bool:
        return context_id in self._contexts

    def context_ids(self) -> List[str]:
        return list(self._contexts)

    def get(self, context_id: str) -> Optional[SnapshotContext]:
        return self._contexts.get(context_id)

    def get_or_create(self, context_id: str) -> SnapshotContext:
        context = self._contexts.get(context_id)
        if context is not None:
            return context

        decoder = self.decoder_factory()
        coordinator = self.coordinator_factory(decoder=decoder, uploader=self.uploader)
        manual = ManualCaptureController(decoder=decoder, uploader=self.uploader)
        context = SnapshotContext(
            context_id=context_id,
            decoder=decoder,
            coordinator=coordinator,
            manual=manual,
        )
        coordinator.callbacks = ExtractionCallbacks(on_accepted=context._remember_url)
        manual.on_accepted = context._remember_url
        self._contexts[context_id] = context

        logger.debug(
            "Snapshot context created",
            extra={"event_type": "snapshot_context_created", "context_id": context_id}
        )
        return context

    async def close(self, context_id: str) -> bool:
        """
        Cancel any running extraction and release the context's decoder.

        Returns:
            True if the context existed
        """
        context = self._contexts.pop(context_id, None)
        if context is None:
            return False

        await context.coordinator.close()
        await context.decoder.close()

        logger.debug(
            "Snapshot context closed",
            extra={"event_type": "snapshot_context_closed", "context_id": context_id}
        )
        return True

    async def close_all(self) -> None:
        context_ids = list(self._contexts)
        results = await asyncio.gather(
            *(self.close(context_id) for context_id in context_ids),
            return_exceptions=True,
        )
        for context_id, result in zip(context_ids, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Error closing snapshot context: {result}",
                    extra={
                        "event_type": "snapshot_context_close_error",
                        "context_id": context_id,
                        "error": str(result),
                    }
                )
