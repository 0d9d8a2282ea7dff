"""
ExtractionCoordinator - automatic snapshot extraction from a video

Drives one extraction session per video source:
1. Prepare the decoder (bounded readiness window)
2. For each candidate timestamp in order: seek, render, reject black frames,
   JPEG-encode and upload the first acceptable frame
3. Report the uploaded URL, or hand over to manual capture when every
   candidate was rejected, the video cannot be decoded, or the session
   deadline expires

Each session has a deadline timer owned by the session and released on
every exit path. Supplying a new source supersedes the live session: its
timer and task are cancelled and nothing it does afterwards is reported.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence

from snapshot_engine.core.config import settings
from snapshot_engine.core.logging_config import set_session_id, clear_session_id
from snapshot_engine.core.metrics import (
    record_attempt,
    record_session_finished,
    record_session_started,
    record_session_superseded,
    record_upload,
)
from snapshot_engine.services.extraction_state import (
    DecodeFailed,
    DeadlineExpired,
    DecoderReady,
    Error,
    ExtractionEvent,
    ExtractionState,
    Extracting,
    FrameRejected,
    Idle,
    ManualFallback,
    ManualModeKind,
    ManualModeReason,
    SessionFaulted,
    SessionStarted,
    Succeeded,
    UploadFailed,
    UploadSucceeded,
    transition,
)
from snapshot_engine.services.frame_decoder import (
    BaseFrameDecoder,
    DecodeError,
    VideoInfo,
    VideoSourceRef,
)
from snapshot_engine.services.frame_encoding import encode_jpeg
from snapshot_engine.services.frame_quality import FrameQuality, FrameQualityValidator
from snapshot_engine.services.snapshot_uploader import (
    BaseSnapshotUploader,
    UploadError,
    default_snapshot_filename,
)

logger = logging.getLogger(__name__)


class AttemptOutcome(str, Enum):
    """Outcome of one candidate timestamp"""
    PENDING = "pending"
    BLACK = "black"
    UPLOAD_FAILED = "upload_failed"
    ACCEPTED = "accepted"


@dataclass
class ExtractionAttempt:
    index: int
    timestamp_seconds: float
    outcome: AttemptOutcome = AttemptOutcome.PENDING


@dataclass
class ExtractionCallbacks:
    """
    Optional observers of a session.

    Callback exceptions are logged and never change the session's course.

    Attributes:
        on_accepted: Called once with the snapshot URL on success
        on_manual_mode_required: Called once when automatic extraction gives up
        on_upload_progress: Upload progress as a 0.0-1.0 fraction
        on_upload_status_change: True when an upload starts, False when it ends
        on_attempt_started: Called with (attempt number, total attempts), 1-based
    """
    on_accepted: Optional[Callable[[str], None]] = None
    on_manual_mode_required: Optional[Callable[[ManualModeReason], None]] = None
    on_upload_progress: Optional[Callable[[float], None]] = None
    on_upload_status_change: Optional[Callable[[bool], None]] = None
    on_attempt_started: Optional[Callable[[int, int], None]] = None


class ExtractionSession:
    """
    One run of automatic extraction against one source.

    Attributes:
        session_id: UUID string used to correlate logs
        source: Video being extracted from
        candidates: Candidate timestamps in attempt order
        attempts: Attempts made so far, in order
        state: Current ExtractionState
        started_at: UTC start time
        video_info: Set once the decoder is ready
        superseded: True once a newer session or cancel() replaced this one
    """

    def __init__(
        self,
        source: VideoSourceRef,
        candidates: Sequence[float],
        deadline_seconds: float,
        callbacks: ExtractionCallbacks,
    ):
        self.session_id = str(uuid.uuid4())
        self.source = source
        self.candidates = tuple(candidates)
        self.attempts: List[ExtractionAttempt] = []
        self.state: ExtractionState = Idle()
        self.started_at = datetime.now(timezone.utc)
        self.deadline_seconds = deadline_seconds
        self.callbacks = callbacks
        self.video_info: Optional[VideoInfo] = None
        self.superseded = False

        self._started_monotonic = time.monotonic()
        self._outcome: asyncio.Future = asyncio.get_running_loop().create_future()
        self._deadline_handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def deadline(self) -> datetime:
        return self.started_at + timedelta(seconds=self.deadline_seconds)

    @property
    def is_live(self) -> bool:
        return not self.superseded and not self.state.terminal

    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._started_monotonic

    async def wait(self) -> Optional[ExtractionState]:
        """
        Wait for the session to end.

        Returns:
            The terminal state, or None if the session was superseded
            or cancelled first
        """
        return await asyncio.shield(self._outcome)


class ExtractionCoordinator:
    """
    Runs extraction sessions against one decoder and one uploader.

    At most one session is live at a time; start() supersedes the previous
    one. Attempts run strictly in candidate order and no timestamp is
    retried.

    Attributes:
        candidate_timestamps: Timestamps tried in order (default [2, 5, 10, 15])
        deadline_seconds: Session deadline measured from start (default 15s)
        attempt_interval: Pause between consecutive attempts (default 0.3s)
        jpeg_quality: Quality used to encode accepted frames (default 90)
    """

    def __init__(
        self,
        decoder: BaseFrameDecoder,
        uploader: BaseSnapshotUploader,
        validator: Optional[FrameQualityValidator] = None,
        callbacks: Optional[ExtractionCallbacks] = None,
        candidate_timestamps: Optional[Sequence[float]] = None,
        deadline_seconds: Optional[float] = None,
        attempt_interval: Optional[float] = None,
        jpeg_quality: Optional[int] = None,
    ):
        self.decoder = decoder
        self.uploader = uploader
        self.validator = validator or FrameQualityValidator()
        self.callbacks = callbacks or ExtractionCallbacks()
        self.candidate_timestamps = tuple(
            settings.candidate_timestamps if candidate_timestamps is None else candidate_timestamps
        )
        self.deadline_seconds = (
            settings.EXTRACTION_SESSION_DEADLINE_SECONDS if deadline_seconds is None else deadline_seconds
        )
        self.attempt_interval = (
            settings.EXTRACTION_ATTEMPT_INTERVAL_SECONDS if attempt_interval is None else attempt_interval
        )
        self.jpeg_quality = settings.SNAPSHOT_JPEG_QUALITY if jpeg_quality is None else jpeg_quality

        self._session: Optional[ExtractionSession] = None

    @property
    def session(self) -> Optional[ExtractionSession]:
        """The current (possibly terminal) session, if any"""
        return self._session

    @property
    def state(self) -> ExtractionState:
        return self._session.state if self._session is not None else Idle()

    def start(
        self,
        source: VideoSourceRef,
        callbacks: Optional[ExtractionCallbacks] = None,
    ) -> ExtractionSession:
        """
        Start extracting from source, superseding any current session.

        Must be called from within the running event loop.

        Args:
            source: Video to extract from
            callbacks: Observers for this session (default: the coordinator's)

        Returns:
            The new session; await session.wait() for its terminal state
        """
        self._release_current()

        loop = asyncio.get_running_loop()
        session = ExtractionSession(
            source=source,
            candidates=self.candidate_timestamps,
            deadline_seconds=self.deadline_seconds,
            callbacks=callbacks or self.callbacks,
        )
        self._session = session
        record_session_started()

        logger.info(
            "Extraction session started",
            extra={
                "event_type": "extraction_session_started",
                "session_id": session.session_id,
                "source_location": source.location,
                "is_local": source.is_local,
                "candidates": list(session.candidates),
                "deadline_seconds": self.deadline_seconds,
            }
        )

        self._apply(session, SessionStarted())
        session._deadline_handle = loop.call_later(self.deadline_seconds, self._on_deadline, session)
        session._task = loop.create_task(self._run(session))
        return session

    def cancel(self) -> None:
        """Cancel the current session, if any, without reporting an outcome."""
        self._release_current()

    async def close(self) -> None:
        """Cancel the current session and wait for its task to unwind."""
        session = self._session
        self._release_current()
        if session is not None and session._task is not None:
            await asyncio.gather(session._task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _release_current(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None

        was_live = session.is_live
        session.superseded = True

        if session._deadline_handle is not None:
            session._deadline_handle.cancel()
            session._deadline_handle = None

        task = session._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if not session._outcome.done():
            session._outcome.set_result(None)

        if was_live:
            record_session_superseded()
            logger.info(
                "Extraction session superseded",
                extra={
                    "event_type": "extraction_session_superseded",
                    "session_id": session.session_id,
                    "state": session.state.name,
                    "attempts": len(session.attempts),
                }
            )

    def _on_deadline(self, session: ExtractionSession) -> None:
        session._deadline_handle = None
        self._apply(session, DeadlineExpired())

    def _apply(self, session: ExtractionSession, event: ExtractionEvent) -> None:
        """Apply an event to session, unless the session is no longer current."""
        if session is not self._session or session.superseded:
            logger.debug(
                f"Discarding {type(event).__name__} for stale session",
                extra={
                    "event_type": "extraction_stale_event",
                    "session_id": session.session_id,
                }
            )
            return

        previous = session.state
        new_state = transition(previous, event, len(session.candidates))
        if new_state is previous:
            return

        session.state = new_state
        logger.debug(
            f"Extraction state {previous.name} -> {new_state.name}",
            extra={
                "event_type": "extraction_state_changed",
                "session_id": session.session_id,
                "from_state": previous.name,
                "to_state": new_state.name,
                "trigger": type(event).__name__,
            }
        )

        if new_state.terminal:
            self._finalize(session)

    def _finalize(self, session: ExtractionSession) -> None:
        if session._deadline_handle is not None:
            session._deadline_handle.cancel()
            session._deadline_handle = None

        state = session.state
        elapsed = session.elapsed_seconds()
        log_extra = {
            "session_id": session.session_id,
            "attempts": len(session.attempts),
            "elapsed_seconds": round(elapsed, 3),
        }

        if isinstance(state, Succeeded):
            record_session_finished("succeeded", elapsed)
            logger.info(
                "Extraction succeeded",
                extra={"event_type": "extraction_succeeded", **log_extra}
            )
            self._notify(session, "on_accepted", state.url)
        elif isinstance(state, ManualFallback):
            record_session_finished("manual_fallback", elapsed, state.reason.kind.value)
            logger.warning(
                f"Extraction requires manual capture ({state.reason.kind.value})",
                extra={
                    "event_type": "extraction_manual_fallback",
                    "reason": state.reason.kind.value,
                    "cause": state.reason.cause.value if state.reason.cause else None,
                    **log_extra,
                }
            )
            self._notify(session, "on_manual_mode_required", state.reason)
        elif isinstance(state, Error):
            record_session_finished("error", elapsed, ManualModeKind.FAULT.value)
            logger.error(
                f"Extraction failed unexpectedly: {state.error}",
                extra={
                    "event_type": "extraction_error",
                    "error": str(state.error),
                    "error_type": type(state.error).__name__,
                    **log_extra,
                }
            )
            self._notify(
                session,
                "on_manual_mode_required",
                ManualModeReason(ManualModeKind.FAULT, state.message, state.error),
            )

        if not session._outcome.done():
            session._outcome.set_result(state)

        task = session._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _notify(self, session: ExtractionSession, name: str, *args) -> None:
        if session.superseded:
            return
        callback = getattr(session.callbacks, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(
                f"Extraction callback {name} raised: {e}",
                exc_info=True,
                extra={
                    "event_type": "extraction_callback_error",
                    "session_id": session.session_id,
                    "callback": name,
                    "error": str(e),
                }
            )

    def _mark(self, session: ExtractionSession, attempt: ExtractionAttempt, outcome: AttemptOutcome) -> None:
        if session.is_live:
            attempt.outcome = outcome
            record_attempt(outcome.value)

    # ------------------------------------------------------------------
    # Session task
    # ------------------------------------------------------------------

    async def _run(self, session: ExtractionSession) -> None:
        token = set_session_id(session.session_id)
        try:
            try:
                session.video_info = await self.decoder.prepare(session.source)
            except DecodeError as e:
                self._apply(session, DecodeFailed(e))
                return

            self._apply(session, DecoderReady())

            while session.is_live and isinstance(session.state, Extracting):
                index = session.state.index
                if index > 0 and self.attempt_interval > 0:
                    await asyncio.sleep(self.attempt_interval)
                event = await self._attempt(session, index)
                self._apply(session, event)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                "Unexpected error during extraction",
                extra={
                    "event_type": "extraction_fault",
                    "session_id": session.session_id,
                    "error_type": type(e).__name__,
                }
            )
            self._apply(session, SessionFaulted(e))
        finally:
            clear_session_id(token)

    async def _attempt(self, session: ExtractionSession, index: int) -> ExtractionEvent:
        timestamp = session.candidates[index]
        total = len(session.candidates)
        attempt = ExtractionAttempt(index=index, timestamp_seconds=timestamp)
        session.attempts.append(attempt)

        logger.info(
            f"Extraction attempt {index + 1}/{total} at {timestamp}s",
            extra={
                "event_type": "extraction_attempt_started",
                "session_id": session.session_id,
                "attempt": index + 1,
                "total_attempts": total,
                "timestamp": timestamp,
            }
        )
        self._notify(session, "on_attempt_started", index + 1, total)

        try:
            buffer = await self.decoder.seek_and_capture(timestamp)
        except DecodeError as e:
            return DecodeFailed(e)

        if self.validator.assess(buffer) == FrameQuality.BLACK:
            self._mark(session, attempt, AttemptOutcome.BLACK)
            logger.info(
                f"Frame at {timestamp}s is black, moving on",
                extra={
                    "event_type": "extraction_frame_black",
                    "session_id": session.session_id,
                    "timestamp": timestamp,
                }
            )
            return FrameRejected()

        loop = asyncio.get_running_loop()
        try:
            jpeg_bytes = await loop.run_in_executor(None, encode_jpeg, buffer, self.jpeg_quality)
        except (ValueError, TypeError, OSError) as e:
            self._mark(session, attempt, AttemptOutcome.UPLOAD_FAILED)
            logger.warning(
                f"Could not encode frame at {timestamp}s: {e}",
                extra={
                    "event_type": "extraction_encode_failed",
                    "session_id": session.session_id,
                    "timestamp": timestamp,
                    "error": str(e),
                }
            )
            return UploadFailed(e)

        self._notify(session, "on_upload_status_change", True)
        try:
            result = await self.uploader.upload(
                jpeg_bytes,
                filename=default_snapshot_filename(),
                content_type="image/jpeg",
                on_progress=lambda fraction: self._notify(session, "on_upload_progress", fraction),
            )
        except UploadError as e:
            self._mark(session, attempt, AttemptOutcome.UPLOAD_FAILED)
            if session.is_live:
                record_upload("automatic", "failure")
            logger.warning(
                f"Upload of frame at {timestamp}s failed: {e}",
                extra={
                    "event_type": "extraction_upload_failed",
                    "session_id": session.session_id,
                    "timestamp": timestamp,
                    "error": str(e),
                    "status_code": e.status_code,
                }
            )
            return UploadFailed(e)
        finally:
            self._notify(session, "on_upload_status_change", False)

        self._mark(session, attempt, AttemptOutcome.ACCEPTED)
        if session.is_live:
            record_upload("automatic", "success")
        return UploadSucceeded(result.url)
