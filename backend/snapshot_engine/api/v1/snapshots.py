"""
Snapshot API endpoints

Provides endpoints for:
- Automatic snapshot extraction from an uploaded video
- Extraction status for a context
- Manual capture: preview a frame, confirm it, or upload an image directly
- Releasing a context's decoder and session
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile

from snapshot_engine.schemas.snapshot import (
    AttemptResponse,
    ExtractRequest,
    ExtractResponse,
    PreviewRequest,
    SessionStatusResponse,
    UploadResponse,
    VideoInfoResponse,
)
from snapshot_engine.services.extraction_coordinator import ExtractionSession
from snapshot_engine.services.extraction_state import (
    Error,
    ExtractionState,
    ManualFallback,
    ManualModeKind,
    Succeeded,
)
from snapshot_engine.services.frame_decoder import DecodeError, VideoInfo, VideoSourceRef
from snapshot_engine.services.frame_encoding import ImageTooLargeError, InvalidImageError
from snapshot_engine.services.manual_capture import ManualCaptureError
from snapshot_engine.services.session_registry import SnapshotContext, SnapshotSessionRegistry
from snapshot_engine.services.snapshot_uploader import UploadError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/snapshots", tags=["snapshots"])


def get_snapshot_registry(request: Request) -> SnapshotSessionRegistry:
    """Registry created in the application lifespan."""
    return request.app.state.snapshot_registry


def _require_context(registry: SnapshotSessionRegistry, context_id: str) -> SnapshotContext:
    context = registry.get(context_id)
    if context is None:
        raise HTTPException(status_code=404, detail="Snapshot context not found")
    return context


def _video_info(info: Optional[VideoInfo]) -> Optional[VideoInfoResponse]:
    if info is None:
        return None
    return VideoInfoResponse(
        width=info.width,
        height=info.height,
        duration_seconds=info.duration_seconds,
    )


def _attempts(session: ExtractionSession) -> list:
    return [
        AttemptResponse(
            index=attempt.index,
            timestamp_seconds=attempt.timestamp_seconds,
            outcome=attempt.outcome.value,
        )
        for attempt in session.attempts
    ]


def _outcome_response(session: ExtractionSession, state: ExtractionState) -> ExtractResponse:
    response = ExtractResponse(
        session_id=session.session_id,
        status="manual_required",
        attempts=_attempts(session),
        video_info=_video_info(session.video_info),
    )
    if isinstance(state, Succeeded):
        response.status = "succeeded"
        response.url = state.url
    elif isinstance(state, ManualFallback):
        response.reason = state.reason.kind.value
        response.message = state.reason.message
        response.cause = state.reason.cause.value if state.reason.cause else None
    elif isinstance(state, Error):
        response.reason = ManualModeKind.FAULT.value
        response.message = state.message
    return response


@router.post("/{context_id}/extract", response_model=ExtractResponse)
async def extract_snapshot(
    context_id: str,
    body: ExtractRequest,
    registry: SnapshotSessionRegistry = Depends(get_snapshot_registry),
):
    """
    Extract a snapshot automatically from a video.

    Supersedes any extraction already running for the context and waits
    for the new session's outcome (bounded by the session deadline).
    """
    context = registry.get_or_create(context_id)
    source = VideoSourceRef.prefer_local(local_path=body.local_video_path, url=body.video_url)

    context.manual.reset()
    context.accepted_url = None
    session = context.coordinator.start(source)

    state = await session.wait()
    if state is None:
        raise HTTPException(status_code=409, detail="Extraction was superseded by a newer request")

    return _outcome_response(session, state)


@router.get("/{context_id}", response_model=SessionStatusResponse)
async def get_snapshot_status(
    context_id: str,
    registry: SnapshotSessionRegistry = Depends(get_snapshot_registry),
):
    """Get the extraction state of a context."""
    context = _require_context(registry, context_id)
    session = context.coordinator.session

    response = SessionStatusResponse(
        context_id=context_id,
        accepted_url=context.accepted_url,
        video_info=_video_info(context.decoder.info),
    )
    if session is not None:
        response.session_id = session.session_id
        response.state = session.state.name
        response.attempts = _attempts(session)
        response.started_at = session.started_at
        response.deadline = session.deadline
        response.video_info = _video_info(session.video_info) or response.video_info
    return response


@router.post("/{context_id}/preview")
async def preview_frame(
    context_id: str,
    body: Optional[PreviewRequest] = None,
    registry: SnapshotSessionRegistry = Depends(get_snapshot_registry),
):
    """
    Render a frame for manual capture.

    Returns the frame as image/jpeg; X-Frame-Timestamp holds the (clamped)
    timestamp that was rendered.
    """
    context = _require_context(registry, context_id)
    timestamp = body.timestamp if body is not None else None

    try:
        preview = await context.manual.preview_at(timestamp)
    except ManualCaptureError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DecodeError as e:
        raise HTTPException(status_code=502, detail=e.user_message)

    return Response(
        content=preview.jpeg_bytes,
        media_type="image/jpeg",
        headers={"X-Frame-Timestamp": f"{preview.timestamp_seconds:.3f}"},
    )


@router.post("/{context_id}/confirm", response_model=UploadResponse)
async def confirm_preview(
    context_id: str,
    registry: SnapshotSessionRegistry = Depends(get_snapshot_registry),
):
    """Upload the previewed frame as the snapshot."""
    context = _require_context(registry, context_id)

    try:
        result = await context.manual.confirm()
    except ManualCaptureError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UploadError as e:
        raise HTTPException(status_code=502, detail=f"Snapshot upload failed: {e.message}")

    return UploadResponse(url=result.url)


@router.post("/{context_id}/image", response_model=UploadResponse)
async def upload_snapshot_image(
    context_id: str,
    file: UploadFile = File(...),
    registry: SnapshotSessionRegistry = Depends(get_snapshot_registry),
):
    """Upload a user-supplied image as the snapshot, bypassing the video."""
    context = registry.get_or_create(context_id)
    image_bytes = await file.read()

    try:
        result = await context.manual.upload_external_image(
            image_bytes,
            filename=file.filename,
            content_type=file.content_type,
        )
    except ImageTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except InvalidImageError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UploadError as e:
        raise HTTPException(status_code=502, detail=f"Snapshot upload failed: {e.message}")

    return UploadResponse(url=result.url)


@router.delete("/{context_id}", status_code=204)
async def release_context(
    context_id: str,
    registry: SnapshotSessionRegistry = Depends(get_snapshot_registry),
):
    """Cancel any extraction and release the context's video."""
    if not await registry.close(context_id):
        raise HTTPException(status_code=404, detail="Snapshot context not found")
    return Response(status_code=204)
