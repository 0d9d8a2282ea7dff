"""Pydantic schemas for the snapshot extraction API"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class ExtractRequest(BaseModel):
    """Video to extract a snapshot from. The local path wins when both are given."""
    video_url: Optional[str] = Field(
        None,
        max_length=2048,
        description="Remote URL of the uploaded video"
    )
    local_video_path: Optional[str] = Field(
        None,
        max_length=4096,
        description="Path of a local copy of the video"
    )

    @model_validator(mode='after')
    def require_a_source(self) -> 'ExtractRequest':
        if not self.video_url and not self.local_video_path:
            raise ValueError("video_url or local_video_path is required")
        return self


class AttemptResponse(BaseModel):
    index: int
    timestamp_seconds: float
    outcome: Literal['pending', 'black', 'upload_failed', 'accepted']


class VideoInfoResponse(BaseModel):
    width: int
    height: int
    duration_seconds: float


class ExtractResponse(BaseModel):
    """Terminal outcome of an extraction session."""
    session_id: str
    status: Literal['succeeded', 'manual_required']
    url: Optional[str] = Field(None, description="Snapshot URL when status is succeeded")
    reason: Optional[Literal['exhausted', 'decode_error', 'timeout', 'fault']] = None
    message: Optional[str] = Field(None, description="User-facing explanation for manual capture")
    cause: Optional[str] = Field(None, description="Decode error cause, when decoding failed")
    attempts: List[AttemptResponse] = Field(default_factory=list)
    video_info: Optional[VideoInfoResponse] = None


class SessionStatusResponse(BaseModel):
    """Current extraction state of a context."""
    context_id: str
    session_id: Optional[str] = None
    state: str = "idle"
    attempts: List[AttemptResponse] = Field(default_factory=list)
    video_info: Optional[VideoInfoResponse] = None
    accepted_url: Optional[str] = None
    started_at: Optional[datetime] = None
    deadline: Optional[datetime] = None


class PreviewRequest(BaseModel):
    timestamp: Optional[float] = Field(
        None,
        ge=0,
        description="Seconds into the video (default 15% of the duration)"
    )


class UploadResponse(BaseModel):
    url: str
