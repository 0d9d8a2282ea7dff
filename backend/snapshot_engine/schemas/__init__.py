"""Pydantic schemas for request/response validation"""
from snapshot_engine.schemas.snapshot import (
    AttemptResponse,
    ExtractRequest,
    ExtractResponse,
    PreviewRequest,
    SessionStatusResponse,
    UploadResponse,
    VideoInfoResponse,
)

__all__ = [
    "AttemptResponse",
    "ExtractRequest",
    "ExtractResponse",
    "PreviewRequest",
    "SessionStatusResponse",
    "UploadResponse",
    "VideoInfoResponse",
]
