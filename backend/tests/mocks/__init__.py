"""
Mock Factories Package

Provides factory functions and fakes for the decoder and uploader
interfaces so extraction can be tested without video files or HTTP.
"""
from tests.mocks.decoder_mocks import (
    FakeFrameDecoder,
    create_black_frame,
    create_frame_buffer,
    create_video_info,
)
from tests.mocks.upload_mocks import (
    FakeSnapshotUploader,
    create_upload_error,
)
from tests.mocks.registry_mocks import create_snapshot_registry
from tests.mocks.http_mocks import (
    create_upload_handler,
    create_upload_transport,
)

__all__ = [
    # Decoder mocks
    "FakeFrameDecoder",
    "create_black_frame",
    "create_frame_buffer",
    "create_video_info",
    # Upload mocks
    "FakeSnapshotUploader",
    "create_upload_error",
    # HTTP mocks
    "create_upload_handler",
    "create_upload_transport",
    # Registry mocks
    "create_snapshot_registry",
]
