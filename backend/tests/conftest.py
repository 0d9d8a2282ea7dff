"""Pytest fixtures and configuration for the test suite

Provides in-memory fakes for the two external collaborators of the
extraction engine:
    - fake_decoder: FakeFrameDecoder rendering uniform gray frames
    - fake_uploader: FakeSnapshotUploader returning generated URLs
"""
import pytest

from tests.mocks import FakeFrameDecoder, FakeSnapshotUploader


@pytest.fixture
def fake_decoder():
    """Decoder whose frames are all acceptable unless configured otherwise."""
    return FakeFrameDecoder()


@pytest.fixture
def fake_uploader():
    """Uploader whose uploads all succeed unless scripted otherwise."""
    return FakeSnapshotUploader()
