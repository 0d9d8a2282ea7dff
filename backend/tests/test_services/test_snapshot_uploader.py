"""
Unit tests for HttpSnapshotUploader

Uses httpx.MockTransport so multipart encoding, headers and status
handling go through the real httpx client.
"""
import httpx
import pytest

from snapshot_engine.core.retry import NO_RETRY, RetryConfig
from snapshot_engine.services.snapshot_uploader import (
    HttpSnapshotUploader,
    UploadError,
    default_snapshot_filename,
    sanitize_filename,
)
from tests.mocks import create_upload_handler, create_upload_transport

ENDPOINT = "https://console.example.com/sites/upload-image"
JPEG = b"\xff\xd8" + b"\x00" * 2048 + b"\xff\xd9"


def _uploader(transport, **kwargs):
    client = httpx.AsyncClient(transport=transport)
    options = {"endpoint_url": ENDPOINT, "api_token": "secret", "retry_config": NO_RETRY}
    options.update(kwargs)
    return HttpSnapshotUploader(http_client=client, **options), client


class TestSanitizeFilename:

    def test_replaces_unsafe_characters(self):
        assert sanitize_filename("front door (1).jpg") == "front_door__1_.jpg"

    def test_keeps_safe_characters(self):
        assert sanitize_filename("snapshot-123_a.b.jpg") == "snapshot-123_a.b.jpg"

    def test_default_filename_format(self):
        name = default_snapshot_filename()
        assert name.startswith("snapshot-")
        assert name.endswith(".jpg")
        assert name[len("snapshot-"):-len(".jpg")].isdigit()


class TestUpload:

    @pytest.mark.asyncio
    async def test_successful_upload_returns_url(self):
        requests = []
        uploader, client = _uploader(create_upload_transport(
            url="https://cdn.example.com/s/1.jpg", requests=requests
        ))

        result = await uploader.upload(JPEG, filename="snapshot-1.jpg")
        await client.aclose()

        assert result.url == "https://cdn.example.com/s/1.jpg"
        assert result.size_bytes == len(JPEG)
        assert len(requests) == 1

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == ENDPOINT
        assert request.headers["Authorization"] == "bearer secret"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="file"; filename="snapshot-1.jpg"' in request.content
        assert b"Content-Type: image/jpeg" in request.content
        assert JPEG in request.content

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_token(self):
        requests = []
        uploader, client = _uploader(create_upload_transport(requests=requests), api_token="")

        await uploader.upload(JPEG)
        await client.aclose()

        assert "Authorization" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_filename_is_sanitized(self):
        requests = []
        uploader, client = _uploader(create_upload_transport(requests=requests))

        result = await uploader.upload(JPEG, filename="my cam/../x.jpg")
        await client.aclose()

        assert result.filename == "my_cam_.._x.jpg"
        assert b'filename="my_cam_.._x.jpg"' in requests[0].content

    @pytest.mark.asyncio
    async def test_progress_reported_up_to_complete(self):
        progress = []
        uploader, client = _uploader(create_upload_transport())

        await uploader.upload(JPEG, on_progress=progress.append)
        await client.aclose()

        assert progress
        assert progress[-1] == 1.0
        assert progress == sorted(progress)

    @pytest.mark.asyncio
    async def test_http_error_status_raises(self):
        uploader, client = _uploader(create_upload_transport(status_code=500, json_body={"detail": "boom"}))

        with pytest.raises(UploadError) as exc_info:
            await uploader.upload(JPEG)
        await client.aclose()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_response_without_url_raises(self):
        uploader, client = _uploader(create_upload_transport(json_body={"id": 5}))

        with pytest.raises(UploadError, match="url"):
            await uploader.upload(JPEG)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_response_raises(self):
        uploader, client = _uploader(create_upload_transport(text_body="<html>ok</html>"))

        with pytest.raises(UploadError):
            await uploader.upload(JPEG)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_image_rejected_without_request(self):
        requests = []
        uploader, client = _uploader(create_upload_transport(requests=requests))

        with pytest.raises(UploadError):
            await uploader.upload(b"")
        await client.aclose()

        assert requests == []

    @pytest.mark.asyncio
    async def test_connect_error_raises_upload_error(self):
        uploader, client = _uploader(create_upload_transport(errors=[httpx.ConnectError("refused")]))

        with pytest.raises(UploadError, match="Connection error"):
            await uploader.upload(JPEG)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_retried_once(self):
        requests = []
        retry = RetryConfig(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=False,
                            retryable_exceptions=(httpx.TransportError,))
        uploader, client = _uploader(
            create_upload_transport(
                url="https://cdn.example.com/s/retried.jpg",
                requests=requests,
                errors=[httpx.ReadTimeout("slow")],
            ),
            retry_config=retry,
        )

        result = await uploader.upload(JPEG)
        await client.aclose()

        assert result.url == "https://cdn.example.com/s/retried.jpg"
        assert len(requests) == 2
        # The retried request carries the whole image again
        assert JPEG in requests[1].content

    @pytest.mark.asyncio
    async def test_http_error_status_not_retried(self):
        requests = []
        retry = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False,
                            retryable_exceptions=(httpx.TransportError,))
        uploader, client = _uploader(
            create_upload_transport(status_code=503, requests=requests),
            retry_config=retry,
        )

        with pytest.raises(UploadError):
            await uploader.upload(JPEG)
        await client.aclose()

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_creates_and_closes_own_client(self, monkeypatch):
        """Without an injected client a short-lived one is used per upload"""
        transport = httpx.MockTransport(create_upload_handler(url="https://cdn.example.com/own.jpg"))
        real_client = httpx.AsyncClient
        created = []

        def client_factory(*args, **kwargs):
            client = real_client(transport=transport)
            created.append(client)
            return client

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)
        uploader = HttpSnapshotUploader(endpoint_url=ENDPOINT, retry_config=NO_RETRY)

        result = await uploader.upload(JPEG)

        assert result.url == "https://cdn.example.com/own.jpg"
        assert len(created) == 1
        assert created[0].is_closed
