"""Tests for the HTTP services: API client, backend protocol, transport, sources."""
import asyncio
import json

import httpx
import pytest
import respx

from multipart_uploader.errors import (
    BackendHTTPError,
    FinalizeFailed,
    InitiateFailed,
    TargetsFailed,
)
from multipart_uploader.models import CompletionToken, FileMetadata, UploadSession
from multipart_uploader.protocols import IAPIClient, IBackendClient, IByteSource, ITransport
from multipart_uploader.services import (
    BackendClient,
    BytesByteSource,
    FileByteSource,
    HTTPAPIClient,
    HTTPTransport,
)

API = "http://api.test"
SESSION = UploadSession("upload-1", "uploads/file.bin", "bucket-1")


@pytest.mark.asyncio
@respx.mock
async def test_api_client_posts_json():
    route = respx.post(f"{API}/create-multipart").mock(
        return_value=httpx.Response(200, json={"uploadId": "u", "key": "k"})
    )

    async with HTTPAPIClient(API) as client:
        response = await client.post("/create-multipart", json={"fileName": "a.bin"})

    assert response.json() == {"uploadId": "u", "key": "k"}
    assert json.loads(route.calls.last.request.content) == {"fileName": "a.bin"}


@pytest.mark.asyncio
@respx.mock
async def test_api_client_raises_on_client_error():
    route = respx.post(f"{API}/create-multipart").mock(
        return_value=httpx.Response(400, json={"error": "fileName is required"})
    )

    async with HTTPAPIClient(API, max_attempts=3, backoff=0) as client:
        with pytest.raises(BackendHTTPError) as exc_info:
            await client.post("/create-multipart", json={})

    assert exc_info.value.status_code == 400
    assert exc_info.value.server_message == "fileName is required"
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_api_client_retries_server_errors():
    route = respx.post(f"{API}/create-multipart").mock(
        side_effect=[httpx.Response(503), httpx.Response(200, json={"ok": True})]
    )

    async with HTTPAPIClient(API, max_attempts=2, backoff=0) as client:
        response = await client.post("/create-multipart", json={})

    assert response.status_code == 200
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_api_client_single_attempt_by_default():
    route = respx.post(f"{API}/create-multipart").mock(return_value=httpx.Response(502, text="Bad Gateway"))

    async with HTTPAPIClient(API) as client:
        with pytest.raises(BackendHTTPError) as exc_info:
            await client.post("/create-multipart", json={})

    assert exc_info.value.server_message == "Bad Gateway"
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_api_client_requires_context():
    client = HTTPAPIClient(API)
    with pytest.raises(RuntimeError, match="not initialized"):
        await client.post("/create-multipart", json={})


class TestBackendClient:
    @pytest.mark.asyncio
    @respx.mock
    async def test_initiate(self):
        route = respx.post(f"{API}/create-multipart").mock(
            return_value=httpx.Response(
                200, json={"uploadId": "upload-1", "key": "uploads/file.bin", "bucket": "bucket-1"}
            )
        )

        async with HTTPAPIClient(API) as api:
            session = await BackendClient(api).initiate(FileMetadata("file.bin", 1234, "text/plain"))

        assert session == SESSION
        assert json.loads(route.calls.last.request.content) == {
            "fileName": "file.bin",
            "fileType": "text/plain",
            "fileSize": 1234,
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_initiate_server_error(self):
        respx.post(f"{API}/create-multipart").mock(
            return_value=httpx.Response(500, json={"error": "Failed to create multipart upload"})
        )

        async with HTTPAPIClient(API) as api:
            with pytest.raises(InitiateFailed) as exc_info:
                await BackendClient(api).initiate(FileMetadata("file.bin", 1234))

        assert isinstance(exc_info.value.cause, BackendHTTPError)

    @pytest.mark.asyncio
    @respx.mock
    async def test_initiate_missing_upload_id(self):
        respx.post(f"{API}/create-multipart").mock(return_value=httpx.Response(200, json={"key": "k"}))

        async with HTTPAPIClient(API) as api:
            with pytest.raises(InitiateFailed, match="uploadId"):
                await BackendClient(api).initiate(FileMetadata("file.bin", 1234))

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_targets(self):
        route = respx.post(f"{API}/create-presigned-urls").mock(
            return_value=httpx.Response(200, json={"presignedUrls": [
                {"partNumber": 1, "url": "https://s3.test/p1"},
                {"partNumber": 2, "url": "https://s3.test/p2"},
            ]})
        )

        async with HTTPAPIClient(API) as api:
            targets = await BackendClient(api).request_targets(SESSION, 2)

        assert [(t.part_number, t.destination) for t in targets] == [
            (1, "https://s3.test/p1"),
            (2, "https://s3.test/p2"),
        ]
        assert json.loads(route.calls.last.request.content) == {
            "uploadId": "upload-1",
            "key": "uploads/file.bin",
            "parts": 2,
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_targets_malformed_response(self):
        respx.post(f"{API}/create-presigned-urls").mock(return_value=httpx.Response(200, json={"urls": []}))

        async with HTTPAPIClient(API) as api:
            with pytest.raises(TargetsFailed, match="presignedUrls"):
                await BackendClient(api).request_targets(SESSION, 2)

    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_sends_sorted_tokens(self):
        route = respx.post(f"{API}/complete-multipart").mock(
            return_value=httpx.Response(200, json={
                "message": "Upload completed successfully",
                "location": "https://bucket-1.s3.test/uploads/file.bin",
            })
        )
        tokens = [CompletionToken(1, '"a"'), CompletionToken(2, '"b"')]

        async with HTTPAPIClient(API) as api:
            location = await BackendClient(api).complete(SESSION, tokens)

        assert location == "https://bucket-1.s3.test/uploads/file.bin"
        assert json.loads(route.calls.last.request.content) == {
            "uploadId": "upload-1",
            "key": "uploads/file.bin",
            "parts": [{"PartNumber": 1, "ETag": '"a"'}, {"PartNumber": 2, "ETag": '"b"'}],
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_error_carries_server_message(self):
        respx.post(f"{API}/complete-multipart").mock(
            return_value=httpx.Response(400, json={"error": "One or more of the specified parts could not be found"})
        )

        async with HTTPAPIClient(API) as api:
            with pytest.raises(FinalizeFailed) as exc_info:
                await BackendClient(api).complete(SESSION, [CompletionToken(1, '"a"')])

        assert exc_info.value.server_message == "One or more of the specified parts could not be found"
        assert str(exc_info.value) == "One or more of the specified parts could not be found"

    @pytest.mark.asyncio
    @respx.mock
    async def test_abort(self):
        route = respx.post(f"{API}/abort-multipart").mock(return_value=httpx.Response(200, json={}))

        async with HTTPAPIClient(API) as api:
            await BackendClient(api).abort(SESSION)

        assert json.loads(route.calls.last.request.content) == {
            "uploadId": "upload-1",
            "key": "uploads/file.bin",
        }


@pytest.mark.asyncio
async def test_transport_streams_body_with_content_length():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["content"] = request.content
        seen["length"] = request.headers.get("Content-Length")
        seen["chunked"] = request.headers.get("Transfer-Encoding")
        return httpx.Response(200, headers={"ETag": '"etag-1"'})

    async def body():
        yield b"hello "
        yield b"world"

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with HTTPTransport(client=client) as transport:
        response = await transport.put("https://s3.test/part/1?X-Amz-Signature=abc", body(), 11)
    await client.aclose()

    assert response.headers["etag"] == '"etag-1"'
    assert seen == {"method": "PUT", "content": b"hello world", "length": "11", "chunked": None}


@pytest.mark.asyncio
async def test_transport_requires_context():
    async def body():
        yield b""

    with pytest.raises(RuntimeError, match="not initialized"):
        await HTTPTransport().put("https://s3.test/part/1", body(), 0)


@pytest.mark.asyncio
async def test_file_source_reads_ranges(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"0123456789")
    source = FileByteSource(path)

    assert await source.read_range(0, 4) == b"0123"
    assert await source.read_range(8, 4) == b"89"
    assert source.path == path


@pytest.mark.asyncio
async def test_bytes_source_reads_ranges():
    source = BytesByteSource(b"abcdef")

    assert len(source) == 6
    assert await source.read_range(2, 3) == b"cde"


def test_services_satisfy_protocols():
    api = HTTPAPIClient(API)

    assert isinstance(api, IAPIClient)
    assert isinstance(BackendClient(api), IBackendClient)
    assert isinstance(HTTPTransport(), ITransport)
    assert isinstance(BytesByteSource(b""), IByteSource)


async def _stall(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(5)
    return httpx.Response(200, json={})


@pytest.mark.asyncio
async def test_api_client_timeout_bounds_whole_call():
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(_stall))

    async with HTTPAPIClient(API, timeout=0.05, client=client) as api:
        with pytest.raises(httpx.TimeoutException, match="POST /create-multipart"):
            await api.post("/create-multipart", json={})
    await client.aclose()


@pytest.mark.asyncio
async def test_backend_maps_timeout_to_stage_error():
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(_stall))

    async with HTTPAPIClient(API, timeout=0.05, client=client) as api:
        with pytest.raises(InitiateFailed) as exc_info:
            await BackendClient(api).initiate(FileMetadata("file.bin", 1234))
    await client.aclose()

    assert isinstance(exc_info.value.cause, httpx.TimeoutException)


@pytest.mark.asyncio
async def test_transport_timeout_bounds_whole_put():
    async def body():
        yield b"data"

    client = httpx.AsyncClient(transport=httpx.MockTransport(_stall))
    async with HTTPTransport(timeout=0.05, client=client) as transport:
        with pytest.raises(httpx.TimeoutException):
            await transport.put("https://s3.test/part/1", body(), 4)
    await client.aclose()
