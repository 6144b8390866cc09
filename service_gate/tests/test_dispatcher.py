"""
Unit tests for the response dispatcher.
"""

import httpx
import pytest
from fastapi.responses import StreamingResponse

from service_gate.app.access.dispatcher import CACHE_CONTROL, ResponseDispatcher
from service_gate.app.entries.models import Entry
from shared.test_helpers import make_request


async def read_body(response):
    """Drain a streamed response and run its cleanup task."""
    body = b"".join([chunk async for chunk in response.body_iterator])
    if response.background is not None:
        await response.background()
    return body


class TestServeFile:
    """Test cases for file entries."""

    @pytest.fixture
    def dispatcher(self, tmp_path):
        """Create dispatcher over a temporary upload directory."""
        (tmp_path / "photo.png").write_bytes(b"\x89PNG")
        (tmp_path / "notes").write_text("hello")
        return ResponseDispatcher(str(tmp_path))

    @pytest.mark.asyncio
    async def test_file(self, dispatcher):
        """Test files are served with their content type."""
        entry = Entry(name="a", filename="photo.png", content_type="image/png")

        response = await dispatcher.dispatch(entry, make_request())

        assert response.status_code == 200
        assert response.media_type == "image/png"
        assert response.headers["Cache-Control"] == CACHE_CONTROL

    @pytest.mark.asyncio
    async def test_default_content_type(self, dispatcher):
        """Test files without a content type are served as text."""
        response = await dispatcher.dispatch(Entry(name="a", filename="notes"), make_request())

        assert response.media_type == "text/plain"

    @pytest.mark.asyncio
    async def test_missing_file(self, dispatcher):
        """Test unreadable files are server errors."""
        response = await dispatcher.dispatch(Entry(name="a", filename="gone.txt"), make_request())

        assert response.status_code == 500
        assert b"gone.txt" in response.body


class TestRedirect:
    """Test cases for redirect entries."""

    @pytest.mark.asyncio
    async def test_redirect(self, tmp_path):
        """Test redirects are temporary and uncached."""
        dispatcher = ResponseDispatcher(str(tmp_path))
        entry = Entry(name="a", url="https://example.com/target?x=1", redirect=True)

        response = await dispatcher.dispatch(entry, make_request())

        assert response.status_code == 307
        assert response.headers["Location"] == "https://example.com/target?x=1"
        assert response.headers["Cache-Control"] == CACHE_CONTROL


class TestProxy:
    """Test cases for proxied entries."""

    @pytest.fixture
    def captured(self):
        """Requests seen by the upstream."""
        return []

    @pytest.fixture
    def dispatcher(self, tmp_path, captured):
        """Create dispatcher with a mock upstream."""

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                201,
                headers=[
                    ("Content-Type", "application/json"),
                    ("Set-Cookie", "a=1"),
                    ("Set-Cookie", "b=2"),
                    ("Cache-Control", "max-age=3600"),
                    ("Connection", "close"),
                ],
                content=b'{"ok": true}',
            )

        return ResponseDispatcher(str(tmp_path), transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_proxy_forwards_request(self, dispatcher, captured):
        """Test method, body and headers reach the upstream."""
        entry = Entry(name="a", url="https://upstream.example.com:8443/api/items")
        request = make_request(
            method="POST",
            path="/a",
            headers={
                "Host": "gate.example.com",
                "User-Agent": "curl/8.0",
                "Accept": "application/json",
                "Connection": "keep-alive",
                "X-Custom": "yes",
            },
            body=b"payload",
        )

        response = await dispatcher.dispatch(entry, request)
        await read_body(response)

        upstream = captured[0]
        assert upstream.method == "POST"
        assert str(upstream.url) == "https://upstream.example.com:8443/api/items"
        assert upstream.headers["Host"] == "upstream.example.com:8443"
        assert upstream.headers["User-Agent"] == ""
        assert upstream.headers["Accept"] == "application/json"
        assert upstream.headers["X-Custom"] == "yes"
        assert upstream.content == b"payload"

    @pytest.mark.asyncio
    async def test_proxy_response(self, dispatcher):
        """Test upstream status, body and headers are relayed."""
        entry = Entry(name="a", url="https://upstream.example.com/")

        response = await dispatcher.dispatch(entry, make_request())

        assert isinstance(response, StreamingResponse)
        assert response.status_code == 201
        assert await read_body(response) == b'{"ok": true}'
        assert response.headers["Content-Type"] == "application/json"
        assert response.headers.getlist("Set-Cookie") == ["a=1", "b=2"]
        assert response.headers["Cache-Control"] == CACHE_CONTROL
        assert "Connection" not in response.headers

    @pytest.mark.asyncio
    async def test_invalid_url(self, dispatcher, captured):
        """Test unusable URLs are server errors."""
        response = await dispatcher.dispatch(Entry(name="a", url="not a url"), make_request())

        assert response.status_code == 500
        assert response.body == b"Could not parse URL"
        assert captured == []

    @pytest.mark.asyncio
    async def test_upstream_unreachable(self, tmp_path):
        """Test transport failures are bad gateway errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        dispatcher = ResponseDispatcher(str(tmp_path), transport=httpx.MockTransport(handler))

        response = await dispatcher.dispatch(Entry(name="a", url="http://10.255.0.1/"), make_request())

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_proxy_streams_body(self, tmp_path):
        """Test the upstream body is relayed chunk by chunk."""
        closed = []

        async def chunks():
            try:
                for part in [b"first-", b"second-", b"third"]:
                    yield part
            finally:
                closed.append(True)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Type": "video/mp4"}, content=chunks())

        dispatcher = ResponseDispatcher(str(tmp_path), transport=httpx.MockTransport(handler))

        response = await dispatcher.dispatch(Entry(name="a", url="https://upstream.example.com/movie"), make_request())

        assert closed == []
        assert await read_body(response) == b"first-second-third"
        assert closed == [True]
        assert "Transfer-Encoding" not in response.headers
        assert response.headers["Content-Type"] == "video/mp4"
