"""
Response dispatch for granted entries.
"""

import os
from typing import Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import FileResponse, PlainTextResponse, RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from shared.logging import get_logger
from ..entries.models import Entry


CACHE_CONTROL = "no-cache, no-store, must-revalidate"
DEFAULT_CONTENT_TYPE = "text/plain"

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Request headers replaced or dropped before forwarding
STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "user-agent", "content-length"}

# Response headers that no longer describe the decoded body
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


class ResponseDispatcher:
    """Serve a granted entry as a file, a redirect or a reverse proxy."""

    def __init__(
        self,
        upload_directory: str,
        *,
        proxy_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.upload_directory = upload_directory
        self.proxy_timeout = proxy_timeout
        self.transport = transport
        self.logger = get_logger("gate.dispatcher")

    async def dispatch(self, entry: Entry, request: Request) -> Response:
        if entry.is_file:
            return self.serve_file(entry)

        if entry.redirect:
            return RedirectResponse(
                entry.url,
                status_code=307,
                headers={"Cache-Control": CACHE_CONTROL}
            )

        return await self.proxy(entry, request)

    def serve_file(self, entry: Entry) -> Response:
        path = os.path.join(self.upload_directory, entry.filename)
        try:
            with open(path, "rb"):
                pass
        except OSError as e:
            self.logger.error("Could not open entry file", entry=entry.name, path=path, error=str(e))
            return PlainTextResponse(str(e), status_code=500)

        return FileResponse(
            path,
            media_type=entry.content_type or DEFAULT_CONTENT_TYPE,
            headers={"Cache-Control": CACHE_CONTROL}
        )

    async def proxy(self, entry: Entry, request: Request) -> Response:
        try:
            target = httpx.URL(entry.url)
        except httpx.InvalidURL:
            target = None
        if target is None or not target.scheme or not target.host:
            self.logger.error("Could not parse entry URL", entry=entry.name, url=entry.url)
            return PlainTextResponse("Could not parse URL", status_code=500)

        headers = [
            (key, value) for key, value in request.headers.items()
            if key.lower() not in STRIPPED_REQUEST_HEADERS
        ]
        headers.append(("Host", target.netloc.decode("ascii")))
        # Sent empty rather than omitted so no client default is filled in
        headers.append(("User-Agent", ""))

        body = await request.body()

        client = httpx.AsyncClient(
            timeout=self.proxy_timeout,
            transport=self.transport,
            follow_redirects=False,
        )
        upstream_request = client.build_request(
            request.method,
            target,
            headers=headers,
            content=body or None,
        )
        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            self.logger.error("Proxy request failed", entry=entry.name, url=entry.url, error=str(e))
            return PlainTextResponse("Bad Gateway", status_code=502)

        response = StreamingResponse(
            upstream.aiter_bytes(),
            status_code=upstream.status_code,
            background=BackgroundTask(self._close_upstream, upstream, client),
        )
        for key, value in upstream.headers.multi_items():
            if key.lower() not in STRIPPED_RESPONSE_HEADERS:
                response.headers.append(key, value)
        response.headers["Cache-Control"] = CACHE_CONTROL
        return response

    @staticmethod
    async def _close_upstream(upstream: httpx.Response, client: httpx.AsyncClient):
        await upstream.aclose()
        await client.aclose()
