# aiproxy/streaming.py
"""Incremental relay of an upstream event stream to the caller.

Once the first frame has been handed to the ASGI server, the caller already
holds a 200 status line and the event-stream headers. From that point every
outcome, good or bad, has to be expressed as stream content:

    Completed          -> ": proxy stream finished"
    UpstreamError      -> "event: error" with the upstream status
    TransportFailure   -> "event: error" with the transport diagnostic

Each upstream chunk is yielded as received; only a content-encoding the
upstream applied despite ``accept-encoding: identity`` is undone. Starlette awaits the
server's ``send`` for it before the generator is resumed, so the next
upstream read never runs ahead of the caller's socket.
"""
import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any, Union

import httpx
from fastapi.responses import StreamingResponse

from aiproxy.router import UpstreamTarget

logger = logging.getLogger(__name__)

STREAM_STARTED = b": proxy stream started\n\n"
STREAM_FINISHED = b": proxy stream finished\n\n"

SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"
SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # nginx: do not buffer
}


def error_event(data: dict[str, Any]) -> bytes:
    payload = json.dumps(data, ensure_ascii=False)
    return f"event: error\ndata: {payload}\n\n".encode("utf-8")


@dataclass(frozen=True)
class Completed:
    def frame(self) -> bytes:
        return STREAM_FINISHED


@dataclass(frozen=True)
class UpstreamError:
    status: int

    def frame(self) -> bytes:
        return error_event({"error": "Upstream error", "status": self.status})


@dataclass(frozen=True)
class TransportFailure:
    message: str

    def frame(self) -> bytes:
        return error_event({"error": "Upstream request failed", "details": self.message})


RelayOutcome = Union[Completed, UpstreamError, TransportFailure]


@dataclass
class RelaySession:
    """State of one streaming call. Never shared between requests."""

    target: UpstreamTarget
    headers_committed: bool = False
    bytes_relayed: int = 0
    chunks_relayed: int = 0
    status_code: int | None = None

    def commit(self) -> bytes:
        self.headers_committed = True
        return STREAM_STARTED

    def relay(self, chunk: bytes) -> bytes:
        self.bytes_relayed += len(chunk)
        self.chunks_relayed += 1
        return chunk

    def outcome(self) -> RelayOutcome:
        if self.status_code is not None and self.status_code >= 400:
            return UpstreamError(self.status_code)
        return Completed()


class EventStreamResponse(StreamingResponse):
    """A response that is already streaming.

    Its status and headers are fixed at construction; handlers return it as
    their last action and nothing downstream may rewrite it.
    """

    media_type = SSE_MEDIA_TYPE

    def __init__(self, content: AsyncGenerator[bytes, None]) -> None:
        super().__init__(content, status_code=200, headers=SSE_HEADERS)

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # A disconnect can cancel the send while the relay sits at a
            # yield; closing it here releases the upstream connection.
            await self.body_iterator.aclose()


def _stream_headers(target: UpstreamTarget) -> dict[str, str]:
    return {
        "content-type": "application/json",
        "accept": "text/event-stream",
        "accept-encoding": "identity",
        "authorization": f"Bearer {target.api_key}",
    }


async def relay_stream(
    client: httpx.AsyncClient,
    target: UpstreamTarget,
    payload: dict[str, Any],
) -> AsyncGenerator[bytes, None]:
    session = RelaySession(target)
    yield session.commit()

    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    outcome: RelayOutcome
    try:
        async with client.stream(
            "POST",
            target.url,
            content=body,
            headers=_stream_headers(target),
            timeout=target.timeout,
        ) as upstream_resp:
            session.status_code = upstream_resp.status_code
            encoding = upstream_resp.headers.get("content-encoding")
            if encoding and encoding != "identity":
                logger.warning(
                    "Upstream %s ignored accept-encoding: identity (%s); relaying decoded bytes",
                    target.name, encoding,
                )
            async for chunk in upstream_resp.aiter_bytes():
                if chunk:
                    yield session.relay(chunk)
        outcome = session.outcome()
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning(
            "Upstream %s stream failed after %d bytes: %s",
            target.name, session.bytes_relayed, exc,
        )
        outcome = TransportFailure(str(exc) or type(exc).__name__)
    except (GeneratorExit, asyncio.CancelledError):
        logger.info(
            "Caller disconnected from %s stream after %d bytes; upstream aborted",
            target.name, session.bytes_relayed,
        )
        raise

    if isinstance(outcome, UpstreamError):
        logger.error("Upstream %s stream answered %s", target.name, outcome.status)
    logger.info(
        "Relayed %d chunks (%d bytes) from %s",
        session.chunks_relayed, session.bytes_relayed, target.name,
    )
    yield outcome.frame()


def stream_response(
    client: httpx.AsyncClient,
    target: UpstreamTarget,
    payload: dict[str, Any],
) -> EventStreamResponse:
    return EventStreamResponse(relay_stream(client, target, payload))
