# aiproxy/proxy.py
import logging
from typing import Any

import httpx
from fastapi.responses import Response

from aiproxy.errors import UpstreamTransportError
from aiproxy.router import UpstreamTarget

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"
DEFAULT_RESPONSE_CONTENT_TYPE = "application/json; charset=utf-8"


def upstream_headers(target: UpstreamTarget, extra: dict[str, str] | None = None) -> dict[str, str]:
    """Headers for an upstream call: the upstream's own credential, never the caller's."""
    headers = {"content-type": DEFAULT_CONTENT_TYPE}
    if extra:
        headers.update({k.lower(): v for k, v in extra.items() if v})
    headers["authorization"] = f"Bearer {target.api_key}"
    return headers


def relay_response(upstream_resp: httpx.Response) -> Response:
    """Hand the upstream reply back unchanged: same status, same bytes."""
    return Response(
        content=upstream_resp.content,
        status_code=upstream_resp.status_code,
        headers={
            "content-type": upstream_resp.headers.get(
                "content-type", DEFAULT_RESPONSE_CONTENT_TYPE
            )
        },
    )


async def send(
    client: httpx.AsyncClient,
    target: UpstreamTarget,
    method: str,
    url: str | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Perform one complete upstream exchange. At most once; never retried."""
    url = url or target.url
    try:
        upstream_resp = await client.request(
            method=method, url=url, timeout=target.timeout, **kwargs
        )
    except httpx.HTTPError as exc:
        logger.error("Upstream %s request failed: %s %s: %s", target.name, method, url, exc)
        raise UpstreamTransportError("Upstream request failed", details=str(exc)) from exc

    if upstream_resp.status_code >= 500:
        logger.error(
            "Upstream %s error %s for %s %s",
            target.name, upstream_resp.status_code, method, url,
        )
    return upstream_resp


async def forward(
    client: httpx.AsyncClient,
    target: UpstreamTarget,
    method: str,
    url: str | None = None,
    content: bytes | None = None,
    headers: dict[str, str] | None = None,
) -> Response:
    upstream_resp = await send(
        client,
        target,
        method,
        url=url,
        content=content,
        headers=upstream_headers(target, headers),
    )
    return relay_response(upstream_resp)
