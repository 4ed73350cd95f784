# aiproxy/main.py
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import Response

from aiproxy import proxy, streaming, upload
from aiproxy.auth import gate
from aiproxy.config import Settings, get_settings
from aiproxy.errors import ProxyError, ValidationError, proxy_error_handler
from aiproxy.router import CHAT, EMBEDDING, PARSER, VECTORDB, resolve_target, vectordb_url

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# Routes accept every method so that configuration and token checks run
# before the method check, for all targets alike.
_ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]
_POST_ONLY = frozenset({"POST"})
_VECTORDB_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Shared HTTP client — connection pools are reused across all proxy requests.
    app.state.http_client = httpx.AsyncClient()
    logger.info("HTTP client initialised")
    yield
    await app.state.http_client.aclose()


app = FastAPI(title="AI Proxy", version="1.0.0", lifespan=lifespan)
app.add_exception_handler(ProxyError, proxy_error_handler)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Propagate or generate an X-Request-ID header for end-to-end tracing."""
    req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers["x-request-id"] = req_id
    return response


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def read_json_object(request: Request) -> dict[str, Any]:
    body = await request.body()
    try:
        payload = json.loads(body) if body else None
    except (ValueError, RecursionError):
        payload = None
    if not payload or not isinstance(payload, dict):
        raise ValidationError("Invalid or missing JSON body.")
    return payload


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.api_route("/v1/chat", methods=_ALL_METHODS)
async def chat(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """Chat completions. POST an OpenAI-style JSON body; ``stream: true`` relays SSE."""
    target = gate(request, settings, CHAT, _POST_ONLY)
    payload = await read_json_object(request)

    if payload.get("stream") is True:
        stream_target = resolve_target(CHAT, settings, stream=True)
        logger.info("Streaming chat request (request_id=%s)", request.state.request_id)
        return streaming.stream_response(client, stream_target, payload)

    payload["stream"] = False
    return await proxy.forward(
        client,
        target,
        "POST",
        content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
    )


@app.api_route("/v1/embeddings", methods=_ALL_METHODS)
async def embeddings(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """Embeddings. POST a JSON body compatible with the embedding API."""
    target = gate(request, settings, EMBEDDING, _POST_ONLY)
    payload = await read_json_object(request)
    return await proxy.forward(
        client,
        target,
        "POST",
        content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
    )


@app.api_route("/v1/parser", methods=_ALL_METHODS)
async def parser(
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """Document parsing. POST multipart/form-data with field ``file``."""
    target = gate(request, settings, PARSER, _POST_ONLY)
    return await upload.relay_upload(request, client, target, settings.upload_max_bytes)


@app.api_route("/v1/vectordb", methods=_ALL_METHODS)
async def vectordb(
    request: Request,
    path: str = "/",
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """Vector DB gateway. Call as ``/v1/vectordb?path=/collections/...``."""
    target = gate(request, settings, VECTORDB, _VECTORDB_METHODS)
    url = vectordb_url(target, path)

    method = request.method.upper()
    body = None if method == "GET" else await request.body()
    return await proxy.forward(
        client,
        target,
        method,
        url=url,
        content=body,
        headers={
            "accept": request.headers.get("accept") or "application/json",
            "content-type": request.headers.get("content-type") or "application/json",
        },
    )
