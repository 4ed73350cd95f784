# aiproxy/router.py
import logging
from dataclasses import dataclass

import httpx

from aiproxy.config import Settings
from aiproxy.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

CHAT = "chat"
EMBEDDING = "embedding"
PARSER = "parser"
VECTORDB = "vectordb"


@dataclass(frozen=True)
class UpstreamTarget:
    name: str
    url: str
    api_key: str
    timeout: httpx.Timeout
    allowed_prefixes: tuple[str, ...] = ()


def _endpoint_and_key(name: str, settings: Settings) -> tuple[str, str]:
    if name == CHAT:
        return settings.chat_endpoint, settings.assistant_api_key
    if name == EMBEDDING:
        return settings.embedding_endpoint, settings.assistant_api_key
    if name == PARSER:
        return settings.parser_endpoint, settings.assistant_api_key
    if name == VECTORDB:
        return settings.vectordb_endpoint.rstrip("/"), settings.vectordb_api_key
    raise ValueError(f"unknown proxy target: {name}")


def resolve_target(name: str, settings: Settings, stream: bool = False) -> UpstreamTarget:
    """Map a proxy name to its upstream, failing closed on missing configuration.

    chat (stream=True) -> no overall limit, bounded connect phase
    parser             -> upload_timeout
    everything else    -> proxy_timeout
    """
    url, api_key = _endpoint_and_key(name, settings)
    if not url or not api_key or not settings.proxy_token:
        raise ConfigurationError("Proxy misconfigured.")
    try:
        httpx.URL(url)
    except httpx.InvalidURL as exc:
        logger.error("Invalid upstream URL configured for %s: %s", name, exc)
        raise ConfigurationError("Proxy misconfigured.") from exc

    if stream:
        timeout = httpx.Timeout(None, connect=settings.stream_connect_timeout)
    elif name == PARSER:
        timeout = httpx.Timeout(settings.upload_timeout)
    else:
        timeout = httpx.Timeout(settings.proxy_timeout)

    prefixes = settings.vectordb_prefixes if name == VECTORDB else ()
    return UpstreamTarget(
        name=name, url=url, api_key=api_key, timeout=timeout, allowed_prefixes=prefixes
    )


def normalize_path(raw: str | None) -> str:
    """Return a rooted sub-path; reject anything that could climb out of it."""
    path = raw or "/"
    if not path.startswith("/"):
        path = "/" + path
    if ".." in path:
        raise ValidationError("Invalid path.")
    return path


def check_prefix(path: str, prefixes: tuple[str, ...]) -> None:
    if not any(path.startswith(p) for p in prefixes):
        raise ValidationError("Forbidden path.", status_code=403, path=path)


def vectordb_url(target: UpstreamTarget, raw_path: str | None) -> str:
    path = normalize_path(raw_path)
    check_prefix(path, target.allowed_prefixes)
    return target.url + path
