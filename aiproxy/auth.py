# aiproxy/auth.py
import logging
import secrets

from fastapi import Request

from aiproxy.config import Settings
from aiproxy.errors import AuthenticationError, ValidationError
from aiproxy.router import UpstreamTarget, resolve_target

logger = logging.getLogger(__name__)

PROXY_TOKEN_HEADER = "x-proxy-token"


def verify_proxy_token(presented: str | None, secret: str) -> bool:
    """Constant-time comparison of the caller token against the proxy secret."""
    if presented is None or not secret:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), secret.encode("utf-8"))


def require_proxy_token(request: Request, settings: Settings) -> None:
    if not verify_proxy_token(request.headers.get(PROXY_TOKEN_HEADER), settings.proxy_token):
        logger.warning(
            "Rejected request to %s: invalid proxy token", request.url.path
        )
        raise AuthenticationError("Unauthorized. Invalid proxy token.")


def gate(
    request: Request,
    settings: Settings,
    name: str,
    methods: frozenset[str],
) -> UpstreamTarget:
    """Run the checks every target shares, in one fixed order.

    configuration (500) -> proxy token (401) -> method (405)
    """
    target = resolve_target(name, settings)
    require_proxy_token(request, settings)
    if request.method.upper() not in methods:
        raise ValidationError("Method Not Allowed.", status_code=405)
    return target
