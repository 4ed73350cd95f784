# aiproxy/errors.py
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ProxyError(Exception):
    """An error detected before any response byte reached the caller.

    Rendered as ``{"error": ..., "details"?: ...}`` with ``status_code``.
    """

    status_code = 500

    def __init__(
        self,
        error: str,
        details: Any = None,
        status_code: int | None = None,
        **extra: Any,
    ) -> None:
        super().__init__(error)
        self.error = error
        self.details = details
        self.extra = extra
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ConfigurationError(ProxyError):
    status_code = 500


class AuthenticationError(ProxyError):
    status_code = 401


class ValidationError(ProxyError):
    # 403 for disallowed paths and 405 for wrong methods are passed explicitly.
    status_code = 400


class UpstreamTransportError(ProxyError):
    status_code = 502


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())
