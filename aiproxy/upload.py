# aiproxy/upload.py
import logging

import httpx
from fastapi import Request
from fastapi.responses import Response
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from aiproxy import proxy
from aiproxy.errors import ValidationError
from aiproxy.router import UpstreamTarget

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "file"
DEFAULT_FILENAME = "upload.bin"
DEFAULT_MEDIA_TYPE = "application/octet-stream"


async def relay_upload(
    request: Request,
    client: httpx.AsyncClient,
    target: UpstreamTarget,
    max_bytes: int,
) -> Response:
    """Re-submit the caller's ``file`` upload to the parser upstream."""
    try:
        form = await request.form()
    except StarletteHTTPException as exc:
        raise ValidationError("File upload error", details=exc.detail) from exc
    except MultiPartException as exc:
        raise ValidationError("File upload error", details=exc.message) from exc

    try:
        upload = form.get(UPLOAD_FIELD)
        if not isinstance(upload, UploadFile):
            raise ValidationError("Missing upload. Use multipart/form-data field 'file'.")
        if upload.size is not None and upload.size > max_bytes:
            raise ValidationError(
                "File upload error",
                details=f"File exceeds maximum upload size of {max_bytes} bytes",
            )

        filename = upload.filename or DEFAULT_FILENAME
        media_type = upload.content_type or DEFAULT_MEDIA_TYPE
        await upload.seek(0)
        logger.info(
            "Relaying upload %r (%s, %s bytes) to %s",
            filename, media_type, upload.size, target.name,
        )

        # httpx writes the multipart boundary into Content-Type itself.
        upstream_resp = await proxy.send(
            client,
            target,
            "POST",
            files={UPLOAD_FIELD: (filename, upload.file, media_type)},
            headers={"authorization": f"Bearer {target.api_key}"},
        )
    finally:
        await form.close()

    return proxy.relay_response(upstream_resp)
