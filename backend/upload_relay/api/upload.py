"""
Upload relay endpoint.

Every path and method is routed here. A request is relayed when it is a
POST whose path is an unpadded URL-safe base64 ``s3://bucket/key`` URL:

1. Reject non-POST methods (400)
2. Reject a declared Content-Length over the limit (413), before reading the body
3. Decode the destination from the path (400 on failure)
4. Provision an uploader for the bucket (400 on failure)
5. Stream the body through a hard-capped reader to S3 (503 on failure)

Success is an empty 200. Errors are short plain-text reasons.
"""
import asyncio
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from upload_relay.config import Settings
from upload_relay.exceptions import (
    BadRequestError,
    PayloadTooLargeError,
    RelayError,
    UploadFailedError,
)
from upload_relay.storage import LimitedBodyReader, UploaderProvisioner, decode_destination
from upload_relay.utils.logging import log_upload_completed, log_upload_failed, log_upload_rejected
from upload_relay.utils.metrics import upload_bytes_total, uploads_total

logger = logging.getLogger(__name__)

router = APIRouter()

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_settings(request: Request) -> Settings:
    """FastAPI dependency returning the app's settings."""
    return request.app.state.settings


def get_provisioner(request: Request) -> UploaderProvisioner:
    """FastAPI dependency returning the app's uploader provisioner."""
    return request.app.state.provisioner


def _declared_length(request: Request) -> Optional[int]:
    header = request.headers.get("content-length")
    if header is None:
        return None
    try:
        return int(header)
    except ValueError as e:
        raise BadRequestError(f"Invalid Content-Length {header!r}", e) from e


async def relay_error_handler(request: Request, exc: RelayError) -> PlainTextResponse:
    """Turn relay errors into plain-text responses."""
    if isinstance(exc, UploadFailedError):
        uploads_total.labels(outcome="failed").inc()
        log_upload_failed(
            logger,
            bucket=exc.bucket,
            key=exc.key,
            error=str(exc.cause or exc),
            include_traceback=logger.isEnabledFor(logging.DEBUG)
        )
    else:
        uploads_total.labels(outcome="rejected").inc()
        log_upload_rejected(
            logger,
            reason=str(exc),
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            method=request.method,
            path=request.url.path
        )

    return PlainTextResponse(exc.reason, status_code=exc.status_code)


async def method_not_allowed_handler(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
    """Answer methods the route does not list the same way as any other non-POST."""
    return await relay_error_handler(request, BadRequestError(f"Method {request.method!r} not allowed"))


@router.api_route("/{encoded:path}", methods=ALL_METHODS, include_in_schema=False)
async def relay_upload(
    request: Request,
    settings: Settings = Depends(get_settings),
    provisioner: UploaderProvisioner = Depends(get_provisioner)
):
    """
    Relay the request body to the S3 object encoded in the path.

    Raises:
        BadRequestError: Bad method, malformed path/URL, or provisioning failure
        PayloadTooLargeError: Body over ``settings.max_upload_size``
        UploadFailedError: S3 transport or storage failure
    """
    if request.method != "POST":
        raise BadRequestError(f"Method {request.method!r} not allowed")

    declared = _declared_length(request)
    if declared is not None and declared > settings.max_upload_size:
        raise PayloadTooLargeError(declared, settings.max_upload_size)

    destination = decode_destination(request.url.path)

    # Credential loading and region lookup block, keep them off the event loop
    uploader = await asyncio.to_thread(provisioner.get_uploader, destination.bucket)

    content_type = request.headers.get("content-type")
    body = LimitedBodyReader(
        request.stream(),
        limit=settings.max_upload_size,
        loop=asyncio.get_running_loop()
    )
    start_time = time.time()
    try:
        await asyncio.to_thread(
            uploader.upload,
            destination.bucket,
            destination.key,
            body,
            content_type
        )
    finally:
        # Unblocks the upload thread if this request was cancelled mid-stream
        body.close()

    uploads_total.labels(outcome="completed").inc()
    upload_bytes_total.inc(body.bytes_read)
    log_upload_completed(
        logger,
        bucket=destination.bucket,
        key=destination.key,
        size_bytes=body.bytes_read,
        duration_ms=(time.time() - start_time) * 1000,
        content_type=content_type
    )

    return Response(status_code=200)
