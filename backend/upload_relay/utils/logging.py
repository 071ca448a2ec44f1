"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- bucket
- key
- duration_ms

Usage:
    from upload_relay.utils.logging import configure_logging, log_upload_completed

    configure_logging('upload-relay', 'INFO')
    log_upload_completed(logger, bucket='my-bucket', key='my-key', size_bytes=10)
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return  # Already configured

        cls._service_name = service_name

        # Remove default handlers
        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(levelname)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        # Console handler (for docker logs)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # Add service name to all log records via filter
        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())

        # uvicorn ships its own handlers; route its records through ours
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            uvicorn_logger = logging.getLogger(name)
            uvicorn_logger.handlers = []
            uvicorn_logger.propagate = True

        cls._configured = True


def _build_log_extra(
    event: str,
    bucket: Optional[str] = None,
    key: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        bucket: Optional bucket name
        key: Optional object key
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if bucket is not None:
        extra["bucket"] = bucket
    if key is not None:
        extra["key"] = key
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


def log_uploader_provisioned(
    logger: logging.Logger,
    bucket: str,
    region: str,
    cached: bool,
    **kwargs
):
    """
    Log creation of a new uploader for a bucket.

    Args:
        logger: Logger instance
        bucket: Bucket name (required)
        region: Region the uploader is bound to (required)
        cached: Whether the uploader was stored in the cache
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="uploader_provisioned",
        bucket=bucket,
        region=region,
        cached=cached,
        **kwargs
    )

    logger.info(f"Provisioned uploader for bucket {bucket!r} in {region}", extra=extra)


def log_upload_completed(
    logger: logging.Logger,
    bucket: str,
    key: str,
    size_bytes: int,
    duration_ms: Optional[float] = None,
    content_type: Optional[str] = None,
    **kwargs
):
    """
    Log a successful upload.

    Args:
        logger: Logger instance
        bucket: Bucket name (required)
        key: Object key (required)
        size_bytes: Number of body bytes uploaded (required)
        duration_ms: Optional duration in milliseconds
        content_type: Optional content type stored with the object
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_completed",
        bucket=bucket,
        key=key,
        duration_ms=duration_ms,
        size_bytes=size_bytes,
        **kwargs
    )
    if content_type:
        extra["content_type"] = content_type

    logger.info(f"Uploaded s3://{bucket}/{key} ({size_bytes} bytes)", extra=extra)


def log_upload_rejected(
    logger: logging.Logger,
    reason: str,
    status_code: int,
    **kwargs
):
    """
    Log a request refused before or during upload.

    Args:
        logger: Logger instance
        reason: Human readable reason (required)
        status_code: HTTP status returned to the caller (required)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_rejected",
        status_code=status_code,
        **kwargs
    )

    logger.warning(reason, extra=extra)


def log_upload_failed(
    logger: logging.Logger,
    bucket: str,
    key: str,
    error: str,
    duration_ms: Optional[float] = None,
    include_traceback: bool = False,
    **kwargs
):
    """
    Log an upload that failed on the storage side.

    Args:
        logger: Logger instance
        bucket: Bucket name (required)
        key: Object key (required)
        error: Error message (required)
        duration_ms: Optional duration in milliseconds
        include_traceback: Whether to include stack trace (default: False)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_failed",
        bucket=bucket,
        key=key,
        duration_ms=duration_ms,
        error=str(error),
        **kwargs
    )

    message = f"Failed to upload s3://{bucket}/{key}: {error}"

    # Storage failures are expected operational errors; stack traces are opt-in
    if include_traceback:
        exc_info = sys.exc_info()
        if exc_info[0] is not None:
            logger.warning(message, extra=extra, exc_info=exc_info)
            return
    logger.warning(message, extra=extra)


# Convenience alias
def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
