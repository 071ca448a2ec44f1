"""
FastAPI application entry point.
Builds the relay app; ``upload_relay.server`` runs it.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from upload_relay import __version__
from upload_relay.api.router import api_router
from upload_relay.api.upload import method_not_allowed_handler, relay_error_handler
from upload_relay.config import Settings, settings
from upload_relay.exceptions import RelayError
from upload_relay.middleware.metrics_middleware import MetricsMiddleware
from upload_relay.middleware.timeout_middleware import UploadTimeoutMiddleware
from upload_relay.storage import S3Backend, UploaderCache, UploaderProvisioner
from upload_relay.utils.logging import configure_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "upload-relay"


def build_provisioner(app_settings: Settings) -> UploaderProvisioner:
    """Create the uploader provisioner with its own bounded cache."""
    backend = S3Backend(
        default_region=app_settings.default_s3_region,
        endpoint_url=app_settings.s3_endpoint_url,
        timeout=app_settings.upload_timeout
    )
    return UploaderProvisioner(backend, UploaderCache(app_settings.uploader_cache_size))


def create_app(
    app_settings: Optional[Settings] = None,
    provisioner: Optional[UploaderProvisioner] = None
) -> FastAPI:
    """
    Build the relay application.

    Args:
        app_settings: Settings to use (default: environment settings)
        provisioner: Uploader provisioner (default: S3-backed, built from settings)

    Returns:
        FastAPI app with the relay route, timeout and metrics middleware
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Configure structured JSON logging on startup."""
        configure_logging(SERVICE_NAME, app_settings.log_level)
        logger.info(
            f"Relaying uploads up to {app_settings.max_upload_size} bytes "
            f"(timeout {app_settings.upload_timeout}s)"
        )
        yield

    # Docs routes would shadow the catch-all relay route
    app = FastAPI(
        title="S3 Upload Relay",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None
    )
    app.state.settings = app_settings
    app.state.provisioner = provisioner or build_provisioner(app_settings)

    app.add_exception_handler(RelayError, relay_error_handler)
    # Methods missing from the route's list surface as 405
    app.add_exception_handler(405, method_not_allowed_handler)

    # Timeout wraps the handler; metrics wraps the timeout so 408s are counted
    app.add_middleware(UploadTimeoutMiddleware, timeout=app_settings.upload_timeout)
    app.add_middleware(MetricsMiddleware)

    app.include_router(api_router)

    return app


app = create_app()
