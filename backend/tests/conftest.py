"""
Test configuration and fixtures.
S3 is never contacted: the storage backend and boto3 clients are mocks.
"""
import os

# Keep boto3 away from real credentials and endpoints
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ["METRICS_PORT"] = "0"

import threading
import time
from typing import AsyncGenerator, List, Optional
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from upload_relay.config import Settings
from upload_relay.main import create_app
from upload_relay.storage import (
    S3Backend,
    Uploader,
    UploaderCache,
    UploaderProvisioner,
    encode_destination,
)

TEST_MAX_UPLOAD_SIZE = 64


def make_settings(**overrides) -> Settings:
    """Settings with small limits, ignoring any local .env file."""
    values = {
        "host": "127.0.0.1",
        "http_port": 0,
        "metrics_port": 0,
        "max_upload_size": TEST_MAX_UPLOAD_SIZE,
        "upload_timeout": 2.0,
        "request_timeout": 3.0,
        "uploader_cache_size": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def relay_path(url: str) -> str:
    """Request path for uploading to ``url``."""
    return "/" + encode_destination(url)


class RecordingS3Client:
    """Stand-in for a boto3 S3 client that records what upload_fileobj read."""

    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.calls: List[dict] = []
        self.started = threading.Event()

    def upload_fileobj(self, body, bucket, key, ExtraArgs=None, Config=None):
        self.started.set()
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error

        # Read the way s3transfer does for non-seekable input
        chunks = []
        while True:
            chunk = body.read(16)
            if not chunk:
                break
            chunks.append(chunk)

        self.calls.append({
            "bucket": bucket,
            "key": key,
            "extra_args": ExtraArgs,
            "data": b"".join(chunks),
        })


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def s3_client() -> RecordingS3Client:
    return RecordingS3Client()


@pytest.fixture
def backend(s3_client: RecordingS3Client) -> MagicMock:
    """Mocked storage backend whose uploaders write to ``s3_client``."""
    mock = MagicMock(spec=S3Backend)
    mock.load_session.return_value = MagicMock(name="session")
    mock.resolve_region.return_value = "eu-west-1"
    mock.new_uploader.side_effect = lambda session, region: Uploader(s3_client, region)
    return mock


@pytest.fixture
def provisioner(backend: MagicMock, settings: Settings) -> UploaderProvisioner:
    return UploaderProvisioner(backend, UploaderCache(settings.uploader_cache_size))


@pytest.fixture
def app(settings: Settings, provisioner: UploaderProvisioner) -> FastAPI:
    return create_app(settings, provisioner=provisioner)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
