"""
S3 storage backend.

Uses boto3 to resolve which region owns a bucket and to stream uploads to it.
Credentials come from boto3's standard chain (environment, shared config,
instance metadata) and are loaded fresh whenever a new uploader is built.
Works with any S3-compatible store when an endpoint URL is configured.
"""
import logging
from typing import BinaryIO, Callable, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from upload_relay.exceptions import (
    BodyTooLargeError,
    ConfigError,
    DestinationNotFoundError,
    ResolutionError,
    UploadFailedError,
)

logger = logging.getLogger(__name__)

# Error codes S3 uses to say "this bucket does not exist"
NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound"}

REGION_HEADER = "x-amz-bucket-region"

# Bodies are capped well below the multipart threshold, so every upload is a
# single PUT driven from the calling thread.
_TRANSFER_CONFIG = TransferConfig(use_threads=False)


def _region_from_response(response: dict) -> Optional[str]:
    """Extract the bucket region reported by a HEAD bucket response or error."""
    if response.get("BucketRegion"):
        return response["BucketRegion"]
    headers = response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
    return headers.get(REGION_HEADER) or None


class Uploader:
    """
    Streams request bodies to S3 through a client bound to one region.

    Holds no per-request state, so one instance serves any number of
    concurrent uploads (boto3 clients are thread-safe).
    """

    def __init__(self, client, region: str):
        self._client = client
        self.region = region

    def upload(
        self,
        bucket: str,
        key: str,
        body: BinaryIO,
        content_type: Optional[str] = None
    ) -> None:
        """
        Upload everything readable from ``body`` to ``s3://bucket/key``.

        Args:
            bucket: Target bucket
            key: Target object key
            body: File-like object, read until EOF
            content_type: Stored as the object's Content-Type when given

        Raises:
            BodyTooLargeError: If the body reader hit its byte limit
            UploadFailedError: On any transport or S3-side failure
        """
        extra_args = {"ContentType": content_type} if content_type else None
        try:
            self._client.upload_fileobj(
                body,
                bucket,
                key,
                ExtraArgs=extra_args,
                Config=_TRANSFER_CONFIG
            )
        except BodyTooLargeError:
            raise
        except Exception as e:
            raise UploadFailedError(bucket, key, e) from e

        logger.debug(f"Uploaded s3://{bucket}/{key} via {self.region}")


class S3Backend:
    """
    Builds region-bound uploaders for S3 buckets.

    Args:
        default_region: Region used for the lookup request and as fallback
            when S3 does not report a bucket's region
        endpoint_url: Optional endpoint for S3-compatible stores
        timeout: Connect/read timeout in seconds for S3 requests
        session_factory: Callable returning a boto3 Session
    """

    def __init__(
        self,
        default_region: str,
        endpoint_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session_factory: Callable[[], boto3.session.Session] = boto3.session.Session
    ):
        self.default_region = default_region
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self._session_factory = session_factory

    def _client(self, session, region: str):
        options = {}
        if self.timeout is not None:
            options["connect_timeout"] = self.timeout
            options["read_timeout"] = self.timeout
        return session.client(
            's3',
            region_name=region,
            endpoint_url=self.endpoint_url,
            config=Config(
                signature_version='s3v4',
                retries={'total_max_attempts': 1},
                **options
            )
        )

    def load_session(self):
        """
        Load the ambient AWS configuration and credentials.

        Raises:
            ConfigError: If no credentials can be found
        """
        try:
            session = self._session_factory()
            credentials = session.get_credentials()
        except BotoCoreError as e:
            raise ConfigError(f"Could not load the default AWS config: {e}", cause=e) from e

        if credentials is None:
            raise ConfigError("Could not load the default AWS config: no credentials found")
        return session

    def resolve_region(self, session, bucket: str) -> str:
        """
        Determine which region owns ``bucket``.

        Args:
            session: Session returned by load_session()
            bucket: Bucket name

        Returns:
            Region name, or the default region if S3 does not report one

        Raises:
            DestinationNotFoundError: If S3 reports the bucket does not exist
            ResolutionError: On any other lookup failure
        """
        client = self._client(session, self.default_region)
        try:
            response = client.head_bucket(Bucket=bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                raise DestinationNotFoundError(
                    f"Region for bucket {bucket!r} not found", bucket, e
                ) from e
            # Redirects and access-denied responses still name the region
            region = _region_from_response(e.response)
            if region:
                return region
            raise ResolutionError(
                f"Failed to determine region for bucket {bucket!r}: {e}", bucket, e
            ) from e
        except BotoCoreError as e:
            raise ResolutionError(
                f"Failed to determine region for bucket {bucket!r}: {e}", bucket, e
            ) from e

        return _region_from_response(response) or self.default_region

    def new_uploader(self, session, region: str) -> Uploader:
        """Create an uploader bound to ``region``."""
        return Uploader(self._client(session, region), region)
