"""
Exception hierarchy for the upload relay.

Request-scoped errors carry the HTTP status and the short plain-text reason
returned to the caller. They are caught at the handler boundary and never
escape a request. StartupError and ShutdownError are process-level.
"""
from typing import Optional


class RelayError(Exception):
    """Base class for request-scoped relay errors."""

    status_code = 500
    reason = "Internal error"

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class BadRequestError(RelayError):
    """The caller's request cannot be served as given."""

    status_code = 400
    reason = "Bad request"


class MalformedPathError(BadRequestError):
    """Raised when the request path is not unpadded URL-safe base64."""


class MalformedURLError(BadRequestError):
    """Raised when the decoded path is not a parseable URL."""


class ProvisioningError(BadRequestError):
    """Raised when no uploader can be built for a bucket."""

    def __init__(self, message: str, bucket: str = "", cause: Optional[Exception] = None):
        self.bucket = bucket
        super().__init__(message, cause)


class ConfigError(ProvisioningError):
    """Raised when storage credentials or configuration are unavailable."""


class DestinationNotFoundError(ProvisioningError):
    """Raised when the storage backend reports that the bucket does not exist."""


class ResolutionError(ProvisioningError):
    """Raised when the bucket's region lookup fails for any other reason."""


class PayloadTooLargeError(RelayError):
    """Raised when the declared Content-Length is over the limit."""

    status_code = 413
    reason = "File too large"

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        self.reason = f"File too large ({size} bytes)"
        super().__init__(f"File too large ({size} bytes, limit {limit})")


class BodyTooLargeError(PayloadTooLargeError):
    """Raised by the body reader once more than the limit has been streamed."""

    def __init__(self, limit: int):
        self.size = None
        self.limit = limit
        RelayError.__init__(self, f"Request body exceeds {limit} bytes")


class UploadFailedError(RelayError):
    """Raised when streaming the body to storage fails."""

    status_code = 503
    reason = "Internal error"

    def __init__(self, bucket: str, key: str, cause: Optional[Exception] = None):
        self.bucket = bucket
        self.key = key
        super().__init__(f"Failed to upload 's3://{bucket}/{key}'", cause)


class StartupError(Exception):
    """Raised when the server cannot start, e.g. the port cannot be bound."""


class ShutdownError(Exception):
    """Raised when in-flight requests did not drain within the grace period."""
