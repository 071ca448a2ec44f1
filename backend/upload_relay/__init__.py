"""Upload relay: streams HTTP uploads to S3 destinations encoded in the request path."""

__version__ = "0.1.0"
