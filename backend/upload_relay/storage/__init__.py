"""
Storage module for relaying uploads to S3.

Decodes destinations from request paths, provisions region-bound uploaders
per bucket and streams request bodies to them.
"""
from upload_relay.storage.body import LimitedBodyReader
from upload_relay.storage.destination import Destination, decode_destination, encode_destination
from upload_relay.storage.provisioner import UploaderCache, UploaderProvisioner
from upload_relay.storage.s3_backend import S3Backend, Uploader

__all__ = [
    "Destination",
    "decode_destination",
    "encode_destination",
    "LimitedBodyReader",
    "S3Backend",
    "Uploader",
    "UploaderCache",
    "UploaderProvisioner",
]
