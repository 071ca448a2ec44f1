"""
Destination decoding.

The request path carries the target object as an unpadded URL-safe base64
encoding of an ``s3://bucket/key`` URL:

    POST /czM6Ly9teS1idWNrZXQvbXkta2V5      ->  s3://my-bucket/my-key

The key is passed through as parsed. ``..`` segments are not normalised,
S3 is the authority on which keys are valid.
"""
import base64
import binascii
import re
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from upload_relay.exceptions import MalformedPathError, MalformedURLError

_URLSAFE_ALPHABET = re.compile(r"^[A-Za-z0-9_-]*$")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_PORT_DIGITS = re.compile(r"^[0-9]*$")


@dataclass(frozen=True)
class Destination:
    """Bucket and object key an upload is written to."""
    bucket: str
    key: str

    @property
    def url(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def encode_destination(url: str) -> str:
    """Build the request path segment for ``url`` (no leading slash)."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).rstrip(b"=").decode("ascii")


def _decode_path(path: str) -> bytes:
    encoded = path[1:] if path.startswith("/") else path

    if not _URLSAFE_ALPHABET.match(encoded):
        raise MalformedPathError(f"Path {path!r} is not unpadded URL-safe base64")
    if len(encoded) % 4 == 1:
        raise MalformedPathError(f"Path {path!r} has an invalid base64 length")

    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise MalformedPathError(f"Path {path!r} is not valid base64: {e}", e) from e


def _check_port(url: str, host: str) -> None:
    # Only digits may follow the last colon outside an IPv6 literal; the
    # value itself is not range-checked and stays part of the bucket name
    colon = host.rfind(":")
    if colon == -1 or host.rfind("]") > colon:
        return
    if not _PORT_DIGITS.match(host[colon + 1:]):
        raise MalformedURLError(f"Invalid S3 URL {url!r}: invalid port {host[colon:]!r}")


def _parse_url(raw: bytes) -> Destination:
    try:
        url = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedURLError("Decoded path is not valid UTF-8", e) from e

    if _CONTROL_CHARS.search(url):
        raise MalformedURLError(f"Invalid S3 URL {url!r}: control character in URL")

    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise MalformedURLError(f"Invalid S3 URL {url!r}: {e}", e) from e

    if _BAD_ESCAPE.search(parts.path):
        raise MalformedURLError(f"Invalid S3 URL {url!r}: invalid escape in path")

    host = parts.netloc.rpartition("@")[2]
    _check_port(url, host)
    key = unquote(parts.path)
    if key.startswith("/"):
        key = key[1:]

    return Destination(bucket=host, key=key)


def decode_destination(path: str) -> Destination:
    """
    Turn a request path into the destination it encodes.

    Args:
        path: Request path, e.g. ``/czM6Ly9teS1idWNrZXQvbXkta2V5``

    Returns:
        Destination with the URL's host as bucket and its path as key.
        Either may be empty.

    Raises:
        MalformedPathError: If the path is not unpadded URL-safe base64
        MalformedURLError: If the decoded bytes are not a parseable URL
    """
    return _parse_url(_decode_path(path))
