"""
Utility functions for HybridSeal.

Provides encoding, time, random-secret and memory-hygiene helpers.
"""

import base64
import binascii
import hmac
import secrets
from datetime import datetime, timezone
from typing import Union


def b64e(b: Union[bytes, bytearray]) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(bytes(b)).decode('ascii')


def b64d(s: str) -> bytes:
    """
    Strict base64 decode.

    Raises:
        ValueError: if the input is not a string or not valid base64
    """
    if not isinstance(s, str):
        raise ValueError(f"Expected base64 string, got {type(s).__name__}")
    try:
        return base64.b64decode(s.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid base64: {e}") from e


def utc_now() -> str:
    """Current UTC time as an RFC3339 string with a Z suffix."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """
    Compare two strings/bytes in constant time to prevent timing attacks.
    """
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def generate_password(length: int = 32) -> str:
    """Generate a random url-safe transport password."""
    return secrets.token_urlsafe(length)


def zeroize(buf: bytearray) -> None:
    """
    Overwrite a mutable buffer with zeros in place.

    Immutable copies handed to the primitives library cannot be wiped;
    this covers the buffers this package owns.
    """
    buf[:] = bytes(len(buf))
