"""
HybridSeal Hashing

All digests use SHA-256 with lowercase hexadecimal output and an
algorithm prefix, e.g. "sha256:ab12...".
"""

import hashlib
from typing import Union

from .canonicalization import canonicalize

FINGERPRINT_PREFIX = "sha256:"


def sha256_hash(data: Union[bytes, bytearray, str]) -> str:
    """
    Compute SHA-256 hash in prefixed form.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    digest = hashlib.sha256(bytes(data)).hexdigest().lower()
    return f"{FINGERPRINT_PREFIX}{digest}"


def fingerprint(body: dict) -> str:
    """
    Compute the fingerprint of a public key certificate body.

    fingerprint = SHA-256(canonical JSON(body))
    """
    return sha256_hash(canonicalize(body))


def short_fingerprint(fp: str, length: int = 16) -> str:
    """Abbreviated fingerprint for log lines and CLI output."""
    if fp.startswith(FINGERPRINT_PREFIX):
        fp = fp[len(FINGERPRINT_PREFIX):]
    return fp[:length]
