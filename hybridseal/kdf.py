"""
HybridSeal Passphrase Key Derivation

Argon2id (libsodium crypto_pwhash) with named cost profiles. The
parameters used are always stored next to the ciphertext they protect,
so changing the configured profile never breaks existing blobs.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import nacl.utils
from nacl.pwhash import argon2id

from . import config
from .util import b64d, b64e

KDF_ALGORITHM = "argon2id"
DERIVED_KEY_BYTES = 32

# profile name -> (opslimit, memlimit)
KDF_PROFILES: Dict[str, tuple] = {
    "min": (argon2id.OPSLIMIT_MIN, argon2id.MEMLIMIT_MIN),
    "interactive": (argon2id.OPSLIMIT_INTERACTIVE, argon2id.MEMLIMIT_INTERACTIVE),
    "moderate": (argon2id.OPSLIMIT_MODERATE, argon2id.MEMLIMIT_MODERATE),
    "sensitive": (argon2id.OPSLIMIT_SENSITIVE, argon2id.MEMLIMIT_SENSITIVE),
}

# Upper bounds accepted from untrusted blobs
_MAX_OPSLIMIT = argon2id.OPSLIMIT_SENSITIVE
_MAX_MEMLIMIT = argon2id.MEMLIMIT_SENSITIVE


@dataclass(frozen=True)
class KdfParams:
    """Argon2id parameters bound to one protected blob."""
    salt: bytes
    opslimit: int
    memlimit: int
    algorithm: str = KDF_ALGORITHM

    @classmethod
    def generate(cls, profile: Optional[str] = None) -> 'KdfParams':
        """Fresh random salt with the costs of the named profile."""
        profile = profile or config.KDF_PROFILE
        if profile not in KDF_PROFILES:
            raise ValueError(f"Unknown KDF profile: {profile}")
        opslimit, memlimit = KDF_PROFILES[profile]
        return cls(
            salt=nacl.utils.random(argon2id.SALTBYTES),
            opslimit=opslimit,
            memlimit=memlimit,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "salt": b64e(self.salt),
            "opslimit": self.opslimit,
            "memlimit": self.memlimit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KdfParams':
        """
        Parse and bound-check parameters read from a blob.

        Raises:
            ValueError: on unknown algorithm, bad salt or out-of-range costs
        """
        if not isinstance(data, dict):
            raise ValueError("KDF parameters must be an object")
        if data.get("algorithm") != KDF_ALGORITHM:
            raise ValueError(f"Unsupported KDF algorithm: {data.get('algorithm')}")

        salt = b64d(data.get("salt"))
        opslimit = data.get("opslimit")
        memlimit = data.get("memlimit")

        if len(salt) != argon2id.SALTBYTES:
            raise ValueError("Invalid KDF salt length")
        if not isinstance(opslimit, int) or not argon2id.OPSLIMIT_MIN <= opslimit <= _MAX_OPSLIMIT:
            raise ValueError("KDF opslimit out of range")
        if not isinstance(memlimit, int) or not argon2id.MEMLIMIT_MIN <= memlimit <= _MAX_MEMLIMIT:
            raise ValueError("KDF memlimit out of range")

        return cls(salt=salt, opslimit=opslimit, memlimit=memlimit)


def derive_key(
    passphrase: Union[str, bytes],
    params: KdfParams,
    size: int = DERIVED_KEY_BYTES
) -> bytes:
    """Derive a symmetric key from a passphrase with Argon2id."""
    if isinstance(passphrase, str):
        passphrase = passphrase.encode('utf-8')
    return argon2id.kdf(
        size,
        passphrase,
        params.salt,
        opslimit=params.opslimit,
        memlimit=params.memlimit,
    )
