"""
HybridSeal Content Keys

Ephemeral symmetric keys that encrypt exactly one message in the default
usage pattern. A key is recipient-agnostic until the EnvelopeCodec wraps
it. Key material lives in a bytearray so destroy() can zero it.
"""

from enum import Enum
from typing import Dict, Optional, Union

import nacl.bindings
import nacl.secret
import nacl.utils

from . import config
from .errors import KeyGenerationError
from .kdf import KdfParams, derive_key
from .util import zeroize


class SymmetricAlgorithm(str, Enum):
    """Content ciphers supported by MessageCipher."""
    XCHACHA20_POLY1305 = "xchacha20-poly1305"   # IETF AEAD, binds associated data natively
    XSALSA20_POLY1305 = "xsalsa20-poly1305"     # NaCl secretbox

    @property
    def key_size(self) -> int:
        return _KEY_SIZES[self]

    @property
    def nonce_size(self) -> int:
        return _NONCE_SIZES[self]

    @property
    def wire_id(self) -> int:
        return _WIRE_IDS[self]

    @property
    def is_aead(self) -> bool:
        return self is SymmetricAlgorithm.XCHACHA20_POLY1305

    @classmethod
    def from_wire_id(cls, wire_id: int) -> 'SymmetricAlgorithm':
        for alg, wid in _WIRE_IDS.items():
            if wid == wire_id:
                return alg
        raise ValueError(f"Unknown content cipher id: {wire_id}")


_KEY_SIZES: Dict[SymmetricAlgorithm, int] = {
    SymmetricAlgorithm.XCHACHA20_POLY1305: nacl.bindings.crypto_aead_xchacha20poly1305_ietf_KEYBYTES,
    SymmetricAlgorithm.XSALSA20_POLY1305: nacl.secret.SecretBox.KEY_SIZE,
}

_NONCE_SIZES: Dict[SymmetricAlgorithm, int] = {
    SymmetricAlgorithm.XCHACHA20_POLY1305: nacl.bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES,
    SymmetricAlgorithm.XSALSA20_POLY1305: nacl.secret.SecretBox.NONCE_SIZE,
}

# 0x00 is reserved for password secrets in envelopes
_WIRE_IDS: Dict[SymmetricAlgorithm, int] = {
    SymmetricAlgorithm.XCHACHA20_POLY1305: 0x01,
    SymmetricAlgorithm.XSALSA20_POLY1305: 0x02,
}


def resolve_algorithm(algorithm: Union[SymmetricAlgorithm, str, None]) -> SymmetricAlgorithm:
    """
    Resolve an algorithm name, falling back to the configured default.

    Raises:
        KeyGenerationError: if the name is not a supported content cipher
    """
    if algorithm is None:
        algorithm = config.CONTENT_CIPHER
    try:
        return SymmetricAlgorithm(algorithm)
    except ValueError as e:
        raise KeyGenerationError(f"Unsupported content cipher: {algorithm}") from e


class ContentKey:
    """
    Symmetric content key.

    Reuse across messages is a caller decision; EnvelopeProtocol.seal
    always generates a fresh key and destroys it before returning.
    """

    def __init__(self, key_material: Union[bytes, bytearray], algorithm: SymmetricAlgorithm):
        if len(key_material) != algorithm.key_size:
            raise ValueError(
                f"{algorithm.value} needs a {algorithm.key_size}-byte key, got {len(key_material)}"
            )
        self._material = bytearray(key_material)
        self._algorithm = algorithm
        self._destroyed = False

    @property
    def algorithm(self) -> SymmetricAlgorithm:
        return self._algorithm

    @property
    def key_material(self) -> bytes:
        if self._destroyed:
            raise ValueError("Content key has been destroyed")
        return bytes(self._material)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        zeroize(self._material)
        self._destroyed = True

    def __enter__(self) -> 'ContentKey':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "live"
        return f"<ContentKey {self._algorithm.value} {state}>"


class ContentKeyService:
    """Generates content keys. Holds no key state of its own."""

    def __init__(self, default_algorithm: Union[SymmetricAlgorithm, str, None] = None):
        self.default_algorithm = default_algorithm

    def generate(self, algorithm: Union[SymmetricAlgorithm, str, None] = None) -> ContentKey:
        """Fresh random key sized for the algorithm."""
        alg = resolve_algorithm(algorithm or self.default_algorithm)
        return ContentKey(nacl.utils.random(alg.key_size), alg)

    def rotate(self, previous: ContentKey) -> ContentKey:
        """Destroy a held key and return a fresh one with the same algorithm."""
        fresh = self.generate(previous.algorithm)
        previous.destroy()
        return fresh

    def derive_from_password(
        self,
        password: str,
        params: KdfParams,
        algorithm: Union[SymmetricAlgorithm, str, None] = None
    ) -> ContentKey:
        """Content key for the password-transport variant."""
        alg = resolve_algorithm(algorithm or self.default_algorithm)
        return ContentKey(derive_key(password, params, size=alg.key_size), alg)
