"""
HybridSeal Transport Types

Envelope and SealedMessage are the two artifacts that travel from sender
to recipient. Both convert to plain JSON-compatible dicts; callers choose
their own wire serialization.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .canonicalization import canonicalize
from .content_key import SymmetricAlgorithm
from .errors import DecryptionFailure, UnwrapFailure
from .kdf import KdfParams
from .signing import Signature, VerificationResult
from .util import b64d, b64e

PROTOCOL_VERSION = 1


class TransportMode(str, Enum):
    """How the content key reaches the recipient. Agreed out of band."""
    WRAPPED_KEY = "wrapped-key"              # content key sealed to recipient public key
    WRAPPED_PASSWORD = "wrapped-password"    # password sealed to recipient; key derived from it
    SHARED_PASSPHRASE = "shared-passphrase"  # content key under a shared passphrase
    ASYMMETRIC_ONLY = "asymmetric-only"      # payload sealed directly to recipient, no envelope


class SignatureMode(str, Enum):
    EMBEDDED = "embedded"    # signature encrypted together with the payload
    DETACHED = "detached"    # signature carried in clear next to the ciphertext


@dataclass(frozen=True)
class Envelope:
    """Wrapped form of a content key or transport secret."""
    mode: TransportMode
    wrapped: bytes
    recipient_fingerprint: Optional[str] = None
    kdf: Optional[KdfParams] = None
    version: int = PROTOCOL_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "mode": self.mode.value,
            "wrapped": b64e(self.wrapped),
            "recipient_fingerprint": self.recipient_fingerprint,
            "kdf": self.kdf.to_dict() if self.kdf else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Envelope':
        """
        Raises:
            UnwrapFailure: if the dict is not a well-formed envelope
        """
        try:
            if data["version"] != PROTOCOL_VERSION:
                raise ValueError(f"unsupported version {data['version']}")
            kdf = data.get("kdf")
            return cls(
                version=data["version"],
                mode=TransportMode(data["mode"]),
                wrapped=b64d(data["wrapped"]),
                recipient_fingerprint=data.get("recipient_fingerprint"),
                kdf=KdfParams.from_dict(kdf) if kdf is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UnwrapFailure(f"Malformed envelope: {e}") from e


@dataclass(frozen=True)
class SealedMessage:
    """
    Encrypted payload plus its header.

    The header (everything except ciphertext and a detached signature) is
    bound to the ciphertext as associated data, so editing it makes
    decryption fail.
    """
    mode: TransportMode
    ciphertext: bytes
    algorithm: Optional[SymmetricAlgorithm] = None
    signature_mode: SignatureMode = SignatureMode.EMBEDDED
    signature: Optional[Signature] = None
    kdf: Optional[KdfParams] = None
    version: int = PROTOCOL_VERSION

    def header(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "mode": self.mode.value,
            "algorithm": self.algorithm.value if self.algorithm else None,
            "signature_mode": self.signature_mode.value,
            "kdf": self.kdf.to_dict() if self.kdf else None,
        }

    def associated_data(self) -> bytes:
        return canonicalize(self.header())

    def to_dict(self) -> Dict[str, Any]:
        data = self.header()
        data["ciphertext"] = b64e(self.ciphertext)
        data["signature"] = self.signature.to_dict() if self.signature else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SealedMessage':
        """
        Raises:
            DecryptionFailure: if the dict is not a well-formed sealed message
        """
        try:
            if data["version"] != PROTOCOL_VERSION:
                raise ValueError(f"unsupported version {data['version']}")
            algorithm = data.get("algorithm")
            kdf = data.get("kdf")
            signature = data.get("signature")
            message = cls(
                version=data["version"],
                mode=TransportMode(data["mode"]),
                ciphertext=b64d(data["ciphertext"]),
                algorithm=SymmetricAlgorithm(algorithm) if algorithm is not None else None,
                signature_mode=SignatureMode(data.get("signature_mode", SignatureMode.EMBEDDED.value)),
                signature=Signature.from_dict(signature) if signature is not None else None,
                kdf=KdfParams.from_dict(kdf) if kdf is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionFailure(f"Malformed sealed message: {e}") from e

        if message.signature is not None and message.signature_mode != SignatureMode.DETACHED:
            raise DecryptionFailure("Malformed sealed message: clear signature on an embedded-signature message")
        return message


@dataclass(frozen=True)
class OpenedMessage:
    """Plaintext recovered by open(), with how its signature was judged."""
    plaintext: bytes
    verification: VerificationResult

    @property
    def verified(self) -> Optional[bool]:
        return self.verification.verified

    @property
    def signer_fingerprint(self) -> Optional[str]:
        return self.verification.signer_fingerprint

    @property
    def text(self) -> str:
        return self.plaintext.decode('utf-8')
