"""
HybridSeal Signature Engine

Ed25519 signatures over a canonical statement that binds the payload
digest to the signer's fingerprint.

Verification is a three-way outcome:
    VERIFIED       signature is valid for the claimed certificate
    REJECTED       anything else, including a missing signature or a
                   primitive that throws
    NOT_ATTEMPTED  the caller supplied no certificate

REJECTED is terminal. verify() turns it into SignatureVerificationFailure
so no caller can receive a payload alongside a rejected signature.
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from nacl.exceptions import BadSignatureError

from .canonicalization import canonicalize
from .errors import MalformedKeyError, SignatureVerificationFailure
from .identity import PublicKeyCertificate, UnlockedPrivateKey
from .logging_config import audit_log
from .util import b64d, b64e, constant_time_compare

logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "Ed25519"
MESSAGE_CONTEXT = "hybridseal.message.v1"


class VerificationOutcome(str, Enum):
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


@dataclass(frozen=True)
class VerificationResult:
    """Result of checking a signature against a claimed certificate."""
    outcome: VerificationOutcome
    signer_fingerprint: Optional[str] = None
    reason: Optional[str] = None

    @property
    def verified(self) -> Optional[bool]:
        """True, False, or None when verification was not attempted."""
        if self.outcome == VerificationOutcome.NOT_ATTEMPTED:
            return None
        return self.outcome == VerificationOutcome.VERIFIED

    def is_verified(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED

    def is_rejected(self) -> bool:
        return self.outcome == VerificationOutcome.REJECTED

    @classmethod
    def verified_by(cls, signer_fingerprint: str) -> 'VerificationResult':
        return cls(outcome=VerificationOutcome.VERIFIED, signer_fingerprint=signer_fingerprint)

    @classmethod
    def rejected(cls, reason: str, signer_fingerprint: Optional[str] = None) -> 'VerificationResult':
        return cls(outcome=VerificationOutcome.REJECTED, signer_fingerprint=signer_fingerprint, reason=reason)

    @classmethod
    def not_attempted(cls) -> 'VerificationResult':
        return cls(outcome=VerificationOutcome.NOT_ATTEMPTED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "signer_fingerprint": self.signer_fingerprint,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Signature:
    """Ed25519 signature plus the fingerprint of the key that made it."""
    signer_fingerprint: str
    value: bytes
    algorithm: str = SIGNATURE_ALGORITHM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signer_fingerprint": self.signer_fingerprint,
            "algorithm": self.algorithm,
            "sig": b64e(self.value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Signature':
        """
        Raises:
            ValueError: on missing or malformed fields
        """
        if not isinstance(data, dict):
            raise ValueError("Signature must be an object")
        fp = data.get("signer_fingerprint")
        algorithm = data.get("algorithm")
        if not isinstance(fp, str) or not isinstance(algorithm, str):
            raise ValueError("Incomplete signature data")
        return cls(signer_fingerprint=fp, value=b64d(data.get("sig")), algorithm=algorithm)


@dataclass(frozen=True)
class SignedMessage:
    """Cleartext payload with an attached signature; no encryption."""
    payload: bytes
    signature: Signature

    @property
    def text(self) -> str:
        return self.payload.decode('utf-8')

    def to_dict(self) -> Dict[str, Any]:
        return {"payload": b64e(self.payload), "signature": self.signature.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SignedMessage':
        return cls(payload=b64d(data["payload"]), signature=Signature.from_dict(data["signature"]))


def signed_statement(payload: bytes, signer_fingerprint: str) -> bytes:
    """The exact bytes an Ed25519 signature covers."""
    return canonicalize({
        "context": MESSAGE_CONTEXT,
        "payload_sha256": hashlib.sha256(payload).hexdigest(),
        "signer": signer_fingerprint,
    })


class SignatureEngine:
    """Signs payloads and runs the fail-closed verification state machine."""

    def sign(self, payload: bytes, key: UnlockedPrivateKey) -> Signature:
        """One signature per payload, bound to the signer's fingerprint."""
        statement = signed_statement(payload, key.fingerprint)
        value = key.signing_key().sign(statement).signature
        return Signature(signer_fingerprint=key.fingerprint, value=value)

    def check(
        self,
        payload: bytes,
        signature: Optional[Signature],
        claimed_certificate: Optional[PublicKeyCertificate]
    ) -> VerificationResult:
        """
        Run verification without raising.

        Returns NOT_ATTEMPTED when no certificate is claimed, otherwise
        VERIFIED or REJECTED with a reason.
        """
        if claimed_certificate is None:
            return VerificationResult.not_attempted()

        claimed_fp = claimed_certificate.fingerprint
        if signature is None:
            return self._reject("message is not signed", claimed_fp)

        try:
            claimed_certificate.validate()
        except MalformedKeyError as e:
            return self._reject(f"claimed certificate is invalid: {e}", claimed_fp)

        if signature.algorithm != SIGNATURE_ALGORITHM:
            return self._reject(f"unsupported signature algorithm: {signature.algorithm}", claimed_fp)

        if not constant_time_compare(signature.signer_fingerprint, claimed_fp):
            return self._reject("signed by a different key", claimed_fp)

        try:
            claimed_certificate.nacl_verify_key().verify(
                signed_statement(payload, claimed_fp), signature.value
            )
        except BadSignatureError:
            return self._reject("bad signature", claimed_fp)
        except Exception as e:
            # any primitive failure counts as a rejection
            return self._reject(f"verification error: {e}", claimed_fp)

        return VerificationResult.verified_by(claimed_fp)

    def verify(
        self,
        payload: bytes,
        signature: Optional[Signature],
        claimed_certificate: Optional[PublicKeyCertificate]
    ) -> VerificationResult:
        """
        Like check(), but a REJECTED outcome raises.

        Raises:
            SignatureVerificationFailure: on rejection
        """
        result = self.check(payload, signature, claimed_certificate)
        if result.is_rejected():
            raise SignatureVerificationFailure(result.reason, result)
        return result

    def sign_message(self, payload: bytes, key: UnlockedPrivateKey) -> SignedMessage:
        return SignedMessage(payload=payload, signature=self.sign(payload, key))

    def verify_message(self, signed: SignedMessage, certificate: PublicKeyCertificate) -> VerificationResult:
        """Verify a cleartext signed message; a certificate is mandatory here."""
        if certificate is None:
            raise ValueError("A certificate is required to verify a signed message")
        return self.verify(signed.payload, signed.signature, certificate)

    @staticmethod
    def _reject(reason: str, claimed_fp: Optional[str]) -> VerificationResult:
        audit_log.verification_rejected(claimed_fp, reason)
        logger.debug("Signature rejected: %s", reason)
        return VerificationResult.rejected(reason, claimed_fp)
