"""
HybridSeal Error Taxonomy

Every cryptographic failure is terminal for the operation that raised it.
Nothing is retried internally and nothing is downgraded to a warning.
Primitive exceptions are translated at the component boundary so callers
only ever see the kinds below.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .signing import VerificationResult


class HybridSealError(Exception):
    """Base class for all protocol failures."""


class KeyGenerationError(HybridSealError):
    """Requested algorithm or parameters are unsupported."""


class MalformedKeyError(HybridSealError):
    """A public key certificate failed its own integrity checks."""


class UnlockFailure(HybridSealError):
    """Private key could not be unlocked (missing/wrong passphrase, bad blob)."""


class UnwrapFailure(HybridSealError):
    """Envelope cannot be opened with the given key or passphrase."""


class DecryptionFailure(HybridSealError):
    """Ciphertext failed its integrity/authenticity check or is malformed."""


class SignatureVerificationFailure(HybridSealError):
    """
    Fail-closed rejection of a signature.

    Raised only for the REJECTED outcome. "Not attempted" is never an error.
    The rejected VerificationResult is attached for diagnostics.
    """

    def __init__(self, reason: str, result: Optional["VerificationResult"] = None):
        self.reason = reason
        self.result = result
        super().__init__(f"Signature could not be verified: {reason}")
