"""
HybridSeal: hybrid envelope encryption with fail-closed signatures

Version: 1.0.0

A message is encrypted once under a random content key; the content key
is wrapped separately for each recipient. Senders may sign, and a
signature that cannot be verified against the claimed sender is always
an error, never a warning.

Verification has three outcomes:
    VERIFIED       signature checked against the claimed sender's certificate
    REJECTED       raised as SignatureVerificationFailure; no plaintext returned
    NOT_ATTEMPTED  no sender certificate supplied

Usage:
    from hybridseal import EnvelopeProtocol, IdentityService, PrincipalInfo

    identities = IdentityService()
    alice = identities.generate_identity(PrincipalInfo("Alice", "alice@example.com"), passphrase="p1")
    bob = identities.generate_identity(PrincipalInfo("Bob", "bob@example.com"), passphrase="p2")

    protocol = EnvelopeProtocol()
    sealed, envelope = protocol.seal("hello", bob.certificate, sender=(alice, "p1"))

    opened = protocol.open(sealed, envelope, bob, "p2", sender_certificate=alice.certificate)
    assert opened.text == "hello" and opened.verified
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    HybridSealError,
    KeyGenerationError,
    MalformedKeyError,
    UnlockFailure,
    UnwrapFailure,
    DecryptionFailure,
    SignatureVerificationFailure,
)

# Canonicalization and hashing
from .canonicalization import canonicalize
from .hashing import sha256_hash, fingerprint, short_fingerprint

# Identities
from .identity import (
    IdentityService,
    Identity,
    PrincipalInfo,
    PublicKeyCertificate,
    PrivateKeyBlob,
    RevocationCertificate,
    UnlockedPrivateKey,
)

# Content keys
from .content_key import ContentKey, ContentKeyService, SymmetricAlgorithm
from .kdf import KdfParams

# Transport
from .messages import (
    Envelope,
    SealedMessage,
    OpenedMessage,
    TransportMode,
    SignatureMode,
)
from .envelope import (
    EnvelopeCodec,
    ContentKeyTransport,
    WrappedKey,
    PasswordDerived,
    AsymmetricOnly,
)
from .cipher import MessageCipher

# Signatures
from .signing import (
    SignatureEngine,
    Signature,
    SignedMessage,
    VerificationResult,
    VerificationOutcome,
)

# Protocol
from .protocol import EnvelopeProtocol

# Logging
from .logging_config import configure_logging, audit_log


__all__ = [
    # Version
    "__version__",

    # Errors
    "HybridSealError",
    "KeyGenerationError",
    "MalformedKeyError",
    "UnlockFailure",
    "UnwrapFailure",
    "DecryptionFailure",
    "SignatureVerificationFailure",

    # Canonicalization / hashing
    "canonicalize",
    "sha256_hash",
    "fingerprint",
    "short_fingerprint",

    # Identities
    "IdentityService",
    "Identity",
    "PrincipalInfo",
    "PublicKeyCertificate",
    "PrivateKeyBlob",
    "RevocationCertificate",
    "UnlockedPrivateKey",

    # Content keys
    "ContentKey",
    "ContentKeyService",
    "SymmetricAlgorithm",
    "KdfParams",

    # Transport
    "Envelope",
    "SealedMessage",
    "OpenedMessage",
    "TransportMode",
    "SignatureMode",
    "EnvelopeCodec",
    "ContentKeyTransport",
    "WrappedKey",
    "PasswordDerived",
    "AsymmetricOnly",
    "MessageCipher",

    # Signatures
    "SignatureEngine",
    "Signature",
    "SignedMessage",
    "VerificationResult",
    "VerificationOutcome",

    # Protocol
    "EnvelopeProtocol",

    # Logging
    "configure_logging",
    "audit_log",
]
