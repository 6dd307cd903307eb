"""
HybridSeal Identity Service

Long-term identities: an Ed25519 signing key and an X25519 encryption
key bound to one or more user IDs by a self-signed public certificate.

The private half is stored as a PrivateKeyBlob, encrypted at rest under
an Argon2id-derived key when a passphrase is given. It only becomes
usable as an UnlockedPrivateKey, a short-lived handle that zeroes its
buffers when the owning `with` block exits.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.public import PrivateKey, PublicKey
from nacl.secret import SecretBox
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import canonicalize
from .errors import KeyGenerationError, MalformedKeyError, UnlockFailure
from .hashing import fingerprint as compute_fingerprint, short_fingerprint
from .kdf import KdfParams, derive_key
from .logging_config import audit_log
from .util import b64d, b64e, constant_time_compare, utc_now, zeroize

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "curve25519"
SUPPORTED_ALGORITHMS = (DEFAULT_ALGORITHM,)
CERTIFICATE_VERSION = 1
KEY_BYTES = 32
REVOCATION_CONTEXT = "hybridseal.revocation.v1"
DEFAULT_REVOCATION_REASON = "key compromised or superseded"


@dataclass(frozen=True)
class PrincipalInfo:
    """One user ID attached to an identity."""
    name: str = ""
    email: str = ""

    def user_id(self) -> str:
        if self.name and self.email:
            return f"{self.name} <{self.email}>"
        return self.name or f"<{self.email}>"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "email": self.email}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PrincipalInfo':
        return cls(name=data.get("name", ""), email=data.get("email", ""))


@dataclass(frozen=True)
class PublicKeyCertificate:
    """
    Self-signed public half of an identity.

    The fingerprint is SHA-256 over the canonical body; the self signature
    is Ed25519 over the same bytes. validate() recomputes both, so a
    certificate with a swapped key never passes.
    """
    algorithm: str
    user_ids: Tuple[PrincipalInfo, ...]
    verify_key: bytes
    encryption_key: bytes
    created_at: str
    fingerprint: str
    self_signature: bytes
    version: int = CERTIFICATE_VERSION

    def body(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "algorithm": self.algorithm,
            "user_ids": [u.to_dict() for u in self.user_ids],
            "verify_key": b64e(self.verify_key),
            "encryption_key": b64e(self.encryption_key),
            "created_at": self.created_at,
        }

    @property
    def primary_user_id(self) -> str:
        return self.user_ids[0].user_id() if self.user_ids else ""

    def validate(self) -> None:
        """
        Check fingerprint and self signature.

        Raises:
            MalformedKeyError: if either check fails
        """
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise MalformedKeyError(f"Unsupported key algorithm: {self.algorithm}")
        if len(self.verify_key) != KEY_BYTES or len(self.encryption_key) != KEY_BYTES:
            raise MalformedKeyError("Invalid public key length")

        body = self.body()
        if not constant_time_compare(compute_fingerprint(body), self.fingerprint):
            raise MalformedKeyError("Certificate fingerprint mismatch")
        try:
            VerifyKey(self.verify_key).verify(canonicalize(body), self.self_signature)
        except (BadSignatureError, ValueError, TypeError) as e:
            raise MalformedKeyError("Certificate self signature is invalid") from e

    def nacl_verify_key(self) -> VerifyKey:
        return VerifyKey(self.verify_key)

    def nacl_public_key(self) -> PublicKey:
        return PublicKey(self.encryption_key)

    def to_dict(self) -> Dict[str, Any]:
        data = self.body()
        data["fingerprint"] = self.fingerprint
        data["self_signature"] = b64e(self.self_signature)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PublicKeyCertificate':
        """Parse and validate a certificate dict."""
        try:
            cert = cls(
                version=data["version"],
                algorithm=data["algorithm"],
                user_ids=tuple(PrincipalInfo.from_dict(u) for u in data["user_ids"]),
                verify_key=b64d(data["verify_key"]),
                encryption_key=b64d(data["encryption_key"]),
                created_at=data["created_at"],
                fingerprint=data["fingerprint"],
                self_signature=b64d(data["self_signature"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedKeyError(f"Malformed certificate: {e}") from e
        cert.validate()
        return cert


@dataclass(frozen=True)
class PrivateKeyBlob:
    """
    Private key material at rest.

    key_data is SecretBox(nonce || ciphertext) of seed || x25519 secret
    when protected, or the raw 64 bytes when no passphrase was set.
    """
    fingerprint: str
    protected: bool
    key_data: bytes
    kdf: Optional[KdfParams] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "protected": self.protected,
            "key_data": b64e(self.key_data),
            "kdf": self.kdf.to_dict() if self.kdf else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PrivateKeyBlob':
        try:
            protected = data["protected"]
            if not isinstance(protected, bool):
                raise ValueError("protected must be a boolean")
            kdf = KdfParams.from_dict(data["kdf"]) if protected else None
            return cls(
                fingerprint=data["fingerprint"],
                protected=protected,
                key_data=b64d(data["key_data"]),
                kdf=kdf,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UnlockFailure(f"Malformed private key blob: {e}") from e


def revocation_statement(fp: str, reason: str, created_at: str) -> bytes:
    return canonicalize({
        "context": REVOCATION_CONTEXT,
        "fingerprint": fp,
        "reason": reason,
        "created_at": created_at,
    })


@dataclass(frozen=True)
class RevocationCertificate:
    """
    Revocation statement signed at generation time.

    Produced so the owner can publish it later; this package does not
    process revocations.
    """
    fingerprint: str
    reason: str
    created_at: str
    signature: bytes

    def statement(self) -> bytes:
        return revocation_statement(self.fingerprint, self.reason, self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "reason": self.reason,
            "created_at": self.created_at,
            "signature": b64e(self.signature),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RevocationCertificate':
        return cls(
            fingerprint=data["fingerprint"],
            reason=data["reason"],
            created_at=data["created_at"],
            signature=b64d(data["signature"]),
        )


@dataclass(frozen=True)
class Identity:
    """A principal's long-term key pair plus revocation artifact."""
    certificate: PublicKeyCertificate
    private_key: PrivateKeyBlob
    revocation: Optional[RevocationCertificate] = None

    @property
    def fingerprint(self) -> str:
        return self.certificate.fingerprint

    @property
    def protected(self) -> bool:
        return self.private_key.protected

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificate": self.certificate.to_dict(),
            "private_key": self.private_key.to_dict(),
            "revocation": self.revocation.to_dict() if self.revocation else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Identity':
        revocation = data.get("revocation")
        return cls(
            certificate=PublicKeyCertificate.from_dict(data["certificate"]),
            private_key=PrivateKeyBlob.from_dict(data["private_key"]),
            revocation=RevocationCertificate.from_dict(revocation) if revocation else None,
        )


class UnlockedPrivateKey:
    """
    Transient handle to unlocked key material.

    Use as a context manager; the buffers are zeroed on every exit path.
    nacl key objects are rebuilt per call and never stored on the handle.
    """

    def __init__(self, certificate: PublicKeyCertificate, signing_seed: bytearray, decryption_key: bytearray):
        self._certificate = certificate
        self._signing_seed = signing_seed
        self._decryption_key = decryption_key
        self._closed = False

    @property
    def certificate(self) -> PublicKeyCertificate:
        return self._certificate

    @property
    def fingerprint(self) -> str:
        return self._certificate.fingerprint

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("Private key handle has been closed")

    def signing_key(self) -> SigningKey:
        self._check_open()
        return SigningKey(bytes(self._signing_seed))

    def decryption_key(self) -> PrivateKey:
        self._check_open()
        return PrivateKey(bytes(self._decryption_key))

    def close(self) -> None:
        zeroize(self._signing_seed)
        zeroize(self._decryption_key)
        self._closed = True

    def __enter__(self) -> 'UnlockedPrivateKey':
        self._check_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<UnlockedPrivateKey {short_fingerprint(self.fingerprint)} {state}>"


def _normalize_principals(
    principal_info: Union[PrincipalInfo, Dict[str, str], Sequence[Union[PrincipalInfo, Dict[str, str]]]]
) -> Tuple[PrincipalInfo, ...]:
    if isinstance(principal_info, (PrincipalInfo, dict)):
        principal_info = [principal_info]

    principals: List[PrincipalInfo] = []
    for p in principal_info:
        if isinstance(p, dict):
            p = PrincipalInfo.from_dict(p)
        if not isinstance(p, PrincipalInfo):
            raise KeyGenerationError(f"Invalid user ID: {p!r}")
        if not p.name and not p.email:
            raise KeyGenerationError("User ID needs a name or an email")
        if p.email and "@" not in p.email:
            raise KeyGenerationError(f"Invalid email in user ID: {p.email}")
        principals.append(p)

    if not principals:
        raise KeyGenerationError("At least one user ID is required")
    return tuple(principals)


class IdentityService:
    """
    Generates and unlocks identities.

    Stateless apart from the KDF cost profile; safe to share between threads.
    """

    def __init__(self, kdf_profile: Optional[str] = None):
        self.kdf_profile = kdf_profile

    def generate_identity(
        self,
        principal_info,
        passphrase: Optional[str] = None,
        algorithm: str = DEFAULT_ALGORITHM,
        revocation_reason: str = DEFAULT_REVOCATION_REASON,
    ) -> Identity:
        """
        Generate a new identity.

        Args:
            principal_info: PrincipalInfo, {"name", "email"} dict, or a list of them
            passphrase: Optional passphrase protecting the private key at rest
            algorithm: Key algorithm; only "curve25519" is supported
            revocation_reason: Reason recorded in the revocation certificate

        Raises:
            KeyGenerationError: on unsupported algorithm or invalid parameters
        """
        if not isinstance(algorithm, str) or algorithm.lower() not in SUPPORTED_ALGORITHMS:
            raise KeyGenerationError(f"Unsupported key algorithm: {algorithm}")
        if passphrase is not None and (not isinstance(passphrase, str) or not passphrase):
            raise KeyGenerationError("Passphrase must be a non-empty string")
        principals = _normalize_principals(principal_info)

        signing_key = SigningKey.generate()
        encryption_key = PrivateKey.generate()

        body = {
            "version": CERTIFICATE_VERSION,
            "algorithm": DEFAULT_ALGORITHM,
            "user_ids": [p.to_dict() for p in principals],
            "verify_key": b64e(bytes(signing_key.verify_key)),
            "encryption_key": b64e(bytes(encryption_key.public_key)),
            "created_at": utc_now(),
        }
        certificate = PublicKeyCertificate(
            algorithm=DEFAULT_ALGORITHM,
            user_ids=principals,
            verify_key=bytes(signing_key.verify_key),
            encryption_key=bytes(encryption_key.public_key),
            created_at=body["created_at"],
            fingerprint=compute_fingerprint(body),
            self_signature=signing_key.sign(canonicalize(body)).signature,
        )

        statement = revocation_statement(certificate.fingerprint, revocation_reason, certificate.created_at)
        revocation = RevocationCertificate(
            fingerprint=certificate.fingerprint,
            reason=revocation_reason,
            created_at=certificate.created_at,
            signature=signing_key.sign(statement).signature,
        )

        material = bytearray(bytes(signing_key) + bytes(encryption_key))
        try:
            blob = self._protect(certificate.fingerprint, material, passphrase)
        finally:
            zeroize(material)

        audit_log.identity_generated(certificate.fingerprint, DEFAULT_ALGORITHM, blob.protected)
        logger.debug("Generated identity %s", short_fingerprint(certificate.fingerprint))
        return Identity(certificate=certificate, private_key=blob, revocation=revocation)

    def unlock_private_key(self, identity: Identity, passphrase: Optional[str] = None) -> UnlockedPrivateKey:
        """
        Unlock an identity's private key.

        The returned handle must be used as a context manager so that it is
        zeroed when the operation ends.

        Raises:
            UnlockFailure: missing/wrong passphrase, a passphrase for an
                unprotected key, or malformed blob
        """
        certificate = identity.certificate
        blob = identity.private_key
        fp = certificate.fingerprint

        if not constant_time_compare(blob.fingerprint, fp):
            raise self._unlock_failed(fp, "private key does not belong to this certificate")

        if blob.protected:
            if passphrase is None:
                raise self._unlock_failed(fp, "passphrase required")
            if blob.kdf is None:
                raise self._unlock_failed(fp, "malformed private key blob")
            try:
                box = SecretBox(derive_key(passphrase, blob.kdf))
                material = bytearray(box.decrypt(blob.key_data))
            except CryptoError as e:
                raise self._unlock_failed(fp, "incorrect passphrase") from e
            except (ValueError, TypeError) as e:
                raise self._unlock_failed(fp, "malformed private key blob") from e
        else:
            if passphrase is not None:
                raise self._unlock_failed(fp, "private key is not passphrase-protected")
            material = bytearray(blob.key_data)

        try:
            if len(material) != 2 * KEY_BYTES:
                raise self._unlock_failed(fp, "malformed private key blob")

            signing_seed = bytearray(material[:KEY_BYTES])
            decryption_key = bytearray(material[KEY_BYTES:])
            handle = UnlockedPrivateKey(certificate, signing_seed, decryption_key)

            try:
                matches = (
                    constant_time_compare(bytes(handle.signing_key().verify_key), certificate.verify_key)
                    and constant_time_compare(bytes(handle.decryption_key().public_key), certificate.encryption_key)
                )
            except (ValueError, TypeError):
                matches = False
            if not matches:
                handle.close()
                raise self._unlock_failed(fp, "private key does not match certificate")
        finally:
            zeroize(material)

        audit_log.key_unlocked(fp)
        return handle

    def change_passphrase(
        self,
        identity: Identity,
        old_passphrase: Optional[str],
        new_passphrase: Optional[str],
    ) -> Identity:
        """Re-protect the private key under a new passphrase (None removes protection)."""
        if new_passphrase is not None and (not isinstance(new_passphrase, str) or not new_passphrase):
            raise KeyGenerationError("Passphrase must be a non-empty string")

        with self.unlock_private_key(identity, old_passphrase) as key:
            material = bytearray(key._signing_seed + key._decryption_key)
            try:
                blob = self._protect(identity.fingerprint, material, new_passphrase)
            finally:
                zeroize(material)

        return Identity(certificate=identity.certificate, private_key=blob, revocation=identity.revocation)

    def _protect(self, fp: str, material: bytearray, passphrase: Optional[str]) -> PrivateKeyBlob:
        if passphrase is None:
            return PrivateKeyBlob(fingerprint=fp, protected=False, key_data=bytes(material))

        try:
            params = KdfParams.generate(self.kdf_profile)
        except ValueError as e:
            raise KeyGenerationError(str(e)) from e
        box = SecretBox(derive_key(passphrase, params))
        return PrivateKeyBlob(
            fingerprint=fp,
            protected=True,
            key_data=bytes(box.encrypt(bytes(material))),
            kdf=params,
        )

    @staticmethod
    def _unlock_failed(fp: Optional[str], reason: str) -> UnlockFailure:
        audit_log.unlock_failed(fp, reason)
        return UnlockFailure(reason)
