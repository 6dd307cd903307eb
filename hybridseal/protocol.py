"""
HybridSeal Envelope Protocol

Composes identities, content keys, envelopes, the message cipher and the
signature engine into seal/open.

    seal:  sign -> encrypt(payload || embedded signature) -> wrap content key
    open:  unlock -> unwrap -> decrypt -> verify

open() fails closed. A rejected signature raises SignatureVerificationFailure
and the decrypted payload never leaves the call.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from . import config
from .canonicalization import canonicalize
from .cipher import MessageCipher
from .content_key import ContentKey, ContentKeyService, SymmetricAlgorithm
from .envelope import EnvelopeCodec, PasswordDerived, WrappedKey
from .errors import DecryptionFailure, UnwrapFailure
from .hashing import short_fingerprint
from .identity import Identity, IdentityService, PublicKeyCertificate, UnlockedPrivateKey
from .kdf import KdfParams
from .logging_config import audit_log, operation_scope
from .messages import Envelope, OpenedMessage, SealedMessage, SignatureMode, TransportMode
from .signing import Signature, SignatureEngine, SignedMessage, VerificationResult
from .util import b64d, b64e, generate_password

logger = logging.getLogger(__name__)

# An unlocked handle (caller closes it), an Identity with an unprotected
# key, or an (Identity, passphrase) pair unlocked for the call.
Sender = Union[UnlockedPrivateKey, Identity, Tuple[Identity, Optional[str]], None]
Recipient = Union[PublicKeyCertificate, Identity]


def _as_bytes(plaintext: Union[bytes, str]) -> bytes:
    if isinstance(plaintext, str):
        return plaintext.encode('utf-8')
    if isinstance(plaintext, (bytes, bytearray)):
        return bytes(plaintext)
    raise TypeError(f"Plaintext must be bytes or str, not {type(plaintext).__name__}")


def _certificate_of(recipient: Recipient) -> PublicKeyCertificate:
    if isinstance(recipient, Identity):
        return recipient.certificate
    if isinstance(recipient, PublicKeyCertificate):
        return recipient
    raise TypeError(f"Recipient must be a certificate or identity, not {type(recipient).__name__}")


class EnvelopeProtocol:
    """
    Hybrid seal/open over the component services.

    Holds no key state. Every content key created or recovered inside a call
    is destroyed before the call returns, except those passed in by the
    caller through seal_with_key/open_with_key.
    """

    def __init__(
        self,
        identities: Optional[IdentityService] = None,
        content_keys: Optional[ContentKeyService] = None,
        codec: Optional[EnvelopeCodec] = None,
        cipher: Optional[MessageCipher] = None,
        signer: Optional[SignatureEngine] = None,
        kdf_profile: Optional[str] = None,
    ):
        self.kdf_profile = kdf_profile
        self.identities = identities or IdentityService(kdf_profile)
        self.content_keys = content_keys or ContentKeyService()
        self.codec = codec or EnvelopeCodec(kdf_profile)
        self.cipher = cipher or MessageCipher()
        self.signer = signer or SignatureEngine()

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def seal(
        self,
        plaintext: Union[bytes, str],
        recipient: Recipient,
        sender: Sender = None,
        transport: TransportMode = TransportMode.WRAPPED_KEY,
        signature_mode: SignatureMode = SignatureMode.EMBEDDED,
        password: Optional[str] = None,
        algorithm: Union[SymmetricAlgorithm, str, None] = None,
    ) -> Tuple[SealedMessage, Optional[Envelope]]:
        """
        Seal a message for one recipient.

        Args:
            plaintext: Payload; str is encoded as UTF-8
            recipient: Recipient certificate (or identity)
            sender: Signing key, see Sender; None sends anonymously
            transport: How the content key reaches the recipient
            signature_mode: EMBEDDED (encrypted) or DETACHED (clear) signature
            password: Transport password for WRAPPED_PASSWORD; random if omitted
            algorithm: Content cipher; configured default if omitted

        Returns:
            (SealedMessage, Envelope); the envelope is None for ASYMMETRIC_ONLY

        Raises:
            UnlockFailure: if the sender's key cannot be unlocked
            MalformedKeyError: if the recipient certificate is invalid
            KeyGenerationError: on an unsupported content cipher
        """
        certificate = _certificate_of(recipient)
        sealed, envelopes = self._seal(
            plaintext, [certificate], sender, transport, signature_mode, password, algorithm
        )
        return sealed, envelopes.get(certificate.fingerprint)

    def seal_for_recipients(
        self,
        plaintext: Union[bytes, str],
        recipients: Sequence[Recipient],
        sender: Sender = None,
        transport: TransportMode = TransportMode.WRAPPED_KEY,
        signature_mode: SignatureMode = SignatureMode.EMBEDDED,
        password: Optional[str] = None,
        algorithm: Union[SymmetricAlgorithm, str, None] = None,
    ) -> Tuple[SealedMessage, Dict[str, Envelope]]:
        """One ciphertext, one envelope per recipient keyed by fingerprint."""
        certificates = [_certificate_of(r) for r in recipients]
        if TransportMode(transport) == TransportMode.ASYMMETRIC_ONLY and len(certificates) > 1:
            raise ValueError("Asymmetric-only transport supports a single recipient")
        return self._seal(plaintext, certificates, sender, transport, signature_mode, password, algorithm)

    def seal_with_passphrase(
        self,
        plaintext: Union[bytes, str],
        passphrase: str,
        sender: Sender = None,
        signature_mode: SignatureMode = SignatureMode.EMBEDDED,
        algorithm: Union[SymmetricAlgorithm, str, None] = None,
    ) -> Tuple[SealedMessage, Envelope]:
        """Seal under a passphrase shared out of band; no recipient identity."""
        payload = _as_bytes(plaintext)
        signature_mode = SignatureMode(signature_mode)

        with operation_scope(), self._sender_key(sender) as signing_key:
            content_key = self.content_keys.generate(algorithm)
            try:
                envelope = self.codec.wrap_with_passphrase(content_key, passphrase)
                sealed = self._encrypt(
                    payload, TransportMode.SHARED_PASSPHRASE, content_key, signing_key, signature_mode
                )
            finally:
                content_key.destroy()
            self._log_sealed(sealed, [], signing_key)

        return sealed, envelope

    def seal_with_key(
        self,
        plaintext: Union[bytes, str],
        content_key: ContentKey,
        sender: Sender = None,
        signature_mode: SignatureMode = SignatureMode.EMBEDDED,
    ) -> SealedMessage:
        """
        Seal under a content key the caller already holds, e.g. a session key
        reused for replies in one conversation. The key is not destroyed.
        """
        payload = _as_bytes(plaintext)
        signature_mode = SignatureMode(signature_mode)

        with operation_scope(), self._sender_key(sender) as signing_key:
            sealed = self._encrypt(payload, TransportMode.WRAPPED_KEY, content_key, signing_key, signature_mode)
            self._log_sealed(sealed, [], signing_key)
        return sealed

    def _seal(
        self,
        plaintext: Union[bytes, str],
        certificates: List[PublicKeyCertificate],
        sender: Sender,
        transport: TransportMode,
        signature_mode: SignatureMode,
        password: Optional[str],
        algorithm: Union[SymmetricAlgorithm, str, None],
    ) -> Tuple[SealedMessage, Dict[str, Envelope]]:
        payload = _as_bytes(plaintext)
        transport = TransportMode(transport)
        signature_mode = SignatureMode(signature_mode)

        if not certificates:
            raise ValueError("At least one recipient is required")
        if transport == TransportMode.SHARED_PASSPHRASE:
            raise ValueError("Use seal_with_passphrase for the shared-passphrase transport")
        if password is not None and not password:
            raise ValueError("Password must not be empty")
        for certificate in certificates:
            certificate.validate()

        with operation_scope(), self._sender_key(sender) as signing_key:
            envelopes: Dict[str, Envelope] = {}

            if transport == TransportMode.ASYMMETRIC_ONLY:
                sealed = self._encrypt(payload, transport, certificates[0], signing_key, signature_mode)

            elif transport == TransportMode.WRAPPED_KEY:
                content_key = self.content_keys.generate(algorithm)
                try:
                    sealed = self._encrypt(payload, transport, content_key, signing_key, signature_mode)
                    for certificate in certificates:
                        envelopes[certificate.fingerprint] = self.codec.wrap_transport(
                            WrappedKey(content_key), certificate
                        )
                finally:
                    content_key.destroy()

            else:
                secret = password if password is not None else generate_password(config.PASSWORD_BYTES)
                params = KdfParams.generate(self.kdf_profile)
                content_key = self.content_keys.derive_from_password(secret, params, algorithm)
                try:
                    sealed = self._encrypt(
                        payload, transport, content_key, signing_key, signature_mode, kdf=params
                    )
                    for certificate in certificates:
                        envelopes[certificate.fingerprint] = self.codec.wrap_transport(
                            PasswordDerived(secret), certificate
                        )
                finally:
                    content_key.destroy()

            self._log_sealed(sealed, [c.fingerprint for c in certificates], signing_key)

        return sealed, envelopes

    def _encrypt(
        self,
        payload: bytes,
        mode: TransportMode,
        key: Union[ContentKey, PublicKeyCertificate],
        signing_key: Optional[UnlockedPrivateKey],
        signature_mode: SignatureMode,
        kdf: Optional[KdfParams] = None,
    ) -> SealedMessage:
        signature = self.signer.sign(payload, signing_key) if signing_key is not None else None
        embedded = signature if signature_mode == SignatureMode.EMBEDDED else None

        skeleton = SealedMessage(
            mode=mode,
            ciphertext=b"",
            algorithm=key.algorithm if isinstance(key, ContentKey) else None,
            signature_mode=signature_mode,
            kdf=kdf,
        )
        body = canonicalize({
            "payload": b64e(payload),
            "signature": embedded.to_dict() if embedded else None,
        })
        ciphertext = self.cipher.encrypt(body, key, skeleton.associated_data())

        return replace(
            skeleton,
            ciphertext=ciphertext,
            signature=signature if signature_mode == SignatureMode.DETACHED else None,
        )

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open(
        self,
        sealed: SealedMessage,
        envelope: Optional[Envelope],
        recipient_identity: Identity,
        passphrase: Optional[str] = None,
        sender_certificate: Optional[PublicKeyCertificate] = None,
    ) -> OpenedMessage:
        """
        Open a sealed message addressed to recipient_identity.

        Without a sender_certificate the signature is not checked and the
        result reports verified=None.

        Raises:
            UnlockFailure: wrong or missing passphrase for the recipient key
            UnwrapFailure: envelope missing, corrupted or for someone else
            DecryptionFailure: ciphertext or header tampered with
            SignatureVerificationFailure: signature rejected for the claimed sender
        """
        if sealed.mode == TransportMode.SHARED_PASSPHRASE:
            raise ValueError("Shared-passphrase messages are opened with open_with_passphrase")

        with operation_scope(), self._audit_failures(sealed.mode):
            with self.identities.unlock_private_key(recipient_identity, passphrase) as key:
                if sealed.mode == TransportMode.ASYMMETRIC_ONLY:
                    body = self.cipher.decrypt(sealed.ciphertext, key, sealed.associated_data())
                else:
                    if envelope is None:
                        raise UnwrapFailure("No envelope supplied for a wrapped message")
                    body = self._decrypt_with_secret(sealed, self.codec.unwrap(envelope, key))

            return self._finish(sealed, body, sender_certificate)

    def open_with_passphrase(
        self,
        sealed: SealedMessage,
        envelope: Envelope,
        passphrase: str,
        sender_certificate: Optional[PublicKeyCertificate] = None,
    ) -> OpenedMessage:
        """Open a message sealed with seal_with_passphrase."""
        if sealed.mode != TransportMode.SHARED_PASSPHRASE:
            raise ValueError(f"Message mode {sealed.mode.value} is not opened with a passphrase")

        with operation_scope(), self._audit_failures(sealed.mode):
            secret = self.codec.unwrap_with_passphrase(envelope, passphrase)
            if not isinstance(secret, ContentKey):
                raise UnwrapFailure("Passphrase envelope does not hold a content key")
            body = self._decrypt_with_secret(sealed, secret)
            return self._finish(sealed, body, sender_certificate)

    def open_with_key(
        self,
        sealed: SealedMessage,
        content_key: ContentKey,
        sender_certificate: Optional[PublicKeyCertificate] = None,
    ) -> OpenedMessage:
        """Open with a content key the caller holds. The key is not destroyed."""
        if sealed.mode == TransportMode.ASYMMETRIC_ONLY:
            raise ValueError("Asymmetric-only messages have no content key")

        with operation_scope(), self._audit_failures(sealed.mode):
            body = self._decrypt_with_key(sealed, content_key)
            return self._finish(sealed, body, sender_certificate)

    def unwrap_envelope(
        self,
        envelope: Envelope,
        identity: Identity,
        passphrase: Optional[str] = None,
    ) -> ContentKey:
        """
        Recover the content key from a WRAPPED_KEY envelope so it can be
        reused with open_with_key/seal_with_key. The caller must destroy it.
        """
        if envelope.mode != TransportMode.WRAPPED_KEY:
            raise UnwrapFailure(f"Envelope mode {envelope.mode.value} does not carry a content key")

        with self.identities.unlock_private_key(identity, passphrase) as key:
            secret = self.codec.unwrap(envelope, key)
        return secret

    def _decrypt_with_secret(self, sealed: SealedMessage, secret: Union[ContentKey, str]) -> bytes:
        content_key = secret if isinstance(secret, ContentKey) else None
        try:
            if sealed.algorithm is None:
                raise DecryptionFailure("Message header names no content cipher")
            if content_key is None:
                if sealed.kdf is None:
                    raise DecryptionFailure("Message header carries no key derivation parameters")
                content_key = self.content_keys.derive_from_password(secret, sealed.kdf, sealed.algorithm)
            return self._decrypt_with_key(sealed, content_key)
        finally:
            if content_key is not None:
                content_key.destroy()

    def _decrypt_with_key(self, sealed: SealedMessage, content_key: ContentKey) -> bytes:
        if sealed.algorithm != content_key.algorithm:
            raise DecryptionFailure("Content key does not match the message cipher")
        return self.cipher.decrypt(sealed.ciphertext, content_key, sealed.associated_data())

    def _finish(
        self,
        sealed: SealedMessage,
        body: bytes,
        sender_certificate: Optional[PublicKeyCertificate],
    ) -> OpenedMessage:
        try:
            frame = json.loads(body.decode('utf-8'))
            payload = b64d(frame["payload"])
            embedded = frame["signature"]
            embedded = Signature.from_dict(embedded) if embedded is not None else None
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise DecryptionFailure("Decrypted payload is malformed") from e

        signature = embedded if sealed.signature_mode == SignatureMode.EMBEDDED else sealed.signature
        result = self.signer.verify(payload, signature, sender_certificate)

        audit_log.message_opened(sealed.mode.value, result.outcome.value, result.signer_fingerprint)
        return OpenedMessage(plaintext=payload, verification=result)

    # ------------------------------------------------------------------
    # Cleartext signing
    # ------------------------------------------------------------------

    def sign_message(self, payload: Union[bytes, str], sender: Sender) -> SignedMessage:
        """Sign without encrypting."""
        if sender is None:
            raise ValueError("A sender is required to sign a message")
        with self._sender_key(sender) as signing_key:
            return self.signer.sign_message(_as_bytes(payload), signing_key)

    def verify_message(self, signed: SignedMessage, certificate: PublicKeyCertificate) -> VerificationResult:
        return self.signer.verify_message(signed, certificate)

    # ------------------------------------------------------------------

    @contextmanager
    def _sender_key(self, sender: Sender) -> Iterator[Optional[UnlockedPrivateKey]]:
        if sender is None or isinstance(sender, UnlockedPrivateKey):
            yield sender
            return

        if isinstance(sender, Identity):
            identity, passphrase = sender, None
        elif isinstance(sender, tuple) and len(sender) == 2 and isinstance(sender[0], Identity):
            identity, passphrase = sender
        else:
            raise TypeError(f"Unsupported sender: {type(sender).__name__}")

        with self.identities.unlock_private_key(identity, passphrase) as key:
            yield key

    @contextmanager
    def _audit_failures(self, mode: TransportMode) -> Iterator[None]:
        try:
            yield
        except (UnwrapFailure, DecryptionFailure) as e:
            audit_log.security_event(type(e).__name__, severity="medium", mode=mode.value, reason=str(e))
            raise

    @staticmethod
    def _log_sealed(
        sealed: SealedMessage,
        recipients: List[str],
        signing_key: Optional[UnlockedPrivateKey],
    ) -> None:
        signer = signing_key.fingerprint if signing_key is not None else None
        audit_log.message_sealed(
            sealed.mode.value,
            sealed.algorithm.value if sealed.algorithm else None,
            recipients,
            signer,
        )
        logger.debug(
            "Sealed %s message for %d recipient(s)%s",
            sealed.mode.value,
            len(recipients),
            f" signed by {short_fingerprint(signer)}" if signer else "",
        )
