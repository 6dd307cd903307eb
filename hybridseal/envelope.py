"""
HybridSeal Envelope Codec

Wraps a content key (or a transport password) so that only its intended
unlocker can recover it.

Wrapped secrets are packed as one tag byte followed by the secret:
    0x00          password, UTF-8
    0x01, 0x02    content key, tag is the SymmetricAlgorithm wire id

The tag is checked against the envelope mode on unwrap, so an envelope
relabelled from one mode to another never yields a usable secret.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from nacl.exceptions import CryptoError
from nacl.public import SealedBox
from nacl.secret import SecretBox

from .content_key import ContentKey, SymmetricAlgorithm
from .errors import UnwrapFailure
from .hashing import short_fingerprint
from .identity import PublicKeyCertificate, UnlockedPrivateKey
from .kdf import KdfParams, derive_key
from .messages import Envelope, TransportMode
from .util import constant_time_compare, zeroize

logger = logging.getLogger(__name__)

_PASSWORD_TAG = 0x00


@dataclass(frozen=True)
class WrappedKey:
    """Transport a random content key."""
    content_key: ContentKey


@dataclass(frozen=True)
class PasswordDerived:
    """Transport a password; the content key is derived from it."""
    password: str


@dataclass(frozen=True)
class AsymmetricOnly:
    """No content key at all; the payload is sealed to the recipient directly."""


ContentKeyTransport = Union[WrappedKey, PasswordDerived, AsymmetricOnly]


def _pack(secret: Union[ContentKey, str]) -> bytearray:
    if isinstance(secret, ContentKey):
        return bytearray([secret.algorithm.wire_id]) + bytearray(secret.key_material)
    if isinstance(secret, str):
        if not secret:
            raise ValueError("Password must not be empty")
        return bytearray([_PASSWORD_TAG]) + bytearray(secret.encode('utf-8'))
    raise TypeError(f"Cannot wrap {type(secret).__name__}")


def _unpack(packed: bytes, mode: TransportMode) -> Union[ContentKey, str]:
    buf = bytearray(packed)
    body = buf[1:]
    try:
        if not buf:
            raise UnwrapFailure("Envelope payload is empty")
        tag = buf[0]
        if tag == _PASSWORD_TAG:
            if mode == TransportMode.WRAPPED_KEY:
                raise UnwrapFailure("Envelope mode does not match its contents")
            return body.decode('utf-8')

        if mode == TransportMode.WRAPPED_PASSWORD:
            raise UnwrapFailure("Envelope mode does not match its contents")
        return ContentKey(body, SymmetricAlgorithm.from_wire_id(tag))
    except ValueError as e:
        raise UnwrapFailure(f"Envelope contents are malformed: {e}") from e
    finally:
        zeroize(body)
        zeroize(buf)


class EnvelopeCodec:
    """Wraps and unwraps content keys and transport secrets."""

    def __init__(self, kdf_profile: Optional[str] = None):
        self.kdf_profile = kdf_profile

    def wrap(self, content_key: ContentKey, recipient: PublicKeyCertificate) -> Envelope:
        """Seal a content key to the recipient's X25519 key."""
        return self._seal_to(content_key, recipient, TransportMode.WRAPPED_KEY)

    def wrap_password(self, password: str, recipient: PublicKeyCertificate) -> Envelope:
        """Seal a transport password to the recipient's X25519 key."""
        return self._seal_to(password, recipient, TransportMode.WRAPPED_PASSWORD)

    def wrap_with_passphrase(self, secret: Union[ContentKey, str], passphrase: str) -> Envelope:
        """
        Shared-secret variant: no recipient identity, Argon2id + SecretBox.
        """
        if not isinstance(passphrase, str) or not passphrase:
            raise ValueError("Passphrase must be a non-empty string")

        params = KdfParams.generate(self.kdf_profile)
        packed = _pack(secret)
        try:
            wrapped = SecretBox(derive_key(passphrase, params)).encrypt(bytes(packed))
        finally:
            zeroize(packed)
        return Envelope(mode=TransportMode.SHARED_PASSPHRASE, wrapped=bytes(wrapped), kdf=params)

    def wrap_transport(
        self,
        transport: ContentKeyTransport,
        recipient: PublicKeyCertificate
    ) -> Optional[Envelope]:
        """Wrap according to the transport tag; AsymmetricOnly has no envelope."""
        if isinstance(transport, WrappedKey):
            return self.wrap(transport.content_key, recipient)
        if isinstance(transport, PasswordDerived):
            return self.wrap_password(transport.password, recipient)
        if isinstance(transport, AsymmetricOnly):
            return None
        raise TypeError(f"Unknown content key transport: {type(transport).__name__}")

    def unwrap(self, envelope: Envelope, key: UnlockedPrivateKey) -> Union[ContentKey, str]:
        """
        Open a recipient envelope.

        Returns a ContentKey for WRAPPED_KEY or the password for WRAPPED_PASSWORD.

        Raises:
            UnwrapFailure: wrong key, wrong recipient, wrong mode or corrupted envelope
        """
        if envelope.mode not in (TransportMode.WRAPPED_KEY, TransportMode.WRAPPED_PASSWORD):
            raise UnwrapFailure(f"Envelope mode {envelope.mode.value} cannot be opened with a private key")
        if envelope.recipient_fingerprint is None or not constant_time_compare(
            envelope.recipient_fingerprint, key.fingerprint
        ):
            raise UnwrapFailure("Envelope is addressed to a different recipient")

        try:
            packed = SealedBox(key.decryption_key()).decrypt(bytes(envelope.wrapped))
        except (CryptoError, ValueError, TypeError) as e:
            raise UnwrapFailure("Envelope could not be decrypted") from e

        logger.debug("Unwrapped envelope for %s", short_fingerprint(key.fingerprint))
        return _unpack(packed, envelope.mode)

    def unwrap_with_passphrase(self, envelope: Envelope, passphrase: str) -> Union[ContentKey, str]:
        """
        Open a shared-passphrase envelope.

        Raises:
            UnwrapFailure: wrong passphrase, wrong mode or corrupted envelope
        """
        if envelope.mode != TransportMode.SHARED_PASSPHRASE or envelope.kdf is None:
            raise UnwrapFailure(f"Envelope mode {envelope.mode.value} cannot be opened with a passphrase")

        try:
            packed = SecretBox(derive_key(passphrase, envelope.kdf)).decrypt(bytes(envelope.wrapped))
        except (CryptoError, ValueError, TypeError) as e:
            raise UnwrapFailure("Envelope could not be decrypted") from e
        return _unpack(packed, envelope.mode)

    def _seal_to(self, secret: Union[ContentKey, str], recipient: PublicKeyCertificate, mode: TransportMode) -> Envelope:
        recipient.validate()
        packed = _pack(secret)
        try:
            wrapped = SealedBox(recipient.nacl_public_key()).encrypt(bytes(packed))
        finally:
            zeroize(packed)
        return Envelope(mode=mode, wrapped=bytes(wrapped), recipient_fingerprint=recipient.fingerprint)
