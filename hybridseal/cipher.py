"""
HybridSeal Message Cipher

Authenticated encryption of payloads, either under a ContentKey or
directly to a recipient's X25519 key (pure public-key mode).

Ciphertext layouts:
    xchacha20-poly1305   nonce(24) || ciphertext || tag(16), header as AEAD associated data
    xsalsa20-poly1305    SecretBox(frame)
    asymmetric           SealedBox(frame)

Constructions without native associated data encrypt a frame of
len(ad) || ad || plaintext and compare the ad on the way out.
"""

import struct
from typing import Union

import nacl.bindings
import nacl.utils
from nacl.exceptions import CryptoError
from nacl.public import SealedBox
from nacl.secret import SecretBox

from .content_key import ContentKey
from .errors import DecryptionFailure
from .identity import PublicKeyCertificate, UnlockedPrivateKey
from .util import constant_time_compare

_AD_LENGTH = struct.Struct(">I")


def _frame(plaintext: bytes, associated_data: bytes) -> bytes:
    return _AD_LENGTH.pack(len(associated_data)) + associated_data + plaintext


def _unframe(frame: bytes, associated_data: bytes) -> bytes:
    if len(frame) < _AD_LENGTH.size:
        raise DecryptionFailure("Ciphertext is truncated")
    (ad_len,) = _AD_LENGTH.unpack_from(frame)
    start = _AD_LENGTH.size
    if len(frame) < start + ad_len:
        raise DecryptionFailure("Ciphertext is truncated")
    if not constant_time_compare(frame[start:start + ad_len], associated_data):
        raise DecryptionFailure("Associated data mismatch")
    return frame[start + ad_len:]


class MessageCipher:
    """Stateless payload encryption. No retries: corrupt input fails at once."""

    def encrypt(
        self,
        plaintext: bytes,
        key: Union[ContentKey, PublicKeyCertificate],
        associated_data: bytes = b""
    ) -> bytes:
        """
        Encrypt under a content key, or directly to a recipient certificate.

        Raises:
            MalformedKeyError: if the recipient certificate fails validation
            TypeError: for any other key type
        """
        if isinstance(key, ContentKey):
            return self._encrypt_symmetric(plaintext, key, associated_data)

        if isinstance(key, PublicKeyCertificate):
            key.validate()
            box = SealedBox(key.nacl_public_key())
            return bytes(box.encrypt(_frame(plaintext, associated_data)))

        raise TypeError(f"Cannot encrypt with {type(key).__name__}")

    def decrypt(
        self,
        ciphertext: bytes,
        key: Union[ContentKey, UnlockedPrivateKey],
        associated_data: bytes = b""
    ) -> bytes:
        """
        Decrypt with a content key or an unlocked private key.

        Raises:
            DecryptionFailure: on tag mismatch, truncation or malformed input
        """
        if isinstance(key, ContentKey):
            return self._decrypt_symmetric(ciphertext, key, associated_data)

        if isinstance(key, UnlockedPrivateKey):
            try:
                frame = SealedBox(key.decryption_key()).decrypt(bytes(ciphertext))
            except (CryptoError, ValueError, TypeError) as e:
                raise DecryptionFailure("Ciphertext failed authentication") from e
            return _unframe(frame, associated_data)

        raise TypeError(f"Cannot decrypt with {type(key).__name__}")

    def _encrypt_symmetric(self, plaintext: bytes, key: ContentKey, associated_data: bytes) -> bytes:
        if key.algorithm.is_aead:
            nonce = nacl.utils.random(key.algorithm.nonce_size)
            ct = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
                plaintext, associated_data or None, nonce, key.key_material
            )
            return nonce + ct

        box = SecretBox(key.key_material)
        return bytes(box.encrypt(_frame(plaintext, associated_data)))

    def _decrypt_symmetric(self, ciphertext: bytes, key: ContentKey, associated_data: bytes) -> bytes:
        ciphertext = bytes(ciphertext)
        material = key.key_material
        try:
            if key.algorithm.is_aead:
                nonce_size = key.algorithm.nonce_size
                if len(ciphertext) < nonce_size + nacl.bindings.crypto_aead_xchacha20poly1305_ietf_ABYTES:
                    raise DecryptionFailure("Ciphertext is truncated")
                return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                    ciphertext[nonce_size:], associated_data or None, ciphertext[:nonce_size], material
                )

            frame = SecretBox(material).decrypt(ciphertext)
        except (CryptoError, ValueError, TypeError) as e:
            raise DecryptionFailure("Ciphertext failed authentication") from e
        return _unframe(frame, associated_data)
