"""
EnvelopeCodec: key wrap to a recipient, password transport, shared
passphrases, and rejection of tampered or misaddressed envelopes.
"""

import unittest
from dataclasses import replace

from hybridseal import (
    AsymmetricOnly,
    ContentKey,
    ContentKeyService,
    Envelope,
    EnvelopeCodec,
    IdentityService,
    PasswordDerived,
    PrincipalInfo,
    SymmetricAlgorithm,
    TransportMode,
    UnwrapFailure,
    WrappedKey,
)


def flip_bit(data: bytes, index: int) -> bytes:
    buf = bytearray(data)
    buf[index] ^= 0x01
    return bytes(buf)


class EnvelopeTestCase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.identities = IdentityService(kdf_profile="min")
        cls.bob = cls.identities.generate_identity(PrincipalInfo("Bob", "bob@example.com"), passphrase="p2")
        cls.carol = cls.identities.generate_identity(PrincipalInfo("Carol", "carol@example.com"))

    def setUp(self):
        self.codec = EnvelopeCodec(kdf_profile="min")
        self.content_key = ContentKeyService().generate()


class TestWrappedKey(EnvelopeTestCase):

    def test_round_trip(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        self.assertEqual(envelope.mode, TransportMode.WRAPPED_KEY)
        self.assertEqual(envelope.recipient_fingerprint, self.bob.fingerprint)

        with self.identities.unlock_private_key(self.bob, "p2") as key:
            recovered = self.codec.unwrap(envelope, key)
        self.assertIsInstance(recovered, ContentKey)
        self.assertEqual(recovered.key_material, self.content_key.key_material)
        self.assertEqual(recovered.algorithm, self.content_key.algorithm)

    def test_algorithm_travels_with_key(self):
        key = ContentKeyService().generate(SymmetricAlgorithm.XSALSA20_POLY1305)
        envelope = self.codec.wrap(key, self.bob.certificate)
        with self.identities.unlock_private_key(self.bob, "p2") as handle:
            self.assertEqual(self.codec.unwrap(envelope, handle).algorithm, SymmetricAlgorithm.XSALSA20_POLY1305)

    def test_wrong_recipient(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        with self.identities.unlock_private_key(self.carol) as key:
            with self.assertRaises(UnwrapFailure):
                self.codec.unwrap(envelope, key)

    def test_readdressed_envelope_still_fails(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        readdressed = replace(envelope, recipient_fingerprint=self.carol.fingerprint)
        with self.identities.unlock_private_key(self.carol) as key:
            with self.assertRaises(UnwrapFailure):
                self.codec.unwrap(readdressed, key)

    def test_tampered_envelope(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        with self.identities.unlock_private_key(self.bob, "p2") as key:
            for index in (0, len(envelope.wrapped) // 2, len(envelope.wrapped) - 1):
                with self.subTest(index=index):
                    with self.assertRaises(UnwrapFailure):
                        self.codec.unwrap(replace(envelope, wrapped=flip_bit(envelope.wrapped, index)), key)

    def test_relabelled_mode_rejected(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        relabelled = replace(envelope, mode=TransportMode.WRAPPED_PASSWORD)
        with self.identities.unlock_private_key(self.bob, "p2") as key:
            with self.assertRaises(UnwrapFailure):
                self.codec.unwrap(relabelled, key)

    def test_passphrase_envelope_not_opened_with_private_key(self):
        envelope = self.codec.wrap_with_passphrase(self.content_key, "shared")
        with self.identities.unlock_private_key(self.bob, "p2") as key:
            with self.assertRaises(UnwrapFailure):
                self.codec.unwrap(envelope, key)


class TestPasswordTransport(EnvelopeTestCase):

    def test_round_trip(self):
        envelope = self.codec.wrap_password("transport-password", self.bob.certificate)
        self.assertEqual(envelope.mode, TransportMode.WRAPPED_PASSWORD)
        with self.identities.unlock_private_key(self.bob, "p2") as key:
            self.assertEqual(self.codec.unwrap(envelope, key), "transport-password")

    def test_relabelled_as_key_rejected(self):
        envelope = self.codec.wrap_password("transport-password", self.bob.certificate)
        with self.identities.unlock_private_key(self.bob, "p2") as key:
            with self.assertRaises(UnwrapFailure):
                self.codec.unwrap(replace(envelope, mode=TransportMode.WRAPPED_KEY), key)

    def test_empty_password_rejected(self):
        with self.assertRaises(ValueError):
            self.codec.wrap_password("", self.bob.certificate)


class TestSharedPassphrase(EnvelopeTestCase):

    def test_round_trip(self):
        envelope = self.codec.wrap_with_passphrase(self.content_key, "shared secret")
        self.assertEqual(envelope.mode, TransportMode.SHARED_PASSPHRASE)
        self.assertIsNone(envelope.recipient_fingerprint)
        self.assertIsNotNone(envelope.kdf)

        recovered = self.codec.unwrap_with_passphrase(envelope, "shared secret")
        self.assertEqual(recovered.key_material, self.content_key.key_material)

    def test_wrong_passphrase(self):
        envelope = self.codec.wrap_with_passphrase(self.content_key, "shared secret")
        with self.assertRaises(UnwrapFailure):
            self.codec.unwrap_with_passphrase(envelope, "guess")

    def test_empty_passphrase_rejected(self):
        with self.assertRaises(ValueError):
            self.codec.wrap_with_passphrase(self.content_key, "")

    def test_recipient_envelope_not_opened_with_passphrase(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        with self.assertRaises(UnwrapFailure):
            self.codec.unwrap_with_passphrase(envelope, "shared secret")


class TestTransportDispatch(EnvelopeTestCase):

    def test_wrapped_key(self):
        envelope = self.codec.wrap_transport(WrappedKey(self.content_key), self.bob.certificate)
        self.assertEqual(envelope.mode, TransportMode.WRAPPED_KEY)

    def test_password_derived(self):
        envelope = self.codec.wrap_transport(PasswordDerived("pw"), self.bob.certificate)
        self.assertEqual(envelope.mode, TransportMode.WRAPPED_PASSWORD)

    def test_asymmetric_only_has_no_envelope(self):
        self.assertIsNone(self.codec.wrap_transport(AsymmetricOnly(), self.bob.certificate))

    def test_unknown_transport(self):
        with self.assertRaises(TypeError):
            self.codec.wrap_transport("wrapped-key", self.bob.certificate)


class TestEnvelopeSerialization(EnvelopeTestCase):

    def test_dict_round_trip_still_unwraps(self):
        envelope = self.codec.wrap(self.content_key, self.bob.certificate)
        restored = Envelope.from_dict(envelope.to_dict())
        self.assertEqual(restored, envelope)
        with self.identities.unlock_private_key(self.bob, "p2") as key:
            self.assertEqual(self.codec.unwrap(restored, key).key_material, self.content_key.key_material)

    def test_malformed_dict(self):
        data = self.codec.wrap(self.content_key, self.bob.certificate).to_dict()
        for field, value in (("mode", "carrier-pigeon"), ("wrapped", "***"), ("version", 99)):
            with self.subTest(field=field):
                broken = dict(data, **{field: value})
                with self.assertRaises(UnwrapFailure):
                    Envelope.from_dict(broken)


if __name__ == "__main__":
    unittest.main(verbosity=2)
