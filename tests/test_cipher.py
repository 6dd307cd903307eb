"""
MessageCipher: symmetric and direct public-key encryption, associated
data binding and tamper detection.
"""

import unittest

from hybridseal import (
    ContentKeyService,
    DecryptionFailure,
    IdentityService,
    MessageCipher,
    PrincipalInfo,
    SymmetricAlgorithm,
)


def flip_bit(data: bytes, index: int) -> bytes:
    buf = bytearray(data)
    buf[index] ^= 0x01
    return bytes(buf)


class TestSymmetricCipher(unittest.TestCase):

    def setUp(self):
        self.cipher = MessageCipher()
        self.keys = ContentKeyService()

    def test_round_trip_each_algorithm(self):
        for alg in SymmetricAlgorithm:
            with self.subTest(algorithm=alg.value):
                key = self.keys.generate(alg)
                ct = self.cipher.encrypt(b"attack at dawn", key, b"header")
                self.assertEqual(self.cipher.decrypt(ct, key, b"header"), b"attack at dawn")

    def test_empty_plaintext(self):
        key = self.keys.generate()
        self.assertEqual(self.cipher.decrypt(self.cipher.encrypt(b"", key), key), b"")

    def test_nonce_is_fresh(self):
        key = self.keys.generate()
        self.assertNotEqual(self.cipher.encrypt(b"same", key), self.cipher.encrypt(b"same", key))

    def test_every_bit_flip_detected(self):
        for alg in SymmetricAlgorithm:
            key = self.keys.generate(alg)
            ct = self.cipher.encrypt(b"payload", key, b"ad")
            for index in (0, len(ct) // 2, len(ct) - 1):
                with self.subTest(algorithm=alg.value, index=index):
                    with self.assertRaises(DecryptionFailure):
                        self.cipher.decrypt(flip_bit(ct, index), key, b"ad")

    def test_associated_data_mismatch(self):
        for alg in SymmetricAlgorithm:
            with self.subTest(algorithm=alg.value):
                key = self.keys.generate(alg)
                ct = self.cipher.encrypt(b"payload", key, b"mode=a")
                with self.assertRaises(DecryptionFailure):
                    self.cipher.decrypt(ct, key, b"mode=b")

    def test_wrong_key(self):
        ct = self.cipher.encrypt(b"payload", self.keys.generate())
        with self.assertRaises(DecryptionFailure):
            self.cipher.decrypt(ct, self.keys.generate())

    def test_truncated(self):
        for alg in SymmetricAlgorithm:
            with self.subTest(algorithm=alg.value):
                key = self.keys.generate(alg)
                with self.assertRaises(DecryptionFailure):
                    self.cipher.decrypt(b"\x00" * 10, key)

    def test_unsupported_key_type(self):
        with self.assertRaises(TypeError):
            self.cipher.encrypt(b"payload", b"\x00" * 32)


class TestAsymmetricCipher(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        service = IdentityService(kdf_profile="min")
        cls.service = service
        cls.bob = service.generate_identity(PrincipalInfo("Bob", "bob@example.com"))
        cls.carol = service.generate_identity(PrincipalInfo("Carol", "carol@example.com"))

    def setUp(self):
        self.cipher = MessageCipher()

    def test_round_trip(self):
        ct = self.cipher.encrypt(b"direct", self.bob.certificate, b"ad")
        with self.service.unlock_private_key(self.bob) as key:
            self.assertEqual(self.cipher.decrypt(ct, key, b"ad"), b"direct")

    def test_other_recipient_cannot_decrypt(self):
        ct = self.cipher.encrypt(b"direct", self.bob.certificate)
        with self.service.unlock_private_key(self.carol) as key:
            with self.assertRaises(DecryptionFailure):
                self.cipher.decrypt(ct, key)

    def test_associated_data_mismatch(self):
        ct = self.cipher.encrypt(b"direct", self.bob.certificate, b"mode=a")
        with self.service.unlock_private_key(self.bob) as key:
            with self.assertRaises(DecryptionFailure):
                self.cipher.decrypt(ct, key, b"mode=b")

    def test_tampered(self):
        ct = self.cipher.encrypt(b"direct", self.bob.certificate)
        with self.service.unlock_private_key(self.bob) as key:
            with self.assertRaises(DecryptionFailure):
                self.cipher.decrypt(flip_bit(ct, len(ct) - 1), key)


if __name__ == "__main__":
    unittest.main(verbosity=2)
