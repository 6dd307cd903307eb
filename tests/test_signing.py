"""
SignatureEngine: the Unverified -> Verified | Rejected state machine.

Every rejection path is exercised, including signer substitution, and
"not attempted" is checked to stay distinct from "verified".
"""

import unittest
from dataclasses import replace

from hybridseal import (
    IdentityService,
    PrincipalInfo,
    Signature,
    SignatureEngine,
    SignatureVerificationFailure,
    SignedMessage,
    VerificationOutcome,
)


class SigningTestCase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.identities = IdentityService(kdf_profile="min")
        cls.alice = cls.identities.generate_identity(PrincipalInfo("Alice", "alice@example.com"), passphrase="p1")
        cls.mallory = cls.identities.generate_identity(PrincipalInfo("Mallory", "mallory@example.com"))

    def setUp(self):
        self.engine = SignatureEngine()

    def sign_as(self, identity, payload, passphrase=None):
        with self.identities.unlock_private_key(identity, passphrase) as key:
            return self.engine.sign(payload, key)


class TestSignAndCheck(SigningTestCase):

    def test_valid_signature_verified(self):
        signature = self.sign_as(self.alice, b"hello", "p1")
        result = self.engine.check(b"hello", signature, self.alice.certificate)
        self.assertEqual(result.outcome, VerificationOutcome.VERIFIED)
        self.assertTrue(result.verified)
        self.assertEqual(result.signer_fingerprint, self.alice.fingerprint)
        self.assertEqual(signature.signer_fingerprint, self.alice.fingerprint)

    def test_no_certificate_is_not_attempted(self):
        signature = self.sign_as(self.alice, b"hello", "p1")
        result = self.engine.check(b"hello", signature, None)
        self.assertEqual(result.outcome, VerificationOutcome.NOT_ATTEMPTED)
        self.assertIsNone(result.verified)
        self.assertFalse(result.is_verified())
        self.assertFalse(result.is_rejected())

    def test_unsigned_without_certificate_is_not_attempted(self):
        result = self.engine.check(b"hello", None, None)
        self.assertIsNone(result.verified)

    def test_missing_signature_rejected(self):
        result = self.engine.check(b"hello", None, self.alice.certificate)
        self.assertEqual(result.outcome, VerificationOutcome.REJECTED)
        self.assertIs(result.verified, False)
        self.assertEqual(result.reason, "message is not signed")

    def test_modified_payload_rejected(self):
        signature = self.sign_as(self.alice, b"hello", "p1")
        result = self.engine.check(b"hellO", signature, self.alice.certificate)
        self.assertTrue(result.is_rejected())
        self.assertEqual(result.reason, "bad signature")

    def test_other_signer_rejected(self):
        signature = self.sign_as(self.mallory, b"hello")
        result = self.engine.check(b"hello", signature, self.alice.certificate)
        self.assertTrue(result.is_rejected())
        self.assertEqual(result.reason, "signed by a different key")

    def test_relabelled_signer_rejected(self):
        signature = self.sign_as(self.mallory, b"hello")
        forged = replace(signature, signer_fingerprint=self.alice.fingerprint)
        result = self.engine.check(b"hello", forged, self.alice.certificate)
        self.assertTrue(result.is_rejected())
        self.assertEqual(result.reason, "bad signature")

    def test_unsupported_algorithm_rejected(self):
        signature = replace(self.sign_as(self.alice, b"hello", "p1"), algorithm="RSA-PSS")
        result = self.engine.check(b"hello", signature, self.alice.certificate)
        self.assertTrue(result.is_rejected())
        self.assertIn("unsupported signature algorithm", result.reason)

    def test_invalid_certificate_rejected(self):
        signature = self.sign_as(self.alice, b"hello", "p1")
        broken = replace(self.alice.certificate, encryption_key=self.mallory.certificate.encryption_key)
        result = self.engine.check(b"hello", signature, broken)
        self.assertTrue(result.is_rejected())
        self.assertIn("claimed certificate is invalid", result.reason)

    def test_garbage_signature_bytes_rejected(self):
        signature = replace(self.sign_as(self.alice, b"hello", "p1"), value=b"\x00" * 7)
        result = self.engine.check(b"hello", signature, self.alice.certificate)
        self.assertTrue(result.is_rejected())

    def test_signature_is_deterministic_per_key(self):
        self.assertEqual(
            self.sign_as(self.alice, b"hello", "p1").value,
            self.sign_as(self.alice, b"hello", "p1").value,
        )


class TestVerifyFailsClosed(SigningTestCase):

    def test_rejection_raises_with_result(self):
        signature = self.sign_as(self.mallory, b"hello")
        with self.assertRaises(SignatureVerificationFailure) as ctx:
            self.engine.verify(b"hello", signature, self.alice.certificate)
        self.assertEqual(ctx.exception.reason, "signed by a different key")
        self.assertEqual(ctx.exception.result.outcome, VerificationOutcome.REJECTED)

    def test_not_attempted_does_not_raise(self):
        result = self.engine.verify(b"hello", None, None)
        self.assertEqual(result.outcome, VerificationOutcome.NOT_ATTEMPTED)

    def test_rejection_is_audited(self):
        with self.assertLogs("hybridseal.audit", level="WARNING") as logs:
            self.engine.check(b"hello", None, self.alice.certificate)
        self.assertTrue(any("VERIFICATION_REJECTED" in line for line in logs.output))


class TestSignedMessage(SigningTestCase):

    def test_round_trip(self):
        with self.identities.unlock_private_key(self.alice, "p1") as key:
            signed = self.engine.sign_message(b"cleartext", key)
        restored = SignedMessage.from_dict(signed.to_dict())
        self.assertEqual(restored.text, "cleartext")
        self.assertTrue(self.engine.verify_message(restored, self.alice.certificate).verified)

    def test_wrong_certificate_raises(self):
        with self.identities.unlock_private_key(self.alice, "p1") as key:
            signed = self.engine.sign_message(b"cleartext", key)
        with self.assertRaises(SignatureVerificationFailure):
            self.engine.verify_message(signed, self.mallory.certificate)

    def test_certificate_required(self):
        with self.identities.unlock_private_key(self.alice, "p1") as key:
            signed = self.engine.sign_message(b"cleartext", key)
        with self.assertRaises(ValueError):
            self.engine.verify_message(signed, None)

    def test_malformed_signature_dict(self):
        with self.assertRaises(ValueError):
            Signature.from_dict({"signer_fingerprint": "sha256:00", "sig": "AAAA"})
        with self.assertRaises(ValueError):
            Signature.from_dict(["not", "a", "dict"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
