"""
Unit tests for signature algorithm selection and the crypto engine.
"""
import unittest
from unittest.mock import Mock

from x509_toolkit.models.config import Config
from x509_toolkit.x509.engine import CryptoEngine, Verdict
from x509_toolkit.x509.errors import CapabilityError, ParseError
from x509_toolkit.x509.keys import DhKey, KeyFamily, generate_key
from x509_toolkit.x509.signing import (
    KeySigner,
    select_signature_algorithm,
    signature_algorithm_name,
)


class TestSignatureAlgorithms(unittest.TestCase):
    """Test cases for select_signature_algorithm."""

    def test_rsa_and_ec_oids(self):
        """Test the OIDs picked for RSA and EC per hash."""
        self.assertEqual(select_signature_algorithm(KeyFamily.RSA, "sha256").oid, "1.2.840.113549.1.1.11")
        self.assertEqual(select_signature_algorithm(KeyFamily.RSA, "SHA-512").oid, "1.2.840.113549.1.1.13")
        self.assertEqual(select_signature_algorithm(KeyFamily.EC, "sha384").oid, "1.2.840.10045.4.3.3")
        self.assertEqual(select_signature_algorithm(KeyFamily.DSA, "sha256").oid, "2.16.840.1.101.3.4.3.2")

    def test_eddsa_ignores_hash(self):
        """Test that EdDSA uses its own OID whatever hash is asked for."""
        self.assertEqual(select_signature_algorithm(KeyFamily.ED25519, "sha512").oid, "1.3.101.112")
        self.assertEqual(select_signature_algorithm(KeyFamily.ED448, None).oid, "1.3.101.113")

    def test_dh_cannot_sign(self):
        with self.assertRaises(CapabilityError):
            select_signature_algorithm(KeyFamily.DH, "sha256")

    def test_unsupported_hash(self):
        """Test that legacy and unknown hashes are refused for signing."""
        with self.assertRaises(ParseError):
            select_signature_algorithm(KeyFamily.RSA, "sha1")
        with self.assertRaises(ParseError):
            select_signature_algorithm(KeyFamily.EC, "md5")

    def test_rsa_identifier_has_null_parameters(self):
        """Test that RSA algorithm identifiers carry explicit NULL parameters."""
        rsa_alg = select_signature_algorithm(KeyFamily.RSA).algorithm_identifier()
        ec_alg = select_signature_algorithm(KeyFamily.EC).algorithm_identifier()

        self.assertEqual(rsa_alg.dump()[-2:], b"\x05\x00")
        self.assertNotIn(b"\x05\x00", ec_alg.dump())

    def test_algorithm_names(self):
        self.assertEqual(signature_algorithm_name("1.2.840.113549.1.1.5"), "sha1WithRSAEncryption")
        self.assertEqual(signature_algorithm_name("1.2.3.4"), "1.2.3.4")


class TestVerdict(unittest.TestCase):
    """Test cases for the tri-state verdict."""

    def test_combine(self):
        self.assertIs(Verdict.combine([Verdict.TRUE, Verdict.TRUE]), Verdict.TRUE)
        self.assertIs(Verdict.combine([Verdict.TRUE, Verdict.FALSE]), Verdict.FALSE)
        self.assertIs(Verdict.combine([Verdict.FALSE, Verdict.UNKNOWN]), Verdict.UNKNOWN)
        self.assertIs(Verdict.combine([]), Verdict.TRUE)

    def test_truthiness(self):
        """Test that only TRUE is truthy."""
        self.assertTrue(Verdict.TRUE)
        self.assertFalse(Verdict.FALSE)
        self.assertFalse(Verdict.UNKNOWN)


class TestCryptoEngine(unittest.TestCase):
    """Test cases for CryptoEngine sign and verify."""

    def setUp(self):
        self.engine = CryptoEngine(Config())

    def test_defaults_from_config(self):
        """Test that engine defaults come from the configuration."""
        config = Mock()
        config.default_hash = "sha384"
        config.key_identifier_hash = "sha256"
        config.default_key_size = 3072
        config.default_curve = "secp384r1"

        engine = CryptoEngine(config)

        self.assertEqual(engine.default_hash, "sha384")
        self.assertEqual(len(engine.key_identifier(b"abc")), 32)

    def test_default_key_identifier_is_sha1(self):
        self.assertEqual(len(self.engine.key_identifier(b"abc")), 20)

    def test_sign_and_verify_each_family(self):
        """Test that signatures verify for every signing family."""
        for family in ("rsa", "ec", "ed25519", "ed448"):
            with self.subTest(family=family):
                key = generate_key(family)
                signer = KeySigner(self.engine, key)
                signature = signer.sign(b"payload")

                verdict = self.engine.verify(key.public_only(), signer.signature_algorithm.oid,
                                             signature, b"payload")
                self.assertIs(verdict, Verdict.TRUE)

                tampered = self.engine.verify(key.public_only(), signer.signature_algorithm.oid,
                                              signature, b"other")
                self.assertIs(tampered, Verdict.FALSE)

    def test_verify_unknown_algorithm(self):
        """Test that an unknown signature OID gives UNKNOWN."""
        key = generate_key("ec")

        verdict = self.engine.verify(key.public_only(), "1.2.840.113549.1.1.10", b"sig", b"data")

        self.assertIs(verdict, Verdict.UNKNOWN)

    def test_verify_with_dh_key(self):
        """Test that DH keys can never verify a signature."""
        key = DhKey(2 ** 127 - 1, 2, 5)

        verdict = self.engine.verify(key, "1.2.840.113549.1.1.11", b"sig", b"data")

        self.assertIs(verdict, Verdict.UNKNOWN)

    def test_verify_family_mismatch(self):
        """Test that an RSA algorithm with an EC key is FALSE."""
        key = generate_key("ec")

        verdict = self.engine.verify(key.public_only(), "1.2.840.113549.1.1.11", b"sig", b"data")

        self.assertIs(verdict, Verdict.FALSE)

    def test_sign_requires_private_key(self):
        key = generate_key("ed25519").public_only()

        with self.assertRaises(CapabilityError):
            KeySigner(self.engine, key)

    def test_sign_algorithm_mismatch(self):
        """Test that signing with an algorithm for another family fails."""
        key = generate_key("ed25519")

        with self.assertRaises(CapabilityError):
            self.engine.sign(key, select_signature_algorithm(KeyFamily.RSA), b"data")


if __name__ == '__main__':
    unittest.main()
