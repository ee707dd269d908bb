"""
Tests for PEM, DER and PKCS#12 conversion.
"""
import base64
import unittest

from x509_toolkit.models.config import Config
from x509_toolkit.x509.certificate_builder import build_certificate
from x509_toolkit.x509.converter import convert
from x509_toolkit.x509.engine import CryptoEngine
from x509_toolkit.x509.errors import MissingInputError, ParseError, PasswordError
from x509_toolkit.x509.keys import parse_key
from x509_toolkit.x509.pkcs12 import unpack


class TestConverter(unittest.TestCase):
    """Test cases for convert()."""

    @classmethod
    def setUpClass(cls):
        engine = CryptoEngine(Config())
        cls.ca = build_certificate(engine, {'subject': 'CN=Convert CA', 'key_family': 'rsa', 'is_ca': True})
        cls.leaf = build_certificate(engine, {
            'subject': 'CN=convert.example', 'key_family': 'rsa',
            'self_signed': False, 'issuer_certificate': cls.ca.pem, 'issuer_key': cls.ca.private_key_pem,
        })
        cls.bundle_pem = cls.leaf.pem + cls.ca.pem

    def test_pem_to_der_single(self):
        result = convert(self.leaf.pem, "pem", "der")

        self.assertEqual(result.encoding, "base64")
        self.assertEqual(base64.b64decode(result.output), self.leaf.certificate.der)
        self.assertEqual(result.notes, [])

    def test_pem_bundle_to_der_keeps_first(self):
        """Test that DER output of a bundle notes the dropped certificates."""
        result = convert(self.bundle_pem, "pem", "der")

        self.assertEqual(base64.b64decode(result.output), self.leaf.certificate.der)
        self.assertEqual(result.notes, ["bundle contains 2 certificates; converted the first"])

    def test_der_to_pem(self):
        result = convert(self.leaf.der_base64, "der", "pem")

        self.assertEqual(result.encoding, "text")
        self.assertEqual(result.output, self.leaf.pem)

    def test_pem_to_pkcs12_and_back(self):
        """Test a PEM bundle plus key into PKCS#12 and out to PEM again."""
        packed = convert(self.bundle_pem, "pem", "pkcs12", password="hunter2",
                         key_text=self.leaf.private_key_pem)

        contents = unpack(base64.b64decode(packed.output), "hunter2")
        self.assertEqual(len(contents.certificates), 2)
        self.assertIn("1 additional certificate(s) included as CA certificates", packed.notes)

        unpacked = convert(packed.output, "pkcs12", "pem", password="hunter2")
        self.assertEqual(unpacked.output, self.bundle_pem)
        self.assertEqual(parse_key(unpacked.private_key_pem), parse_key(self.leaf.private_key_pem))

    def test_pkcs12_wrong_password(self):
        packed = convert(self.leaf.pem, "pem", "pkcs12", password="hunter2",
                         key_text=self.leaf.private_key_pem)

        with self.assertRaises(PasswordError):
            convert(packed.output, "pkcs12", "der", password="nope")

    def test_pkcs12_needs_key_and_password(self):
        """Test that PKCS#12 output without a key or password is refused."""
        with self.assertRaises(MissingInputError):
            convert(self.leaf.pem, "pem", "pkcs12", password="hunter2")
        with self.assertRaises(MissingInputError):
            convert(self.leaf.pem, "pem", "pkcs12", key_text=self.leaf.private_key_pem)

    def test_unknown_formats(self):
        with self.assertRaises(ParseError):
            convert(self.leaf.pem, "pem", "p7b")
        with self.assertRaises(ParseError):
            convert(self.leaf.pem, "", "der")


if __name__ == '__main__':
    unittest.main()
