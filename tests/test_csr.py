"""
Tests for building certificate requests and issuing certificates for them.
"""
import json
import unittest

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa

from x509_toolkit.models.config import Config
from x509_toolkit.x509.asn1_builder import subject_public_key_bits
from x509_toolkit.x509.certificate_builder import build_certificate
from x509_toolkit.x509.csr_builder import CsrOptions, build_csr
from x509_toolkit.x509.csr_signer import CsrSigner, CsrSigningOptions, sign_csr
from x509_toolkit.x509.engine import CryptoEngine, Verdict
from x509_toolkit.x509.errors import CapabilityError, MissingInputError
from x509_toolkit.x509.keys import KeyFamily, KeyFormat, derive_public_key, export_key, from_crypto_key
from x509_toolkit.x509.validator import validate


class TestCsrBuilder(unittest.TestCase):
    """Test cases for CSR construction."""

    def setUp(self):
        self.engine = CryptoEngine(Config())

    def test_ec_request(self):
        """Test an EC request with SAN and usages in the extension request."""
        result = build_csr(self.engine, {
            'subject': 'CN=leaf.example, O=Example',
            'key_family': 'ec',
            'curve': 'prime256v1',
            'san': 'DNS:leaf.example, DNS:www.leaf.example',
            'key_usage': ['digitalSignature'],
            'extended_key_usage': ['serverAuth'],
        })

        loaded = x509.load_pem_x509_csr(result.pem.encode())
        self.assertTrue(loaded.is_signature_valid)
        san = loaded.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        self.assertEqual(san.get_values_for_type(x509.DNSName), ["leaf.example", "www.leaf.example"])
        self.assertEqual(result.request.subject.format(), "CN=leaf.example, O=Example")
        self.assertEqual(result.request.kind, "csr")
        self.assertIsNotNone(result.private_key_pem)

    def test_dsa_request(self):
        """Test that a provided DSA key can sign its own request."""
        key = from_crypto_key(dsa.generate_private_key(key_size=2048))

        result = build_csr(self.engine, CsrOptions(
            subject="CN=dsa.example",
            key_mode="provided",
            key_text=export_key(key, KeyFormat.PEM).decode(),
        ))

        self.assertTrue(x509.load_der_x509_csr(result.request.der).is_signature_valid)
        self.assertEqual(result.request.signature_algorithm_name, "dsa_with_SHA256")
        self.assertIsNone(result.private_key_pem)

    def test_no_extensions_without_options(self):
        result = build_csr(self.engine, {'subject': 'CN=plain', 'key_family': 'ec'})

        self.assertEqual(result.request.extensions, ())

    def test_optional_basic_constraints_and_ski(self):
        result = build_csr(self.engine, {
            'subject': 'CN=sub-ca', 'key_family': 'ec',
            'basic_constraints': True, 'is_ca': True, 'subject_key_identifier': True,
        })

        self.assertTrue(result.request.is_ca)
        self.assertEqual(
            result.request.subject_key_identifier,
            self.engine.key_identifier(subject_public_key_bits(result.request.spki_der)),
        )

    def test_eddsa_cannot_sign_request(self):
        """Test that EdDSA keys are refused for requests."""
        for family in ("ed25519", "ed448"):
            with self.subTest(family=family):
                with self.assertRaises(CapabilityError):
                    build_csr(self.engine, {'subject': 'CN=a', 'key_family': family})

    def test_public_key_cannot_sign_request(self):
        public = export_key(derive_public_key(self.engine.generate_key_pair(KeyFamily.EC)), KeyFormat.PEM)

        with self.assertRaises(MissingInputError):
            build_csr(self.engine, {'subject': 'CN=a', 'key_mode': 'provided', 'key_text': public.decode()})

    def test_missing_subject(self):
        with self.assertRaises(MissingInputError):
            build_csr(self.engine, {'subject': '', 'key_family': 'ec'})


class TestCsrSigner(unittest.TestCase):
    """Test cases for issuing certificates from requests."""

    @classmethod
    def setUpClass(cls):
        cls.engine = CryptoEngine(Config())
        cls.ca = build_certificate(cls.engine, {
            'subject': 'CN=Test CA',
            'key_family': 'rsa',
            'is_ca': True,
            'path_length': 0,
            'key_usage': ['keyCertSign', 'cRLSign'],
        })
        cls.csr = build_csr(cls.engine, {
            'subject': 'CN=leaf.example',
            'key_family': 'ec',
            'curve': 'prime256v1',
            'san': 'DNS:leaf.example',
            'key_usage': ['digitalSignature'],
        })

    def _options(self, **overrides):
        options = {
            'csr': self.csr.pem,
            'issuer_certificate': self.ca.pem,
            'issuer_key': self.ca.private_key_pem,
            'key_usage': ['digitalSignature', 'keyAgreement'],
            'extended_key_usage': ['serverAuth'],
        }
        options.update(overrides)
        return options

    def test_issue_for_request(self):
        """Test that subject and SPKI are copied and the CA is the issuer."""
        result = sign_csr(self.engine, self._options())
        certificate = result.certificate

        self.assertEqual(certificate.issuer.format(), "CN=Test CA")
        self.assertEqual(certificate.subject_der, self.csr.request.subject_der)
        self.assertEqual(certificate.spki_der, self.csr.request.spki_der)
        self.assertEqual(certificate.authority_key_identifier, self.ca.certificate.subject_key_identifier)
        self.assertIsNone(result.private_key_pem)

        validation = validate(self.engine, [certificate, self.ca.certificate], [self.ca.certificate])
        self.assertIs(validation.signature_valid, Verdict.TRUE)
        self.assertIs(validation.chain_valid, Verdict.TRUE)

    def test_options_override_requested_extensions(self):
        """Test that without carrying, the signer's options decide the extensions."""
        certificate = sign_csr(self.engine, self._options(san='DNS:other.example')).certificate
        loaded = x509.load_der_x509_certificate(certificate.der)

        san = loaded.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        self.assertEqual(san.get_values_for_type(x509.DNSName), ["other.example"])
        self.assertTrue(loaded.extensions.get_extension_for_class(x509.KeyUsage).value.key_agreement)

    def test_carry_csr_extensions(self):
        """Test that requested extensions are copied verbatim when asked."""
        options = self._options(
            carry_csr_extensions=True,
            custom_extensions=json.dumps([{"oid": "1.2.3.4", "value": "0500"}]),
        )

        certificate = sign_csr(self.engine, options).certificate

        requested = self.csr.request.extension("2.5.29.17")
        self.assertEqual(certificate.extension("2.5.29.17").raw, requested.raw)
        self.assertEqual(certificate.extension("2.5.29.15").raw, self.csr.request.extension("2.5.29.15").raw)
        self.assertIsNone(certificate.extension("2.5.29.37"))
        self.assertIsNone(certificate.extension("1.2.3.4"))
        self.assertIsNotNone(certificate.authority_key_identifier)

    def test_always_external_issuer(self):
        """Test that self_signed cannot be switched back on."""
        options = CsrSigningOptions(csr=self.csr.pem, self_signed=True)

        self.assertFalse(options.self_signed)
        with self.assertRaises(MissingInputError):
            CsrSigner(self.engine, options).build()

    def test_missing_request(self):
        with self.assertRaises(MissingInputError):
            sign_csr(self.engine, self._options(csr=""))

    def test_no_pkcs12_output(self):
        """Test that PKCS#12 output is refused because there is no subject key."""
        with self.assertRaises(MissingInputError):
            sign_csr(self.engine, self._options(output_pkcs12=True, pkcs12_password="hunter2"))

    def test_request_in_der(self):
        """Test that a base64 DER request is accepted."""
        certificate = sign_csr(self.engine, self._options(
            csr=self.csr.der_base64, csr_format="der",
        )).certificate

        self.assertEqual(certificate.subject.format(), "CN=leaf.example")


if __name__ == '__main__':
    unittest.main()
