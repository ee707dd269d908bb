"""
Tests for the two-phase certificate builder.
"""
import base64
import json
import unittest
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12

from x509_toolkit.models.config import Config
from x509_toolkit.x509.certificate_builder import (
    BuilderState,
    CertificateBuilder,
    CertificateOptions,
    build_certificate,
)
from x509_toolkit.x509.engine import CryptoEngine, Verdict
from x509_toolkit.x509.errors import BuilderStateError, CapabilityError, MissingInputError, ParseError
from x509_toolkit.x509.keys import DhKey, KeyFamily, KeyFormat, derive_public_key, export_key, parse_key
from x509_toolkit.x509.parser import parse_input
from x509_toolkit.x509.signing import KeySigner, Signer, select_signature_algorithm
from x509_toolkit.x509.validator import validate


class RecordingSigner(Signer):
    """Signs with a real key and remembers what it was asked to sign."""

    def __init__(self, engine, key, algorithm=None):
        self.inner = KeySigner(engine, key)
        self.signature_algorithm = algorithm or self.inner.signature_algorithm
        self.signed = []

    def sign(self, data: bytes) -> bytes:
        self.signed.append(data)
        return self.inner.sign(data)


class TestSelfSignedCertificate(unittest.TestCase):
    """Test cases for self-signed certificates."""

    def setUp(self):
        self.engine = CryptoEngine(Config())

    def test_rsa_self_signed(self):
        """Test a default self-signed RSA 2048 certificate end to end."""
        result = build_certificate(self.engine, {
            'subject': 'CN=test.example',
            'key_family': 'rsa',
            'key_size': 2048,
        })
        certificate = result.certificate

        self.assertEqual(certificate.subject.format(), "CN=test.example")
        self.assertEqual(certificate.issuer.format(), "CN=test.example")
        self.assertFalse(certificate.is_ca)
        self.assertEqual(certificate.serial, "01")
        self.assertIsNotNone(result.private_key_pem)
        self.assertIsNone(result.pkcs12_base64)

        validation = validate(self.engine, [certificate])
        self.assertTrue(validation.time_valid)
        self.assertIs(validation.signature_valid, Verdict.TRUE)
        self.assertIsNone(validation.chain_valid)

        loaded = x509.load_pem_x509_certificate(result.pem.encode())
        self.assertEqual(loaded.version, x509.Version.v3)
        self.assertEqual(base64.b64decode(result.der_base64), certificate.der)

    def test_default_extensions(self):
        """Test that basic constraints and key identifiers are present by default."""
        result = build_certificate(self.engine, CertificateOptions(subject="CN=a", key_family="ec"))
        loaded = x509.load_der_x509_certificate(result.certificate.der)

        basic = loaded.extensions.get_extension_for_class(x509.BasicConstraints)
        ski = loaded.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        aki = loaded.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)

        self.assertTrue(basic.critical)
        self.assertFalse(basic.value.ca)
        self.assertEqual(aki.value.key_identifier, ski.value.digest)
        self.assertEqual(len(ski.value.digest), 20)

    def test_ca_with_options(self):
        """Test a CA certificate with SAN, key usage, serial and explicit validity."""
        options = CertificateOptions(
            subject="CN=Test CA, O=Example",
            key_family="ed25519",
            serial="0x1A2",
            not_before="2024-01-01T00:00:00Z",
            not_after="2034-01-01T00:00:00Z",
            is_ca=True,
            path_length=0,
            key_usage=["keyCertSign", "cRLSign"],
            extended_key_usage="serverAuth,clientAuth",
            san="DNS:ca.example\nIP:10.0.0.1",
            custom_extensions=json.dumps([{"oid": "1.2.3.4", "value": "0500"}]),
        )

        certificate = CertificateBuilder(self.engine, options).build().certificate
        loaded = x509.load_der_x509_certificate(certificate.der)

        self.assertTrue(certificate.is_ca)
        self.assertEqual(certificate.serial, "01a2")
        self.assertEqual(certificate.not_before, datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(certificate.signature_algorithm_name, "Ed25519")
        self.assertEqual(loaded.extensions.get_extension_for_class(x509.BasicConstraints).value.path_length, 0)
        self.assertTrue(loaded.extensions.get_extension_for_class(x509.KeyUsage).value.key_cert_sign)
        san = loaded.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        self.assertEqual(san.get_values_for_type(x509.DNSName), ["ca.example"])
        self.assertIsNotNone(certificate.extension("1.2.3.4"))

    def test_validity_days(self):
        """Test that validity_days sets notAfter relative to notBefore."""
        options = CertificateOptions(subject="CN=a", key_family="ec", validity_days=30)

        certificate = CertificateBuilder(self.engine, options).build().certificate

        self.assertEqual(certificate.not_after - certificate.not_before, timedelta(days=30))

    def test_custom_issuer_dn(self):
        """Test that a self-signed certificate can carry a different issuer DN."""
        result = build_certificate(self.engine, {
            'subject': 'CN=a', 'key_family': 'ec', 'issuer_dn': 'CN=Someone Else',
        })

        self.assertEqual(result.certificate.issuer.format(), "CN=Someone Else")

    def test_missing_subject(self):
        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, {'subject': '  ', 'key_family': 'ec'})

    def test_provided_public_key_cannot_self_sign(self):
        """Test that a self-signed certificate needs the private key."""
        public_pem = export_key(derive_public_key(self.engine.generate_key_pair(KeyFamily.EC)), KeyFormat.PEM)

        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, {
                'subject': 'CN=a', 'key_mode': 'provided', 'key_text': public_pem.decode(),
            })

    def test_provided_key_without_text(self):
        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, {'subject': 'CN=a', 'key_mode': 'provided'})

    def test_provided_key_not_returned(self):
        """Test that a caller-supplied key is not echoed back."""
        key_pem = export_key(self.engine.generate_key_pair(KeyFamily.EC), KeyFormat.PEM).decode()

        result = build_certificate(self.engine, {'subject': 'CN=a', 'key_mode': 'provided', 'key_text': key_pem})

        self.assertIsNone(result.private_key_pem)

    def test_pkcs12_output(self):
        """Test that RSA certificates can be returned as a PKCS#12 bundle."""
        result = build_certificate(self.engine, {
            'subject': 'CN=bundle.example', 'key_family': 'rsa',
            'output_pkcs12': True, 'pkcs12_password': 'hunter2',
        })

        bundle = pkcs12.load_pkcs12(base64.b64decode(result.pkcs12_base64), b"hunter2")
        self.assertEqual(bundle.cert.certificate.subject.rfc4514_string(), "CN=bundle.example")
        self.assertIsNotNone(bundle.key)

    def test_pkcs12_output_needs_rsa(self):
        with self.assertRaises(CapabilityError):
            build_certificate(self.engine, {
                'subject': 'CN=a', 'key_family': 'ec',
                'output_pkcs12': True, 'pkcs12_password': 'hunter2',
            })

    def test_pkcs12_output_needs_password(self):
        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, {
                'subject': 'CN=a', 'key_family': 'rsa', 'output_pkcs12': True,
            })

    def test_invalid_path_length(self):
        with self.assertRaises(ParseError):
            CertificateOptions(subject="CN=a", path_length="many")

    def test_invalid_date(self):
        with self.assertRaises(ParseError):
            CertificateOptions(subject="CN=a", not_before="yesterday")


class TestBuilderPhases(unittest.TestCase):
    """Test cases for the assemble and sign phases."""

    def setUp(self):
        self.engine = CryptoEngine(Config())
        self.key = self.engine.generate_key_pair(KeyFamily.EC)
        self.options = CertificateOptions(
            subject="CN=phases.example",
            key_mode="provided",
            key_text=export_key(self.key, KeyFormat.PEM).decode(),
        )

    def test_signer_receives_assembled_bytes(self):
        """Test that the injected signer signs exactly the assembled TBS."""
        builder = CertificateBuilder(self.engine, self.options)

        tbs = builder.assemble()
        self.assertIs(builder.state, BuilderState.TBS_ASSEMBLED)

        signer = RecordingSigner(self.engine, self.key)
        builder.sign(signer)

        self.assertEqual(signer.signed, [tbs])
        self.assertIs(builder.state, BuilderState.SIGNED)

        certificate = builder.build(signer).certificate
        self.assertEqual(certificate.tbs, tbs)
        self.assertIs(validate(self.engine, [certificate]).signature_valid, Verdict.TRUE)

    def test_build_runs_both_phases_with_signer(self):
        signer = RecordingSigner(self.engine, self.key)

        result = CertificateBuilder(self.engine, self.options).build(signer)

        self.assertEqual(len(signer.signed), 1)
        self.assertEqual(result.certificate.tbs, signer.signed[0])

    def test_out_of_order_calls(self):
        """Test that phases cannot be skipped or repeated."""
        builder = CertificateBuilder(self.engine, self.options)

        with self.assertRaises(BuilderStateError):
            builder.sign()

        builder.assemble()
        with self.assertRaises(BuilderStateError):
            builder.assemble()

        builder.sign()
        with self.assertRaises(BuilderStateError):
            builder.sign()

    def test_signer_algorithm_must_match(self):
        """Test that a signer for another algorithm is refused."""
        builder = CertificateBuilder(self.engine, self.options)
        builder.assemble()
        signer = RecordingSigner(self.engine, self.key, select_signature_algorithm(KeyFamily.EC, "sha512"))

        with self.assertRaises(BuilderStateError):
            builder.sign(signer)
        self.assertEqual(signer.signed, [])
        self.assertIs(builder.state, BuilderState.TBS_ASSEMBLED)

    def test_hash_choice(self):
        """Test that hash_name selects the signature algorithm."""
        self.options.hash_name = "sha384"

        certificate = CertificateBuilder(self.engine, self.options).build().certificate

        self.assertEqual(certificate.signature_algorithm_name, "ecdsa-with-SHA384")


class TestExternalIssuer(unittest.TestCase):
    """Test cases for certificates signed by a separate CA."""

    @classmethod
    def setUpClass(cls):
        cls.engine = CryptoEngine(Config())
        cls.ca = build_certificate(cls.engine, {
            'subject': 'CN=Test CA',
            'key_family': 'ec',
            'is_ca': True,
            'path_length': 0,
            'key_usage': ['keyCertSign', 'cRLSign'],
        })

    def _leaf_options(self, **overrides):
        options = {
            'subject': 'CN=leaf.example',
            'key_family': 'ec',
            'self_signed': False,
            'issuer_certificate': self.ca.pem,
            'issuer_key': self.ca.private_key_pem,
            'san': 'DNS:leaf.example',
        }
        options.update(overrides)
        return options

    def test_signed_by_ca(self):
        """Test that the leaf names the CA as issuer and chains to it."""
        leaf = build_certificate(self.engine, self._leaf_options()).certificate

        self.assertEqual(leaf.issuer.format(), "CN=Test CA")
        self.assertEqual(leaf.issuer_der, self.ca.certificate.subject_der)
        self.assertEqual(leaf.authority_key_identifier, self.ca.certificate.subject_key_identifier)

        result = validate(self.engine, [leaf, self.ca.certificate], [self.ca.certificate])
        self.assertIs(result.signature_valid, Verdict.TRUE)
        self.assertIs(result.chain_valid, Verdict.TRUE)

    def test_missing_issuer(self):
        """Test that an external issuer needs both certificate and key."""
        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, self._leaf_options(issuer_key=None))
        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, self._leaf_options(issuer_certificate=""))

    def test_issuer_key_mismatch(self):
        """Test that a key not matching the issuer certificate is rejected."""
        other = export_key(self.engine.generate_key_pair(KeyFamily.EC), KeyFormat.PEM).decode()

        with self.assertRaises(ParseError):
            build_certificate(self.engine, self._leaf_options(issuer_key=other))

    def test_public_issuer_key(self):
        """Test that a public-only issuer key cannot sign."""
        public = export_key(derive_public_key(parse_key(self.ca.private_key_pem)), KeyFormat.PEM).decode()

        with self.assertRaises(MissingInputError):
            build_certificate(self.engine, self._leaf_options(issuer_key=public))

    def test_public_subject_key(self):
        """Test that a CA can certify a key it only has the public half of."""
        subject_key = self.engine.generate_key_pair(KeyFamily.ED448)
        public = export_key(derive_public_key(subject_key), KeyFormat.PEM).decode()

        leaf = build_certificate(self.engine, self._leaf_options(key_mode='provided', key_text=public)).certificate

        self.assertEqual(leaf.public_key, derive_public_key(subject_key))

    def test_dh_subject_key(self):
        """Test that a DH public key can be certified by a signing CA."""
        p = 2 ** 521 - 1
        dh_key = DhKey(p, 2, pow(2, 424242, p))
        public = export_key(dh_key, KeyFormat.PEM).decode()

        result = build_certificate(self.engine, self._leaf_options(
            key_mode='provided', key_text=public, key_usage=['keyAgreement'],
        ))

        self.assertEqual(result.certificate.public_key, dh_key)
        self.assertEqual(result.certificate.public_key_algorithm_oid, "1.2.840.113549.1.3.1")
        chain = parse_input(result.pem + self.ca.pem).certificates
        self.assertIs(validate(self.engine, chain).signature_valid, Verdict.TRUE)

    def test_issuer_certificate_in_pkcs12(self):
        """Test that the issuer certificate is added to PKCS#12 output."""
        result = build_certificate(self.engine, self._leaf_options(
            key_family='rsa', output_pkcs12=True, pkcs12_password='hunter2',
        ))

        bundle = pkcs12.load_pkcs12(base64.b64decode(result.pkcs12_base64), b"hunter2")
        self.assertEqual(len(bundle.additional_certs), 1)


if __name__ == '__main__':
    unittest.main()
