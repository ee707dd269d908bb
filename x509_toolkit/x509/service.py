"""
Service facade over the certificate engine.

Wires configuration and a single CryptoEngine into the individual
operations and shapes their results into plain dicts for the API layer.
"""
import base64
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from asn1crypto import pem

from .certificate_builder import BuildResult, CertificateOptions, build_certificate
from .converter import ConversionResult, convert
from .csr_builder import CsrOptions, CsrResult, build_csr
from .csr_signer import CsrSigningOptions, sign_csr
from .engine import CryptoEngine, Verdict
from .errors import MissingInputError, X509Error
from .keys import KeyFamily, KeyFormat, derive_public_key, describe_key, export_key, parse_key, private_key_der
from .parser import (
    DEFAULT_MAX_INPUT_BYTES,
    coerce_binary,
    derive_private_key_outputs,
    derive_public_key_outputs,
    parse_input,
    select,
    summarize,
)
from .pkcs12 import DEFAULT_ITERATIONS, pack, unpack
from .validator import ValidationResult, validate


class X509Service:
    """Entry point for every certificate operation."""

    def __init__(self, config=None, engine: Optional[CryptoEngine] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.engine = engine or CryptoEngine(config)
        self.max_input_bytes = getattr(config, 'max_input_bytes', DEFAULT_MAX_INPUT_BYTES)
        self.pkcs12_iterations = getattr(config, 'pkcs12_iterations', DEFAULT_ITERATIONS)

    # Keys

    def generate_key(self, family: str = "rsa", key_size: Optional[int] = None,
                     curve: Optional[str] = None) -> Dict[str, Any]:
        key = self.engine.generate_key_pair(KeyFamily.parse(family or "rsa"), key_size, curve)
        public = derive_public_key(key)
        return {
            'algorithm': describe_key(key),
            'private_key_pem': export_key(key, KeyFormat.PEM).decode("ascii"),
            'private_key_jwk': export_key(key, KeyFormat.JWK).decode("utf-8"),
            'public_key_pem': export_key(public, KeyFormat.PEM).decode("ascii"),
            'public_key_jwk': export_key(public, KeyFormat.JWK).decode("utf-8"),
        }

    # Builders

    def build_certificate(self, options: Union[CertificateOptions, Dict[str, Any]]) -> BuildResult:
        return build_certificate(self.engine, options)

    def build_csr(self, options: Union[CsrOptions, Dict[str, Any]]) -> CsrResult:
        return build_csr(self.engine, options)

    def sign_csr(self, options: Union[CsrSigningOptions, Dict[str, Any]]) -> BuildResult:
        return sign_csr(self.engine, options)

    # Viewing and validation

    def view(self, data: Union[str, bytes], fmt: str = "pem", password: Optional[str] = None,
             index: int = 0, key_text: Optional[str] = None,
             key_password: Optional[str] = None) -> Dict[str, Any]:
        """Summary of one parsed item plus re-encoded keys."""
        parsed = parse_input(data, fmt, password, self.max_input_bytes)
        obj = select(parsed.items, index)
        view = {
            'count': len(parsed.items),
            'summary': summarize(obj).to_dict(),
            'public_key': None,
            'private_key': None,
        }
        if obj.public_key is not None:
            view['public_key'] = derive_public_key_outputs(obj).to_dict()

        private_key = parsed.private_key
        if key_text and key_text.strip():
            view['private_key'] = derive_private_key_outputs(key_text, key_password).to_dict()
        elif private_key is not None:
            view['private_key'] = derive_private_key_outputs(private_key).to_dict()
        return view

    def validate(self, data: Union[str, bytes], fmt: str = "pem", password: Optional[str] = None,
                 ca_bundle: Optional[Union[str, bytes]] = None, ca_format: str = "pem",
                 now: Optional[datetime] = None) -> ValidationResult:
        chain = parse_input(data, fmt, password, self.max_input_bytes).certificates
        if not chain:
            raise MissingInputError("At least one certificate is required for validation.")
        if not ca_bundle:
            return validate(self.engine, chain, None, now)
        try:
            bundle = parse_input(ca_bundle, ca_format, None, self.max_input_bytes).certificates
        except X509Error as e:
            self.logger.info(f"CA bundle rejected: {type(e).__name__}")
            result = validate(self.engine, chain, None, now)
            result.chain_valid = Verdict.FALSE
            result.errors.append(f"CA bundle could not be parsed: {e.message}")
            return result
        return validate(self.engine, chain, bundle, now)

    # Conversion and PKCS#12

    def convert(self, data: Union[str, bytes], source_format: str, target_format: str,
                password: Optional[str] = None, key_text: Optional[str] = None,
                key_password: Optional[str] = None) -> ConversionResult:
        return convert(data, source_format, target_format, password, key_text, key_password,
                       self.pkcs12_iterations, self.max_input_bytes)

    def pack_pkcs12(self, certificate: Union[str, bytes], key_text: str, password: str,
                    certificate_format: str = "pem", key_password: Optional[str] = None) -> str:
        """Bundle the first certificate (plus any others as CAs) with a key; returns base64."""
        certificates = parse_input(certificate, certificate_format, None, self.max_input_bytes).certificates
        if not key_text or not key_text.strip():
            raise MissingInputError("A private key is required for PKCS#12 output.")
        key = parse_key(key_text, key_password)
        data = pack(
            certificates[0].der,
            private_key_der(key),
            password,
            extra_certs=[c.der for c in certificates[1:]],
            iterations=self.pkcs12_iterations,
        )
        return base64.b64encode(data).decode("ascii")

    def unpack_pkcs12(self, data: Union[str, bytes], password: str = "") -> Dict[str, Any]:
        contents = unpack(coerce_binary(data, self.max_input_bytes), password)
        return {
            'certificates': [pem.armor("CERTIFICATE", c.der).decode("ascii") for c in contents.certificates],
            'summaries': [summarize(c).to_dict() for c in contents.certificates],
            'private_key_pem': (
                export_key(contents.private_key, KeyFormat.PEM).decode("ascii")
                if contents.private_key is not None else None
            ),
        }
