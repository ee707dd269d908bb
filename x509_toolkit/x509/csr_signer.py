"""
Issue a certificate for a certificate signing request.

Subject name and SubjectPublicKeyInfo are copied from the request byte for
byte; the issuer is always an external CA certificate and key.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .asn1_builder import ExtensionValue, parse_custom_extensions
from .certificate_builder import (
    BuildResult,
    CertificateBuilder,
    CertificateOptions,
    IssuerMaterial,
    key_identifier_extensions,
    resolve_external_issuer,
    standard_extensions,
)
from .engine import CryptoEngine
from .errors import MissingInputError
from .parser import CertificateRequest, parse_input, select
from .signing import Signer

CARRIED_EXTENSIONS = {
    "2.5.29.17",  # subjectAltName
    "2.5.29.15",  # keyUsage
    "2.5.29.37",  # extKeyUsage
    "2.5.29.19",  # basicConstraints
}


@dataclass
class CsrSigningOptions(CertificateOptions):
    csr: str = ""
    csr_format: str = "pem"
    carry_csr_extensions: bool = False

    def __post_init__(self):
        super().__post_init__()
        self.self_signed = False


def carried_extensions(entries) -> List[ExtensionValue]:
    """Requested extensions that are copied into the certificate verbatim."""
    return [
        ExtensionValue(entry.oid, entry.critical, entry.raw)
        for entry in entries
        if entry.oid in CARRIED_EXTENSIONS
    ]


class CsrSigner(CertificateBuilder):
    """Certificate builder whose subject comes from a parsed request."""

    def __init__(self, engine: CryptoEngine, options: CsrSigningOptions,
                 request: Optional[CertificateRequest] = None):
        super().__init__(engine, options)
        self.request = request

    def _load_request(self) -> CertificateRequest:
        if self.request is None:
            if not self.options.csr or not str(self.options.csr).strip():
                raise MissingInputError("A certificate signing request is required.")
            self.request = select(parse_input(self.options.csr, self.options.csr_format).requests, 0)
        return self.request

    def _subject_name_der(self) -> bytes:
        request = self._load_request()
        if not request.subject.attributes:
            raise MissingInputError("The certificate request has no subject.")
        return request.subject_der

    def _subject_spki(self) -> bytes:
        request = self._load_request()
        if not request.spki_der:
            raise MissingInputError("The certificate request has no public key.")
        self.subject_key = request.public_key
        self.generated = False
        return request.spki_der

    def _resolve_issuer(self, subject_der: bytes, spki: bytes) -> IssuerMaterial:
        opts = self.options
        return resolve_external_issuer(
            self.engine, opts.issuer_certificate, opts.issuer_key, opts.issuer_key_password
        )

    def _extensions(self, spki: bytes) -> List[ExtensionValue]:
        if self.options.carry_csr_extensions:
            extensions = carried_extensions(self.request.extensions)
        else:
            extensions = standard_extensions(self.options)
        extensions.extend(key_identifier_extensions(self.engine, self.options, spki, self.issuer.key_identifier))
        if not self.options.carry_csr_extensions:
            extensions.extend(parse_custom_extensions(self.options.custom_extensions))
        return extensions

    def _pkcs12(self, certificate) -> str:
        raise MissingInputError("PKCS#12 output needs a private key, which a certificate request does not carry.")


def sign_csr(engine: CryptoEngine, options: Union[CsrSigningOptions, Dict[str, Any]],
             signer: Optional[Signer] = None) -> BuildResult:
    if isinstance(options, dict):
        options = CsrSigningOptions.from_dict(options)
    return CsrSigner(engine, options).build(signer)
