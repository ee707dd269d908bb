"""
Certificate signing request builder.

Requests are self-attested: the subject's own private key signs the
CertificationRequestInfo, so only RSA, EC and DSA keys are accepted.
"""
import base64
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

from asn1crypto import pem

from .asn1_builder import (
    ExtensionValue,
    basic_constraints,
    build_certification_request_info,
    extended_key_usage,
    key_usage,
    spki_der,
    subject_alt_name,
    subject_key_identifier,
    subject_public_key_bits,
    wrap_certification_request,
)
from .certificate_builder import KeyMode, optional_int, parse_key_mode, resolve_key
from .engine import CryptoEngine
from .errors import CapabilityError, MissingInputError
from .keys import KeyFormat, KeyMaterial, export_key
from .names import parse_dn, parse_san
from .parser import CertificateRequest, load_request
from .signing import KeySigner, Signer

logger = logging.getLogger(__name__)


@dataclass
class CsrOptions:
    subject: str = ""
    key_mode: str = "generate"
    key_family: str = "rsa"
    key_size: Optional[int] = None
    curve: Optional[str] = None
    key_text: Optional[str] = None
    key_password: Optional[str] = None

    san: str = ""
    key_usage: List[str] = field(default_factory=list)
    extended_key_usage: List[str] = field(default_factory=list)
    basic_constraints: bool = False
    is_ca: bool = False
    path_length: Optional[int] = None
    subject_key_identifier: bool = False

    hash_name: Optional[str] = None

    def __post_init__(self):
        self.key_mode = parse_key_mode(self.key_mode).value
        self.key_size = optional_int(self.key_size, "Key size")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class CsrResult:
    request: CertificateRequest
    pem: str
    der_base64: str
    private_key_pem: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pem': self.pem,
            'der_base64': self.der_base64,
            'private_key_pem': self.private_key_pem,
            'subject': self.request.subject.format(),
        }


class CsrBuilder:
    """Builds and self-signs a PKCS#10 request."""

    def __init__(self, engine: CryptoEngine, options: CsrOptions):
        self.engine = engine
        self.options = options
        self.logger = logging.getLogger(__name__)
        self.key: Optional[KeyMaterial] = None

    def _key(self) -> KeyMaterial:
        opts = self.options
        key = resolve_key(
            self.engine, opts.key_mode, opts.key_family, opts.key_size, opts.curve,
            opts.key_text, opts.key_password,
        )
        if not key.family.can_sign_csr:
            raise CapabilityError(
                f"{key.family.value.upper()} keys cannot sign a certificate request; use RSA, EC or DSA."
            )
        if not key.has_private:
            raise MissingInputError("A private key is required to sign a certificate request.")
        return key

    def _extensions(self, spki: bytes) -> List[ExtensionValue]:
        opts = self.options
        extensions = [
            key_usage(opts.key_usage),
            extended_key_usage(opts.extended_key_usage),
            subject_alt_name(parse_san(opts.san)),
        ]
        if opts.basic_constraints:
            extensions.append(basic_constraints(opts.is_ca, opts.path_length))
        if opts.subject_key_identifier:
            extensions.append(subject_key_identifier(self.engine.key_identifier(subject_public_key_bits(spki))))
        return [ext for ext in extensions if ext is not None]

    def build(self, signer: Optional[Signer] = None) -> CsrResult:
        """
        Build the request.

        Raises:
            MissingInputError: If the subject or private key is missing
            CapabilityError: For EdDSA and DH keys
        """
        if not self.options.subject or not self.options.subject.strip():
            raise MissingInputError("A subject DN is required.")
        subject_der = parse_dn(self.options.subject).public_bytes()
        self.key = self._key()
        spki = spki_der(self.key)

        info = build_certification_request_info(subject_der, spki, self._extensions(spki))
        signer = signer or KeySigner(self.engine, self.key, self.options.hash_name)
        der = wrap_certification_request(info, signer.signature_algorithm, signer.sign(info))

        result = CsrResult(
            request=load_request(der),
            pem=pem.armor("CERTIFICATE REQUEST", der).decode("ascii"),
            der_base64=base64.b64encode(der).decode("ascii"),
        )
        if parse_key_mode(self.options.key_mode) is KeyMode.GENERATE:
            result.private_key_pem = export_key(self.key, KeyFormat.PEM).decode("ascii")
        self.logger.info(f"Built certificate request for {result.request.subject}")
        return result


def build_csr(engine: CryptoEngine, options: Union[CsrOptions, Dict[str, Any]],
              signer: Optional[Signer] = None) -> CsrResult:
    if isinstance(options, dict):
        options = CsrOptions.from_dict(options)
    return CsrBuilder(engine, options).build(signer)
