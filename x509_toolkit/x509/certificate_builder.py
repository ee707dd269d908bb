"""
Certificate builder.

Building is split into two phases so the signing step can be swapped out:
``assemble()`` fixes subject, issuer, key and extensions and returns the
TBSCertificate bytes, ``sign()`` signs those exact bytes. ``build()`` runs
both and packages the outputs.
"""
import base64
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from asn1crypto import pem

from .asn1_builder import (
    ExtensionValue,
    authority_key_identifier,
    basic_constraints,
    build_tbs_certificate,
    extended_key_usage,
    key_usage,
    parse_custom_extensions,
    spki_der,
    subject_alt_name,
    subject_key_identifier,
    subject_public_key_bits,
    wrap_certificate,
)
from .engine import CryptoEngine
from .errors import BuilderStateError, CapabilityError, MissingInputError, ParseError
from .keys import KeyFamily, KeyFormat, KeyMaterial, derive_public_key, export_key, parse_key, private_key_der
from .names import parse_dn, parse_san, serial_to_int
from .parser import Certificate, load_certificate, parse_input, select
from .signing import KeySigner, SignatureAlgorithm, Signer, select_signature_algorithm

logger = logging.getLogger(__name__)


class BuilderState(Enum):
    DRAFT = "draft"
    TBS_ASSEMBLED = "tbs_assembled"
    SIGNED = "signed"


class KeyMode(Enum):
    GENERATE = "generate"
    PROVIDED = "provided"


def parse_key_mode(value: Union[KeyMode, str, None]) -> KeyMode:
    if isinstance(value, KeyMode):
        return value
    try:
        return KeyMode(str(value or "generate").strip().lower())
    except ValueError as e:
        raise ParseError(f"Unknown key mode: {value}. Use 'generate' or 'provided'.") from e


def optional_int(value, label: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ParseError(f"{label} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ParseError(f"{label} must be an integer.") from e


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ParseError(f"Invalid date/time: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _names(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.replace("\n", ",").split(",") if part.strip()]
    return list(value)


@dataclass
class CertificateOptions:
    """Everything a caller can choose when building a certificate."""

    # Subject and key
    subject: str = ""
    key_mode: str = "generate"
    key_family: str = "rsa"
    key_size: Optional[int] = None
    curve: Optional[str] = None
    key_text: Optional[str] = None
    key_password: Optional[str] = None

    # Issuer
    self_signed: bool = True
    issuer_dn: Optional[str] = None
    issuer_certificate: Optional[str] = None
    issuer_key: Optional[str] = None
    issuer_key_password: Optional[str] = None

    # Serial and validity
    serial: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    validity_days: Optional[int] = None

    # Extensions
    san: str = ""
    san_critical: bool = False
    basic_constraints: bool = True
    basic_constraints_critical: bool = True
    is_ca: bool = False
    path_length: Optional[int] = None
    key_usage: List[str] = field(default_factory=list)
    key_usage_critical: bool = True
    extended_key_usage: List[str] = field(default_factory=list)
    extended_key_usage_critical: bool = False
    subject_key_identifier: bool = True
    authority_key_identifier: bool = True
    custom_extensions: str = ""

    # Signature and outputs
    hash_name: Optional[str] = None
    output_pkcs12: bool = False
    pkcs12_password: Optional[str] = None

    def __post_init__(self):
        self.not_before = _parse_datetime(self.not_before)
        self.not_after = _parse_datetime(self.not_after)
        self.key_usage = _names(self.key_usage)
        self.extended_key_usage = _names(self.extended_key_usage)
        self.key_mode = parse_key_mode(self.key_mode).value
        self.key_size = optional_int(self.key_size, "Key size")
        self.validity_days = optional_int(self.validity_days, "Validity days")
        if self.path_length == "":
            self.path_length = None
        if self.path_length is not None:
            try:
                self.path_length = int(self.path_length)
            except (TypeError, ValueError) as e:
                raise ParseError("Path length must be a non-negative integer.") from e

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create options from a JSON-style dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class BuildResult:
    certificate: Certificate
    pem: str
    der_base64: str
    pkcs12_base64: Optional[str] = None
    private_key_pem: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pem': self.pem,
            'der_base64': self.der_base64,
            'pkcs12_base64': self.pkcs12_base64,
            'private_key_pem': self.private_key_pem,
            'serial': self.certificate.serial,
            'subject': self.certificate.subject.format(),
            'issuer': self.certificate.issuer.format(),
        }


@dataclass
class IssuerMaterial:
    """Issuer name, signing key and key identifier for AKI."""

    name_der: bytes
    key: Optional[KeyMaterial]
    key_identifier: Optional[bytes]
    certificate: Optional[Certificate] = None


def resolve_key(engine: CryptoEngine, mode: Union[KeyMode, str], family: Union[KeyFamily, str],
                key_size: Optional[int] = None, curve: Optional[str] = None,
                key_text: Optional[str] = None, password: Optional[str] = None) -> KeyMaterial:
    """Generate a key pair or parse a provided key."""
    mode = parse_key_mode(mode)
    if mode is KeyMode.PROVIDED:
        if not key_text or not key_text.strip():
            raise MissingInputError("A key is required when key mode is 'provided'.")
        return parse_key(key_text, password)
    return engine.generate_key_pair(KeyFamily.parse(family or "rsa"), key_size, curve)


def load_issuer_certificate(source: Union[str, bytes, Certificate]) -> Certificate:
    if isinstance(source, Certificate):
        return source
    text = source.strip() if isinstance(source, str) else source
    fmt = "pem" if (isinstance(text, str) and text.startswith("-----BEGIN")) or \
        (isinstance(text, bytes) and text.startswith(b"-----BEGIN")) else "der"
    return select(parse_input(text, fmt).certificates, 0)


def resolve_external_issuer(engine: CryptoEngine, certificate_source, key_text,
                            password: Optional[str] = None) -> IssuerMaterial:
    """
    Load and cross-check an external issuer certificate and private key.

    Raises:
        MissingInputError: If either piece is absent or the key is public only
        ParseError: If the key does not belong to the certificate
    """
    if not certificate_source or not key_text:
        raise MissingInputError("An issuer certificate and issuer private key are required.")
    certificate = load_issuer_certificate(certificate_source)
    key = parse_key(key_text, password)
    if not key.has_private:
        raise MissingInputError("The issuer private key is required to sign.")
    if certificate.public_key is not None and derive_public_key(key) != certificate.public_key:
        raise ParseError("The issuer private key does not match the issuer certificate.")

    key_id = certificate.subject_key_identifier
    if key_id is None:
        key_id = engine.key_identifier(subject_public_key_bits(certificate.spki_der))
    return IssuerMaterial(certificate.subject_der, key, key_id, certificate)


def standard_extensions(options: CertificateOptions) -> List[ExtensionValue]:
    """Extensions chosen through the option flags, excluding key identifiers."""
    extensions = []
    if options.basic_constraints:
        extensions.append(basic_constraints(
            options.is_ca, options.path_length, options.basic_constraints_critical
        ))
    extensions.append(key_usage(options.key_usage, options.key_usage_critical))
    extensions.append(extended_key_usage(options.extended_key_usage, options.extended_key_usage_critical))
    extensions.append(subject_alt_name(parse_san(options.san), options.san_critical))
    return [ext for ext in extensions if ext is not None]


def key_identifier_extensions(engine: CryptoEngine, options: CertificateOptions, spki: bytes,
                              issuer_key_id: Optional[bytes]) -> List[ExtensionValue]:
    extensions = []
    if options.subject_key_identifier:
        extensions.append(subject_key_identifier(engine.key_identifier(subject_public_key_bits(spki))))
    if options.authority_key_identifier and issuer_key_id is not None:
        extensions.append(authority_key_identifier(issuer_key_id))
    return extensions


class CertificateBuilder:
    """
    Two-phase certificate builder.

    State moves DRAFT -> TBS_ASSEMBLED -> SIGNED; calling a step out of
    order raises BuilderStateError.
    """

    def __init__(self, engine: CryptoEngine, options: CertificateOptions):
        self.engine = engine
        self.options = options
        self.logger = logging.getLogger(__name__)
        self.state = BuilderState.DRAFT

        self.subject_key: Optional[KeyMaterial] = None
        self.generated = False
        self.issuer: Optional[IssuerMaterial] = None
        self.signature_algorithm: Optional[SignatureAlgorithm] = None
        self._tbs: Optional[bytes] = None
        self._der: Optional[bytes] = None

    # Subject side

    def _subject_name_der(self) -> bytes:
        if not self.options.subject or not self.options.subject.strip():
            raise MissingInputError("A subject DN is required.")
        return parse_dn(self.options.subject).public_bytes()

    def _subject_spki(self) -> bytes:
        opts = self.options
        self.subject_key = resolve_key(
            self.engine, opts.key_mode, opts.key_family, opts.key_size, opts.curve,
            opts.key_text, opts.key_password,
        )
        self.generated = parse_key_mode(opts.key_mode) is KeyMode.GENERATE
        return spki_der(self.subject_key)

    def _extensions(self, spki: bytes) -> List[ExtensionValue]:
        extensions = standard_extensions(self.options)
        extensions.extend(key_identifier_extensions(self.engine, self.options, spki, self.issuer.key_identifier))
        extensions.extend(parse_custom_extensions(self.options.custom_extensions))
        return extensions

    # Issuer side

    def _resolve_issuer(self, subject_der: bytes, spki: bytes) -> IssuerMaterial:
        opts = self.options
        if not opts.self_signed:
            return resolve_external_issuer(
                self.engine, opts.issuer_certificate, opts.issuer_key, opts.issuer_key_password
            )
        if not self.subject_key.has_private:
            raise MissingInputError("A private key is required for a self-signed certificate.")
        name_der = parse_dn(opts.issuer_dn).public_bytes() if opts.issuer_dn else subject_der
        key_id = self.engine.key_identifier(subject_public_key_bits(spki))
        return IssuerMaterial(name_der, self.subject_key, key_id)

    def _validity(self):
        opts = self.options
        not_before = opts.not_before or datetime.now(timezone.utc).replace(microsecond=0)
        if opts.not_after is not None:
            return not_before, opts.not_after
        days = opts.validity_days
        if days is None:
            days = getattr(self.engine.config, 'default_validity_days', 365)
        return not_before, not_before + timedelta(days=days)

    # Phases

    def assemble(self) -> bytes:
        """
        Fix subject, issuer, key and extensions and encode the TBSCertificate.

        Returns:
            The TBSCertificate DER, which is exactly what gets signed

        Raises:
            BuilderStateError: If called twice
            MissingInputError: If subject or issuer material is missing
            CapabilityError: If the issuer key cannot sign
        """
        if self.state is not BuilderState.DRAFT:
            raise BuilderStateError("The certificate has already been assembled.")

        subject_der = self._subject_name_der()
        spki = self._subject_spki()
        self.issuer = self._resolve_issuer(subject_der, spki)
        self.signature_algorithm = select_signature_algorithm(
            self.issuer.key.family, self.options.hash_name or self.engine.default_hash
        )
        not_before, not_after = self._validity()

        self._tbs = build_tbs_certificate(
            serial_to_int(self.options.serial),
            self.signature_algorithm,
            self.issuer.name_der,
            not_before,
            not_after,
            subject_der,
            spki,
            self._extensions(spki),
        )
        self.state = BuilderState.TBS_ASSEMBLED
        self.logger.debug(f"Assembled TBS with {self.signature_algorithm.name}")
        return self._tbs

    def default_signer(self) -> Signer:
        return KeySigner(self.engine, self.issuer.key, self.options.hash_name)

    def sign(self, signer: Optional[Signer] = None) -> bytes:
        """
        Sign the assembled TBS bytes.

        Raises:
            BuilderStateError: If nothing is assembled, it is already signed,
                or the signer uses a different algorithm than the TBS names
        """
        if self.state is not BuilderState.TBS_ASSEMBLED:
            raise BuilderStateError("Assemble the certificate before signing it.")
        signer = signer or self.default_signer()
        if signer.signature_algorithm.oid != self.signature_algorithm.oid:
            raise BuilderStateError(
                f"Signer uses {signer.signature_algorithm.name} but the certificate was "
                f"assembled for {self.signature_algorithm.name}."
            )
        signature = signer.sign(self._tbs)
        self._der = wrap_certificate(self._tbs, self.signature_algorithm, signature)
        self.state = BuilderState.SIGNED
        return self._der

    def _pkcs12(self, certificate: Certificate) -> str:
        from .pkcs12 import pack

        key = self.subject_key
        if key is None or key.family is not KeyFamily.RSA:
            raise CapabilityError("PKCS#12 output is only available for RSA keys.")
        if not key.has_private:
            raise MissingInputError("PKCS#12 output needs the subject private key.")
        if not self.options.pkcs12_password:
            raise MissingInputError("A password is required for PKCS#12 output.")
        extra = [self.issuer.certificate.der] if self.issuer.certificate is not None else []
        data = pack(
            certificate.der,
            private_key_der(key),
            self.options.pkcs12_password,
            extra_certs=extra,
            iterations=getattr(self.engine.config, 'pkcs12_iterations', 2048),
        )
        return base64.b64encode(data).decode("ascii")

    def build(self, signer: Optional[Signer] = None) -> BuildResult:
        """Run the remaining phases and package PEM, DER and optional PKCS#12 output."""
        if self.state is BuilderState.DRAFT:
            self.assemble()
        if self.state is BuilderState.TBS_ASSEMBLED:
            self.sign(signer)

        certificate = load_certificate(self._der)
        result = BuildResult(
            certificate=certificate,
            pem=pem.armor("CERTIFICATE", self._der).decode("ascii"),
            der_base64=base64.b64encode(self._der).decode("ascii"),
        )
        if self.options.output_pkcs12:
            result.pkcs12_base64 = self._pkcs12(certificate)
        if self.generated and self.subject_key is not None:
            result.private_key_pem = export_key(self.subject_key, KeyFormat.PEM).decode("ascii")

        self.logger.info(f"Built certificate serial {certificate.serial} for {certificate.subject}")
        return result


def build_certificate(engine: CryptoEngine, options: Union[CertificateOptions, Dict[str, Any]],
                      signer: Optional[Signer] = None) -> BuildResult:
    if isinstance(options, dict):
        options = CertificateOptions.from_dict(options)
    return CertificateBuilder(engine, options).build(signer)
