"""
Certificate, CSR and PKCS#12 parser.

Structures are decoded with asn1crypto so that raw pieces (TBS bytes,
issuer/subject DER, SPKI) are kept exactly as encoded, including keys the
``cryptography`` loaders do not accept. Extension values are decoded for
display through ``cryptography`` when it can load the object.
"""
import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from asn1crypto import core, pem, x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtensionOID

from .asn1_builder import EXT_KEY_USAGES, EXTENSION_REQUEST_OID
from .errors import ParseError, X509Error
from .keys import KeyFormat, KeyMaterial, describe_key, export_key, parse_key
from .names import DistinguishedName, SanEntry
from .signing import signature_algorithm_name
from .structures import Certificate as Asn1Certificate
from .structures import CertificationRequest as Asn1CertificationRequest

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_BYTES = 1024 * 1024

CERTIFICATE_LABELS = ("CERTIFICATE", "X509 CERTIFICATE", "TRUSTED CERTIFICATE")
REQUEST_LABELS = ("CERTIFICATE REQUEST", "NEW CERTIFICATE REQUEST")

BASIC_CONSTRAINTS_OID = ExtensionOID.BASIC_CONSTRAINTS.dotted_string
SUBJECT_KEY_IDENTIFIER_OID = ExtensionOID.SUBJECT_KEY_IDENTIFIER.dotted_string
AUTHORITY_KEY_IDENTIFIER_OID = ExtensionOID.AUTHORITY_KEY_IDENTIFIER.dotted_string

EXTENSION_NAMES = {
    BASIC_CONSTRAINTS_OID: "basicConstraints",
    ExtensionOID.KEY_USAGE.dotted_string: "keyUsage",
    ExtensionOID.EXTENDED_KEY_USAGE.dotted_string: "extendedKeyUsage",
    ExtensionOID.SUBJECT_ALTERNATIVE_NAME.dotted_string: "subjectAltName",
    ExtensionOID.ISSUER_ALTERNATIVE_NAME.dotted_string: "issuerAltName",
    SUBJECT_KEY_IDENTIFIER_OID: "subjectKeyIdentifier",
    AUTHORITY_KEY_IDENTIFIER_OID: "authorityKeyIdentifier",
    ExtensionOID.CRL_DISTRIBUTION_POINTS.dotted_string: "cRLDistributionPoints",
    ExtensionOID.AUTHORITY_INFORMATION_ACCESS.dotted_string: "authorityInfoAccess",
    ExtensionOID.CERTIFICATE_POLICIES.dotted_string: "certificatePolicies",
    ExtensionOID.NAME_CONSTRAINTS.dotted_string: "nameConstraints",
}

_EKU_NAMES = {oid.dotted_string: name for name, oid in EXT_KEY_USAGES.items()}

_KEY_USAGE_ATTRS = (
    ("digital_signature", "digitalSignature"),
    ("content_commitment", "nonRepudiation"),
    ("key_encipherment", "keyEncipherment"),
    ("data_encipherment", "dataEncipherment"),
    ("key_agreement", "keyAgreement"),
    ("key_cert_sign", "keyCertSign"),
    ("crl_sign", "cRLSign"),
)


@dataclass(frozen=True)
class ExtensionEntry:
    oid: str
    name: str
    critical: bool
    value: Any
    raw: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {'oid': self.oid, 'name': self.name, 'critical': self.critical, 'value': self.value}


class _ParsedBase:
    """Accessors shared by certificates and requests."""

    extensions: Tuple[ExtensionEntry, ...]
    signature_algorithm_oid: str

    @property
    def signature_algorithm_name(self) -> str:
        return signature_algorithm_name(self.signature_algorithm_oid)

    def extension(self, oid: str) -> Optional[ExtensionEntry]:
        for entry in self.extensions:
            if entry.oid == oid:
                return entry
        return None

    @property
    def is_ca(self) -> bool:
        entry = self.extension(BASIC_CONSTRAINTS_OID)
        if entry is None:
            return False
        try:
            return bool(asn1_x509.BasicConstraints.load(entry.raw)['ca'].native)
        except ValueError:
            return False

    @property
    def subject_key_identifier(self) -> Optional[bytes]:
        entry = self.extension(SUBJECT_KEY_IDENTIFIER_OID)
        if entry is None:
            return None
        try:
            return core.OctetString.load(entry.raw).native
        except ValueError:
            return None


@dataclass(frozen=True)
class Certificate(_ParsedBase):
    """Immutable parsed certificate."""

    der: bytes
    tbs: bytes
    serial: str
    issuer: DistinguishedName
    subject: DistinguishedName
    issuer_der: bytes
    subject_der: bytes
    not_before: datetime
    not_after: datetime
    public_key: Optional[KeyMaterial]
    public_key_algorithm_oid: str
    spki_der: bytes
    extensions: Tuple[ExtensionEntry, ...]
    signature_algorithm_oid: str
    signature: bytes

    kind = "certificate"

    @property
    def authority_key_identifier(self) -> Optional[bytes]:
        entry = self.extension(AUTHORITY_KEY_IDENTIFIER_OID)
        if entry is None:
            return None
        try:
            return asn1_x509.AuthorityKeyIdentifier.load(entry.raw)['key_identifier'].native
        except ValueError:
            return None

    def to_pem(self) -> str:
        return pem.armor("CERTIFICATE", self.der).decode("ascii")


@dataclass(frozen=True)
class CertificateRequest(_ParsedBase):
    """Immutable parsed certification request."""

    der: bytes
    info: bytes
    subject: DistinguishedName
    subject_der: bytes
    public_key: Optional[KeyMaterial]
    public_key_algorithm_oid: str
    spki_der: bytes
    extensions: Tuple[ExtensionEntry, ...]
    signature_algorithm_oid: str
    signature: bytes

    kind = "csr"

    def to_pem(self) -> str:
        return pem.armor("CERTIFICATE REQUEST", self.der).decode("ascii")


ParsedObject = Union[Certificate, CertificateRequest]


@dataclass
class ParsedInput:
    certificates: List[Certificate]
    requests: List[CertificateRequest]
    private_key: Optional[KeyMaterial] = None

    @property
    def items(self) -> List[ParsedObject]:
        return list(self.certificates) + list(self.requests)


# Extension display values

def _key_usage_names(value: x509.KeyUsage) -> List[str]:
    names = [label for attr, label in _KEY_USAGE_ATTRS if getattr(value, attr)]
    if value.key_agreement:
        if value.encipher_only:
            names.append("encipherOnly")
        if value.decipher_only:
            names.append("decipherOnly")
    return names


def _general_name_text(name) -> str:
    try:
        return SanEntry.from_general_name(name).format()
    except ParseError:
        return str(name.value)


def _display_value(value: x509.ExtensionType, raw: bytes) -> Any:
    if isinstance(value, x509.BasicConstraints):
        return {'ca': value.ca, 'path_length': value.path_length}
    if isinstance(value, x509.KeyUsage):
        return _key_usage_names(value)
    if isinstance(value, x509.ExtendedKeyUsage):
        return [_EKU_NAMES.get(oid.dotted_string, oid.dotted_string) for oid in value]
    if isinstance(value, (x509.SubjectAlternativeName, x509.IssuerAlternativeName)):
        return [_general_name_text(name) for name in value]
    if isinstance(value, x509.SubjectKeyIdentifier):
        return value.digest.hex()
    if isinstance(value, x509.AuthorityKeyIdentifier):
        return {
            'key_identifier': value.key_identifier.hex() if value.key_identifier else None,
            'authority_cert_serial_number': value.authority_cert_serial_number,
        }
    return raw.hex()


def _decoded_extensions(loader, der: bytes) -> Dict[str, x509.ExtensionType]:
    """Decoded extension values by OID, empty when ``cryptography`` refuses."""
    try:
        obj = loader(der)
        return {ext.oid.dotted_string: ext.value for ext in obj.extensions}
    except (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType) as e:
        logger.debug(f"Falling back to raw extension values: {type(e).__name__}")
        return {}


def _extension_entries(asn1_extensions, decoded: Dict[str, x509.ExtensionType]) -> Tuple[ExtensionEntry, ...]:
    entries = []
    for ext in asn1_extensions:
        try:
            oid = ext['extn_id'].dotted
            raw = ext['extn_value'].native
            critical = bool(ext['critical'].native)
        except (ValueError, TypeError, KeyError) as e:
            raise ParseError("Invalid extension encoding.") from e
        value = decoded.get(oid)
        entries.append(ExtensionEntry(
            oid=oid,
            name=EXTENSION_NAMES.get(oid, oid),
            critical=critical,
            value=_display_value(value, raw) if value is not None else raw.hex(),
            raw=raw,
        ))
    return tuple(entries)


def _load_public_key(spki: bytes) -> Optional[KeyMaterial]:
    try:
        return parse_key(spki)
    except X509Error:
        logger.debug("Public key family not supported; keeping SPKI only")
        return None


def _name_from_der(der: bytes) -> DistinguishedName:
    try:
        name = asn1_x509.Name.load(der)
        pairs = []
        for rdn in name.chosen:
            for attribute in rdn:
                value = attribute['value'].native
                if isinstance(value, bytes):
                    value = value.hex()
                elif not isinstance(value, str):
                    value = str(value)
                pairs.append((attribute['type'].dotted, value))
    except (ValueError, TypeError, KeyError) as e:
        raise ParseError("Invalid distinguished name encoding.") from e
    return DistinguishedName(tuple(pairs))


def _serial_hex(value: int) -> str:
    if value < 0:
        value = -value
    text = format(value, "x")
    return text if len(text) % 2 == 0 else "0" + text


def load_certificate(der: bytes) -> Certificate:
    """
    Decode one DER certificate.

    Raises:
        ParseError: If the bytes are not a certificate
    """
    try:
        cert = Asn1Certificate.load(der, strict=True)
        tbs = cert['tbs_certificate']
        validity = tbs['validity']
        spki = tbs['subject_public_key_info']
        extensions = tbs['extensions']
        serial = tbs['serial_number'].native
        not_before = validity['not_before'].native
        not_after = validity['not_after'].native
        issuer_der = tbs['issuer'].dump()
        subject_der = tbs['subject'].dump()
        spki_der = spki.dump()
        spki_oid = spki['algorithm']['algorithm'].dotted
        signature_oid = cert['signature_algorithm']['algorithm'].dotted
        signature = cert['signature_value'].native
        tbs_der = tbs.dump()
        asn1_extensions = [] if isinstance(extensions, core.Void) else list(extensions)
    except (ValueError, TypeError, KeyError) as e:
        raise ParseError("Invalid certificate structure.") from e

    issuer = _name_from_der(issuer_der)
    subject = _name_from_der(subject_der)

    return Certificate(
        der=der,
        tbs=tbs_der,
        serial=_serial_hex(serial),
        issuer=issuer,
        subject=subject,
        issuer_der=issuer_der,
        subject_der=subject_der,
        not_before=not_before,
        not_after=not_after,
        public_key=_load_public_key(spki_der),
        public_key_algorithm_oid=spki_oid,
        spki_der=spki_der,
        extensions=_extension_entries(asn1_extensions, _decoded_extensions(x509.load_der_x509_certificate, der)),
        signature_algorithm_oid=signature_oid,
        signature=signature,
    )


def _request_extensions(info) -> list:
    for attribute in info['attributes']:
        if attribute['type'].dotted == EXTENSION_REQUEST_OID:
            values = attribute['values']
            return list(values[0]) if len(values) else []
    return []


def load_request(der: bytes) -> CertificateRequest:
    """
    Decode one DER certification request.

    Raises:
        ParseError: If the bytes are not a CSR
    """
    try:
        request = Asn1CertificationRequest.load(der, strict=True)
        info = request['certification_request_info']
        spki = info['subject_pk_info']
        subject_der = info['subject'].dump()
        spki_der = spki.dump()
        spki_oid = spki['algorithm']['algorithm'].dotted
        signature_oid = request['signature_algorithm']['algorithm'].dotted
        signature = request['signature'].native
        info_der = info.dump()
        asn1_extensions = _request_extensions(info)
    except (ValueError, TypeError, KeyError, IndexError) as e:
        raise ParseError("Invalid certificate request structure.") from e

    return CertificateRequest(
        der=der,
        info=info_der,
        subject=_name_from_der(subject_der),
        subject_der=subject_der,
        public_key=_load_public_key(spki_der),
        public_key_algorithm_oid=spki_oid,
        spki_der=spki_der,
        extensions=_extension_entries(asn1_extensions, _decoded_extensions(x509.load_der_x509_csr, der)),
        signature_algorithm_oid=signature_oid,
        signature=signature,
    )


# Input coercion

def _decode_base64(text: str) -> bytes:
    try:
        return base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError("Input is not valid base64.") from e


def coerce_binary(data: Union[str, bytes], max_bytes: int = DEFAULT_MAX_INPUT_BYTES) -> bytes:
    """Raw bytes from DER/PKCS#12 input given as bytes or base64 text."""
    if data is None or len(data) == 0:
        raise ParseError("Input is empty.")
    if len(data) > max_bytes:
        raise ParseError(f"Input exceeds the maximum size of {max_bytes} bytes.")
    if isinstance(data, str):
        return _decode_base64(data)
    if data[:1] == b"\x30":
        return data
    try:
        return _decode_base64(data.decode("ascii"))
    except UnicodeDecodeError as e:
        raise ParseError("Input is neither DER nor base64.") from e


def _load_labelled(label: str, der: bytes):
    """Certificate first for CERTIFICATE labels, falling back to a request."""
    if label in REQUEST_LABELS:
        return load_request(der)
    try:
        return load_certificate(der)
    except ParseError as cert_error:
        try:
            return load_request(der)
        except ParseError:
            raise cert_error


def _parse_pem(text: bytes) -> ParsedInput:
    certificates, requests = [], []
    try:
        blocks = list(pem.unarmor(text, multiple=True))
    except ValueError as e:
        raise ParseError("Invalid PEM input.") from e
    for label, _headers, der in blocks:
        if label not in CERTIFICATE_LABELS and label not in REQUEST_LABELS:
            continue
        item = _load_labelled(label, der)
        if isinstance(item, CertificateRequest):
            requests.append(item)
        else:
            certificates.append(item)
    if not certificates and not requests:
        raise ParseError("No certificates found in PEM input.")
    return ParsedInput(certificates, requests)


def _parse_der(der: bytes) -> ParsedInput:
    try:
        return ParsedInput([load_certificate(der)], [])
    except ParseError as cert_error:
        try:
            return ParsedInput([], [load_request(der)])
        except ParseError:
            raise ParseError("Input is neither a certificate nor a certificate request.") from cert_error


def parse_input(data: Union[str, bytes], fmt: str = "pem", password: Optional[str] = None,
                max_bytes: int = DEFAULT_MAX_INPUT_BYTES) -> ParsedInput:
    """
    Parse certificate, CSR or PKCS#12 input.

    Args:
        data: Text or bytes as uploaded or pasted
        fmt: Declared format, one of ``pem``, ``der`` or ``pkcs12``
        password: PKCS#12 password
        max_bytes: Upper bound on the input size

    Returns:
        ParsedInput with certificates, requests and an optional private key

    Raises:
        ParseError: On malformed or oversized input
        PasswordError: On a wrong PKCS#12 password
    """
    fmt = (fmt or "pem").lower()
    if fmt == "pkcs12":
        from .pkcs12 import unpack

        contents = unpack(coerce_binary(data, max_bytes), password or "")
        return ParsedInput(list(contents.certificates), [], contents.private_key)

    if data is None or len(data) == 0 or (isinstance(data, str) and not data.strip()):
        raise ParseError("Certificate input is empty.")
    if len(data) > max_bytes:
        raise ParseError(f"Input exceeds the maximum size of {max_bytes} bytes.")

    raw = data.encode("utf-8") if isinstance(data, str) else data
    if fmt == "pem" or pem.detect(raw):
        if not pem.detect(raw):
            raise ParseError("No PEM blocks found in input.")
        return _parse_pem(raw)
    if fmt == "der":
        return _parse_der(coerce_binary(data, max_bytes))
    raise ParseError(f"Unsupported input format: {fmt}")


def select(items: Sequence, index: int = 0):
    """Pick one parsed item; out-of-range indices fall back to the first."""
    if not items:
        raise ParseError("Nothing to select: input contained no items.")
    if index is None or index < 0 or index >= len(items):
        return items[0]
    return items[index]


# View summary

def sha256_fingerprint(der: bytes) -> str:
    h = hashes.Hash(hashes.SHA256())
    h.update(der)
    return ":".join(f"{b:02X}" for b in h.finalize())


def _public_key_algorithm(obj: ParsedObject) -> str:
    if obj.public_key is not None:
        label = describe_key(obj.public_key)
        return label.split(" (")[0] if label.startswith(("RSA", "DSA", "DH")) else label
    return obj.public_key_algorithm_oid


@dataclass
class ViewSummary:
    kind: str
    subject: str
    issuer: Optional[str]
    serial: Optional[str]
    not_before: Optional[str]
    not_after: Optional[str]
    fingerprint_sha256: str
    signature_algorithm: str
    public_key_algorithm: str
    public_key_size: Optional[int]
    is_ca: bool
    extensions: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _key_size(obj: ParsedObject) -> Optional[int]:
    key = obj.public_key
    if key is None:
        return None
    if hasattr(key, 'modulus'):
        return key.modulus.bit_length()
    if hasattr(key, 'p'):
        return key.p.bit_length()
    if hasattr(key, 'curve'):
        return key.curve_info.byte_length * 8
    return len(key.public_key) * 8


def summarize(obj: ParsedObject) -> ViewSummary:
    """Display projection of a certificate or request."""
    is_certificate = isinstance(obj, Certificate)
    return ViewSummary(
        kind=obj.kind,
        subject=obj.subject.format(),
        issuer=obj.issuer.format() if is_certificate else None,
        serial=obj.serial if is_certificate else None,
        not_before=obj.not_before.isoformat() if is_certificate else None,
        not_after=obj.not_after.isoformat() if is_certificate else None,
        fingerprint_sha256=sha256_fingerprint(obj.der),
        signature_algorithm=obj.signature_algorithm_name,
        public_key_algorithm=_public_key_algorithm(obj),
        public_key_size=_key_size(obj),
        is_ca=obj.is_ca,
        extensions=[entry.to_dict() for entry in obj.extensions],
    )


# Key re-encoding

@dataclass
class KeyOutputs:
    pem: str
    der_base64: str
    jwk: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _key_outputs(km: KeyMaterial) -> KeyOutputs:
    return KeyOutputs(
        pem=export_key(km, KeyFormat.PEM).decode("ascii"),
        der_base64=base64.b64encode(export_key(km, KeyFormat.DER)).decode("ascii"),
        jwk=export_key(km, KeyFormat.JWK).decode("utf-8"),
    )


def derive_public_key_outputs(source: Union[ParsedObject, KeyMaterial]) -> KeyOutputs:
    """PEM, DER and JWK encodings of an embedded or supplied public key."""
    key = source.public_key if isinstance(source, (Certificate, CertificateRequest)) else source
    if key is None:
        raise ParseError("The public key algorithm is not supported for export.")
    return _key_outputs(key.public_only())


def derive_private_key_outputs(source: Union[str, KeyMaterial], password: Optional[str] = None) -> KeyOutputs:
    """PEM, DER and JWK encodings of a supplied private key."""
    key = parse_key(source, password) if isinstance(source, (str, bytes)) else source
    if not key.has_private:
        raise ParseError("A private key is required.")
    return _key_outputs(key)


def to_json(summary: ViewSummary) -> str:
    return json.dumps(summary.to_dict(), indent=2, default=str)
