"""
ASN.1 structure builder.

Produces SubjectPublicKeyInfo for every key family, extension values,
and the TBSCertificate / CertificationRequestInfo bytes that are signed.
Extension values are encoded through ``cryptography`` extension types;
the outer structures are assembled with asn1crypto so that keys the
``cryptography`` builders refuse (DH) still fit.
"""
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from asn1crypto import core, x509 as asn1_x509
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID, ObjectIdentifier

from .errors import ParseError
from .keys import (
    DSA_OID,
    EC_PUBLIC_KEY_OID,
    RSA_ENCRYPTION_OID,
    DhKey,
    DsaKey,
    EcKey,
    EdKey,
    KeyMaterial,
    RsaKey,
    dh_spki_der,
)
from .names import SanEntry
from .signing import SignatureAlgorithm
from .structures import (
    AlgorithmIdentifier,
    Attribute,
    CertificationRequest,
    CertificationRequestInfo,
    DsaParameters,
    Extension,
    Extensions,
    RsaPublicKey,
    SubjectPublicKeyInfo,
    TbsCertificate,
    Validity,
    Certificate,
)

EXTENSION_REQUEST_OID = "1.2.840.113549.1.9.14"

KEY_USAGE_NAMES = (
    "digitalSignature",
    "nonRepudiation",
    "keyEncipherment",
    "dataEncipherment",
    "keyAgreement",
    "keyCertSign",
    "cRLSign",
    "encipherOnly",
    "decipherOnly",
)

_KEY_USAGE_ARGS = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "contentCommitment": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
    "encipherOnly": "encipher_only",
    "decipherOnly": "decipher_only",
}

EXT_KEY_USAGES = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "ocspSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
}


@dataclass(frozen=True)
class ExtensionValue:
    """One encoded extension ready to be placed in a TBS structure."""

    oid: str
    critical: bool
    value: bytes

    def to_asn1(self) -> Extension:
        return Extension({
            'extn_id': self.oid,
            'critical': self.critical,
            'extn_value': self.value,
        })


# SubjectPublicKeyInfo

def _rsa_spki(km: RsaKey) -> SubjectPublicKeyInfo:
    return SubjectPublicKeyInfo({
        'algorithm': AlgorithmIdentifier({'algorithm': RSA_ENCRYPTION_OID, 'parameters': core.Null()}),
        'subject_public_key': RsaPublicKey({
            'modulus': km.modulus,
            'public_exponent': km.public_exponent,
        }).dump(),
    })


def _ec_spki(km: EcKey) -> SubjectPublicKeyInfo:
    return SubjectPublicKeyInfo({
        'algorithm': AlgorithmIdentifier({
            'algorithm': EC_PUBLIC_KEY_OID,
            'parameters': core.ObjectIdentifier(km.curve_info.oid),
        }),
        'subject_public_key': km.public_point,
    })


def _ed_spki(km: EdKey) -> SubjectPublicKeyInfo:
    oid = "1.3.101.112" if km.curve_name == "Ed25519" else "1.3.101.113"
    return SubjectPublicKeyInfo({
        'algorithm': AlgorithmIdentifier({'algorithm': oid}),
        'subject_public_key': km.public_key,
    })


def _dsa_spki(km: DsaKey) -> SubjectPublicKeyInfo:
    return SubjectPublicKeyInfo({
        'algorithm': AlgorithmIdentifier({
            'algorithm': DSA_OID,
            'parameters': DsaParameters({'p': km.p, 'q': km.q, 'g': km.g}),
        }),
        'subject_public_key': core.Integer(km.y).dump(),
    })


def _dh_spki(km: DhKey) -> SubjectPublicKeyInfo:
    return SubjectPublicKeyInfo.load(dh_spki_der(km))


_SPKI_BUILDERS = {
    RsaKey: _rsa_spki,
    EcKey: _ec_spki,
    EdKey: _ed_spki,
    DsaKey: _dsa_spki,
    DhKey: _dh_spki,
}


def build_spki(km: KeyMaterial) -> SubjectPublicKeyInfo:
    """SubjectPublicKeyInfo for the public half of ``km``."""
    return _SPKI_BUILDERS[type(km)](km)


def spki_der(km: KeyMaterial) -> bytes:
    return build_spki(km).dump()


def subject_public_key_bits(spki: bytes) -> bytes:
    """Contents of the subjectPublicKey BIT STRING of an encoded SPKI."""
    try:
        return SubjectPublicKeyInfo.load(spki)['subject_public_key'].native
    except ValueError as e:
        raise ParseError("Invalid SubjectPublicKeyInfo.") from e


# Extension values

def _encode(oid: ObjectIdentifier, value: x509.ExtensionType, critical: bool) -> ExtensionValue:
    return ExtensionValue(oid.dotted_string, critical, value.public_bytes())


def basic_constraints(ca: bool, path_length: Optional[int] = None,
                      critical: bool = True) -> ExtensionValue:
    try:
        value = x509.BasicConstraints(ca=ca, path_length=path_length if ca else None)
    except (ValueError, TypeError) as e:
        raise ParseError("Path length must be a non-negative integer.") from e
    return _encode(ExtensionOID.BASIC_CONSTRAINTS, value, critical)


def _split_names(names) -> List[str]:
    if isinstance(names, str):
        names = names.replace("\n", ",").split(",")
    return [name.strip() for name in names if name and name.strip()]


def key_usage(names, critical: bool = False) -> Optional[ExtensionValue]:
    """Key usage bit string from names such as ``digitalSignature``."""
    selected = _split_names(names)
    if not selected:
        return None
    flags = {arg: False for arg in set(_KEY_USAGE_ARGS.values())}
    for name in selected:
        if name not in _KEY_USAGE_ARGS:
            raise ParseError(f"Unknown key usage: {name}")
        flags[_KEY_USAGE_ARGS[name]] = True
    if (flags["encipher_only"] or flags["decipher_only"]) and not flags["key_agreement"]:
        raise ParseError("encipherOnly and decipherOnly require keyAgreement.")
    return _encode(ExtensionOID.KEY_USAGE, x509.KeyUsage(**flags), critical)


def extended_key_usage(names, critical: bool = False) -> Optional[ExtensionValue]:
    """Extended key usage from names or dotted OIDs."""
    selected = _split_names(names)
    if not selected:
        return None
    oids = []
    for name in selected:
        if name in EXT_KEY_USAGES:
            oids.append(EXT_KEY_USAGES[name])
        else:
            try:
                oids.append(ObjectIdentifier(name))
            except ValueError as e:
                raise ParseError(f"Unknown extended key usage: {name}") from e
    return _encode(ExtensionOID.EXTENDED_KEY_USAGE, x509.ExtendedKeyUsage(oids), critical)


def subject_alt_name(entries: Sequence[SanEntry], critical: bool = False) -> Optional[ExtensionValue]:
    if not entries:
        return None
    names = [entry.to_general_name() for entry in entries]
    return _encode(ExtensionOID.SUBJECT_ALTERNATIVE_NAME, x509.SubjectAlternativeName(names), critical)


def subject_key_identifier(key_id: bytes) -> ExtensionValue:
    return _encode(ExtensionOID.SUBJECT_KEY_IDENTIFIER, x509.SubjectKeyIdentifier(key_id), False)


def authority_key_identifier(key_id: bytes) -> ExtensionValue:
    value = x509.AuthorityKeyIdentifier(
        key_identifier=key_id, authority_cert_issuer=None, authority_cert_serial_number=None
    )
    return _encode(ExtensionOID.AUTHORITY_KEY_IDENTIFIER, value, False)


def parse_custom_extensions(text: str) -> List[ExtensionValue]:
    """
    Parse custom extensions from JSON.

    Expects an array of ``{"oid": "1.2.3", "critical": false, "value": "<hex DER>"}``.
    """
    if not text or not text.strip():
        return []
    try:
        items = json.loads(text)
    except ValueError as e:
        raise ParseError("Custom extensions must be a JSON array.") from e
    if not isinstance(items, list):
        raise ParseError("Custom extensions must be a JSON array.")

    extensions = []
    for item in items:
        if not isinstance(item, dict) or "oid" not in item or "value" not in item:
            raise ParseError("Each custom extension needs an oid and a hex value.")
        try:
            oid = ObjectIdentifier(str(item["oid"]).strip())
        except ValueError as e:
            raise ParseError(f"Invalid extension OID: {item['oid']}") from e
        try:
            value = binascii.unhexlify("".join(str(item["value"]).split()).replace(":", ""))
        except (binascii.Error, ValueError) as e:
            raise ParseError(f"Extension {oid.dotted_string} value must be hex-encoded DER.") from e
        extensions.append(ExtensionValue(oid.dotted_string, bool(item.get("critical", False)), value))
    return extensions


def encode_extensions(extensions: Iterable[ExtensionValue]) -> Optional[Extensions]:
    items = [ext.to_asn1() for ext in extensions if ext is not None]
    if not items:
        return None
    return Extensions(items)


# Certificate and request bodies

def encode_time(value: datetime) -> asn1_x509.Time:
    """UTCTime before 2050, GeneralizedTime from 2050 on."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc).replace(microsecond=0)
    if value.year < 2050:
        return asn1_x509.Time(name='utc_time', value=value)
    return asn1_x509.Time(name='general_time', value=value)


def build_tbs_certificate(serial_number: int, algorithm: SignatureAlgorithm, issuer_der: bytes,
                          not_before: datetime, not_after: datetime, subject_der: bytes,
                          spki: bytes, extensions: Iterable[ExtensionValue]) -> bytes:
    """Encode a v3 TBSCertificate; the returned bytes are what gets signed."""
    tbs = TbsCertificate({
        'version': 'v3',
        'serial_number': serial_number,
        'signature': algorithm.algorithm_identifier(),
        'issuer': asn1_x509.Name.load(issuer_der),
        'validity': Validity({
            'not_before': encode_time(not_before),
            'not_after': encode_time(not_after),
        }),
        'subject': asn1_x509.Name.load(subject_der),
        'subject_public_key_info': SubjectPublicKeyInfo.load(spki),
    })
    encoded = encode_extensions(extensions)
    if encoded is not None:
        tbs['extensions'] = encoded
    return tbs.dump()


def wrap_certificate(tbs: bytes, algorithm: SignatureAlgorithm, signature: bytes) -> bytes:
    return Certificate({
        'tbs_certificate': TbsCertificate.load(tbs),
        'signature_algorithm': algorithm.algorithm_identifier(),
        'signature_value': signature,
    }).dump()


def build_certification_request_info(subject_der: bytes, spki: bytes,
                                     extensions: Iterable[ExtensionValue]) -> bytes:
    attributes = []
    encoded = encode_extensions(extensions)
    if encoded is not None:
        attributes.append(Attribute({'type': EXTENSION_REQUEST_OID, 'values': [encoded]}))
    info = CertificationRequestInfo({
        'version': 0,
        'subject': asn1_x509.Name.load(subject_der),
        'subject_pk_info': SubjectPublicKeyInfo.load(spki),
        'attributes': attributes,
    })
    return info.dump()


def wrap_certification_request(info: bytes, algorithm: SignatureAlgorithm, signature: bytes) -> bytes:
    return CertificationRequest({
        'certification_request_info': CertificationRequestInfo.load(info),
        'signature_algorithm': algorithm.algorithm_identifier(),
        'signature': signature,
    }).dump()
