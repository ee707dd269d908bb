"""
Key material abstraction for the six supported key families.

Keys are carried as plain frozen dataclasses (one per family) so they can
be compared, exported and handed to the ASN.1 builder without keeping a
live backend object around. Conversion to and from ``cryptography`` key
objects goes through one dispatch table per direction.
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar, Dict, Optional, Tuple, Union

from asn1crypto import core, parser, pem
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dh, dsa, ec, ed448, ed25519, rsa

from .errors import CapabilityError, KeyFormatError, KeyLengthError, ParseError
from .structures import (
    AlgorithmIdentifier,
    DhParameters,
    PrivateKeyInfo,
    SubjectPublicKeyInfo,
    X942DhParameters,
)

logger = logging.getLogger(__name__)


class KeyFamily(Enum):
    RSA = "rsa"
    EC = "ec"
    ED25519 = "ed25519"
    ED448 = "ed448"
    DSA = "dsa"
    DH = "dh"

    @property
    def can_sign_certificate(self) -> bool:
        return self is not KeyFamily.DH

    @property
    def can_sign_csr(self) -> bool:
        return self in (KeyFamily.RSA, KeyFamily.EC, KeyFamily.DSA)

    @property
    def can_generate(self) -> bool:
        return self not in (KeyFamily.DSA, KeyFamily.DH)

    @classmethod
    def parse(cls, value) -> "KeyFamily":
        """Look up a family by name, raising ParseError for unknown names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise ParseError(f"Unknown key family: {value}") from e


class KeyFormat(Enum):
    PEM = "pem"
    DER = "der"
    JWK = "jwk"


# Algorithm OIDs used in SubjectPublicKeyInfo / PrivateKeyInfo
RSA_ENCRYPTION_OID = "1.2.840.113549.1.1.1"
EC_PUBLIC_KEY_OID = "1.2.840.10045.2.1"
ED25519_OID = "1.3.101.112"
ED448_OID = "1.3.101.113"
DSA_OID = "1.2.840.10040.4.1"
DH_PKCS3_OID = "1.2.840.113549.1.3.1"
DH_X942_OID = "1.2.840.10046.2.1"

ED_KEY_LENGTHS = {KeyFamily.ED25519: 32, KeyFamily.ED448: 57}

MIN_RSA_KEY_SIZE = 1024
MAX_RSA_KEY_SIZE = 16384


@dataclass(frozen=True)
class CurveInfo:
    name: str
    oid: str
    byte_length: int
    jwk_name: str
    curve_class: type


CURVES: Dict[str, CurveInfo] = {
    "prime256v1": CurveInfo("prime256v1", "1.2.840.10045.3.1.7", 32, "P-256", ec.SECP256R1),
    "secp384r1": CurveInfo("secp384r1", "1.3.132.0.34", 48, "P-384", ec.SECP384R1),
    "secp521r1": CurveInfo("secp521r1", "1.3.132.0.35", 66, "P-521", ec.SECP521R1),
    "secp256k1": CurveInfo("secp256k1", "1.3.132.0.10", 32, "secp256k1", ec.SECP256K1),
    "brainpoolP256r1": CurveInfo("brainpoolP256r1", "1.3.36.3.3.2.8.1.1.7", 32,
                                 "brainpoolP256r1", ec.BrainpoolP256R1),
    "brainpoolP384r1": CurveInfo("brainpoolP384r1", "1.3.36.3.3.2.8.1.1.11", 48,
                                 "brainpoolP384r1", ec.BrainpoolP384R1),
    "brainpoolP512r1": CurveInfo("brainpoolP512r1", "1.3.36.3.3.2.8.1.1.13", 64,
                                 "brainpoolP512r1", ec.BrainpoolP512R1),
}

_CURVE_ALIASES = {
    "p-256": "prime256v1",
    "prime256v1": "prime256v1",
    "secp256r1": "prime256v1",
    "p-384": "secp384r1",
    "secp384r1": "secp384r1",
    "p-521": "secp521r1",
    "secp521r1": "secp521r1",
    "secp256k1": "secp256k1",
    "brainpoolp256r1": "brainpoolP256r1",
    "brainpoolp384r1": "brainpoolP384r1",
    "brainpoolp512r1": "brainpoolP512r1",
}


def get_curve(name: str) -> CurveInfo:
    """Look up a curve by name or alias (case insensitive)."""
    canonical = _CURVE_ALIASES.get(str(name or "").strip().lower())
    if canonical is None:
        raise KeyFormatError(f"Unsupported EC curve: {name}")
    return CURVES[canonical]


def curve_by_oid(oid: str) -> CurveInfo:
    for curve in CURVES.values():
        if curve.oid == oid:
            return curve
    raise KeyFormatError(f"Unsupported EC curve OID: {oid}")


def pad_bytes(value: bytes, length: int, label: str = "value") -> bytes:
    """Left-pad ``value`` with zeros to ``length`` bytes."""
    if len(value) > length:
        raise KeyLengthError(f"{label} is {len(value)} bytes, expected at most {length}.")
    return value.rjust(length, b"\x00")


def int_to_bytes(value: int, length: Optional[int] = None) -> bytes:
    if length is None:
        length = max(1, (value.bit_length() + 7) // 8)
    try:
        return value.to_bytes(length, "big")
    except OverflowError as e:
        raise KeyLengthError(f"Integer does not fit in {length} bytes.") from e


@dataclass(frozen=True)
class RsaKey:
    modulus: int
    public_exponent: int
    private_exponent: Optional[int] = None

    family: ClassVar[KeyFamily] = KeyFamily.RSA

    @property
    def has_private(self) -> bool:
        return self.private_exponent is not None

    def public_only(self) -> "RsaKey":
        return replace(self, private_exponent=None)

    @property
    def key_size(self) -> int:
        return self.modulus.bit_length()


@dataclass(frozen=True)
class EcKey:
    """EC key with an uncompressed public point and a fixed-width scalar."""

    curve: str
    public_point: bytes
    private_scalar: Optional[bytes] = None

    family: ClassVar[KeyFamily] = KeyFamily.EC

    def __post_init__(self):
        info = get_curve(self.curve)
        if info.name != self.curve:
            object.__setattr__(self, 'curve', info.name)
        expected = 1 + 2 * info.byte_length
        if len(self.public_point) != expected or self.public_point[:1] != b"\x04":
            raise KeyLengthError(
                f"EC public point for {info.name} must be {expected} bytes in uncompressed form."
            )
        if self.private_scalar is not None and len(self.private_scalar) != info.byte_length:
            raise KeyLengthError(
                f"EC private scalar for {info.name} must be {info.byte_length} bytes."
            )

    @property
    def curve_info(self) -> CurveInfo:
        return CURVES[self.curve]

    @property
    def has_private(self) -> bool:
        return self.private_scalar is not None

    def public_only(self) -> "EcKey":
        return replace(self, private_scalar=None)

    @property
    def x(self) -> bytes:
        n = self.curve_info.byte_length
        return self.public_point[1:1 + n]

    @property
    def y(self) -> bytes:
        n = self.curve_info.byte_length
        return self.public_point[1 + n:]


@dataclass(frozen=True)
class EdKey:
    family: KeyFamily
    public_key: bytes
    private_key: Optional[bytes] = None

    def __post_init__(self):
        if self.family not in ED_KEY_LENGTHS:
            raise KeyFormatError(f"Not an EdDSA family: {self.family.value}")
        length = ED_KEY_LENGTHS[self.family]
        if len(self.public_key) != length:
            raise KeyLengthError(f"{self.curve_name} public key must be {length} bytes.")
        if self.private_key is not None and len(self.private_key) != length:
            raise KeyLengthError(f"{self.curve_name} private key must be {length} bytes.")

    @property
    def curve_name(self) -> str:
        return "Ed25519" if self.family is KeyFamily.ED25519 else "Ed448"

    @property
    def has_private(self) -> bool:
        return self.private_key is not None

    def public_only(self) -> "EdKey":
        return replace(self, private_key=None)


@dataclass(frozen=True)
class DsaKey:
    p: int
    q: int
    g: int
    y: int
    x: Optional[int] = None

    family: ClassVar[KeyFamily] = KeyFamily.DSA

    @property
    def has_private(self) -> bool:
        return self.x is not None

    def public_only(self) -> "DsaKey":
        return replace(self, x=None)


@dataclass(frozen=True)
class DhKey:
    p: int
    g: int
    y: int
    x: Optional[int] = None

    family: ClassVar[KeyFamily] = KeyFamily.DH

    @property
    def has_private(self) -> bool:
        return self.x is not None

    def public_only(self) -> "DhKey":
        return replace(self, x=None)


KeyMaterial = Union[RsaKey, EcKey, EdKey, DsaKey, DhKey]


# cryptography <-> KeyMaterial

def _rsa_to_crypto(km: RsaKey):
    public_numbers = rsa.RSAPublicNumbers(km.public_exponent, km.modulus)
    if not km.has_private:
        return public_numbers.public_key()
    p, q = rsa.rsa_recover_prime_factors(km.modulus, km.public_exponent, km.private_exponent)
    d = km.private_exponent
    return rsa.RSAPrivateNumbers(
        p=p,
        q=q,
        d=d,
        dmp1=rsa.rsa_crt_dmp1(d, p),
        dmq1=rsa.rsa_crt_dmq1(d, q),
        iqmp=rsa.rsa_crt_iqmp(p, q),
        public_numbers=public_numbers,
    ).private_key()


def _ec_to_crypto(km: EcKey):
    curve = km.curve_info.curve_class()
    if km.has_private:
        return ec.derive_private_key(int.from_bytes(km.private_scalar, "big"), curve)
    return ec.EllipticCurvePublicKey.from_encoded_point(curve, km.public_point)


def _ed_to_crypto(km: EdKey):
    module = ed25519 if km.family is KeyFamily.ED25519 else ed448
    prefix = "Ed25519" if km.family is KeyFamily.ED25519 else "Ed448"
    if km.has_private:
        return getattr(module, f"{prefix}PrivateKey").from_private_bytes(km.private_key)
    return getattr(module, f"{prefix}PublicKey").from_public_bytes(km.public_key)


def _dsa_to_crypto(km: DsaKey):
    public_numbers = dsa.DSAPublicNumbers(km.y, dsa.DSAParameterNumbers(km.p, km.q, km.g))
    if km.has_private:
        return dsa.DSAPrivateNumbers(km.x, public_numbers).private_key()
    return public_numbers.public_key()


def _dh_to_crypto(km: DhKey):
    public_numbers = dh.DHPublicNumbers(km.y, dh.DHParameterNumbers(km.p, km.g))
    if km.has_private:
        return dh.DHPrivateNumbers(km.x, public_numbers).private_key()
    return public_numbers.public_key()


_TO_CRYPTO = {
    KeyFamily.RSA: _rsa_to_crypto,
    KeyFamily.EC: _ec_to_crypto,
    KeyFamily.ED25519: _ed_to_crypto,
    KeyFamily.ED448: _ed_to_crypto,
    KeyFamily.DSA: _dsa_to_crypto,
    KeyFamily.DH: _dh_to_crypto,
}


def to_crypto_key(km: KeyMaterial):
    """Build a ``cryptography`` key object (private when available)."""
    try:
        return _TO_CRYPTO[km.family](km)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyFormatError(f"Invalid {km.family.value.upper()} key parameters.") from e


def to_crypto_public_key(km: KeyMaterial):
    return to_crypto_key(km.public_only())


def _curve_from_crypto(curve) -> CurveInfo:
    return get_curve(curve.name)


def from_crypto_key(key) -> KeyMaterial:
    """Convert a ``cryptography`` key object into KeyMaterial."""
    if isinstance(key, rsa.RSAPrivateKey):
        numbers = key.private_numbers()
        return RsaKey(numbers.public_numbers.n, numbers.public_numbers.e, numbers.d)
    if isinstance(key, rsa.RSAPublicKey):
        numbers = key.public_numbers()
        return RsaKey(numbers.n, numbers.e)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        info = _curve_from_crypto(key.curve)
        point = key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
        scalar = int_to_bytes(key.private_numbers().private_value, info.byte_length)
        return EcKey(info.name, point, scalar)
    if isinstance(key, ec.EllipticCurvePublicKey):
        info = _curve_from_crypto(key.curve)
        point = key.public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
        return EcKey(info.name, point)
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return EdKey(KeyFamily.ED25519, key.public_key().public_bytes_raw(), key.private_bytes_raw())
    if isinstance(key, ed25519.Ed25519PublicKey):
        return EdKey(KeyFamily.ED25519, key.public_bytes_raw())
    if isinstance(key, ed448.Ed448PrivateKey):
        return EdKey(KeyFamily.ED448, key.public_key().public_bytes_raw(), key.private_bytes_raw())
    if isinstance(key, ed448.Ed448PublicKey):
        return EdKey(KeyFamily.ED448, key.public_bytes_raw())
    if isinstance(key, dsa.DSAPrivateKey):
        numbers = key.private_numbers()
        params = numbers.public_numbers.parameter_numbers
        return DsaKey(params.p, params.q, params.g, numbers.public_numbers.y, numbers.x)
    if isinstance(key, dsa.DSAPublicKey):
        numbers = key.public_numbers()
        params = numbers.parameter_numbers
        return DsaKey(params.p, params.q, params.g, numbers.y)
    if isinstance(key, dh.DHPrivateKey):
        numbers = key.private_numbers()
        params = numbers.public_numbers.parameter_numbers
        return DhKey(params.p, params.g, numbers.public_numbers.y, numbers.x)
    if isinstance(key, dh.DHPublicKey):
        numbers = key.public_numbers()
        return DhKey(numbers.parameter_numbers.p, numbers.parameter_numbers.g, numbers.y)
    raise KeyFormatError(f"Unsupported key type: {type(key).__name__}")


# Hand-encoded DH (PKCS#3) structures

def _dh_algorithm(km: DhKey) -> AlgorithmIdentifier:
    params = DhParameters({'p': km.p, 'g': km.g})
    return AlgorithmIdentifier({
        'algorithm': DH_PKCS3_OID,
        'parameters': params,
    })


def dh_spki_der(km: DhKey) -> bytes:
    spki = SubjectPublicKeyInfo({
        'algorithm': _dh_algorithm(km),
        'subject_public_key': core.Integer(km.y).dump(),
    })
    return spki.dump()


def dh_pkcs8_der(km: DhKey) -> bytes:
    if not km.has_private:
        raise KeyFormatError("DH private key (x) is required.")
    info = PrivateKeyInfo({
        'version': 0,
        'private_key_algorithm': _dh_algorithm(km),
        'private_key': core.Integer(km.x).dump(),
    })
    return info.dump()


def _dh_params_from_algorithm(algorithm: AlgorithmIdentifier) -> Tuple[int, int]:
    oid = algorithm['algorithm'].dotted
    raw = algorithm['parameters'].dump()
    spec = DhParameters if oid == DH_PKCS3_OID else X942DhParameters
    params = spec.load(raw)
    return params['p'].native, params['g'].native


def _dh_from_spki(der: bytes) -> DhKey:
    spki = SubjectPublicKeyInfo.load(der)
    p, g = _dh_params_from_algorithm(spki['algorithm'])
    y = core.Integer.load(spki['subject_public_key'].native).native
    return DhKey(p, g, y)


def _dh_from_pkcs8(der: bytes) -> DhKey:
    info = PrivateKeyInfo.load(der)
    p, g = _dh_params_from_algorithm(info['private_key_algorithm'])
    x = core.Integer.load(info['private_key'].native).native
    return DhKey(p, g, pow(g, x, p), x)


# Structural detection

def _child_tags(der: bytes) -> Tuple[int, ...]:
    """Universal tag numbers of the direct children of an outer SEQUENCE."""
    try:
        class_, _method, tag, _header, contents, _trailer = parser.parse(der, strict=True)
    except ValueError as e:
        raise KeyFormatError("Key data is not valid DER.") from e
    if class_ != 0 or tag != 16:
        raise KeyFormatError("Key data is not an ASN.1 SEQUENCE.")
    tags = []
    while contents:
        length = parser.peek(contents)
        child = parser.parse(contents[:length])
        tags.append(child[2] if child[0] == 0 else -1)
        contents = contents[length:]
    return tuple(tags)


def _algorithm_oid(der: bytes, field: str, spec) -> str:
    return spec.load(der)[field]['algorithm'].dotted


def _parse_der(der: bytes, password: Optional[bytes] = None) -> KeyMaterial:
    tags = _child_tags(der)
    try:
        if tags[:2] == (16, 3):
            oid = _algorithm_oid(der, 'algorithm', SubjectPublicKeyInfo)
            if oid in (DH_PKCS3_OID, DH_X942_OID):
                return _dh_from_spki(der)
            return from_crypto_key(serialization.load_der_public_key(der))
        if tags[:3] == (2, 16, 4):
            oid = _algorithm_oid(der, 'private_key_algorithm', PrivateKeyInfo)
            if oid in (DH_PKCS3_OID, DH_X942_OID):
                return _dh_from_pkcs8(der)
            return from_crypto_key(serialization.load_der_private_key(der, password))
        if tags[:2] == (16, 4):
            if not password:
                raise KeyFormatError("Encrypted private key requires a password.")
            return from_crypto_key(serialization.load_der_private_key(der, password))
        if tags == (2, 2):
            return from_crypto_key(serialization.load_der_public_key(der))
        if tags and tags[0] == 2:
            return from_crypto_key(serialization.load_der_private_key(der, None))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError("Key data could not be decoded.") from e
    raise KeyFormatError("Unrecognized key structure.")


def _parse_pem(text: str, password: Optional[bytes]) -> KeyMaterial:
    try:
        label, headers, der = pem.unarmor(text.encode("ascii", "ignore"))
    except ValueError as e:
        raise ParseError("Invalid PEM input.") from e
    if "PRIVATE KEY" in label and headers.get("Proc-Type"):
        try:
            key = serialization.load_pem_private_key(text.encode(), password)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyFormatError("Encrypted PEM private key could not be decrypted.") from e
        return from_crypto_key(key)
    if "KEY" not in label:
        raise KeyFormatError(f"PEM block '{label}' does not contain a key.")
    return _parse_der(der, password)


def _b64url_decode(value: str) -> bytes:
    if not isinstance(value, str):
        raise KeyFormatError("JWK member must be a base64url string.")
    value = value.strip()
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_int(value: str) -> int:
    return int.from_bytes(_b64url_decode(value), "big")


def _flexible_int(jwk: dict, name: str) -> int:
    """Hex when every character is a hex digit, base64url otherwise."""
    value = jwk.get(name)
    if not isinstance(value, str) or not value.strip():
        raise KeyFormatError(f"{name} is required.")
    value = value.strip()
    try:
        if all(c in "0123456789abcdefABCDEF" for c in value):
            return int(value, 16)
        return _b64url_int(value)
    except (ValueError, binascii.Error) as e:
        raise KeyFormatError(f"Invalid value for {name}.") from e


def _hex_int(value: int) -> str:
    text = format(value, "x")
    return text if len(text) % 2 == 0 else "0" + text


def _jwk_rsa(jwk: dict) -> RsaKey:
    n = _b64url_int(jwk["n"])
    e = _b64url_int(jwk["e"])
    d = _b64url_int(jwk["d"]) if jwk.get("d") else None
    return RsaKey(n, e, d)


def _jwk_ec(jwk: dict) -> EcKey:
    info = get_curve(jwk.get("crv", ""))
    n = info.byte_length
    x = pad_bytes(_b64url_decode(jwk["x"]), n, "x")
    y = pad_bytes(_b64url_decode(jwk["y"]), n, "y")
    d = pad_bytes(_b64url_decode(jwk["d"]), n, "d") if jwk.get("d") else None
    return EcKey(info.name, b"\x04" + x + y, d)


def _jwk_okp(jwk: dict) -> EdKey:
    crv = jwk.get("crv")
    if crv == "Ed25519":
        family = KeyFamily.ED25519
    elif crv == "Ed448":
        family = KeyFamily.ED448
    else:
        raise KeyFormatError(f"Unsupported OKP curve: {crv}")
    d = _b64url_decode(jwk["d"]) if jwk.get("d") else None
    if "x" in jwk:
        x = _b64url_decode(jwk["x"])
    elif d is not None:
        private_class = (ed25519.Ed25519PrivateKey if family is KeyFamily.ED25519
                         else ed448.Ed448PrivateKey)
        try:
            x = private_class.from_private_bytes(d).public_key().public_bytes_raw()
        except ValueError as e:
            raise KeyLengthError(f"{crv} private key has the wrong length.") from e
    else:
        raise KeyFormatError("OKP JWK requires x or d.")
    return EdKey(family, x, d)


def _jwk_dsa(jwk: dict) -> DsaKey:
    p, q, g = (_flexible_int(jwk, name) for name in ("p", "q", "g"))
    x = _flexible_int(jwk, "x") if jwk.get("x") else None
    if jwk.get("y"):
        y = _flexible_int(jwk, "y")
    elif x is not None:
        y = pow(g, x, p)
    else:
        raise KeyFormatError("DSA private key (x) is required.")
    return DsaKey(p, q, g, y, x)


def _jwk_dh(jwk: dict) -> DhKey:
    p, g = _flexible_int(jwk, "p"), _flexible_int(jwk, "g")
    x = _flexible_int(jwk, "x") if jwk.get("x") else None
    if jwk.get("y"):
        y = _flexible_int(jwk, "y")
    elif x is not None:
        y = pow(g, x, p)
    else:
        raise KeyFormatError("DH private key (x) is required.")
    return DhKey(p, g, y, x)


_JWK_PARSERS = {
    "RSA": _jwk_rsa,
    "EC": _jwk_ec,
    "OKP": _jwk_okp,
    "DSA": _jwk_dsa,
    "DH": _jwk_dh,
}


def _parse_jwk(text: str) -> KeyMaterial:
    try:
        jwk = json.loads(text)
    except ValueError as e:
        raise KeyFormatError("Invalid JWK JSON.") from e
    if not isinstance(jwk, dict):
        raise KeyFormatError("JWK must be a JSON object.")
    kty = jwk.get("kty")
    if kty is None and "p" in jwk and "g" in jwk:
        kty = "DSA" if "q" in jwk else "DH"
    handler = _JWK_PARSERS.get(kty) if isinstance(kty, str) else None
    if handler is None:
        raise KeyFormatError(f"Unsupported JWK key type: {kty}")
    try:
        return handler(jwk)
    except KeyError as e:
        raise KeyFormatError(f"JWK is missing member {e.args[0]}.") from e
    except (ValueError, binascii.Error) as e:
        raise KeyFormatError("JWK member is not valid base64url.") from e


def _looks_like_base64(text: str) -> bool:
    compact = "".join(text.split())
    return bool(compact) and all(
        c.isalnum() or c in "+/=-_" for c in compact
    )


def parse_key(text: Union[str, bytes], password: Optional[Union[str, bytes]] = None) -> KeyMaterial:
    """
    Parse a key from PEM, base64 DER or JWK text.

    The first format whose structure matches decides the outcome; a PEM
    block that fails to decode is an error even if the text would also
    parse some other way.

    Args:
        text: Key text (or raw DER bytes)
        password: Optional password for encrypted private keys

    Returns:
        KeyMaterial for the detected family

    Raises:
        KeyFormatError: If the key cannot be recognised or decoded
        ParseError: If a PEM block is malformed
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    password = password or None

    if isinstance(text, bytes):
        if pem.detect(text):
            text = text.decode("ascii", "ignore")
        else:
            return _parse_der(text, password)

    stripped = (text or "").strip()
    if not stripped:
        raise KeyFormatError("Key input is empty.")
    if "-----BEGIN" in stripped:
        return _parse_pem(stripped, password)
    if stripped.startswith("{"):
        return _parse_jwk(stripped)
    if _looks_like_base64(stripped):
        try:
            der = base64.b64decode("".join(stripped.split()), validate=True)
        except (ValueError, binascii.Error) as e:
            raise KeyFormatError("Key is not valid base64 DER.") from e
        return _parse_der(der, password)
    raise KeyFormatError("Unrecognized key format. Use PEM, DER (Base64), or JWK.")


def derive_public_key(km: KeyMaterial) -> KeyMaterial:
    """Return the public-only form, computing public parts from private ones."""
    if isinstance(km, EcKey) and km.has_private:
        key = ec.derive_private_key(
            int.from_bytes(km.private_scalar, "big"), km.curve_info.curve_class()
        )
        return from_crypto_key(key.public_key())
    if isinstance(km, EdKey) and km.has_private:
        return from_crypto_key(to_crypto_key(km).public_key())
    if isinstance(km, DsaKey) and km.has_private:
        return DsaKey(km.p, km.q, km.g, pow(km.g, km.x, km.p))
    if isinstance(km, DhKey) and km.has_private:
        return DhKey(km.p, km.g, pow(km.g, km.x, km.p))
    return km.public_only()


def public_key_der(km: KeyMaterial) -> bytes:
    """SubjectPublicKeyInfo DER for any family."""
    if isinstance(km, DhKey):
        return dh_spki_der(km)
    return to_crypto_public_key(km).public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def private_key_der(km: KeyMaterial) -> bytes:
    """Unencrypted PKCS#8 DER for any family."""
    if not km.has_private:
        raise KeyFormatError("Private key material is required.")
    if isinstance(km, DhKey):
        return dh_pkcs8_der(km)
    return to_crypto_key(km).private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _to_jwk(km: KeyMaterial) -> dict:
    if isinstance(km, RsaKey):
        jwk = {"kty": "RSA", "n": _b64url_encode(int_to_bytes(km.modulus)),
               "e": _b64url_encode(int_to_bytes(km.public_exponent))}
        if km.has_private:
            numbers = to_crypto_key(km).private_numbers()
            for name, value in (("d", numbers.d), ("p", numbers.p), ("q", numbers.q),
                                ("dp", numbers.dmp1), ("dq", numbers.dmq1), ("qi", numbers.iqmp)):
                jwk[name] = _b64url_encode(int_to_bytes(value))
        return jwk
    if isinstance(km, EcKey):
        jwk = {"kty": "EC", "crv": km.curve_info.jwk_name,
               "x": _b64url_encode(km.x), "y": _b64url_encode(km.y)}
        if km.has_private:
            jwk["d"] = _b64url_encode(km.private_scalar)
        return jwk
    if isinstance(km, EdKey):
        jwk = {"kty": "OKP", "crv": km.curve_name, "x": _b64url_encode(km.public_key)}
        if km.has_private:
            jwk["d"] = _b64url_encode(km.private_key)
        return jwk
    if isinstance(km, DsaKey):
        jwk = {"kty": "DSA", "p": _hex_int(km.p), "q": _hex_int(km.q),
               "g": _hex_int(km.g), "y": _hex_int(km.y)}
        if km.has_private:
            jwk["x"] = _hex_int(km.x)
        return jwk
    jwk = {"kty": "DH", "p": _hex_int(km.p), "g": _hex_int(km.g), "y": _hex_int(km.y)}
    if km.has_private:
        jwk["x"] = _hex_int(km.x)
    return jwk


def export_key(km: KeyMaterial, fmt: Union[KeyFormat, str] = KeyFormat.PEM) -> bytes:
    """
    Export key material, private form when private parts are present.

    PEM and DER use PKCS#8 / SubjectPublicKeyInfo; JWK returns UTF-8 JSON.
    """
    fmt = KeyFormat(fmt.lower()) if isinstance(fmt, str) else fmt
    if fmt is KeyFormat.JWK:
        return json.dumps(_to_jwk(km), indent=2).encode("utf-8")
    if km.has_private:
        der, label = private_key_der(km), "PRIVATE KEY"
    else:
        der, label = public_key_der(km), "PUBLIC KEY"
    if fmt is KeyFormat.DER:
        return der
    return pem.armor(label, der)


def rsa_key_size(value) -> int:
    """Coerce a requested RSA modulus size and check it against the allowed range."""
    if isinstance(value, bool):
        raise ParseError("RSA key size must be an integer.")
    try:
        size = int(value)
    except (TypeError, ValueError) as e:
        raise ParseError(f"RSA key size must be an integer, got {value!r}.") from e
    if size < MIN_RSA_KEY_SIZE:
        raise KeyLengthError(f"RSA key size must be at least {MIN_RSA_KEY_SIZE} bits.")
    if size > MAX_RSA_KEY_SIZE:
        raise KeyLengthError(f"RSA key size must be at most {MAX_RSA_KEY_SIZE} bits.")
    return size


def generate_key(family: Union[KeyFamily, str], key_size: int = 2048,
                 curve: str = "prime256v1") -> KeyMaterial:
    """Generate a fresh key pair. DSA and DH keys can only be supplied."""
    family = KeyFamily.parse(family)
    if not family.can_generate:
        raise CapabilityError(
            f"{family.value.upper()} keys cannot be generated here; provide an existing key."
        )
    logger.debug(f"Generating {family.value} key")
    if family is KeyFamily.RSA:
        return from_crypto_key(rsa.generate_private_key(public_exponent=65537, key_size=rsa_key_size(key_size)))
    if family is KeyFamily.EC:
        return from_crypto_key(ec.generate_private_key(get_curve(curve).curve_class()))
    if family is KeyFamily.ED25519:
        return from_crypto_key(ed25519.Ed25519PrivateKey.generate())
    return from_crypto_key(ed448.Ed448PrivateKey.generate())


def describe_key(km: KeyMaterial) -> str:
    """Short algorithm label such as ``RSA (2048 bits)`` or ``EC (prime256v1)``."""
    if isinstance(km, RsaKey):
        return f"RSA ({km.key_size} bits)"
    if isinstance(km, EcKey):
        return f"EC ({km.curve})"
    if isinstance(km, EdKey):
        return km.curve_name
    if isinstance(km, DsaKey):
        return f"DSA ({km.p.bit_length()} bits)"
    return f"DH ({km.p.bit_length()} bits)"
