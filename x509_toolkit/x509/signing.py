"""
Signature algorithm selection and signers.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from asn1crypto import core
from cryptography.hazmat.primitives import hashes

from .errors import CapabilityError, ParseError
from .keys import KeyFamily, KeyMaterial
from .structures import AlgorithmIdentifier


HASHES = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

SIGNING_HASHES = ("sha256", "sha384", "sha512")


def get_hash(name: str) -> hashes.HashAlgorithm:
    try:
        return HASHES[(name or "").lower().replace("-", "")]()
    except KeyError:
        raise ParseError(f"Unsupported hash algorithm: {name}") from None


@dataclass(frozen=True)
class SignatureAlgorithm:
    oid: str
    name: str
    family: KeyFamily
    hash_name: Optional[str]

    def algorithm_identifier(self) -> AlgorithmIdentifier:
        """RSA PKCS#1 v1.5 carries explicit NULL parameters; the rest omit them."""
        if self.family is KeyFamily.RSA:
            return AlgorithmIdentifier({'algorithm': self.oid, 'parameters': core.Null()})
        return AlgorithmIdentifier({'algorithm': self.oid})

    def hash_algorithm(self) -> Optional[hashes.HashAlgorithm]:
        return get_hash(self.hash_name) if self.hash_name else None


def _alg(oid, name, family, hash_name):
    return SignatureAlgorithm(oid, name, family, hash_name)


_TABLE = [
    _alg("1.2.840.113549.1.1.11", "sha256WithRSAEncryption", KeyFamily.RSA, "sha256"),
    _alg("1.2.840.113549.1.1.12", "sha384WithRSAEncryption", KeyFamily.RSA, "sha384"),
    _alg("1.2.840.113549.1.1.13", "sha512WithRSAEncryption", KeyFamily.RSA, "sha512"),
    _alg("2.16.840.1.101.3.4.3.2", "dsa_with_SHA256", KeyFamily.DSA, "sha256"),
    _alg("2.16.840.1.101.3.4.3.3", "dsa_with_SHA384", KeyFamily.DSA, "sha384"),
    _alg("2.16.840.1.101.3.4.3.4", "dsa_with_SHA512", KeyFamily.DSA, "sha512"),
    _alg("1.2.840.10045.4.3.2", "ecdsa-with-SHA256", KeyFamily.EC, "sha256"),
    _alg("1.2.840.10045.4.3.3", "ecdsa-with-SHA384", KeyFamily.EC, "sha384"),
    _alg("1.2.840.10045.4.3.4", "ecdsa-with-SHA512", KeyFamily.EC, "sha512"),
]

# Verification only; never selected when building.
_LEGACY = [
    _alg("1.2.840.113549.1.1.5", "sha1WithRSAEncryption", KeyFamily.RSA, "sha1"),
    _alg("1.2.840.113549.1.1.14", "sha224WithRSAEncryption", KeyFamily.RSA, "sha224"),
    _alg("1.2.840.10040.4.3", "dsa_with_SHA1", KeyFamily.DSA, "sha1"),
    _alg("2.16.840.1.101.3.4.3.1", "dsa_with_SHA224", KeyFamily.DSA, "sha224"),
    _alg("1.2.840.10045.4.1", "ecdsa-with-SHA1", KeyFamily.EC, "sha1"),
    _alg("1.2.840.10045.4.3.1", "ecdsa-with-SHA224", KeyFamily.EC, "sha224"),
]

ED25519_SIGNATURE = _alg("1.3.101.112", "Ed25519", KeyFamily.ED25519, None)
ED448_SIGNATURE = _alg("1.3.101.113", "Ed448", KeyFamily.ED448, None)

_BY_FAMILY_AND_HASH: Dict[Tuple[KeyFamily, str], SignatureAlgorithm] = {
    (alg.family, alg.hash_name): alg for alg in _TABLE
}

SIGNATURE_ALGORITHMS_BY_OID: Dict[str, SignatureAlgorithm] = {
    alg.oid: alg for alg in _TABLE + _LEGACY + [ED25519_SIGNATURE, ED448_SIGNATURE]
}

_OTHER_NAMES = {
    "1.2.840.113549.1.1.10": "RSASSA-PSS",
    "1.2.840.113549.1.1.4": "md5WithRSAEncryption",
}


def signature_algorithm_name(oid: str) -> str:
    """Display name for a signature algorithm OID, the OID itself if unknown."""
    alg = SIGNATURE_ALGORITHMS_BY_OID.get(oid)
    if alg is not None:
        return alg.name
    return _OTHER_NAMES.get(oid, oid)


def select_signature_algorithm(family: KeyFamily, hash_name: Optional[str] = "sha256") -> SignatureAlgorithm:
    """
    Pick the signature algorithm for an issuer key family and hash.

    EdDSA ignores the hash. DH keys cannot sign.

    Raises:
        CapabilityError: For DH
        ParseError: For an unsupported hash
    """
    if family is KeyFamily.ED25519:
        return ED25519_SIGNATURE
    if family is KeyFamily.ED448:
        return ED448_SIGNATURE
    if not family.can_sign_certificate:
        raise CapabilityError(f"{family.value.upper()} keys cannot be used to sign.")
    normalized = (hash_name or "sha256").lower().replace("-", "")
    if normalized not in SIGNING_HASHES:
        raise ParseError(f"Unsupported hash algorithm: {hash_name}")
    return _BY_FAMILY_AND_HASH[(family, normalized)]


class Signer:
    """Signs TBS bytes. Implementations expose the algorithm they sign with."""

    signature_algorithm: SignatureAlgorithm

    def sign(self, data: bytes) -> bytes:
        raise NotImplementedError


class KeySigner(Signer):
    """Signer backed by private key material and a crypto engine."""

    def __init__(self, engine, key: KeyMaterial, hash_name: Optional[str] = None):
        if not key.has_private:
            raise CapabilityError("A private key is required to sign.")
        self.engine = engine
        self.key = key
        self.signature_algorithm = select_signature_algorithm(
            key.family, hash_name or engine.default_hash
        )

    def sign(self, data: bytes) -> bytes:
        return self.engine.sign(self.key, self.signature_algorithm, data)
