"""
Crypto engine handle.

One ``CryptoEngine`` is created at startup and passed to every operation
that generates keys, signs, verifies or hashes.
"""
import logging
from enum import Enum
from typing import Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding

from .errors import CapabilityError, X509Error
from .keys import KeyFamily, KeyMaterial, generate_key, to_crypto_key, to_crypto_public_key
from .signing import SIGNATURE_ALGORITHMS_BY_OID, SignatureAlgorithm, get_hash


class Verdict(Enum):
    """Tri-state verification outcome."""

    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    def __bool__(self):
        return self is Verdict.TRUE

    @classmethod
    def combine(cls, verdicts) -> "Verdict":
        """All TRUE gives TRUE; any UNKNOWN gives UNKNOWN; otherwise FALSE."""
        verdicts = list(verdicts)
        if all(v is cls.TRUE for v in verdicts):
            return cls.TRUE
        if any(v is cls.UNKNOWN for v in verdicts):
            return cls.UNKNOWN
        return cls.FALSE


class CryptoEngine:
    """Key generation, signing, verification and digests."""

    def __init__(self, config=None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.default_hash = getattr(config, 'default_hash', 'sha256')
        self.key_identifier_hash = getattr(config, 'key_identifier_hash', 'sha1')
        self.default_key_size = getattr(config, 'default_key_size', 2048)
        self.default_curve = getattr(config, 'default_curve', 'prime256v1')

    def generate_key_pair(self, family: KeyFamily, key_size: Optional[int] = None,
                          curve: Optional[str] = None) -> KeyMaterial:
        self.logger.info(f"Generating {family.value} key pair")
        return generate_key(family, key_size or self.default_key_size, curve or self.default_curve)

    def sign(self, key: KeyMaterial, algorithm: SignatureAlgorithm, data: bytes) -> bytes:
        """
        Sign ``data`` with the private key.

        Raises:
            CapabilityError: If the key family cannot sign or does not match
                the algorithm
        """
        if not key.family.can_sign_certificate:
            raise CapabilityError(f"{key.family.value.upper()} keys cannot be used to sign.")
        if algorithm.family is not key.family:
            raise CapabilityError(
                f"Signature algorithm {algorithm.name} does not match a {key.family.value.upper()} key."
            )
        if not key.has_private:
            raise CapabilityError("A private key is required to sign.")

        private_key = to_crypto_key(key)
        if key.family is KeyFamily.RSA:
            return private_key.sign(data, padding.PKCS1v15(), algorithm.hash_algorithm())
        if key.family is KeyFamily.EC:
            return private_key.sign(data, ec.ECDSA(algorithm.hash_algorithm()))
        if key.family is KeyFamily.DSA:
            return private_key.sign(data, algorithm.hash_algorithm())
        return private_key.sign(data)

    def verify(self, public_key: KeyMaterial, algorithm_oid: str, signature: bytes,
               data: bytes) -> Verdict:
        """
        Verify a signature.

        Returns UNKNOWN when the key family or algorithm cannot be checked,
        FALSE when the check fails or raises, TRUE on success.
        """
        algorithm = SIGNATURE_ALGORITHMS_BY_OID.get(algorithm_oid)
        if algorithm is None or public_key.family is KeyFamily.DH:
            self.logger.debug(f"Cannot verify {algorithm_oid} with a {public_key.family.value} key")
            return Verdict.UNKNOWN
        if algorithm.family is not public_key.family:
            return Verdict.FALSE

        try:
            key = to_crypto_public_key(public_key)
            if public_key.family is KeyFamily.RSA:
                key.verify(signature, data, padding.PKCS1v15(), algorithm.hash_algorithm())
            elif public_key.family is KeyFamily.EC:
                key.verify(signature, data, ec.ECDSA(algorithm.hash_algorithm()))
            elif public_key.family is KeyFamily.DSA:
                key.verify(signature, data, algorithm.hash_algorithm())
            else:
                key.verify(signature, data)
        except InvalidSignature:
            return Verdict.FALSE
        except (ValueError, TypeError, UnsupportedAlgorithm, X509Error) as e:
            self.logger.debug(f"Signature verification raised {type(e).__name__}")
            return Verdict.FALSE
        except Exception as e:
            self.logger.warning(f"Unexpected error during signature verification: {type(e).__name__}")
            return Verdict.FALSE
        return Verdict.TRUE

    def digest(self, data: bytes, hash_name: str = "sha256") -> bytes:
        h = hashes.Hash(get_hash(hash_name))
        h.update(data)
        return h.finalize()

    def key_identifier(self, subject_public_key: bytes) -> bytes:
        """Key identifier over the SPKI subjectPublicKey bit string contents."""
        return self.digest(subject_public_key, self.key_identifier_hash)
