"""
PKCS#12 bundle codec.

Packing goes through ``cryptography``'s serializer with PBES2/AES-256-CBC
and a SHA-256 MAC. Unpacking checks the MAC itself first so a wrong
password is reported as such, then decrypts with ``cryptography`` and
falls back to walking the bundle with asn1crypto for parameter
combinations the primary loader refuses (for example a 3DES key bag next
to AES certificate bags).
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from asn1crypto import cms, keys as asn1_keys, pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import constant_time, hashes, hmac, padding, serialization
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import CapabilityError, MissingInputError, ParseError, PasswordError, X509Error
from .keys import KeyMaterial, from_crypto_key, parse_key
from .parser import Certificate, load_certificate
from .signing import get_hash

logger = logging.getLogger(__name__)

DEFAULT_ITERATIONS = 2048


@dataclass(frozen=True)
class Pkcs12Contents:
    certificates: Tuple[Certificate, ...]
    private_key: Optional[KeyMaterial] = None


def pack(certificate_der: bytes, private_key_der: bytes, password: str,
         extra_certs: Iterable[bytes] = (), iterations: int = DEFAULT_ITERATIONS,
         friendly_name: Optional[str] = None) -> bytes:
    """
    Build a password-protected PKCS#12 bundle.

    Args:
        certificate_der: Leaf certificate DER
        private_key_der: Unencrypted PKCS#8 DER of the matching key
        password: Bundle password, must not be empty
        extra_certs: Additional CA certificates in DER form
        iterations: PBKDF2 and MAC iteration count
        friendly_name: Optional bag friendly name

    Returns:
        DER-encoded PFX

    Raises:
        MissingInputError: If the password is empty
        ParseError: If the certificate or key cannot be loaded
    """
    if not password:
        raise MissingInputError("A password is required for PKCS#12 output.")

    try:
        certificate = x509.load_der_x509_certificate(certificate_der)
        cas = [x509.load_der_x509_certificate(der) for der in extra_certs]
        private_key = serialization.load_der_private_key(private_key_der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ParseError("Certificate or private key could not be loaded for PKCS#12 output.") from e

    encryption = (
        serialization.PrivateFormat.PKCS12.encryption_builder()
        .kdf_rounds(iterations)
        .key_cert_algorithm(pkcs12.PBES.PBESv2SHA256AndAES256CBC)
        .hmac_hash(hashes.SHA256())
        .build(password.encode("utf-8"))
    )
    try:
        data = pkcs12.serialize_key_and_certificates(
            name=friendly_name.encode("utf-8") if friendly_name else None,
            key=private_key,
            cert=certificate,
            cas=cas or None,
            encryption_algorithm=encryption,
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CapabilityError("This key type cannot be stored in a PKCS#12 bundle.") from e

    logger.info(f"Packed PKCS#12 bundle with {1 + len(cas)} certificate(s)")
    return data


# RFC 7292 appendix B key derivation

def _bmp_password(password: str) -> bytes:
    return password.encode("utf-16-be") + b"\x00\x00"


def _fill(data: bytes, block: int) -> bytes:
    if not data:
        return b""
    length = block * ((len(data) + block - 1) // block)
    return (data * (length // len(data) + 1))[:length]


def pkcs12_kdf(hash_name: str, password: bytes, salt: bytes, iterations: int,
               key_length: int, purpose: int) -> bytes:
    """
    PKCS#12 v1.0 key derivation.

    ``purpose`` is 1 for cipher keys, 2 for IVs and 3 for MAC keys;
    ``password`` is already BMPString encoded with its trailing NUL.
    """
    algorithm = get_hash(hash_name)
    u = algorithm.digest_size
    v = algorithm.block_size

    diversifier = bytes([purpose]) * v
    i_block = bytearray(_fill(salt, v) + _fill(password, v))

    output = b""
    while len(output) < key_length:
        a = diversifier + bytes(i_block)
        for _ in range(iterations):
            h = hashes.Hash(get_hash(hash_name))
            h.update(a)
            a = h.finalize()
        output += a

        b = int.from_bytes((a * (v // u + 1))[:v], "big") + 1
        modulus = 1 << (8 * v)
        for j in range(0, len(i_block), v):
            chunk = (int.from_bytes(i_block[j:j + v], "big") + b) % modulus
            i_block[j:j + v] = chunk.to_bytes(v, "big")
    return output[:key_length]


def _load_pfx(data: bytes) -> asn1_pkcs12.Pfx:
    try:
        pfx = asn1_pkcs12.Pfx.load(data, strict=True)
        if pfx['auth_safe']['content_type'].native != 'data':
            raise ParseError("Only password-integrity PKCS#12 bundles are supported.")
        # Force the lazy parse so structural errors surface here.
        pfx['mac_data'].native
        pfx.authenticated_safe
    except (ValueError, TypeError, KeyError) as e:
        raise ParseError("Invalid PKCS#12 structure.") from e
    return pfx


def verify_mac(pfx: asn1_pkcs12.Pfx, password: str) -> bool:
    """
    Check the integrity MAC.

    Returns False when the bundle carries no MAC.

    Raises:
        PasswordError: If the MAC does not match for this password
    """
    mac_data = pfx['mac_data']
    if not mac_data:
        return False

    digest_name = mac_data['mac']['digest_algorithm']['algorithm'].native
    try:
        digest_size = get_hash(digest_name).digest_size
    except ParseError as e:
        raise CapabilityError(f"Unsupported PKCS#12 MAC algorithm: {digest_name}") from e

    mac_key = pkcs12_kdf(
        digest_name,
        _bmp_password(password),
        mac_data['mac_salt'].native,
        mac_data['iterations'].native,
        digest_size,
        3,
    )
    h = hmac.HMAC(mac_key, get_hash(digest_name))
    h.update(pfx['auth_safe']['content'].contents)
    if not constant_time.bytes_eq(h.finalize(), mac_data['mac']['digest'].native):
        raise PasswordError("Incorrect password or corrupted PKCS#12 bundle.")
    return True


# Primary decode

def _unpack_primary(data: bytes, password: str) -> Pkcs12Contents:
    bundle = pkcs12.load_pkcs12(data, password.encode("utf-8") if password else None)
    certificates = []
    if bundle.cert is not None:
        certificates.append(bundle.cert.certificate)
    certificates.extend(c.certificate for c in bundle.additional_certs)
    parsed = tuple(
        load_certificate(c.public_bytes(serialization.Encoding.DER)) for c in certificates
    )
    private_key = from_crypto_key(bundle.key) if bundle.key is not None else None
    return Pkcs12Contents(parsed, private_key)


# Secondary decode

_CIPHERS = {
    'aes': algorithms.AES,
    'tripledes': TripleDES,
}


def _decrypt(algorithm_info, ciphertext: bytes, password: str) -> bytes:
    kdf = algorithm_info.kdf
    if kdf == 'pbkdf2':
        key = PBKDF2HMAC(
            algorithm=get_hash(algorithm_info.kdf_hmac),
            length=algorithm_info.key_length,
            salt=algorithm_info.kdf_salt,
            iterations=algorithm_info.kdf_iterations,
        ).derive(password.encode("utf-8"))
        iv = algorithm_info.encryption_iv
    elif kdf == 'pkcs12_kdf':
        bmp = _bmp_password(password)
        salt, rounds = algorithm_info.kdf_salt, algorithm_info.kdf_iterations
        key = pkcs12_kdf(algorithm_info.kdf_hmac, bmp, salt, rounds, algorithm_info.key_length, 1)
        iv = pkcs12_kdf(algorithm_info.kdf_hmac, bmp, salt, rounds,
                        algorithm_info.encryption_block_size, 2)
    else:
        raise CapabilityError(f"Unsupported PKCS#12 key derivation: {kdf}")

    cipher_name = algorithm_info.encryption_cipher
    if cipher_name not in _CIPHERS:
        raise CapabilityError(f"Unsupported PKCS#12 cipher: {cipher_name}")
    cipher = _CIPHERS[cipher_name](key)

    decryptor = Cipher(cipher, modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(cipher.block_size).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _walk_safe_contents(safe_contents, password: str, certificates: list, keys: list):
    for safe_bag in safe_contents:
        bag_value = safe_bag['bag_value']
        if isinstance(bag_value, asn1_pkcs12.CertBag):
            if bag_value['cert_id'].native == 'x509':
                certificates.append(bag_value['cert_value'].parsed.dump())
        elif isinstance(bag_value, asn1_keys.PrivateKeyInfo):
            keys.append(bag_value.dump())
        elif isinstance(bag_value, asn1_keys.EncryptedPrivateKeyInfo):
            keys.append(_decrypt(
                bag_value['encryption_algorithm'], bag_value['encrypted_data'].native, password
            ))
        elif isinstance(bag_value, asn1_pkcs12.SafeContents):
            _walk_safe_contents(bag_value, password, certificates, keys)


def _unpack_secondary(pfx: asn1_pkcs12.Pfx, password: str) -> Pkcs12Contents:
    certificates, keys = [], []
    for content_info in pfx.authenticated_safe:
        content = content_info['content']
        if isinstance(content, cms.EncryptedData):
            encrypted = content['encrypted_content_info']
            plaintext = _decrypt(
                encrypted['content_encryption_algorithm'],
                encrypted['encrypted_content'].native,
                password,
            )
            _walk_safe_contents(asn1_pkcs12.SafeContents.load(plaintext), password, certificates, keys)
        elif content_info['content_type'].native == 'data':
            _walk_safe_contents(asn1_pkcs12.SafeContents.load(content.native), password, certificates, keys)
        else:
            raise CapabilityError(
                f"Unsupported PKCS#12 content type: {content_info['content_type'].native}"
            )

    private_key = parse_key(keys[0]) if keys else None
    return Pkcs12Contents(tuple(load_certificate(der) for der in certificates), private_key)


def unpack(data: bytes, password: str = "") -> Pkcs12Contents:
    """
    Decode a PKCS#12 bundle into certificates and at most one private key.

    Raises:
        ParseError: If the bundle is malformed or cannot be decrypted
        PasswordError: If the integrity MAC does not match the password
    """
    if not data:
        raise ParseError("PKCS#12 input is empty.")
    password = password or ""
    pfx = _load_pfx(data)
    verify_mac(pfx, password)

    try:
        contents = _unpack_primary(data, password)
    except (ValueError, TypeError, UnsupportedAlgorithm, X509Error) as primary_error:
        logger.info(f"Primary PKCS#12 decode failed ({type(primary_error).__name__}), walking the bundle")
        try:
            contents = _unpack_secondary(pfx, password)
        except (ValueError, TypeError, KeyError, X509Error) as e:
            logger.debug(f"Secondary PKCS#12 decode failed: {type(e).__name__}")
            raise ParseError("Unable to decode the PKCS#12 bundle.") from primary_error

    if not contents.certificates:
        raise ParseError("The PKCS#12 bundle contains no certificates.")
    logger.info(f"Unpacked PKCS#12 bundle with {len(contents.certificates)} certificate(s)")
    return contents
