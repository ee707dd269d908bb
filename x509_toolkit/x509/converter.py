"""
Conversion between PEM, DER and PKCS#12 certificate encodings.
"""
import base64
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from asn1crypto import pem

from .errors import MissingInputError, ParseError
from .keys import KeyFormat, export_key, parse_key, private_key_der
from .parser import DEFAULT_MAX_INPUT_BYTES, parse_input
from .pkcs12 import DEFAULT_ITERATIONS, pack

logger = logging.getLogger(__name__)

FORMATS = ("pem", "der", "pkcs12")


@dataclass
class ConversionResult:
    target_format: str
    output: str
    encoding: str
    notes: List[str] = field(default_factory=list)
    private_key_pem: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _check_format(fmt: str, label: str) -> str:
    fmt = (fmt or "").lower()
    if fmt not in FORMATS:
        raise ParseError(f"Unsupported {label} format: {fmt or '(none)'}. Use pem, der or pkcs12.")
    return fmt


def convert(data: Union[str, bytes], source_format: str, target_format: str,
            password: Optional[str] = None, key_text: Optional[str] = None,
            key_password: Optional[str] = None, iterations: int = DEFAULT_ITERATIONS,
            max_bytes: int = DEFAULT_MAX_INPUT_BYTES) -> ConversionResult:
    """
    Convert certificate input from one encoding to another.

    PEM output keeps every certificate; DER output holds only the first.
    PKCS#12 output needs a private key (from the source bundle or
    ``key_text``) and a password.

    Raises:
        ParseError: On malformed input or an unknown format
        MissingInputError: If PKCS#12 output lacks a key or password
        PasswordError: On a wrong source PKCS#12 password
    """
    source_format = _check_format(source_format, "source")
    target_format = _check_format(target_format, "target")

    parsed = parse_input(data, source_format, password, max_bytes)
    certificates = parsed.certificates
    notes = []

    if not certificates:
        raise ParseError("No certificates found to convert.")
    if len(certificates) > 1 and target_format == "der":
        notes.append(f"bundle contains {len(certificates)} certificates; converted the first")

    if target_format == "pem":
        output = b"".join(pem.armor("CERTIFICATE", c.der) for c in certificates).decode("ascii")
        result = ConversionResult(target_format, output, "text", notes)
        if parsed.private_key is not None:
            result.private_key_pem = export_key(parsed.private_key, KeyFormat.PEM).decode("ascii")
            notes.append("private key from the bundle is returned separately")
        return result

    if target_format == "der":
        output = base64.b64encode(certificates[0].der).decode("ascii")
        return ConversionResult(target_format, output, "base64", notes)

    key = parsed.private_key
    if key_text and key_text.strip():
        key = parse_key(key_text, key_password)
    if key is None or not key.has_private:
        raise MissingInputError("A private key is required for PKCS#12 output.")
    if not password:
        raise MissingInputError("A password is required for PKCS#12 output.")

    bundle = pack(
        certificates[0].der,
        private_key_der(key),
        password,
        extra_certs=[c.der for c in certificates[1:]],
        iterations=iterations,
    )
    if len(certificates) > 1:
        notes.append(f"{len(certificates) - 1} additional certificate(s) included as CA certificates")
    logger.info(f"Converted {source_format} input to pkcs12")
    return ConversionResult(target_format, base64.b64encode(bundle).decode("ascii"), "base64", notes)
