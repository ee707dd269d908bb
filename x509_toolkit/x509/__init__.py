"""
Certificate engine package.
"""

from .certificate_builder import BuilderState, BuildResult, CertificateBuilder, CertificateOptions
from .converter import ConversionResult, convert
from .csr_builder import CsrBuilder, CsrOptions, CsrResult
from .csr_signer import CsrSigner, CsrSigningOptions
from .engine import CryptoEngine, Verdict
from .errors import (
    BuilderStateError,
    CapabilityError,
    KeyFormatError,
    KeyLengthError,
    MissingInputError,
    ParseError,
    PasswordError,
    X509Error,
)
from .keys import KeyFamily, KeyFormat, derive_public_key, export_key, generate_key, parse_key
from .names import format_dn, format_san, normalize_dn, normalize_serial, parse_dn, parse_san
from .parser import Certificate, CertificateRequest, ViewSummary, parse_input, select, summarize
from .pkcs12 import Pkcs12Contents, pack, unpack
from .service import X509Service
from .signing import KeySigner, SignatureAlgorithm, Signer, select_signature_algorithm
from .staleness import RunGuard
from .validator import ValidationResult, validate

__all__ = [
    'BuilderState',
    'BuildResult',
    'CertificateBuilder',
    'CertificateOptions',
    'ConversionResult',
    'convert',
    'CsrBuilder',
    'CsrOptions',
    'CsrResult',
    'CsrSigner',
    'CsrSigningOptions',
    'CryptoEngine',
    'Verdict',
    'BuilderStateError',
    'CapabilityError',
    'KeyFormatError',
    'KeyLengthError',
    'MissingInputError',
    'ParseError',
    'PasswordError',
    'X509Error',
    'KeyFamily',
    'KeyFormat',
    'derive_public_key',
    'export_key',
    'generate_key',
    'parse_key',
    'format_dn',
    'format_san',
    'normalize_dn',
    'normalize_serial',
    'parse_dn',
    'parse_san',
    'Certificate',
    'CertificateRequest',
    'ViewSummary',
    'parse_input',
    'select',
    'summarize',
    'Pkcs12Contents',
    'pack',
    'unpack',
    'X509Service',
    'KeySigner',
    'SignatureAlgorithm',
    'Signer',
    'select_signature_algorithm',
    'RunGuard',
    'ValidationResult',
    'validate',
]
