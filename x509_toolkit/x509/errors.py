"""
Error taxonomy for the certificate engine.

Every error carries a message meant for the person who supplied the input.
Library exceptions are chained with ``raise ... from`` rather than having
their text copied into the message.
"""


class X509Error(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': type(self).__name__, 'message': self.message}


class ParseError(X509Error):
    """Malformed or unsupported PEM, DER or PKCS#12 structure."""


class KeyFormatError(X509Error):
    """Unrecognised or mismatched key encoding."""


class KeyLengthError(KeyFormatError):
    """Scalar or point length does not match the curve."""


class CapabilityError(X509Error):
    """Operation is not supported for the key family."""


class MissingInputError(X509Error):
    """A required input such as the issuer certificate or key is absent."""


class PasswordError(X509Error):
    """PKCS#12 integrity check or decryption failed for the password."""


class BuilderStateError(X509Error):
    """Builder step called out of order."""
