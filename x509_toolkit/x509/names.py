"""
Distinguished Name and Subject Alternative Name codec.
"""
import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple, Union

from cryptography import x509
from cryptography.x509.oid import NameOID, ObjectIdentifier

from .errors import ParseError


# Short key -> attribute OID. Several keys may map to one OID; the first
# listed is the one used when formatting.
DN_KEYS = {
    "CN": NameOID.COMMON_NAME,
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "E": NameOID.EMAIL_ADDRESS,
    "EMAIL": NameOID.EMAIL_ADDRESS,
    "EMAILADDRESS": NameOID.EMAIL_ADDRESS,
    "UID": NameOID.USER_ID,
    "DC": NameOID.DOMAIN_COMPONENT,
    "SN": NameOID.SURNAME,
    "GIVENNAME": NameOID.GIVEN_NAME,
    "G": NameOID.GIVEN_NAME,
    "TITLE": NameOID.TITLE,
    "SERIALNUMBER": NameOID.SERIAL_NUMBER,
}

_OID_TO_KEY = {}
for _key, _oid in DN_KEYS.items():
    _OID_TO_KEY.setdefault(_oid.dotted_string, _key)

_DOTTED_OID = re.compile(r"^\d+(\.\d+)+$")


def _split_escaped(text: str, separator: str) -> List[str]:
    """Split on ``separator`` unless it is preceded by a backslash."""
    parts, current, escaped = [], [], False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == separator:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if escaped:
        current.append("\\")
    parts.append("".join(current))
    return parts


def _escape_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,")


@dataclass(frozen=True)
class DistinguishedName:
    """Ordered (attribute OID, value) pairs."""

    attributes: Tuple[Tuple[str, str], ...] = ()

    def __len__(self):
        return len(self.attributes)

    def __iter__(self):
        return iter(self.attributes)

    def get(self, key: str) -> List[str]:
        oid = DN_KEYS[key.upper()].dotted_string
        return [value for attr_oid, value in self.attributes if attr_oid == oid]

    def format(self) -> str:
        return ", ".join(
            f"{_OID_TO_KEY.get(oid, oid)}={_escape_value(value)}"
            for oid, value in self.attributes
        )

    def __str__(self):
        return self.format()

    def to_x509_name(self) -> x509.Name:
        try:
            return x509.Name([
                x509.NameAttribute(ObjectIdentifier(oid), value)
                for oid, value in self.attributes
            ])
        except ValueError as e:
            raise ParseError(f"Invalid distinguished name: {self.format()}") from e

    def public_bytes(self) -> bytes:
        return self.to_x509_name().public_bytes()

    @classmethod
    def from_x509_name(cls, name: x509.Name) -> "DistinguishedName":
        pairs = []
        for attribute in name:
            value = attribute.value
            if isinstance(value, bytes):
                value = value.hex()
            pairs.append((attribute.oid.dotted_string, value))
        return cls(tuple(pairs))


def parse_dn(text: str) -> DistinguishedName:
    """
    Parse ``CN=a, O=b`` or ``/CN=a/O=b`` into a DistinguishedName.

    Keys are case insensitive and may be a dotted OID. A backslash escapes
    the separator inside a value.

    Raises:
        ParseError: On unknown keys, missing ``=`` or empty values
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return DistinguishedName()

    if trimmed.startswith("/"):
        parts = _split_escaped(trimmed[1:], "/")
    else:
        parts = _split_escaped(trimmed, ",")

    pairs = []
    for raw_part in parts:
        part = raw_part.strip()
        if not part:
            continue
        if "=" not in part:
            raise ParseError(f"Invalid DN component '{part}': expected key=value.")
        key, value = (piece.strip() for piece in part.split("=", 1))
        if not key or not value:
            raise ParseError(f"Invalid DN component '{part}': key and value are required.")
        upper = key.upper()
        if upper in DN_KEYS:
            pairs.append((DN_KEYS[upper].dotted_string, value))
        elif _DOTTED_OID.match(key):
            pairs.append((key, value))
        else:
            raise ParseError(f"Unknown DN attribute '{key}'.")
    return DistinguishedName(tuple(pairs))


def format_dn(dn: DistinguishedName) -> str:
    return dn.format()


def normalize_dn(text: str) -> str:
    return parse_dn(text).format()


class SanKind(Enum):
    DNS = "DNS"
    IP = "IP"
    URI = "URI"
    EMAIL = "email"
    DIRNAME = "DIRNAME"
    RID = "RID"


_SAN_PREFIXES = {
    "DNS": SanKind.DNS,
    "IP": SanKind.IP,
    "URI": SanKind.URI,
    "EMAIL": SanKind.EMAIL,
    "E": SanKind.EMAIL,
    "DIRNAME": SanKind.DIRNAME,
    "RID": SanKind.RID,
}

SanValue = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address,
                 ipaddress.IPv4Network, ipaddress.IPv6Network, DistinguishedName]


@dataclass(frozen=True)
class SanEntry:
    kind: SanKind
    value: SanValue

    def format(self) -> str:
        value = self.value.format() if isinstance(self.value, DistinguishedName) else str(self.value)
        return f"{self.kind.value}:{value}"

    def to_general_name(self) -> x509.GeneralName:
        try:
            if self.kind is SanKind.DNS:
                return x509.DNSName(self.value)
            if self.kind is SanKind.IP:
                return x509.IPAddress(self.value)
            if self.kind is SanKind.URI:
                return x509.UniformResourceIdentifier(self.value)
            if self.kind is SanKind.EMAIL:
                return x509.RFC822Name(self.value)
            if self.kind is SanKind.DIRNAME:
                return x509.DirectoryName(self.value.to_x509_name())
            return x509.RegisteredID(ObjectIdentifier(self.value))
        except (ValueError, TypeError) as e:
            raise ParseError(f"Invalid subject alternative name: {self.format()}") from e

    @classmethod
    def from_general_name(cls, name: x509.GeneralName) -> "SanEntry":
        if isinstance(name, x509.DNSName):
            return cls(SanKind.DNS, name.value)
        if isinstance(name, x509.IPAddress):
            return cls(SanKind.IP, name.value)
        if isinstance(name, x509.UniformResourceIdentifier):
            return cls(SanKind.URI, name.value)
        if isinstance(name, x509.RFC822Name):
            return cls(SanKind.EMAIL, name.value)
        if isinstance(name, x509.DirectoryName):
            return cls(SanKind.DIRNAME, DistinguishedName.from_x509_name(name.value))
        if isinstance(name, x509.RegisteredID):
            return cls(SanKind.RID, name.value.dotted_string)
        raise ParseError(f"Unsupported general name type: {type(name).__name__}")


def _parse_ip(value: str):
    try:
        if "/" in value:
            return ipaddress.ip_network(value, strict=False)
        return ipaddress.ip_address(value)
    except ValueError as e:
        raise ParseError(f"Invalid IP address in SAN: {value}") from e


def _parse_san_entry(entry: str) -> SanEntry:
    prefix, sep, rest = entry.partition(":")
    if not sep:
        return SanEntry(SanKind.DNS, entry)
    kind = _SAN_PREFIXES.get(prefix.strip().upper())
    value = rest.strip()
    if kind is None:
        return SanEntry(SanKind.DNS, entry)
    if not value:
        raise ParseError(f"Empty value in SAN entry '{entry}'.")
    if kind is SanKind.IP:
        return SanEntry(kind, _parse_ip(value))
    if kind is SanKind.DIRNAME:
        return SanEntry(kind, parse_dn(value))
    if kind is SanKind.RID and not _DOTTED_OID.match(value):
        raise ParseError(f"Invalid registered ID in SAN: {value}")
    return SanEntry(kind, value)


def parse_san(text: str) -> List[SanEntry]:
    """
    Parse SAN entries, one ``TYPE:value`` per line or comma.

    DIRNAME entries take the rest of their line so the DN may contain
    commas. Entries without a known prefix are DNS names.
    """
    entries = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        if line.upper().startswith("DIRNAME:"):
            entries.append(_parse_san_entry(line))
            continue
        for piece in line.split(","):
            piece = piece.strip()
            if piece:
                entries.append(_parse_san_entry(piece))
    return entries


def format_san(entries: List[SanEntry]) -> str:
    return "\n".join(entry.format() for entry in entries)


def normalize_serial(text: str) -> str:
    """
    Normalise a serial number to even-length lowercase hex.

    Empty input gives ``01``. A ``0x`` prefix forces hex, all-digit input
    is decimal, anything else must be hex digits.
    """
    raw = (text or "").strip()
    if not raw:
        return "01"
    prefixed = raw[:2].lower() == "0x"
    digits = raw[2:] if prefixed else raw
    if digits.isdigit() and digits.isascii() and not prefixed:
        hex_text = format(int(digits), "x")
    elif digits and all(c in "0123456789abcdefABCDEF" for c in digits):
        hex_text = digits.lower()
    else:
        raise ParseError("Serial number must be hex or decimal.")
    if len(hex_text) % 2:
        hex_text = "0" + hex_text
    return hex_text


def serial_to_int(text: str) -> int:
    return int(normalize_serial(text), 16)
