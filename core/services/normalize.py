from __future__ import annotations

import re

from eth_utils import is_checksum_address, is_hex_address, to_checksum_address

from core.services.exceptions import InputValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_HEX_RE = re.compile(r"^(0x)?[0-9a-fA-F]*$")


def _norm(a: str | None) -> str:
    return (a or "").strip()


def _norm_lower(a: str | None) -> str:
    return _norm(a).lower()


def is_address(value: str | None) -> bool:
    """
    True for 0x-prefixed 20-byte hex strings. Mixed-case input must carry a
    valid EIP-55 checksum.
    """
    v = _norm(value)
    if not v.startswith("0x") or not is_hex_address(v):
        return False
    body = v[2:]
    if body.islower() or body.isupper():
        return True
    return is_checksum_address(v)


def to_address(value: str | None, *, name: str = "address") -> str:
    """
    Validates and returns the checksummed form of an address.
    """
    v = _norm(value)
    if not is_address(v):
        raise InputValidationError(f"Invalid {name}: {value}", value=value)
    return to_checksum_address(v)


def same_address(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and _norm_lower(a) == _norm_lower(b)


def is_hex(value: str | None) -> bool:
    return bool(_HEX_RE.match(_norm(value)))


def parse_uint(value: str | int, *, name: str = "value") -> int:
    """
    Parses a base-10 (or 0x-prefixed hex) non-negative integer.
    """
    if isinstance(value, bool):
        raise InputValidationError(f"{name} must be a number", value=value)
    if isinstance(value, int):
        v = value
    else:
        s = _norm(value)
        try:
            v = int(s, 16) if s.lower().startswith("0x") else int(s, 10)
        except ValueError as exc:
            raise InputValidationError(f"{name} must be a number: {value}", value=value) from exc
    if v < 0:
        raise InputValidationError(f"{name} must not be negative", value=value)
    return v


def to_bytes32(value: str | bytes, *, name: str = "bytes32") -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        s = _norm(value)
        if not s.startswith("0x") or not is_hex(s):
            raise InputValidationError(f"Invalid {name}: {value}", value=value)
        raw = bytes.fromhex(s[2:])
    if len(raw) != 32:
        raise InputValidationError(f"Invalid {name} length: {len(raw)} bytes", value=value)
    return raw
