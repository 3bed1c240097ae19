"""
Wallet specifications.

Every place that takes "a wallet" (CLI flag, HTTP field, SDK argument)
accepts one of these variants. `parse_wallet_spec` turns the loose string
form used on the command line into a variant once, at the boundary; the
resolver then dispatches on the variant type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from core.services.exceptions import InputValidationError, InvalidKeyError
from core.services.normalize import _norm, is_address, is_hex

AUTO = "auto"


@dataclass(frozen=True)
class IndexSpec:
    index: int


@dataclass(frozen=True)
class AliasSpec:
    name: str


@dataclass(frozen=True)
class AddressSpec:
    address: str


@dataclass(frozen=True)
class PrivateKeySpec:
    key: str

    def __repr__(self) -> str:
        return "PrivateKeySpec(key=<redacted>)"


@dataclass(frozen=True)
class AutoOwnerOf:
    """The on-chain owner of `contract`, read live at resolution time."""

    contract: str


WalletSpec = Union[IndexSpec, AliasSpec, AddressSpec, PrivateKeySpec, AutoOwnerOf]


def _is_decimal(s: str) -> bool:
    body = s[1:] if s.startswith("-") else s
    return body.isdigit()


def parse_wallet_spec(raw: Union[str, int, WalletSpec], *, auto_owner_of: Optional[str] = None) -> WalletSpec:
    """
    Classifies a wallet argument.

    - int / base-10 string -> IndexSpec (range is checked by the resolver)
    - 0x + 40 hex          -> AddressSpec
    - [0x] + 64 hex        -> PrivateKeySpec
    - "auto"               -> AutoOwnerOf(auto_owner_of)
    - anything else        -> AliasSpec
    """
    if isinstance(raw, (IndexSpec, AliasSpec, AddressSpec, PrivateKeySpec, AutoOwnerOf)):
        return raw
    if isinstance(raw, bool):
        raise InputValidationError("Wallet must be an index, alias, address or private key", value=raw)
    if isinstance(raw, int):
        return IndexSpec(raw)

    s = _norm(raw)
    if not s:
        raise InputValidationError("Wallet must not be empty")

    if s.lower() == AUTO:
        if not auto_owner_of:
            raise InputValidationError("'auto' wallet requires a contract whose owner signs")
        return AutoOwnerOf(auto_owner_of)

    if _is_decimal(s):
        return IndexSpec(int(s))

    if s.startswith("0x") or s.startswith("0X"):
        body = s[2:]
        if not is_hex(body):
            raise InvalidKeyError(f"Malformed hex wallet: {s}", value=s)
        if len(body) == 40:
            if not is_address("0x" + body):
                raise InputValidationError(f"Invalid address checksum: {s}", value=s)
            return AddressSpec("0x" + body)
        if len(body) == 64:
            return PrivateKeySpec("0x" + body.lower())
        raise InvalidKeyError(f"Malformed key or address (length {len(body)}): {s[:10]}...", length=len(body))

    if len(s) == 64 and is_hex(s):
        return PrivateKeySpec("0x" + s.lower())

    return AliasSpec(s)
