from __future__ import annotations

import pytest
from eth_account import Account

from config import DEV_MNEMONIC
from core.domain.schemas.wallet_spec import (
    AddressSpec,
    AliasSpec,
    AutoOwnerOf,
    IndexSpec,
    PrivateKeySpec,
    parse_wallet_spec,
)
from core.services.exceptions import (
    InputValidationError,
    InvalidKeyError,
    NotOwnerError,
    OutOfRangeError,
    UnknownAliasError,
)
from core.services.wallet_resolver import WalletResolver

# first account of the well known development mnemonic
WALLET_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
KEY_0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


@pytest.fixture(scope="module")
def resolver() -> WalletResolver:
    return WalletResolver.from_mnemonic(
        DEV_MNEMONIC,
        count=4,
        aliases={0: ("admin",), 3: ("super-bank", "token-owner"), 7: ("out-of-range",)},
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        (2, IndexSpec(2)),
        ("2", IndexSpec(2)),
        (" alice ", AliasSpec("alice")),
        (WALLET_0, AddressSpec(WALLET_0)),
        (KEY_0, PrivateKeySpec(KEY_0)),
        (KEY_0[2:].upper(), PrivateKeySpec(KEY_0)),
    ],
)
def test_parse_wallet_spec(raw, expected):
    assert parse_wallet_spec(raw) == expected


def test_parse_wallet_spec_errors():
    with pytest.raises(InputValidationError):
        parse_wallet_spec("")
    with pytest.raises(InputValidationError):
        parse_wallet_spec(True)
    with pytest.raises(InvalidKeyError):
        parse_wallet_spec("0x1234")
    with pytest.raises(InvalidKeyError):
        parse_wallet_spec("0xzz")
    with pytest.raises(InputValidationError):
        parse_wallet_spec("auto")
    assert parse_wallet_spec("AUTO", auto_owner_of=WALLET_0) == AutoOwnerOf(WALLET_0)


def test_private_key_repr_is_redacted():
    assert KEY_0[2:] not in repr(PrivateKeySpec(KEY_0))


def test_derivation_matches_dev_mnemonic(resolver):
    assert len(resolver) == 4
    assert resolver.wallet_at(0).address == WALLET_0
    assert resolver.index_of(WALLET_0.lower()) == 0


def test_aliases_are_case_insensitive(resolver):
    w = resolver.resolve("Token-Owner")
    assert w.index == 3
    assert w.names == ("super-bank", "token-owner")
    assert resolver.resolve("SUPER-BANK").address == w.address
    assert resolver.names_of(3) == ["super-bank", "token-owner"]


def test_out_of_range_and_unknown(resolver):
    with pytest.raises(OutOfRangeError):
        resolver.resolve(4)
    with pytest.raises(OutOfRangeError):
        resolver.resolve("-1")
    with pytest.raises(UnknownAliasError):
        resolver.resolve("out-of-range")
    with pytest.raises(UnknownAliasError):
        resolver.resolve("nobody")


def test_resolve_never_signs(resolver):
    w = resolver.resolve(WALLET_0)
    assert w.index == 0 and w.names == ("admin",)
    assert not w.can_sign

    foreign = "0x" + "99" * 20
    assert resolver.resolve(foreign).index is None
    with pytest.raises(InputValidationError):
        resolver.resolve(KEY_0)


def test_resolve_signing(resolver):
    assert resolver.resolve_signing("admin").address == WALLET_0
    assert resolver.resolve_signing(WALLET_0).index == 0

    from_key = resolver.resolve_signing(KEY_0)
    assert from_key.address == WALLET_0
    assert from_key.label() == "admin (0)"

    stranger = Account.create()
    signer = resolver.resolve_signing(stranger.key.hex())
    assert signer.address == stranger.address
    assert signer.index is None

    with pytest.raises(NotOwnerError):
        resolver.resolve_signing("0x" + "99" * 20)


def test_auto_owner(resolver):
    owners = {"0x" + "10" * 20: WALLET_0.lower(), "0x" + "20" * 20: "0x" + "99" * 20}
    lookup = lambda c: owners.get(c.lower())

    assert resolver.resolve_signing(AutoOwnerOf("0x" + "10" * 20), owner_of=lookup).index == 0
    with pytest.raises(NotOwnerError):
        resolver.resolve_signing(AutoOwnerOf("0x" + "20" * 20), owner_of=lookup)
    with pytest.raises(NotOwnerError):
        resolver.resolve_signing(AutoOwnerOf("0x" + "30" * 20), owner_of=lookup)


def test_conflicting_alias_is_rejected():
    with pytest.raises(InputValidationError):
        WalletResolver.from_mnemonic(DEV_MNEMONIC, count=2, aliases={0: ("x",), 1: ("X",)})


def test_describe(resolver):
    assert resolver.describe(WALLET_0) == "admin (0)"
    assert resolver.describe(None) == "<none>"
    assert resolver.describe("0x" + "99" * 20) == "0x" + "99" * 20
