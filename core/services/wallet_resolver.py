from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount

from core.domain.entities.wallet_entity import SigningWallet, Wallet
from core.domain.schemas.wallet_spec import (
    AddressSpec,
    AliasSpec,
    AutoOwnerOf,
    IndexSpec,
    PrivateKeySpec,
    WalletSpec,
    parse_wallet_spec,
)
from core.services.exceptions import (
    InputValidationError,
    InvalidKeyError,
    NotOwnerError,
    OutOfRangeError,
    UnknownAliasError,
)
from core.services.normalize import _norm_lower, to_address

logger = logging.getLogger(__name__)

Account.enable_unaudited_hdwallet_features()

OwnerReader = Callable[[str], Optional[str]]


class WalletResolver:
    """
    Maps wallet specifications (index, alias, address, private key, "owner
    of contract X") to wallets.

    The table is derived once from (mnemonic, hd_path, count) and never
    changes afterwards:
    - each index has exactly one address
    - an alias maps to exactly one index (aliases are case-insensitive)
    """

    def __init__(
        self,
        accounts: Sequence[LocalAccount],
        aliases: Optional[Mapping[int, Iterable[str]]] = None,
    ):
        self._accounts: Tuple[LocalAccount, ...] = tuple(accounts)
        self._by_address: Dict[str, int] = {}
        for i, acct in enumerate(self._accounts):
            self._by_address.setdefault(_norm_lower(acct.address), i)

        self._names: Dict[int, Tuple[str, ...]] = {}
        self._by_alias: Dict[str, int] = {}
        for index, names in (aliases or {}).items():
            self._register(int(index), names)

    @classmethod
    def from_mnemonic(
        cls,
        mnemonic: str,
        *,
        hd_path: str = "m/44'/60'/0'/0",
        count: int = 10,
        aliases: Optional[Mapping[int, Iterable[str]]] = None,
    ) -> "WalletResolver":
        if count < 0:
            raise InputValidationError("wallet count must not be negative", count=count)
        base = hd_path.rstrip("/")
        try:
            accounts = [Account.from_mnemonic(mnemonic, account_path=f"{base}/{i}") for i in range(count)]
        except Exception as exc:
            raise InvalidKeyError(f"Unable to derive wallets from mnemonic: {exc}") from exc
        return cls(accounts, aliases)

    def _register(self, index: int, names: Iterable[str]) -> None:
        if index < 0 or index >= len(self._accounts):
            # aliases beyond the derived set are simply not addressable
            return
        for name in names:
            key = _norm_lower(name)
            if not key:
                continue
            owner = self._by_alias.get(key)
            if owner is not None and owner != index:
                raise InputValidationError(
                    f"Alias '{name}' is bound to both wallet #{owner} and wallet #{index}",
                    alias=name,
                )
            if owner is None:
                self._by_alias[key] = index
                self._names[index] = self._names.get(index, ()) + (name,)

    # ------------------------------------------------------------------ #
    # Table
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._accounts)

    def names_of(self, index: int) -> List[str]:
        return list(self._names.get(int(index), ()))

    def index_of(self, address: str) -> Optional[int]:
        return self._by_address.get(_norm_lower(address))

    def wallet_at(self, index: int) -> SigningWallet:
        if isinstance(index, bool) or index < 0 or index >= len(self._accounts):
            raise OutOfRangeError(
                f"Wallet index {index} is out of range (0..{len(self._accounts) - 1})",
                index=index,
            )
        acct = self._accounts[index]
        return SigningWallet(address=acct.address, index=index, names=tuple(self.names_of(index)), account=acct)

    def wallets(self) -> List[SigningWallet]:
        return [self.wallet_at(i) for i in range(len(self._accounts))]

    def describe(self, address: Optional[str]) -> str:
        """
        "alias (index)" for known addresses, the address itself otherwise.
        """
        if not address:
            return "<none>"
        idx = self.index_of(address)
        if idx is None:
            return address
        return self.wallet_at(idx).label()

    # ------------------------------------------------------------------ #
    # Resolution
    # ------------------------------------------------------------------ #

    def _spec(self, spec: Union[str, int, WalletSpec]) -> WalletSpec:
        return parse_wallet_spec(spec)

    def resolve(self, spec: Union[str, int, WalletSpec]) -> Wallet:
        """
        Resolves an index, alias or address.

        Addresses are returned as given (checksummed); when they match a
        derived wallet the index and names are attached, but the result never
        carries signing capability.
        """
        spec = self._spec(spec)

        if isinstance(spec, AddressSpec):
            address = to_address(spec.address)
            idx = self.index_of(address)
            if idx is None:
                return Wallet(address=address)
            return Wallet(address=address, index=idx, names=tuple(self.names_of(idx)))

        if isinstance(spec, (IndexSpec, AliasSpec)):
            w = self._resolve_derived(spec)
            return Wallet(address=w.address, index=w.index, names=w.names)

        if isinstance(spec, PrivateKeySpec):
            raise InputValidationError("A private key is not accepted here, use an address or alias")

        raise InputValidationError("'auto' is not accepted here", contract=getattr(spec, "contract", None))

    def resolve_address(self, spec: Union[str, int, WalletSpec]) -> str:
        return self.resolve(spec).address

    def resolve_signing(
        self,
        spec: Union[str, int, WalletSpec],
        *,
        owner_of: Optional[OwnerReader] = None,
    ) -> SigningWallet:
        """
        Resolves a wallet able to sign.

        Accepts everything `resolve` does plus raw private keys and
        `AutoOwnerOf(contract)`, which reads `owner()` of the contract through
        `owner_of` and requires the owner to be one of the derived wallets.
        """
        spec = self._spec(spec)

        if isinstance(spec, (IndexSpec, AliasSpec)):
            return self._resolve_derived(spec)

        if isinstance(spec, PrivateKeySpec):
            try:
                acct = Account.from_key(spec.key)
            except Exception as exc:
                raise InvalidKeyError(f"Invalid private key: {exc}") from exc
            idx = self.index_of(acct.address)
            names = tuple(self.names_of(idx)) if idx is not None else ()
            return SigningWallet(address=acct.address, index=idx, names=names, account=acct)

        if isinstance(spec, AddressSpec):
            address = to_address(spec.address)
            idx = self.index_of(address)
            if idx is None:
                raise NotOwnerError(
                    f"No signing key is known for address {address}",
                    address=address,
                )
            return self.wallet_at(idx)

        if isinstance(spec, AutoOwnerOf):
            if owner_of is None:
                raise InputValidationError("'auto' wallet requires a live owner lookup", contract=spec.contract)
            contract = to_address(spec.contract, name="contract")
            owner = owner_of(contract)
            if not owner:
                raise NotOwnerError(f"Contract {contract} does not have an owner", contract=contract)
            idx = self.index_of(owner)
            if idx is None:
                raise NotOwnerError(
                    f"The owner of {contract} ({owner}) is not one of the known wallets",
                    contract=contract,
                    owner=owner,
                )
            logger.debug("auto wallet for %s resolved to %s", contract, self.describe(owner))
            return self.wallet_at(idx)

        raise InputValidationError(f"Unsupported wallet spec: {spec!r}")

    def _resolve_derived(self, spec: Union[IndexSpec, AliasSpec]) -> SigningWallet:
        if isinstance(spec, IndexSpec):
            return self.wallet_at(spec.index)
        idx = self._by_alias.get(_norm_lower(spec.name))
        if idx is None:
            raise UnknownAliasError(f"Unknown wallet name {spec.name}", alias=spec.name)
        return self.wallet_at(idx)
