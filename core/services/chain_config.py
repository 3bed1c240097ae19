from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Union

from web3 import Web3

from adapters.chain.agent_role import read_owner
from adapters.external.history.json_history_repository import JsonHistoryRepository
from adapters.external.history.memory_history_repository import InMemoryHistoryRepository
from config import NetworkConfig
from core.domain.entities.history_entity import ChainInfo, DeploymentHistory
from core.domain.entities.wallet_entity import SigningWallet, Wallet
from core.domain.enums.history_enums import DeploymentKind
from core.domain.repositories.deployment_history_repository_interface import DeploymentHistoryRepository
from core.domain.schemas.wallet_spec import WalletSpec, parse_wallet_spec
from core.services.exceptions import NetworkError, UnresolvableOwnerError
from core.services.normalize import is_address, to_address
from core.services.wallet_resolver import OwnerReader, WalletResolver
from core.services.web3_cache import check_chain_id, get_web3

logger = logging.getLogger(__name__)


def _sorted(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _sorted(obj[k]) for k in sorted(obj)}
    if isinstance(obj, list):
        return [_sorted(v) for v in obj]
    return obj


class ChainConfig:
    """
    Per-invocation state bound to one network: connection, wallet resolver
    and the deployment history.

    Built with `ChainConfig.load(...)`; nothing here is global, tests build
    as many instances as they need.
    """

    def __init__(
        self,
        *,
        network: NetworkConfig,
        resolver: WalletResolver,
        history_repo: DeploymentHistoryRepository,
        history: DeploymentHistory,
        w3: Optional[Web3] = None,
        owner_reader: Optional[OwnerReader] = None,
    ):
        self.network = network
        self.resolver = resolver
        self._history_repo = history_repo
        self._history = history
        self._w3 = w3
        self._owner_reader = owner_reader

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def load(
        cls,
        network: NetworkConfig,
        history: Union[str, os.PathLike, DeploymentHistoryRepository, None],
        *,
        w3: Optional[Web3] = None,
        verify_chain: bool = True,
        owner_reader: Optional[OwnerReader] = None,
    ) -> "ChainConfig":
        """
        Connects to the network, derives the wallets and loads the history.

        - a missing history file yields an empty history (the file is created
          on the first mutation)
        - unparsable content raises CorruptHistoryError
        - a history recorded for another chain is ignored
        """
        if w3 is None and network.url:
            w3 = get_web3(network.url, timeout=network.timeout_sec)
        if verify_chain:
            if w3 is None:
                raise NetworkError(f"No RPC url configured for network {network.name}")
            check_chain_id(w3, network.chain_id, url=network.url)

        resolver = WalletResolver.from_mnemonic(
            network.mnemonic,
            hd_path=network.hd_path,
            count=network.wallet_count,
            aliases=network.aliases,
        )

        if history is None:
            repo: DeploymentHistoryRepository = InMemoryHistoryRepository()
        elif isinstance(history, DeploymentHistoryRepository):
            repo = history
        else:
            repo = JsonHistoryRepository(history)

        chain = ChainInfo(id=network.chain_id, name=network.name, url=network.url or "")
        loaded = repo.read()
        if loaded is None:
            loaded = DeploymentHistory(chain=chain)
        elif loaded.chain is not None and (loaded.chain.id != chain.id or loaded.chain.name != chain.name):
            logger.warning(
                "deploy history %s belongs to chain %s (%s), expected %s (%s); ignoring it",
                repo.location,
                loaded.chain.name,
                loaded.chain.id,
                chain.name,
                chain.id,
            )
            loaded = DeploymentHistory(chain=chain)
        else:
            loaded.chain = chain

        return cls(
            network=network,
            resolver=resolver,
            history_repo=repo,
            history=loaded,
            w3=w3,
            owner_reader=owner_reader,
        )

    # ------------------------------------------------------------------ #
    # Connection
    # ------------------------------------------------------------------ #

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            raise NetworkError(f"Network {self.network.name} has no RPC connection")
        return self._w3

    @property
    def chain_id(self) -> int:
        return self.network.chain_id

    def owner_of(self, contract: str) -> Optional[str]:
        address = to_address(contract, name="contract")
        if self._owner_reader is not None:
            return self._owner_reader(address)
        return read_owner(self.w3, address)

    # ------------------------------------------------------------------ #
    # Wallets
    # ------------------------------------------------------------------ #

    def resolve_wallet(self, spec: Union[str, int, WalletSpec]) -> Wallet:
        return self.resolver.resolve(spec)

    def resolve_address(self, spec: Union[str, int, WalletSpec]) -> str:
        return self.resolver.resolve(spec).address

    def resolve_signing(
        self,
        spec: Union[str, int, WalletSpec],
        *,
        auto_owner_of: Optional[str] = None,
    ) -> SigningWallet:
        """
        `auto_owner_of` gives meaning to the "auto" sentinel: the signer is
        the live owner of that contract.
        """
        parsed = parse_wallet_spec(spec, auto_owner_of=auto_owner_of)
        return self.resolver.resolve_signing(parsed, owner_of=self.owner_of)

    def get_owner_wallet(self, contract: str) -> SigningWallet:
        address = to_address(contract, name="contract")
        owner = self.owner_of(address)
        if not owner:
            raise UnresolvableOwnerError(f"Unable to determine owner of contract: {address}", contract=address)
        idx = self.resolver.index_of(owner)
        if idx is None:
            raise UnresolvableOwnerError(
                f"Unable to retrieve wallet from address {owner} (owner of {address})",
                contract=address,
                owner=owner,
            )
        return self.resolver.wallet_at(idx)

    # ------------------------------------------------------------------ #
    # Deployment history
    # ------------------------------------------------------------------ #

    @property
    def history_location(self) -> str:
        return self._history_repo.location

    def record_deployment(self, kind: DeploymentKind, key: Optional[str], address: str) -> bool:
        """
        Last-write-wins per (kind, key); persisted before returning.
        """
        address = to_address(address)
        changed = self._history.record(kind, key, address)
        if changed:
            self.save()
            logger.info("recorded %s %s -> %s", DeploymentKind(kind).value, key or "-", address)
        return changed

    def lookup_deployment(self, kind: DeploymentKind, key: Union[str, int, None] = None) -> Optional[str]:
        return self._history.lookup(kind, key)

    def history_entries(self, kind: DeploymentKind) -> Union[List[str], Dict[str, str]]:
        return self._history.entries(kind)

    def find_transfer_manager(self, manager_or_identity: Union[str, WalletSpec]) -> Optional[str]:
        """
        A DVA transfer manager address given either the manager address
        itself or the wallet (alias/index/address) it was created for.
        """
        if isinstance(manager_or_identity, str) and is_address(manager_or_identity):
            address = to_address(manager_or_identity)
            owner_entry = self._history.lookup(DeploymentKind.TRANSFER_MANAGER, address)
            return owner_entry or address
        user = self.resolver.resolve(manager_or_identity).address
        return self._history.lookup(DeploymentKind.TRANSFER_MANAGER, user)

    def save(self) -> None:
        self._history_repo.write(self._history)

    def to_json(self) -> dict:
        return _sorted(self._history.to_json())
