"""
TransferManagerLedger backed by the deployed contracts.

The manager contract is authoritative: every rule is enforced on-chain and
its custom errors are decoded into the SDK exception taxonomy.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, TypeVar, Union

from web3 import Web3

from adapters.chain.agent_role import read_owner
from adapters.chain.artifacts import DVA_TRANSFER_MANAGER_ARTIFACT, load_contract_artifact
from adapters.chain.dva_transfer_manager import DVATransferManagerAdapter, map_dva_error
from adapters.chain.identity_registry import IdentityRegistryAdapter
from adapters.chain.token import ConfidentialTokenAdapter
from core.domain.entities.transfer_entities import (
    ApprovalCriteria,
    EncryptedAmount,
    ManagerHandle,
    TransferDetails,
    TransferSignature,
)
from core.domain.entities.wallet_entity import SigningWallet
from core.domain.repositories.transfer_manager_ledger_interface import ConfidentialCipher, TransferManagerLedger
from core.services.exceptions import NotFoundError, NotVerifiedIdentityError, TransactionRevertedError
from core.services.progress import Progress
from core.services.tx_service import TxService

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _decoded(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except TransactionRevertedError as exc:
        mapped = map_dva_error(exc)
        if mapped is exc:
            raise
        raise mapped from exc


class OnChainLedger(TransferManagerLedger):
    def __init__(
        self,
        w3: Web3,
        cipher: ConfidentialCipher,
        *,
        tx: Optional[TxService] = None,
        artifacts_root: Union[str, Path, None] = None,
    ):
        self.w3 = w3
        self.cipher = cipher
        self.tx = tx or TxService(w3)
        self.artifacts_root = artifacts_root
        self._registries: Dict[str, IdentityRegistryAdapter] = {}

    # ---------------- adapters ----------------

    def _token(self, token: str) -> ConfidentialTokenAdapter:
        return ConfidentialTokenAdapter(self.w3, token)

    def _registry(self, token: str) -> IdentityRegistryAdapter:
        key = token.lower()
        reg = self._registries.get(key)
        if reg is None:
            reg = IdentityRegistryAdapter(self.w3, self._token(token).identity_registry())
            self._registries[key] = reg
        return reg

    def _dva(self, manager: str) -> DVATransferManagerAdapter:
        return DVATransferManagerAdapter(self.w3, manager)

    # ---------------- token / identity registry reads ----------------

    def is_verified(self, token: str, user: str) -> bool:
        return self._registry(token).is_verified(user)

    def identity_of(self, token: str, user: str) -> Optional[str]:
        return self._registry(token).identity_of(user)

    def is_token_agent(self, token: str, address: str) -> bool:
        return self._token(token).is_agent(address)

    def is_registry_agent(self, token: str, address: str) -> bool:
        return self._registry(token).is_agent(address)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        handle = self._token(token).allowance_handle(owner, spender)
        return self.cipher.decrypt64(handle) if handle else 0

    def balance_of(self, token: str, user: str) -> int:
        handle = self._token(token).balance_handle(user)
        return self.cipher.decrypt64(handle) if handle else 0

    def owner_of(self, contract: str) -> Optional[str]:
        return read_owner(self.w3, contract)

    # ---------------- token writes ----------------

    def add_token_agent(self, token: str, agent: str, owner: SigningWallet) -> Optional[str]:
        t = self._token(token)
        if t.is_agent(agent):
            logger.info("%s is already an agent of token %s", agent, t.address)
            return None
        res = self.tx.send(t.fn_add_agent(agent), owner)
        return res["tx_hash"]

    def remove_token_agent(self, token: str, agent: str, owner: SigningWallet) -> Optional[str]:
        t = self._token(token)
        if not t.is_agent(agent):
            logger.info("%s is not an agent of token %s", agent, t.address)
            return None
        res = self.tx.send(t.fn_remove_agent(agent), owner)
        return res["tx_hash"]

    def approve(self, token: str, owner: SigningWallet, spender: str, amount: int) -> Optional[str]:
        t = self._token(token)
        enc = self.cipher.encrypt64(t.address, owner.address, amount)
        res = self.tx.send(t.fn_approve(spender, enc.handle, bytes.fromhex(enc.proof[2:])), owner)
        return res["tx_hash"]

    # ---------------- transfer manager ----------------

    def deploy_manager(self, token: str, user: str, identity: str, country: int, agent: SigningWallet) -> ManagerHandle:
        registry = self._registry(token)
        if not registry.is_verified(user):
            raise NotVerifiedIdentityError(
                f"Identity of {user} is not verified (id={identity}, id-registry={registry.address})",
                user=user,
                identity=identity,
            )

        progress = Progress(2)
        abi, bytecode = load_contract_artifact(*DVA_TRANSFER_MANAGER_ARTIFACT, root=self.artifacts_root)
        res = self.tx.deploy(abi=abi, bytecode=bytecode, signer=agent)
        address = Web3.to_checksum_address(res["result"]["contract_address"])
        progress.contract_deployed("DVATransferManager", address)

        self.tx.send(registry.fn_register_identity(address, identity, country), agent)
        progress.log_step(f"identity {identity} registered for {address} (country {country})")

        return ManagerHandle(
            address=address,
            token=Web3.to_checksum_address(token),
            identity=Web3.to_checksum_address(identity),
            agent=agent.address,
            country=int(country),
            user=Web3.to_checksum_address(user),
        )

    def get_manager(self, manager: str, token: str) -> Optional[ManagerHandle]:
        registry = self._registry(token)
        identity = registry.identity_of(manager)
        if identity is None:
            return None
        return ManagerHandle(
            address=Web3.to_checksum_address(manager),
            token=Web3.to_checksum_address(token),
            identity=identity,
            agent=read_owner(self.w3, manager) or "",
            country=registry.country_of(manager),
        )

    def set_approval_criteria(self, manager: str, criteria: ApprovalCriteria, caller: SigningWallet) -> Optional[str]:
        dva = self._dva(manager)
        res = _decoded(lambda: self.tx.send(dva.fn_set_approval_criteria(criteria), caller))
        return res["tx_hash"]

    def get_approval_criteria(self, manager: str, token: str) -> ApprovalCriteria:
        dva = self._dva(manager)
        raw = _decoded(lambda: self.tx.call(dva.fn_get_approval_criteria(token), what="getApprovalCriteria()"))
        return dva.parse_approval_criteria(token, raw)

    def next_nonce(self, manager: str) -> int:
        return self._dva(manager).get_next_tx_nonce()

    def encrypt_amount(self, manager: str, sender: str, amount: int) -> EncryptedAmount:
        return self.cipher.encrypt64(manager, sender, amount)

    def initiate_transfer(
        self,
        manager: str,
        token: str,
        sender: SigningWallet,
        recipient: str,
        amount: EncryptedAmount,
    ) -> Optional[str]:
        dva = self._dva(manager)
        fn = dva.fn_initiate_transfer(token, recipient, amount.handle, bytes.fromhex(amount.proof[2:]))
        res = _decoded(lambda: self.tx.send(fn, sender))
        return res["tx_hash"]

    def get_transfer(self, manager: str, transfer_id: str) -> Optional[TransferDetails]:
        transfer = self._dva(manager).get_transfer(transfer_id)
        if transfer is None:
            return None
        # the manager keeps the ordering flag with the criteria, not the transfer
        try:
            criteria = self.get_approval_criteria(manager, transfer.token)
        except NotFoundError:
            return transfer
        if criteria.hash == transfer.approval_criteria_hash:
            transfer.sequential = criteria.sequential_approval
        return transfer

    def approve_transfer(self, manager: str, transfer_id: str, approver: SigningWallet) -> Optional[str]:
        dva = self._dva(manager)
        res = _decoded(lambda: self.tx.send(dva.fn_approve_transfer(transfer_id), approver))
        return res["tx_hash"]

    def delegate_approve_transfer(
        self,
        manager: str,
        transfer_id: str,
        signatures: List[TransferSignature],
        caller: SigningWallet,
    ) -> Optional[str]:
        dva = self._dva(manager)
        res = _decoded(lambda: self.tx.send(dva.fn_delegate_approve_transfer(transfer_id, signatures), caller))
        return res["tx_hash"]

    def cancel_transfer(self, manager: str, transfer_id: str, caller: SigningWallet) -> Optional[str]:
        dva = self._dva(manager)
        res = _decoded(lambda: self.tx.send(dva.fn_cancel_transfer(transfer_id), caller))
        return res["tx_hash"]

    def reject_transfer(self, manager: str, transfer_id: str, caller: SigningWallet) -> Optional[str]:
        dva = self._dva(manager)
        res = _decoded(lambda: self.tx.send(dva.fn_reject_transfer(transfer_id), caller))
        return res["tx_hash"]

