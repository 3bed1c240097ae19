from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from core.domain.entities.transfer_entities import (
    ApprovalCriteria,
    EncryptedAmount,
    ManagerHandle,
    TransferDetails,
    TransferSignature,
)
from core.domain.entities.wallet_entity import SigningWallet


class ConfidentialCipher(ABC):
    """
    Companion confidential-computation network: turns clear amounts into
    opaque handles bound to (contract, user) and back.
    """

    @abstractmethod
    def encrypt64(self, contract: str, user: str, value: int) -> EncryptedAmount:
        raise NotImplementedError

    @abstractmethod
    def decrypt64(self, handle: int) -> int:
        raise NotImplementedError


class TransferManagerLedger(ABC):
    """
    The ledger side of the DVA workflow: the token, its identity registry and
    the transfer manager contracts.

    Implementations are authoritative for every rule they enforce; callers
    still run the same checks on freshly read state to fail early with a
    precise error. Every mutating call returns once it is confirmed and
    returns the transaction hash when there is one.
    """

    # ---------------- token / identity registry reads ----------------

    @abstractmethod
    def is_verified(self, token: str, user: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def identity_of(self, token: str, user: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def is_token_agent(self, token: str, address: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_registry_agent(self, token: str, address: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def allowance(self, token: str, owner: str, spender: str) -> int:
        """Clear value of the confidential allowance."""
        raise NotImplementedError

    @abstractmethod
    def balance_of(self, token: str, user: str) -> int:
        """Clear value of the confidential balance."""
        raise NotImplementedError

    @abstractmethod
    def owner_of(self, contract: str) -> Optional[str]:
        raise NotImplementedError

    # ---------------- token writes ----------------

    @abstractmethod
    def add_token_agent(self, token: str, agent: str, owner: SigningWallet) -> Optional[str]:
        """No-op (returns None) when `agent` already is an agent."""
        raise NotImplementedError

    @abstractmethod
    def remove_token_agent(self, token: str, agent: str, owner: SigningWallet) -> Optional[str]:
        """No-op (returns None) when `agent` is not an agent."""
        raise NotImplementedError

    @abstractmethod
    def approve(self, token: str, owner: SigningWallet, spender: str, amount: int) -> Optional[str]:
        raise NotImplementedError

    # ---------------- transfer manager ----------------

    @abstractmethod
    def deploy_manager(self, token: str, user: str, identity: str, country: int, agent: SigningWallet) -> ManagerHandle:
        """
        Deploys a manager and registers it in the token's identity registry
        with `identity` and `country`.
        """
        raise NotImplementedError

    @abstractmethod
    def get_manager(self, manager: str, token: str) -> Optional[ManagerHandle]:
        raise NotImplementedError

    @abstractmethod
    def set_approval_criteria(self, manager: str, criteria: ApprovalCriteria, caller: SigningWallet) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def get_approval_criteria(self, manager: str, token: str) -> ApprovalCriteria:
        """Raises NotFoundError when no criteria were set for `token`."""
        raise NotImplementedError

    @abstractmethod
    def next_nonce(self, manager: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def encrypt_amount(self, manager: str, sender: str, amount: int) -> EncryptedAmount:
        raise NotImplementedError

    @abstractmethod
    def initiate_transfer(
        self,
        manager: str,
        token: str,
        sender: SigningWallet,
        recipient: str,
        amount: EncryptedAmount,
    ) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def get_transfer(self, manager: str, transfer_id: str) -> Optional[TransferDetails]:
        raise NotImplementedError

    @abstractmethod
    def approve_transfer(self, manager: str, transfer_id: str, approver: SigningWallet) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def delegate_approve_transfer(
        self,
        manager: str,
        transfer_id: str,
        signatures: List[TransferSignature],
        caller: SigningWallet,
    ) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def cancel_transfer(self, manager: str, transfer_id: str, caller: SigningWallet) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def reject_transfer(self, manager: str, transfer_id: str, caller: SigningWallet) -> Optional[str]:
        raise NotImplementedError
