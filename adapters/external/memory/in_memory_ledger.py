"""
Centralized, in-process implementation of the DVA ledger.

It enforces the same rules as the on-chain transfer manager. With no ledger
ordering transactions for it, every manager carries its own lock: approvals,
cancellations and rejections of one manager are serialized, each committed
mutation bumps the transfer `version`, and a transfer completes at most once.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from web3 import Web3

from core.domain.entities.transfer_entities import (
    ApprovalCriteria,
    EncryptedAmount,
    ManagerHandle,
    TransferDetails,
    TransferSignature,
)
from core.domain.entities.wallet_entity import SigningWallet
from core.domain.enums.transfer_enums import TransferStatus
from core.domain.repositories.transfer_manager_ledger_interface import ConfidentialCipher, TransferManagerLedger
from core.services.approval_rules import plan_approvals, require_pending
from core.services.exceptions import (
    ExecutionFailedError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    NotAnApproverError,
    NotFoundError,
    NotVerifiedIdentityError,
    PermissionDeniedError,
)
from core.services.normalize import _norm_lower, same_address, to_address
from core.services.transfer_id import approval_criteria_hash, calculate_transfer_id, recover_signer

logger = logging.getLogger(__name__)

ComplianceCheck = Callable[[str, str, int], bool]


def _derive_address(*parts: object) -> str:
    raw = Web3.keccak(text=":".join(str(p) for p in parts))
    return Web3.to_checksum_address(raw[-20:])


class InMemoryCipher(ConfidentialCipher):
    """
    Stand-in for the confidential-computation network: handles are random
    looking 256-bit integers, the clear values stay inside this object.
    """

    def __init__(self) -> None:
        self._values: Dict[int, int] = {}
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def encrypt64(self, contract: str, user: str, value: int) -> EncryptedAmount:
        if value < 0 or value >= 2**64:
            raise ValueError("value does not fit in euint64")
        with self._lock:
            n = next(self._seq)
            handle = int.from_bytes(Web3.keccak(text=f"{_norm_lower(contract)}:{_norm_lower(user)}:{n}"), "big")
            self._values[handle] = int(value)
        return EncryptedAmount(handle=handle, proof="0x" + f"{n:064x}")

    def decrypt64(self, handle: int) -> int:
        try:
            return self._values[int(handle)]
        except KeyError as exc:
            raise NotFoundError(f"Unknown confidential handle {handle}", handle=handle) from exc


@dataclass
class _TokenState:
    address: str
    owner: str
    agents: Set[str] = field(default_factory=set)
    registry_agents: Set[str] = field(default_factory=set)
    identities: Dict[str, Tuple[str, int]] = field(default_factory=dict)
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    compliance: Optional[ComplianceCheck] = None


@dataclass
class _ManagerState:
    handle: ManagerHandle
    criteria: Dict[str, ApprovalCriteria] = field(default_factory=dict)
    transfers: Dict[str, TransferDetails] = field(default_factory=dict)
    nonce: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)


class InMemoryLedger(TransferManagerLedger):
    def __init__(self, cipher: Optional[InMemoryCipher] = None):
        self.cipher = cipher or InMemoryCipher()
        self._tokens: Dict[str, _TokenState] = {}
        self._managers: Dict[str, _ManagerState] = {}
        self._owners: Dict[str, str] = {}
        self._escrow: Dict[str, int] = {}
        self._seq = itertools.count(1)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Setup (what the TREX suite deployment does on-chain)
    # ------------------------------------------------------------------ #

    def deploy_token(self, owner: str, *, salt: str = "") -> str:
        with self._lock:
            address = _derive_address("token", salt, next(self._seq))
            owner = to_address(owner)
            state = _TokenState(address=address, owner=owner)
            state.registry_agents.add(_norm_lower(owner))
            self._tokens[_norm_lower(address)] = state
            self._owners[_norm_lower(address)] = owner
        logger.info("token deployed at %s (owner %s)", address, owner)
        return address

    def _require_owner(self, t: _TokenState, owner: Optional[SigningWallet]) -> None:
        if owner is not None and not same_address(owner.address, t.owner):
            raise PermissionDeniedError(
                f"{owner.address} is not the owner of token {t.address}",
                caller=owner.address,
            )

    def add_token_agent(self, token: str, agent: str, owner: Optional[SigningWallet] = None) -> Optional[str]:
        """
        Grants the token and identity registry agent roles. `owner` is
        optional for fixture setup.
        """
        with self._lock:
            t = self._token(token)
            self._require_owner(t, owner)
            t.agents.add(_norm_lower(agent))
            t.registry_agents.add(_norm_lower(agent))
        return None

    def remove_token_agent(self, token: str, agent: str, owner: Optional[SigningWallet] = None) -> Optional[str]:
        with self._lock:
            t = self._token(token)
            self._require_owner(t, owner)
            t.agents.discard(_norm_lower(agent))
            t.registry_agents.discard(_norm_lower(agent))
        return None

    def register_identity(self, token: str, user: str, identity: str, country: int) -> None:
        with self._lock:
            self._token(token).identities[_norm_lower(user)] = (to_address(identity), int(country))

    def mint(self, token: str, user: str, amount: int) -> None:
        with self._lock:
            t = self._token(token)
            key = _norm_lower(user)
            t.balances[key] = t.balances.get(key, 0) + int(amount)

    def set_compliance(self, token: str, check: Optional[ComplianceCheck]) -> None:
        with self._lock:
            self._token(token).compliance = check

    def _token(self, token: str) -> _TokenState:
        t = self._tokens.get(_norm_lower(token))
        if t is None:
            raise NotFoundError(f"Unknown token {token}", token=token)
        return t

    def _manager(self, manager: str) -> _ManagerState:
        m = self._managers.get(_norm_lower(manager))
        if m is None:
            raise NotFoundError(f"Unknown transfer manager {manager}", manager=manager)
        return m

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def is_verified(self, token: str, user: str) -> bool:
        with self._lock:
            return _norm_lower(user) in self._token(token).identities

    def identity_of(self, token: str, user: str) -> Optional[str]:
        with self._lock:
            entry = self._token(token).identities.get(_norm_lower(user))
        return entry[0] if entry else None

    def is_token_agent(self, token: str, address: str) -> bool:
        with self._lock:
            return _norm_lower(address) in self._token(token).agents

    def is_registry_agent(self, token: str, address: str) -> bool:
        with self._lock:
            return _norm_lower(address) in self._token(token).registry_agents

    def allowance(self, token: str, owner: str, spender: str) -> int:
        with self._lock:
            return self._token(token).allowances.get((_norm_lower(owner), _norm_lower(spender)), 0)

    def balance_of(self, token: str, user: str) -> int:
        with self._lock:
            return self._token(token).balances.get(_norm_lower(user), 0)

    def owner_of(self, contract: str) -> Optional[str]:
        with self._lock:
            return self._owners.get(_norm_lower(contract))

    # ------------------------------------------------------------------ #
    # Token writes
    # ------------------------------------------------------------------ #

    def approve(self, token: str, owner: SigningWallet, spender: str, amount: int) -> Optional[str]:
        with self._lock:
            self._token(token).allowances[(_norm_lower(owner.address), _norm_lower(spender))] = int(amount)
        return None

    def _move(self, t: _TokenState, src: str, dst: str, amount: int) -> None:
        s, d = _norm_lower(src), _norm_lower(dst)
        if t.balances.get(s, 0) < amount:
            raise InsufficientBalanceError(f"Balance of {src} is lower than {amount}", holder=src)
        t.balances[s] = t.balances.get(s, 0) - amount
        t.balances[d] = t.balances.get(d, 0) + amount

    # ------------------------------------------------------------------ #
    # Transfer manager
    # ------------------------------------------------------------------ #

    def deploy_manager(self, token: str, user: str, identity: str, country: int, agent: SigningWallet) -> ManagerHandle:
        with self._lock:
            t = self._token(token)
            if _norm_lower(agent.address) not in t.registry_agents:
                raise PermissionDeniedError(
                    f"{agent.address} is not an agent of the identity registry of token {t.address}",
                    agent=agent.address,
                )
            entry = t.identities.get(_norm_lower(user))
            if entry is None or not same_address(entry[0], identity):
                raise NotVerifiedIdentityError(f"Identity of {user} is not verified", user=user, identity=identity)

            address = _derive_address("dva", t.address, user, next(self._seq))
            handle = ManagerHandle(
                address=address,
                token=t.address,
                identity=to_address(identity),
                user=to_address(user),
                agent=agent.address,
                country=int(country),
            )
            self._managers[_norm_lower(address)] = _ManagerState(handle=handle)
            self._owners[_norm_lower(address)] = agent.address
            t.identities[_norm_lower(address)] = (to_address(identity), int(country))
        logger.info("transfer manager deployed at %s for %s", address, user)
        return handle

    def get_manager(self, manager: str, token: str) -> Optional[ManagerHandle]:
        with self._lock:
            m = self._managers.get(_norm_lower(manager))
        if m is None or not same_address(m.handle.token, token):
            return None
        return m.handle

    def set_approval_criteria(self, manager: str, criteria: ApprovalCriteria, caller: SigningWallet) -> Optional[str]:
        m = self._manager(manager)
        if not (same_address(caller.address, m.handle.agent) or self.is_token_agent(criteria.token, caller.address)):
            raise PermissionDeniedError(
                f"{caller.address} is not an agent of transfer manager {m.handle.address}",
                caller=caller.address,
            )
        stored = criteria.model_copy(deep=True)
        stored.hash = approval_criteria_hash(
            stored.token,
            stored.include_recipient_approver,
            stored.include_agent_approver,
            stored.additional_approvers,
        )
        with m.lock:
            m.criteria[_norm_lower(criteria.token)] = stored
        return None

    def get_approval_criteria(self, manager: str, token: str) -> ApprovalCriteria:
        m = self._manager(manager)
        with m.lock:
            c = m.criteria.get(_norm_lower(token))
        if c is None:
            raise NotFoundError(
                f"Token {token} is not registered in the transfer manager. Set the approval criteria first.",
                token=token,
            )
        return c.model_copy(deep=True)

    def next_nonce(self, manager: str) -> int:
        m = self._manager(manager)
        with m.lock:
            return m.nonce

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
        m = self._manager(manager)
        criteria = self.get_approval_criteria(manager, token)
        value = self.cipher.decrypt64(amount.handle)

        with m.lock, self._lock:
            t = self._token(token)
            for who, label in ((sender.address, "sender"), (recipient, "recipient")):
                if _norm_lower(who) not in t.identities:
                    raise NotVerifiedIdentityError(f"Identity of {label} {who} is not verified", address=who)

            key = (_norm_lower(sender.address), _norm_lower(m.handle.address))
            if t.allowances.get(key, 0) < value:
                raise InsufficientAllowanceError(
                    f"{sender.address} has not approved transfer manager {m.handle.address} for {value}",
                    owner=sender.address,
                    spender=m.handle.address,
                )
            self._move(t, sender.address, m.handle.address, value)
            t.allowances[key] -= value

            nonce = m.nonce
            transfer_id = calculate_transfer_id(m.handle.address, nonce, sender.address, recipient, amount.handle)
            m.transfers[transfer_id] = TransferDetails(
                transfer_id=transfer_id,
                manager=m.handle.address,
                token=t.address,
                sender=sender.address,
                recipient=to_address(recipient),
                eamount=amount.handle,
                nonce=nonce,
                approvers=criteria.approvers_for(to_address(recipient)),
                approval_criteria_hash=criteria.hash,
                sequential=criteria.sequential_approval,
            )
            m.nonce = nonce + 1
            self._escrow[transfer_id] = value
        logger.info("transfer %s initiated on %s (nonce %s)", transfer_id, m.handle.address, nonce)
        return None

    def get_transfer(self, manager: str, transfer_id: str) -> Optional[TransferDetails]:
        m = self._manager(manager)
        with m.lock:
            t = m.transfers.get(_norm_lower(transfer_id))
            return t.model_copy(deep=True) if t else None

    def _commit(self, m: _ManagerState, planned: TransferDetails) -> None:
        """
        Stores `planned`; when every slot is approved the escrowed amount is
        released to the recipient first. A failed release leaves the stored
        transfer untouched.
        """
        if planned.is_complete:
            t = self._token(planned.token)
            value = self._escrow[planned.transfer_id]
            with self._lock:
                if _norm_lower(planned.recipient) not in t.identities:
                    raise ExecutionFailedError(
                        f"Transfer {planned.transfer_id} could not execute: recipient {planned.recipient} is not verified",
                        transfer_id=planned.transfer_id,
                    )
                if t.compliance is not None and not t.compliance(planned.sender, planned.recipient, value):
                    raise ExecutionFailedError(
                        f"Transfer {planned.transfer_id} could not execute: compliance check failed",
                        transfer_id=planned.transfer_id,
                    )
                try:
                    self._move(t, planned.manager, planned.recipient, value)
                except InsufficientBalanceError as exc:
                    raise ExecutionFailedError(
                        f"Transfer {planned.transfer_id} could not execute: {exc}",
                        transfer_id=planned.transfer_id,
                    ) from exc
                del self._escrow[planned.transfer_id]
            planned.status = TransferStatus.COMPLETED
            logger.info("transfer %s completed", planned.transfer_id)
        planned.version = m.transfers[planned.transfer_id].version + 1
        m.transfers[planned.transfer_id] = planned

    def _criteria_hash(self, m: _ManagerState, token: str) -> Optional[str]:
        c = m.criteria.get(_norm_lower(token))
        return c.hash if c else None

    def approve_transfer(self, manager: str, transfer_id: str, approver: SigningWallet) -> Optional[str]:
        m = self._manager(manager)
        tid = _norm_lower(transfer_id)
        with m.lock:
            current = m.transfers.get(tid)
            token = current.token if current else ""
            planned = plan_approvals(
                current,
                transfer_id,
                [(approver.address, None)],
                is_token_agent=lambda a: self.is_token_agent(token, a),
                criteria_hash=self._criteria_hash(m, token) if current else None,
            )
            self._commit(m, planned)
        return None

    def delegate_approve_transfer(
        self,
        manager: str,
        transfer_id: str,
        signatures: List[TransferSignature],
        caller: SigningWallet,
    ) -> Optional[str]:
        m = self._manager(manager)
        tid = _norm_lower(transfer_id)
        batch = [(recover_signer(transfer_id, sig), sig) for sig in signatures]
        with m.lock:
            current = m.transfers.get(tid)
            token = current.token if current else ""
            planned = plan_approvals(
                current,
                transfer_id,
                batch,
                is_token_agent=lambda a: self.is_token_agent(token, a),
                criteria_hash=self._criteria_hash(m, token) if current else None,
            )
            self._commit(m, planned)
        return None

    def _refund(self, m: _ManagerState, transfer: TransferDetails, status: TransferStatus) -> None:
        t = self._token(transfer.token)
        with self._lock:
            self._move(t, transfer.manager, transfer.sender, self._escrow[transfer.transfer_id])
            del self._escrow[transfer.transfer_id]
        out = transfer.model_copy(deep=True)
        out.status = status
        out.version = transfer.version + 1
        m.transfers[transfer.transfer_id] = out
        logger.info("transfer %s %s", transfer.transfer_id, status.name.lower())

    def cancel_transfer(self, manager: str, transfer_id: str, caller: SigningWallet) -> Optional[str]:
        m = self._manager(manager)
        with m.lock:
            transfer = require_pending(m.transfers.get(_norm_lower(transfer_id)), transfer_id)
            if not same_address(caller.address, transfer.sender):
                raise PermissionDeniedError(
                    f"Only the sender of transfer {transfer_id} can cancel it",
                    transfer_id=transfer_id,
                    caller=caller.address,
                )
            self._refund(m, transfer, TransferStatus.CANCELLED)
        return None

    def reject_transfer(self, manager: str, transfer_id: str, caller: SigningWallet) -> Optional[str]:
        m = self._manager(manager)
        with m.lock:
            transfer = require_pending(m.transfers.get(_norm_lower(transfer_id)), transfer_id)
            is_agent = self.is_token_agent(transfer.token, caller.address)
            if not any(
                (s.any_token_agent and is_agent) or (not s.any_token_agent and same_address(s.wallet, caller.address))
                for s in transfer.approvers
            ):
                raise NotAnApproverError(
                    f"{caller.address} is not an approver of transfer {transfer_id}",
                    transfer_id=transfer_id,
                    approver=caller.address,
                )
            self._refund(m, transfer, TransferStatus.REJECTED)
        return None
