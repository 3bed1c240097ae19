from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from config import NetworkConfig, Settings, get_settings
from core.domain.entities.transfer_entities import (
    ApprovalCriteria,
    ApprovalResult,
    InitiatedTransfer,
    ManagerHandle,
    TransferDetails,
    TransferSignature,
)
from core.domain.entities.wallet_entity import SigningWallet
from core.domain.enums.history_enums import DeploymentKind
from core.domain.repositories.transfer_manager_ledger_interface import TransferManagerLedger
from core.domain.schemas.wallet_spec import WalletSpec
from core.services.approval_rules import check_approval, plan_approvals, require_pending
from core.services.chain_config import ChainConfig
from core.services.exceptions import (
    DvaSdkError,
    ExecutionFailedError,
    InputValidationError,
    InsufficientAllowanceError,
    NotAnApproverError,
    NotFoundError,
    NotOwnerError,
    NotVerifiedIdentityError,
    PermissionDeniedError,
    TransactionRevertedError,
)
from core.services.normalize import is_address, parse_uint, same_address, to_address, to_bytes32
from core.services.transfer_id import calculate_transfer_id, recover_signer, sign_transfer

logger = logging.getLogger(__name__)

WalletArg = Union[str, int, WalletSpec]

EUINT64_MAX = 2**64 - 1


def _tid(transfer_id: str) -> str:
    return "0x" + to_bytes32(transfer_id, name="transfer id").hex()


@dataclass
class TransferManagerUseCase:
    """
    DVA (delegated validated approval) orchestration.

    Every approval decision is taken on state read from the ledger right
    before submitting; the ledger remains authoritative and rejects anything
    that slipped through in between.
    """

    chain: ChainConfig
    ledger: TransferManagerLedger

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None, *, verify_chain: bool = True) -> "TransferManagerUseCase":
        from adapters.chain.onchain_ledger import OnChainLedger
        from adapters.external.fhevm.relayer_http_client import RelayerHttpClient
        from core.services.tx_service import TxService

        s = s or get_settings()
        chain = ChainConfig.load(NetworkConfig.from_settings(s), s.HISTORY_PATH, verify_chain=verify_chain)
        txs = TxService(chain.w3, confirms=s.CONFIRMS, timeout_sec=max(float(s.RPC_TIMEOUT_SEC), 120.0))
        ledger = OnChainLedger(chain.w3, RelayerHttpClient.from_settings(), tx=txs)
        return cls(chain=chain, ledger=ledger)

    # ------------------------------------------------------------------ #
    # Resolution helpers
    # ------------------------------------------------------------------ #

    def resolve_token(self, token: Optional[str] = None) -> str:
        """
        Token address from an address, a salt recorded in the history, or
        (None) the most recently recorded token.
        """
        if token and is_address(token):
            return to_address(token, name="token")
        if token:
            found = self.chain.lookup_deployment(DeploymentKind.TOKEN, token)
            if found is None:
                raise NotFoundError(f"Unknown token {token}", token=token)
            return found
        tokens = self.chain.history_entries(DeploymentKind.TOKEN)
        if not tokens:
            raise NotFoundError("No token recorded in the deployment history, pass --token")
        return list(tokens.values())[-1]

    def resolve_manager(self, manager: WalletArg, *, token: Optional[str] = None) -> str:
        """
        Manager address from its address or from the wallet it was created
        for. With `token`, the manager must be verified by that token.
        """
        address = self.chain.find_transfer_manager(manager)
        if address is None:
            raise NotFoundError(f"Unable to retrieve DVA Transfer manager associated to {manager}", manager=str(manager))
        if token is not None and not self.ledger.is_verified(token, address):
            raise NotVerifiedIdentityError(
                f"Transfer manager {address} ({manager}) is not verified by token {token}",
                manager=address,
                token=token,
            )
        return address

    def _describe(self, address: Optional[str]) -> str:
        return self.chain.resolver.describe(address)

    def _fetch(self, manager: str, transfer_id: str) -> TransferDetails:
        transfer = self.ledger.get_transfer(manager, transfer_id)
        if transfer is None:
            raise NotFoundError(f"Invalid transferID={transfer_id}", transfer_id=transfer_id)
        return transfer

    def _criteria_hash(self, manager: str, token: str) -> Optional[str]:
        try:
            return self.ledger.get_approval_criteria(manager, token).hash
        except NotFoundError:
            return None

    # ------------------------------------------------------------------ #
    # Token agents
    # ------------------------------------------------------------------ #

    def _set_token_agent(self, grant: bool, agent: WalletArg, owner: WalletArg, token: Optional[str]) -> dict:
        token_address = self.resolve_token(token)
        agent_address = self.chain.resolve_address(agent)
        owner_wallet = self.chain.resolve_signing(owner, auto_owner_of=token_address)

        live_owner = self.chain.owner_of(token_address)
        if not same_address(live_owner, owner_wallet.address):
            raise NotOwnerError(
                f"{owner_wallet.label()} is not the owner of token {token_address} (owner: {self._describe(live_owner)})",
                token=token_address,
                caller=owner_wallet.address,
            )

        if grant:
            tx_hash = self.ledger.add_token_agent(token_address, agent_address, owner_wallet)
        else:
            tx_hash = self.ledger.remove_token_agent(token_address, agent_address, owner_wallet)
        is_agent = self.ledger.is_token_agent(token_address, agent_address)
        logger.info("%s agent of %s: %s", self._describe(agent_address), token_address, is_agent)
        return {"token": token_address, "agent": agent_address, "is_agent": is_agent, "tx_hash": tx_hash}

    def add_token_agent(self, *, agent: WalletArg, owner: WalletArg = "auto", token: Optional[str] = None) -> dict:
        """
        Grants the agent role; `owner` defaults to the live owner of the token.
        Granting it twice is a no-op.
        """
        return self._set_token_agent(True, agent, owner, token)

    def remove_token_agent(self, *, agent: WalletArg, owner: WalletArg = "auto", token: Optional[str] = None) -> dict:
        return self._set_token_agent(False, agent, owner, token)

    # ------------------------------------------------------------------ #
    # Manager setup
    # ------------------------------------------------------------------ #

    def create(self, *, user: WalletArg, agent: WalletArg, country: int, token: Optional[str] = None) -> ManagerHandle:
        """
        Deploys a transfer manager for `user` and registers it in the token's
        identity registry with the user's identity and `country`.
        """
        token_address = self.resolve_token(token)
        agent_wallet = self.chain.resolve_signing(agent)
        user_wallet = self.chain.resolve_wallet(user)
        country = parse_uint(country, name="country")
        if country > 0xFFFF:
            raise InputValidationError("country must fit in uint16", country=country)

        identity = self.ledger.identity_of(token_address, user_wallet.address)
        if identity is None or not self.ledger.is_verified(token_address, user_wallet.address):
            raise NotVerifiedIdentityError(
                f"Identity of {user} is not verified by token {token_address}",
                user=user_wallet.address,
                token=token_address,
            )
        if not self.ledger.is_registry_agent(token_address, agent_wallet.address):
            raise PermissionDeniedError(
                f"{agent_wallet.label()} is not an agent of the identity registry of token {token_address}",
                agent=agent_wallet.address,
            )

        handle = self.ledger.deploy_manager(token_address, user_wallet.address, identity, country, agent_wallet)
        self.chain.record_deployment(DeploymentKind.TRANSFER_MANAGER, user_wallet.address, handle.address)
        return handle

    def set_approval_criteria(
        self,
        *,
        manager: WalletArg,
        agent: WalletArg,
        include_recipient_approver: bool,
        include_agent_approver: bool,
        sequential_approval: bool,
        additional_approvers: Sequence[WalletArg] = (),
        token: Optional[str] = None,
    ) -> ApprovalCriteria:
        """
        Replaces the approver configuration of `manager` for the token.
        """
        token_address = self.resolve_token(token)
        agent_wallet = self.chain.resolve_signing(agent)
        approvers = [self.chain.resolve_address(a) for a in additional_approvers]
        manager_address = self.resolve_manager(manager, token=token_address)

        handle = self.ledger.get_manager(manager_address, token_address)
        bound_agent = handle.agent if handle else None
        if not (
            self.ledger.is_token_agent(token_address, agent_wallet.address)
            or same_address(bound_agent, agent_wallet.address)
        ):
            raise PermissionDeniedError(
                f"{agent_wallet.label()} is not an agent of token {token_address}",
                agent=agent_wallet.address,
                manager=manager_address,
            )

        criteria = ApprovalCriteria(
            token=token_address,
            include_recipient_approver=bool(include_recipient_approver),
            include_agent_approver=bool(include_agent_approver),
            sequential_approval=bool(sequential_approval),
            additional_approvers=approvers,
        )
        self.ledger.set_approval_criteria(manager_address, criteria, agent_wallet)

        stored = self.ledger.get_approval_criteria(manager_address, token_address)
        if (
            stored.include_recipient_approver != criteria.include_recipient_approver
            or stored.include_agent_approver != criteria.include_agent_approver
            or stored.sequential_approval != criteria.sequential_approval
            or [a.lower() for a in stored.additional_approvers] != [a.lower() for a in approvers]
        ):
            raise DvaSdkError(
                f"Approval criteria of transfer manager {manager_address} were not applied",
                manager=manager_address,
            )
        logger.info("approval criteria of %s set (hash %s)", manager_address, stored.hash)
        return stored

    def get_approval_criteria(self, *, manager: WalletArg, token: Optional[str] = None) -> ApprovalCriteria:
        token_address = self.resolve_token(token)
        return self.ledger.get_approval_criteria(self.resolve_manager(manager), token_address)

    # ------------------------------------------------------------------ #
    # Transfers
    # ------------------------------------------------------------------ #

    def calculate_transfer_id(
        self,
        *,
        manager: WalletArg,
        nonce: Union[int, str],
        sender: WalletArg,
        recipient: WalletArg,
        eamount: Union[int, str],
    ) -> str:
        """
        Pure: no ledger call, the id only depends on its five inputs.
        """
        return calculate_transfer_id(
            self.resolve_manager(manager),
            parse_uint(nonce, name="nonce"),
            self.chain.resolve_address(sender),
            self.chain.resolve_address(recipient),
            parse_uint(eamount, name="eamount"),
        )

    def next_nonce(self, *, manager: WalletArg) -> int:
        return self.ledger.next_nonce(self.resolve_manager(manager))

    def token_approve(
        self,
        *,
        manager: WalletArg,
        sender: WalletArg,
        amount: Union[int, str],
        token: Optional[str] = None,
    ) -> Optional[str]:
        """
        `sender` allows the manager to move up to `amount` of its tokens.
        """
        token_address = self.resolve_token(token)
        sender_wallet = self.chain.resolve_signing(sender)
        manager_address = self.resolve_manager(manager)
        value = self._amount(amount)
        tx_hash = self.ledger.approve(token_address, sender_wallet, manager_address, value)
        logger.info("%s approved %s for %s", sender_wallet.label(), manager_address, value)
        return tx_hash

    @staticmethod
    def _amount(amount: Union[int, str]) -> int:
        value = parse_uint(amount, name="amount")
        if value > EUINT64_MAX:
            raise InputValidationError("amount does not fit in euint64", amount=value)
        return value

    def initiate(
        self,
        *,
        manager: WalletArg,
        sender: WalletArg,
        recipient: WalletArg,
        amount: Union[int, str],
        token: Optional[str] = None,
    ) -> InitiatedTransfer:
        """
        Encrypts `amount`, escrows it from the sender's allowance and opens a
        PENDING transfer. Identity checks are left to the ledger.
        """
        token_address = self.resolve_token(token)
        sender_wallet = self.chain.resolve_signing(sender)
        recipient_address = self.chain.resolve_address(recipient)
        manager_address = self.resolve_manager(manager, token=token_address)
        value = self._amount(amount)

        # raises NotFoundError("... Set the approval criteria first.")
        self.ledger.get_approval_criteria(manager_address, token_address)

        allowance = self.ledger.allowance(token_address, sender_wallet.address, manager_address)
        if allowance < value:
            raise InsufficientAllowanceError(
                f"{sender_wallet.label()} allowed transfer manager {manager_address} to spend {allowance}, "
                f"lower than {value}",
                owner=sender_wallet.address,
                spender=manager_address,
            )

        enc = self.ledger.encrypt_amount(manager_address, sender_wallet.address, value)
        nonce = self.ledger.next_nonce(manager_address)
        tx_hash = self.ledger.initiate_transfer(manager_address, token_address, sender_wallet, recipient_address, enc)

        # another initiate may have taken `nonce` in between
        transfer_id = None
        for n in range(nonce, max(nonce + 1, self.ledger.next_nonce(manager_address))):
            candidate = calculate_transfer_id(manager_address, n, sender_wallet.address, recipient_address, enc.handle)
            if self.ledger.get_transfer(manager_address, candidate) is not None:
                transfer_id, nonce = candidate, n
                break
        if transfer_id is None:
            raise NotFoundError(
                f"Transfer initiated by {sender_wallet.label()} was not found on manager {manager_address}",
                manager=manager_address,
                tx_hash=tx_hash,
            )

        logger.info("transfer %s initiated: %s -> %s (%s)", transfer_id, sender_wallet.label(), recipient_address, value)
        return InitiatedTransfer(
            transfer_id=transfer_id,
            eamount=enc.handle,
            nonce=nonce,
            manager=manager_address,
            sender=sender_wallet.address,
            recipient=recipient_address,
            amount=value,
            tx_hash=tx_hash,
        )

    def get_transfer(self, *, manager: WalletArg, transfer_id: str) -> TransferDetails:
        return self._fetch(self.resolve_manager(manager), _tid(transfer_id))

    def next_approver(self, *, manager: WalletArg, transfer_id: str) -> dict:
        tid = _tid(transfer_id)
        transfer = require_pending(self._fetch(self.resolve_manager(manager), tid), tid)
        slot = transfer.next_slot()
        return {
            "transfer_id": tid,
            "next_approver": None if slot is None or slot.any_token_agent else slot.wallet,
            "any_token_agent": bool(slot and slot.any_token_agent),
        }

    # ------------------------------------------------------------------ #
    # Approvals
    # ------------------------------------------------------------------ #

    def _execution_failed(self, exc: TransactionRevertedError, transfer_id: str) -> ExecutionFailedError:
        return ExecutionFailedError(
            f"Transfer {transfer_id} met its approval criteria but could not execute: {exc}. "
            f"The transfer is still PENDING; replay the approval to retry.",
            transfer_id=transfer_id,
            tx_hash=exc.tx_hash,
        )

    def approve(self, *, manager: WalletArg, transfer_id: str, approver: WalletArg) -> ApprovalResult:
        manager_address = self.resolve_manager(manager)
        tid = _tid(transfer_id)
        approver_wallet = self.chain.resolve_signing(approver)

        current = self.ledger.get_transfer(manager_address, tid)
        token = current.token if current else ""
        check_approval(
            current,
            tid,
            approver_wallet.address,
            is_token_agent=lambda a: self.ledger.is_token_agent(token, a),
            criteria_hash=self._criteria_hash(manager_address, token) if current else None,
        )
        final = sum(1 for s in current.approvers if not s.approved) == 1

        try:
            tx_hash = self.ledger.approve_transfer(manager_address, tid, approver_wallet)
        except TransactionRevertedError as exc:
            if final:
                raise self._execution_failed(exc, tid) from exc
            raise

        after = self._fetch(manager_address, tid)
        logger.info("transfer %s approved by %s (status %s)", tid, approver_wallet.label(), after.status_string)
        return ApprovalResult(transfer_id=tid, approvers=[approver_wallet.address], transfer=after, tx_hash=tx_hash)

    def sign(self, *, transfer_id: str, signer: WalletArg) -> TransferSignature:
        return sign_transfer(_tid(transfer_id), self.chain.resolve_signing(signer))

    def delegate_approve(
        self,
        *,
        manager: WalletArg,
        transfer_id: str,
        signers: Sequence[WalletArg],
        caller: WalletArg,
    ) -> ApprovalResult:
        """
        Each signer signs the transfer id off-chain; `caller` relays every
        signature in one request.
        """
        tid = _tid(transfer_id)
        if not signers:
            raise InputValidationError(f"Signatures cannot be empty (transferID={tid})", transfer_id=tid)
        wallets: List[SigningWallet] = [self.chain.resolve_signing(s) for s in signers]
        signatures = [sign_transfer(tid, w) for w in wallets]
        return self.relay_signatures(manager=manager, transfer_id=tid, signatures=signatures, caller=caller)

    def relay_signatures(
        self,
        *,
        manager: WalletArg,
        transfer_id: str,
        signatures: Sequence[TransferSignature],
        caller: WalletArg,
    ) -> ApprovalResult:
        """
        Validates the whole batch against fresh state, then submits it. A
        single bad signature or rule violation rejects the batch.
        """
        tid = _tid(transfer_id)
        if not signatures:
            raise InputValidationError(f"Signatures cannot be empty (transferID={tid})", transfer_id=tid)
        manager_address = self.resolve_manager(manager)
        caller_wallet = self.chain.resolve_signing(caller)

        batch = [(recover_signer(tid, sig), sig) for sig in signatures]

        current = require_pending(self.ledger.get_transfer(manager_address, tid), tid)
        planned = plan_approvals(
            current,
            tid,
            batch,
            is_token_agent=lambda a: self.ledger.is_token_agent(current.token, a),
            criteria_hash=self._criteria_hash(manager_address, current.token),
        )

        try:
            tx_hash = self.ledger.delegate_approve_transfer(manager_address, tid, list(signatures), caller_wallet)
        except TransactionRevertedError as exc:
            if planned.is_complete:
                raise self._execution_failed(exc, tid) from exc
            raise

        after = self._fetch(manager_address, tid)
        logger.info(
            "transfer %s approved by %s via %s (status %s)",
            tid,
            ", ".join(self._describe(a) for a, _ in batch),
            caller_wallet.label(),
            after.status_string,
        )
        return ApprovalResult(
            transfer_id=tid,
            approvers=[a for a, _ in batch],
            signatures=list(signatures),
            transfer=after,
            tx_hash=tx_hash,
        )

    # ------------------------------------------------------------------ #
    # Cancel / reject
    # ------------------------------------------------------------------ #

    def cancel(self, *, manager: WalletArg, transfer_id: str, caller: WalletArg) -> TransferDetails:
        manager_address = self.resolve_manager(manager)
        tid = _tid(transfer_id)
        caller_wallet = self.chain.resolve_signing(caller)

        transfer = require_pending(self.ledger.get_transfer(manager_address, tid), tid)
        if not same_address(transfer.sender, caller_wallet.address):
            raise PermissionDeniedError(
                f"Only the sender ({self._describe(transfer.sender)}) can cancel transfer {tid}",
                transfer_id=tid,
                caller=caller_wallet.address,
            )
        self.ledger.cancel_transfer(manager_address, tid, caller_wallet)
        return self._fetch(manager_address, tid)

    def reject(self, *, manager: WalletArg, transfer_id: str, caller: WalletArg) -> TransferDetails:
        manager_address = self.resolve_manager(manager)
        tid = _tid(transfer_id)
        caller_wallet = self.chain.resolve_signing(caller)

        transfer = require_pending(self.ledger.get_transfer(manager_address, tid), tid)
        is_agent = self.ledger.is_token_agent(transfer.token, caller_wallet.address)
        if not any(
            (s.any_token_agent and is_agent) or (not s.any_token_agent and same_address(s.wallet, caller_wallet.address))
            for s in transfer.approvers
        ):
            raise NotAnApproverError(
                f"{caller_wallet.label()} is not an approver of transfer {tid}",
                transfer_id=tid,
                approver=caller_wallet.address,
            )
        self.ledger.reject_transfer(manager_address, tid, caller_wallet)
        return self._fetch(manager_address, tid)
