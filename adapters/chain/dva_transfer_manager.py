# adapters/chain/dva_transfer_manager.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from core.domain.entities.transfer_entities import ApprovalCriteria, ApproverSlot, TransferDetails, TransferSignature
from core.domain.enums.transfer_enums import TransferStatus
from core.services.exceptions import (
    AlreadyResolvedError,
    ApprovalCriteriaChangedError,
    DvaSdkError,
    InputValidationError,
    NotAnApproverError,
    NotFoundError,
    NotVerifiedIdentityError,
    OutOfOrderApprovalError,
    PermissionDeniedError,
    TransactionRevertedError,
)
from core.services.normalize import ZERO_ADDRESS
from core.services.web3_cache import network_errors

_APPROVER_COMPONENTS = [
    {"internalType": "address", "name": "wallet", "type": "address"},
    {"internalType": "bool", "name": "anyTokenAgent", "type": "bool"},
    {"internalType": "bool", "name": "approved", "type": "bool"},
]

_SIGNATURE_COMPONENTS = [
    {"internalType": "uint8", "name": "v", "type": "uint8"},
    {"internalType": "bytes32", "name": "r", "type": "bytes32"},
    {"internalType": "bytes32", "name": "s", "type": "bytes32"},
]


def _transfer_id_input(name: str = "transferID") -> dict:
    return {"internalType": "bytes32", "name": name, "type": "bytes32"}


ABI_DVA_TRANSFER_MANAGER = [
    # views
    {
        "name": "name",
        "inputs": [],
        "outputs": [{"internalType": "string", "name": "_name", "type": "string"}],
        "stateMutability": "pure",
        "type": "function",
    },
    {
        "name": "calculateTransferID",
        "inputs": [
            {"internalType": "uint256", "name": "nonce", "type": "uint256"},
            {"internalType": "address", "name": "sender", "type": "address"},
            {"internalType": "address", "name": "recipient", "type": "address"},
            {"internalType": "uint256", "name": "eamount", "type": "uint256"},
        ],
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "getApprovalCriteria",
        "inputs": [{"internalType": "address", "name": "tokenAddress", "type": "address"}],
        "outputs": [
            {
                "components": [
                    {"internalType": "bool", "name": "includeRecipientApprover", "type": "bool"},
                    {"internalType": "bool", "name": "includeAgentApprover", "type": "bool"},
                    {"internalType": "bool", "name": "sequentialApproval", "type": "bool"},
                    {"internalType": "address[]", "name": "additionalApprovers", "type": "address[]"},
                    {"internalType": "bytes32", "name": "hash", "type": "bytes32"},
                ],
                "internalType": "struct IDVATransferManager.ApprovalCriteria",
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "getTransfer",
        "inputs": [_transfer_id_input()],
        "outputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenAddress", "type": "address"},
                    {"internalType": "address", "name": "sender", "type": "address"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "euint64", "name": "eamount", "type": "uint256"},
                    {"internalType": "euint64", "name": "eactualAmount", "type": "uint256"},
                    {"internalType": "enum IDVATransferManager.TransferStatus", "name": "status", "type": "uint8"},
                    {
                        "components": _APPROVER_COMPONENTS,
                        "internalType": "struct IDVATransferManager.Approver[]",
                        "name": "approvers",
                        "type": "tuple[]",
                    },
                    {"internalType": "bytes32", "name": "approvalCriteriaHash", "type": "bytes32"},
                ],
                "internalType": "struct IDVATransferManager.Transfer",
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "getNextApprover",
        "inputs": [_transfer_id_input()],
        "outputs": [
            {"internalType": "address", "name": "nextApprover", "type": "address"},
            {"internalType": "bool", "name": "anyTokenAgent", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "getNextTxNonce",
        "inputs": [],
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # writes
    {
        "name": "setApprovalCriteria",
        "inputs": [
            {"internalType": "address", "name": "tokenAddress", "type": "address"},
            {"internalType": "bool", "name": "includeRecipientApprover", "type": "bool"},
            {"internalType": "bool", "name": "includeAgentApprover", "type": "bool"},
            {"internalType": "bool", "name": "sequentialApproval", "type": "bool"},
            {"internalType": "address[]", "name": "additionalApprovers", "type": "address[]"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "name": "initiateTransfer",
        "inputs": [
            {"internalType": "address", "name": "tokenAddress", "type": "address"},
            {"internalType": "address", "name": "recipient", "type": "address"},
            {"internalType": "einput", "name": "encryptedAmount", "type": "bytes32"},
            {"internalType": "bytes", "name": "inputProof", "type": "bytes"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "name": "approveTransfer",
        "inputs": [_transfer_id_input()],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "name": "delegateApproveTransfer",
        "inputs": [
            _transfer_id_input(),
            {
                "components": _SIGNATURE_COMPONENTS,
                "internalType": "struct IDVATransferManager.Signature[]",
                "name": "signatures",
                "type": "tuple[]",
            },
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "name": "cancelTransfer",
        "inputs": [_transfer_id_input()],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "name": "rejectTransfer",
        "inputs": [_transfer_id_input()],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# custom errors: name -> argument types
DVA_ERRORS: Dict[str, Tuple[str, ...]] = {
    "TokenIsNotRegistered": ("address",),
    "OnlyTokenOwnerCanCall": ("address",),
    "OnlyTokenAgentCanCall": ("address",),
    "DVAManagerIsNotAnAgentOfTheToken": ("address",),
    "RecipientIsNotVerified": ("address", "address"),
    "InvalidTransferID": ("bytes32",),
    "TransferIsNotInPendingStatus": ("bytes32",),
    "ApprovalsMustBeSequential": ("bytes32",),
    "OnlyTransferSenderCanCall": ("bytes32",),
    "SignaturesCanNotBeEmpty": ("bytes32",),
    "ApproverNotFound": ("bytes32", "address"),
    "ApprovalCriteriaChanged": ("bytes32",),
}


def _selector(name: str, types: Sequence[str]) -> str:
    return Web3.to_hex(Web3.keccak(text=f"{name}({','.join(types)})")[:4])


_SELECTORS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    _selector(name, types): (name, types) for name, types in DVA_ERRORS.items()
}


def _decoded_arg(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return Web3.to_checksum_address(value)
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return value


def decode_dva_error(data: Optional[str]) -> Optional[Tuple[str, List[Any]]]:
    """
    (name, args) of a transfer manager custom error given the raw revert
    payload, or None when the payload is not one of them.
    """
    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 10:
        return None
    hit = _SELECTORS.get(data[:10].lower())
    if hit is None:
        return None
    name, types = hit
    try:
        args = list(decode(list(types), bytes.fromhex(data[10:])))
    except Exception:
        return name, []
    return name, [_decoded_arg(t, a) for t, a in zip(types, args)]


def _arg(args: List[Any], i: int) -> Any:
    return args[i] if i < len(args) else None


def map_dva_error(err: TransactionRevertedError) -> DvaSdkError:
    """
    Turns a reverted manager call into the matching SDK error. Reverts that
    are not manager custom errors are returned untouched.
    """
    decoded = decode_dva_error(err.data)
    if decoded is None:
        return err
    name, args = decoded

    if name == "TokenIsNotRegistered":
        return NotFoundError(
            f"Token {_arg(args, 0)} is not registered in the transfer manager. Set the approval criteria first.",
            token=_arg(args, 0),
        )
    if name == "InvalidTransferID":
        return NotFoundError(f"Invalid transferID={_arg(args, 0)}", transfer_id=_arg(args, 0))
    if name == "TransferIsNotInPendingStatus":
        return AlreadyResolvedError(
            f"Transfer is not in pending status (transferID={_arg(args, 0)})",
            transfer_id=_arg(args, 0),
        )
    if name == "ApprovalsMustBeSequential":
        return OutOfOrderApprovalError(
            f"Approvals of transfer {_arg(args, 0)} must be sequential",
            transfer_id=_arg(args, 0),
        )
    if name == "ApproverNotFound":
        return NotAnApproverError(
            f"{_arg(args, 1)} is not an approver of transfer {_arg(args, 0)}",
            transfer_id=_arg(args, 0),
            approver=_arg(args, 1),
        )
    if name == "ApprovalCriteriaChanged":
        return ApprovalCriteriaChangedError(
            f"Approval criteria changed since transfer {_arg(args, 0)} was initiated; cancel and initiate it again",
            transfer_id=_arg(args, 0),
        )
    if name == "SignaturesCanNotBeEmpty":
        return InputValidationError(
            f"Signatures cannot be empty (transferID={_arg(args, 0)})",
            transfer_id=_arg(args, 0),
        )
    if name == "RecipientIsNotVerified":
        return NotVerifiedIdentityError(
            f"Recipient {_arg(args, 1)} is not verified by token {_arg(args, 0)}",
            token=_arg(args, 0),
            recipient=_arg(args, 1),
        )
    if name in ("OnlyTokenOwnerCanCall", "OnlyTokenAgentCanCall", "OnlyTransferSenderCanCall"):
        return PermissionDeniedError(f"Transfer manager error {name}", tx_hash=err.tx_hash)
    if name == "DVAManagerIsNotAnAgentOfTheToken":
        return PermissionDeniedError(
            f"The transfer manager is not an agent of token {_arg(args, 0)}",
            token=_arg(args, 0),
        )
    return TransactionRevertedError(msg=f"Transfer manager error {name}", tx_hash=err.tx_hash, data=err.data)


class DVATransferManagerAdapter:
    """
    Thin wrapper for one deployed DVATransferManager.

    - Views: get_approval_criteria, get_transfer, get_next_tx_nonce
    - Writes: fn_* builders consumed by TxService.send
    """

    def __init__(self, w3: Web3, address: str):
        if not address:
            raise RuntimeError("DVATransferManagerAdapter: address not configured")
        self.w3: Web3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=ABI_DVA_TRANSFER_MANAGER)

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #

    def fn_get_approval_criteria(self, token: str) -> ContractFunction:
        return self.contract.functions.getApprovalCriteria(Web3.to_checksum_address(token))

    @staticmethod
    def parse_approval_criteria(token: str, raw: Sequence[Any]) -> ApprovalCriteria:
        include_recipient, include_agent, sequential, additional, h = raw
        return ApprovalCriteria(
            token=Web3.to_checksum_address(token),
            include_recipient_approver=bool(include_recipient),
            include_agent_approver=bool(include_agent),
            sequential_approval=bool(sequential),
            additional_approvers=[Web3.to_checksum_address(a) for a in additional],
            hash=Web3.to_hex(h),
        )

    def get_transfer(self, transfer_id: str) -> Optional[TransferDetails]:
        """
        None for unknown ids (the manager returns a zeroed struct).
        """
        with network_errors():
            raw = self.contract.functions.getTransfer(transfer_id).call()
        token, sender, recipient, eamount, _eactual, status, approvers, criteria_hash = raw
        if token == ZERO_ADDRESS:
            return None
        return TransferDetails(
            transfer_id=transfer_id.lower(),
            manager=self.address,
            token=Web3.to_checksum_address(token),
            sender=Web3.to_checksum_address(sender),
            recipient=Web3.to_checksum_address(recipient),
            eamount=int(eamount),
            status=TransferStatus.parse(status),
            approvers=[
                ApproverSlot(
                    wallet=Web3.to_checksum_address(wallet),
                    any_token_agent=bool(any_agent),
                    approved=bool(approved),
                )
                for (wallet, any_agent, approved) in approvers
            ],
            approval_criteria_hash=Web3.to_hex(criteria_hash),
        )

    def get_next_tx_nonce(self) -> int:
        with network_errors():
            return int(self.contract.functions.getNextTxNonce().call())

    # ---------------- fn builders (for TxService.send) ----------------

    def fn_set_approval_criteria(self, criteria: ApprovalCriteria) -> ContractFunction:
        return self.contract.functions.setApprovalCriteria(
            Web3.to_checksum_address(criteria.token),
            bool(criteria.include_recipient_approver),
            bool(criteria.include_agent_approver),
            bool(criteria.sequential_approval),
            [Web3.to_checksum_address(a) for a in criteria.additional_approvers],
        )

    def fn_initiate_transfer(self, token: str, recipient: str, handle: int, proof: bytes) -> ContractFunction:
        return self.contract.functions.initiateTransfer(
            Web3.to_checksum_address(token),
            Web3.to_checksum_address(recipient),
            int(handle).to_bytes(32, "big"),
            proof,
        )

    def fn_approve_transfer(self, transfer_id: str) -> ContractFunction:
        return self.contract.functions.approveTransfer(transfer_id)

    def fn_delegate_approve_transfer(self, transfer_id: str, signatures: Sequence[TransferSignature]) -> ContractFunction:
        if not signatures:
            raise InputValidationError(f"Signatures cannot be empty (transferID={transfer_id})", transfer_id=transfer_id)
        return self.contract.functions.delegateApproveTransfer(
            transfer_id,
            [(int(s.v), bytes.fromhex(s.r[2:]), bytes.fromhex(s.s[2:])) for s in signatures],
        )

    def fn_cancel_transfer(self, transfer_id: str) -> ContractFunction:
        return self.contract.functions.cancelTransfer(transfer_id)

    def fn_reject_transfer(self, transfer_id: str) -> ContractFunction:
        return self.contract.functions.rejectTransfer(transfer_id)
