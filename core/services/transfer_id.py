"""
Pure helpers shared by every DVA transfer manager implementation.

The transfer id and the approval-criteria hash reproduce what the manager
contract computes, so a client can derive an id before `initiate` and look
the transfer up afterwards.
"""

from __future__ import annotations

from typing import Sequence

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from core.domain.entities.transfer_entities import TransferSignature
from core.domain.entities.wallet_entity import SigningWallet
from core.services.exceptions import InputValidationError, InvalidSignatureError
from core.services.normalize import to_address, to_bytes32

UINT256_MAX = 2**256 - 1


def _uint(value: int, name: str) -> int:
    v = int(value)
    if v < 0 or v > UINT256_MAX:
        raise InputValidationError(f"{name} does not fit in uint256", value=value)
    return v


def calculate_transfer_id(manager: str, nonce: int, sender: str, recipient: str, eamount: int) -> str:
    """
    keccak256(abi.encode(manager, nonce, sender, recipient, eamount)) as 0x-hex.
    """
    payload = encode(
        ["address", "uint256", "address", "address", "uint256"],
        [
            to_address(manager, name="manager"),
            _uint(nonce, "nonce"),
            to_address(sender, name="sender"),
            to_address(recipient, name="recipient"),
            _uint(eamount, "eamount"),
        ],
    )
    return Web3.to_hex(Web3.keccak(payload))


def approval_criteria_hash(
    token: str,
    include_recipient_approver: bool,
    include_agent_approver: bool,
    additional_approvers: Sequence[str],
) -> str:
    payload = encode(
        ["address", "bool", "bool", "address[]"],
        [
            to_address(token, name="token"),
            bool(include_recipient_approver),
            bool(include_agent_approver),
            [to_address(a, name="approver") for a in additional_approvers],
        ],
    )
    return Web3.to_hex(Web3.keccak(payload))


def sign_transfer(transfer_id: str, signer: SigningWallet) -> TransferSignature:
    """
    EIP-191 personal signature over the 32 raw bytes of the transfer id.
    """
    message = encode_defunct(primitive=to_bytes32(transfer_id, name="transfer id"))
    signed = Account.sign_message(message, private_key=signer.key)
    return TransferSignature(
        signer=signer.address,
        v=int(signed.v),
        r=Web3.to_hex(int(signed.r).to_bytes(32, "big")),
        s=Web3.to_hex(int(signed.s).to_bytes(32, "big")),
        signature=Web3.to_hex(signed.signature),
    )


def recover_signer(transfer_id: str, sig: TransferSignature) -> str:
    """
    Address that produced `sig` over `transfer_id`. Raises InvalidSignatureError
    when the signature is malformed or was made by someone other than
    `sig.signer`.
    """
    message = encode_defunct(primitive=to_bytes32(transfer_id, name="transfer id"))
    try:
        recovered = Account.recover_message(
            message,
            vrs=(int(sig.v), int(sig.r, 16), int(sig.s, 16)),
        )
    except Exception as exc:
        raise InvalidSignatureError(
            f"Invalid signature for transfer {transfer_id}: {exc}",
            transfer_id=transfer_id,
            signer=sig.signer,
        ) from exc
    if recovered.lower() != sig.signer.lower():
        raise InvalidSignatureError(
            f"Signature for transfer {transfer_id} was not produced by {sig.signer}",
            transfer_id=transfer_id,
            signer=sig.signer,
            recovered=recovered,
        )
    return Web3.to_checksum_address(recovered)
