from __future__ import annotations

import pytest
from eth_abi import encode
from web3 import Web3

from adapters.chain.dva_transfer_manager import DVATransferManagerAdapter, decode_dva_error, map_dva_error
from core.services.exceptions import (
    AlreadyResolvedError,
    ApprovalCriteriaChangedError,
    InputValidationError,
    NotAnApproverError,
    NotFoundError,
    NotVerifiedIdentityError,
    OutOfOrderApprovalError,
    PermissionDeniedError,
    TransactionRevertedError,
)

TID = bytes.fromhex("ab" * 32)
TOKEN = Web3.to_checksum_address("0x" + "10" * 20)
WHO = Web3.to_checksum_address("0x" + "0b" * 20)


def _revert(signature: str, types, values) -> str:
    selector = Web3.keccak(text=signature)[:4]
    return Web3.to_hex(selector + encode(types, values))


def _reverted(data: str) -> TransactionRevertedError:
    return TransactionRevertedError(msg="execution reverted", tx_hash="0x01", data=data)


def test_decode_custom_error_with_arguments():
    data = _revert("ApproverNotFound(bytes32,address)", ["bytes32", "address"], [TID, WHO])
    name, args = decode_dva_error(data)
    assert name == "ApproverNotFound"
    assert args == ["0x" + "ab" * 32, WHO]


def test_decoded_addresses_are_checksummed():
    mapped = map_dva_error(
        _reverted(_revert("RecipientIsNotVerified(address,address)", ["address", "address"], [TOKEN, WHO]))
    )
    assert mapped.details == {"token": TOKEN, "recipient": WHO}

    approver = map_dva_error(_reverted(_revert("ApproverNotFound(bytes32,address)", ["bytes32", "address"], [TID, WHO])))
    assert approver.details["approver"] == WHO


def test_empty_signature_batch_is_an_input_error():
    dva = DVATransferManagerAdapter(Web3(), "0x" + "de" * 20)
    with pytest.raises(InputValidationError, match="cannot be empty"):
        dva.fn_delegate_approve_transfer("0x" + "ab" * 32, [])


@pytest.mark.parametrize("data", [None, "", "0x", "0x12345678", "not hex", 42])
def test_decode_ignores_unknown_payloads(data):
    assert decode_dva_error(data) is None


@pytest.mark.parametrize(
    "signature, types, values, expected",
    [
        ("TokenIsNotRegistered(address)", ["address"], [TOKEN], NotFoundError),
        ("InvalidTransferID(bytes32)", ["bytes32"], [TID], NotFoundError),
        ("TransferIsNotInPendingStatus(bytes32)", ["bytes32"], [TID], AlreadyResolvedError),
        ("ApprovalsMustBeSequential(bytes32)", ["bytes32"], [TID], OutOfOrderApprovalError),
        ("ApproverNotFound(bytes32,address)", ["bytes32", "address"], [TID, WHO], NotAnApproverError),
        ("ApprovalCriteriaChanged(bytes32)", ["bytes32"], [TID], ApprovalCriteriaChangedError),
        ("SignaturesCanNotBeEmpty(bytes32)", ["bytes32"], [TID], InputValidationError),
        ("RecipientIsNotVerified(address,address)", ["address", "address"], [TOKEN, WHO], NotVerifiedIdentityError),
        ("OnlyTransferSenderCanCall(bytes32)", ["bytes32"], [TID], PermissionDeniedError),
        ("OnlyTokenAgentCanCall(address)", ["address"], [TOKEN], PermissionDeniedError),
        ("DVAManagerIsNotAnAgentOfTheToken(address)", ["address"], [TOKEN], PermissionDeniedError),
    ],
)
def test_map_custom_errors(signature, types, values, expected):
    mapped = map_dva_error(_reverted(_revert(signature, types, values)))
    assert type(mapped) is expected


def test_token_not_registered_hints_at_criteria():
    mapped = map_dva_error(_reverted(_revert("TokenIsNotRegistered(address)", ["address"], [TOKEN])))
    assert "Set the approval criteria first" in str(mapped)
    assert mapped.details["token"] == TOKEN


def test_other_reverts_pass_through():
    err = _reverted("0x08c379a0" + "00" * 32)
    assert map_dva_error(err) is err


def test_parse_approval_criteria():
    raw = (True, False, True, ["0x" + "0b" * 20], b"\x01" * 32)
    criteria = DVATransferManagerAdapter.parse_approval_criteria(TOKEN.lower(), raw)

    assert criteria.token == TOKEN
    assert criteria.include_recipient_approver is True
    assert criteria.include_agent_approver is False
    assert criteria.sequential_approval is True
    assert criteria.additional_approvers == [WHO]
    assert criteria.hash == "0x" + "01" * 32
