from __future__ import annotations

import pytest

from core.domain.enums.transfer_enums import TransferStatus
from core.services.exceptions import (
    AlreadyResolvedError,
    ApprovalCriteriaChangedError,
    DuplicateApprovalError,
    ExecutionFailedError,
    InputValidationError,
    InsufficientAllowanceError,
    InvalidSignatureError,
    NotAnApproverError,
    NotFoundError,
    NotOwnerError,
    NotVerifiedIdentityError,
    OutOfOrderApprovalError,
    PermissionDeniedError,
)
from core.services.transfer_id import calculate_transfer_id


def _initiate(scenario, manager, amount=100, recipient="bob"):
    return scenario.use_case.initiate(manager=manager, sender="alice", recipient=recipient, amount=amount)


# ---------------------------------------------------------------------------
# setup
# ---------------------------------------------------------------------------


def test_create_records_manager_under_identity_owner(scenario):
    uc = scenario.use_case
    handle = uc.create(user="token-owner", agent="token-agent", country=1)

    assert handle.token == scenario.token
    assert handle.user == scenario.addr("token-owner")
    assert uc.resolve_manager("token-owner") == handle.address
    assert uc.chain.to_json()["transferManagers"] == {scenario.addr("token-owner"): handle.address}
    assert scenario.ledger.is_verified(scenario.token, handle.address)


def test_create_requires_verified_identity(scenario):
    with pytest.raises(NotVerifiedIdentityError):
        scenario.use_case.create(user="eve", agent="token-agent", country=1)


def test_create_requires_registry_agent(scenario):
    with pytest.raises(PermissionDeniedError):
        scenario.use_case.create(user="alice", agent="eve", country=1)


def test_create_rejects_country_overflow(scenario):
    with pytest.raises(InputValidationError):
        scenario.use_case.create(user="alice", agent="token-agent", country=0x10000)


def test_unknown_manager_reports_the_identity(scenario):
    with pytest.raises(NotFoundError, match="associated to alice"):
        scenario.use_case.next_nonce(manager="alice")


def test_initiate_without_criteria_asks_to_set_them(scenario):
    uc = scenario.use_case
    handle = uc.create(user="token-owner", agent="token-agent", country=1)
    uc.token_approve(manager=handle.address, sender="alice", amount=100)

    with pytest.raises(NotFoundError, match="Set the approval criteria first"):
        _initiate(scenario, handle.address)


def test_set_approval_criteria_requires_agent(scenario):
    uc = scenario.use_case
    handle = uc.create(user="token-owner", agent="token-agent", country=1)
    with pytest.raises(PermissionDeniedError):
        uc.set_approval_criteria(
            manager=handle.address,
            agent="alice",
            include_recipient_approver=True,
            include_agent_approver=True,
            sequential_approval=False,
        )


def test_second_criteria_call_replaces_the_first(scenario, manager):
    uc = scenario.use_case
    stored = uc.set_approval_criteria(
        manager=manager,
        agent="token-agent",
        include_recipient_approver=False,
        include_agent_approver=True,
        sequential_approval=True,
        additional_approvers=["david"],
    )

    current = uc.get_approval_criteria(manager=manager)
    assert current == stored
    assert current.additional_approvers == [scenario.addr("david")]
    assert current.include_recipient_approver is False
    assert current.sequential_approval is True


# ---------------------------------------------------------------------------
# initiate
# ---------------------------------------------------------------------------


def test_initiate_escrows_amount_and_returns_computable_id(scenario, manager):
    t = _initiate(scenario, manager)

    assert t.nonce == 0
    assert t.transfer_id == calculate_transfer_id(manager, 0, scenario.addr("alice"), scenario.addr("bob"), t.eamount)
    assert scenario.balance("alice") == 900
    assert scenario.ledger.allowance(scenario.token, scenario.addr("alice"), manager) == 99900

    details = scenario.use_case.get_transfer(manager=manager, transfer_id=t.transfer_id)
    assert details.status == TransferStatus.PENDING
    assert [s.wallet for s in details.approvers[:2]] == [scenario.addr("charlie"), scenario.addr("bob")]
    assert details.approvers[2].any_token_agent
    assert scenario.use_case.next_nonce(manager=manager) == 1


def test_initiate_checks_allowance(scenario, manager):
    with pytest.raises(InsufficientAllowanceError):
        _initiate(scenario, manager, amount=100001)


def test_initiate_rejects_amount_over_euint64(scenario, manager):
    with pytest.raises(InputValidationError):
        _initiate(scenario, manager, amount=2**64)


def test_initiate_requires_verified_recipient(scenario, manager):
    with pytest.raises(NotVerifiedIdentityError):
        _initiate(scenario, manager, recipient="eve")
    assert scenario.balance("alice") == 1000


# ---------------------------------------------------------------------------
# approvals
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("order", [("charlie", "bob", "token-agent"), ("token-agent", "bob", "charlie")])
def test_all_approvals_complete_the_transfer(scenario, manager, order):
    uc = scenario.use_case
    t = _initiate(scenario, manager)

    results = [uc.approve(manager=manager, transfer_id=t.transfer_id, approver=who) for who in order]

    assert [r.transfer.status for r in results] == [
        TransferStatus.PENDING,
        TransferStatus.PENDING,
        TransferStatus.COMPLETED,
    ]
    assert scenario.balance("bob") == 100
    assert scenario.balance("alice") == 900
    assert scenario.ledger.balance_of(scenario.token, manager) == 0


def test_non_approver_is_rejected_and_retry_is_stable(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)

    for _ in range(2):
        with pytest.raises(NotAnApproverError):
            uc.approve(manager=manager, transfer_id=t.transfer_id, approver="david")

    after = uc.get_transfer(manager=manager, transfer_id=t.transfer_id)
    assert after.version == 0
    assert not any(s.approved for s in after.approvers)


def test_duplicate_approval_is_rejected(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)
    uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")

    with pytest.raises(DuplicateApprovalError):
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")
    assert uc.get_transfer(manager=manager, transfer_id=t.transfer_id).version == 1


def test_agent_holding_two_slots_approves_once(scenario, manager):
    uc = scenario.use_case
    uc.set_approval_criteria(
        manager=manager,
        agent="token-agent",
        include_recipient_approver=False,
        include_agent_approver=True,
        sequential_approval=False,
        additional_approvers=["token-agent"],
    )
    t = _initiate(scenario, manager)
    uc.approve(manager=manager, transfer_id=t.transfer_id, approver="token-agent")

    with pytest.raises(DuplicateApprovalError):
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="token-agent")
    pending = uc.get_transfer(manager=manager, transfer_id=t.transfer_id)
    assert pending.status == TransferStatus.PENDING
    assert scenario.balance("bob") == 0

    uc.add_token_agent(agent="david")
    done = uc.approve(manager=manager, transfer_id=t.transfer_id, approver="david")
    assert done.transfer.status == TransferStatus.COMPLETED
    assert scenario.balance("bob") == 100


def test_delegate_batch_with_the_same_signer_twice_is_rejected(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)
    with pytest.raises(DuplicateApprovalError):
        uc.delegate_approve(
            manager=manager,
            transfer_id=t.transfer_id,
            signers=["charlie", "charlie"],
            caller="david",
        )
    assert uc.get_transfer(manager=manager, transfer_id=t.transfer_id).version == 0


def test_sequential_approvals_follow_the_list_order(scenario, manager):
    uc = scenario.use_case
    uc.set_approval_criteria(
        manager=manager,
        agent="token-agent",
        include_recipient_approver=True,
        include_agent_approver=True,
        sequential_approval=True,
        additional_approvers=["charlie"],
    )
    t = _initiate(scenario, manager)

    with pytest.raises(OutOfOrderApprovalError):
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")

    assert uc.next_approver(manager=manager, transfer_id=t.transfer_id)["next_approver"] == scenario.addr("charlie")
    uc.approve(manager=manager, transfer_id=t.transfer_id, approver="charlie")
    uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")
    assert uc.next_approver(manager=manager, transfer_id=t.transfer_id)["any_token_agent"] is True

    done = uc.approve(manager=manager, transfer_id=t.transfer_id, approver="token-agent")
    assert done.transfer.status == TransferStatus.COMPLETED


def test_completed_transfer_accepts_nothing_more(scenario, manager):
    uc = scenario.use_case
    uc.set_approval_criteria(
        manager=manager,
        agent="token-agent",
        include_recipient_approver=True,
        include_agent_approver=False,
        sequential_approval=False,
    )
    t = _initiate(scenario, manager)

    done = uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")
    assert done.transfer.status == TransferStatus.COMPLETED

    with pytest.raises(AlreadyResolvedError):
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")
    with pytest.raises(AlreadyResolvedError):
        uc.cancel(manager=manager, transfer_id=t.transfer_id, caller="alice")
    assert scenario.balance("bob") == 100


def test_criteria_change_blocks_pending_transfers(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)
    uc.set_approval_criteria(
        manager=manager,
        agent="token-agent",
        include_recipient_approver=True,
        include_agent_approver=True,
        sequential_approval=False,
        additional_approvers=["david"],
    )

    with pytest.raises(ApprovalCriteriaChangedError):
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")


def test_unknown_transfer_id(scenario, manager):
    with pytest.raises(NotFoundError):
        scenario.use_case.approve(manager=manager, transfer_id="0x" + "00" * 32, approver="bob")


def test_failed_execution_keeps_transfer_pending_until_retried(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)
    uc.approve(manager=manager, transfer_id=t.transfer_id, approver="charlie")
    uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")

    scenario.ledger.set_compliance(scenario.token, lambda sender, recipient, value: False)
    with pytest.raises(ExecutionFailedError) as exc_info:
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="token-agent")
    assert exc_info.value.retryable

    pending = uc.get_transfer(manager=manager, transfer_id=t.transfer_id)
    assert pending.status == TransferStatus.PENDING
    assert not pending.approvers[2].approved
    assert scenario.balance("bob") == 0

    scenario.ledger.set_compliance(scenario.token, None)
    done = uc.approve(manager=manager, transfer_id=t.transfer_id, approver="token-agent")
    assert done.transfer.status == TransferStatus.COMPLETED
    assert scenario.balance("bob") == 100


# ---------------------------------------------------------------------------
# delegated approvals
# ---------------------------------------------------------------------------


def test_delegate_approve_relays_every_signature(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)

    result = uc.delegate_approve(
        manager=manager,
        transfer_id=t.transfer_id,
        signers=["charlie", "bob", "token-agent"],
        caller="david",
    )

    assert result.transfer.status == TransferStatus.COMPLETED
    assert result.approvers == [scenario.addr("charlie"), scenario.addr("bob"), scenario.addr("token-agent")]
    assert len(result.signatures) == 3
    assert scenario.balance("bob") == 100


def test_delegate_batch_is_all_or_nothing(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)

    with pytest.raises(NotAnApproverError):
        uc.delegate_approve(
            manager=manager,
            transfer_id=t.transfer_id,
            signers=["charlie", "eve"],
            caller="david",
        )

    after = uc.get_transfer(manager=manager, transfer_id=t.transfer_id)
    assert not any(s.approved for s in after.approvers)
    assert after.version == 0


def test_delegate_requires_signers(scenario, manager):
    t = _initiate(scenario, manager)
    with pytest.raises(InputValidationError):
        scenario.use_case.delegate_approve(manager=manager, transfer_id=t.transfer_id, signers=[], caller="david")


def test_tampered_signature_is_rejected(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)
    sig = uc.sign(transfer_id=t.transfer_id, signer="bob")
    forged = sig.model_copy(update={"signer": scenario.addr("charlie")})

    with pytest.raises(InvalidSignatureError):
        uc.relay_signatures(manager=manager, transfer_id=t.transfer_id, signatures=[forged], caller="david")

    ok = uc.relay_signatures(manager=manager, transfer_id=t.transfer_id, signatures=[sig], caller="david")
    assert ok.approvers == [scenario.addr("bob")]
    assert ok.transfer.approvers[1].approved


# ---------------------------------------------------------------------------
# cancel / reject
# ---------------------------------------------------------------------------


def test_cancel_refunds_the_sender(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)

    with pytest.raises(PermissionDeniedError):
        uc.cancel(manager=manager, transfer_id=t.transfer_id, caller="bob")

    cancelled = uc.cancel(manager=manager, transfer_id=t.transfer_id, caller="alice")
    assert cancelled.status == TransferStatus.CANCELLED
    assert scenario.balance("alice") == 1000

    with pytest.raises(AlreadyResolvedError):
        uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")


def test_reject_is_reserved_to_approvers(scenario, manager):
    uc = scenario.use_case
    t = _initiate(scenario, manager)

    with pytest.raises(NotAnApproverError):
        uc.reject(manager=manager, transfer_id=t.transfer_id, caller="david")

    rejected = uc.reject(manager=manager, transfer_id=t.transfer_id, caller="token-agent")
    assert rejected.status == TransferStatus.REJECTED
    assert scenario.balance("alice") == 1000
    assert scenario.balance("bob") == 0


# ---------------------------------------------------------------------------
# token agents
# ---------------------------------------------------------------------------


def test_add_agent_signs_with_the_live_owner_and_is_idempotent(scenario):
    uc = scenario.use_case

    first = uc.add_token_agent(agent="david")
    again = uc.add_token_agent(agent="david", owner="token-owner")

    assert first["is_agent"] and again["is_agent"]
    assert scenario.ledger.is_token_agent(scenario.token, scenario.addr("david"))

    removed = uc.remove_token_agent(agent="david")
    assert removed["is_agent"] is False
    assert uc.remove_token_agent(agent="david")["is_agent"] is False


def test_only_the_owner_manages_agents(scenario):
    with pytest.raises(NotOwnerError):
        scenario.use_case.add_token_agent(agent="david", owner="token-agent")
    assert not scenario.ledger.is_token_agent(scenario.token, scenario.addr("david"))


def test_manager_bound_to_recipient_identity(scenario):
    """Manager created for bob (country 1), criteria with charlie, 100 to bob."""
    uc = scenario.use_case
    handle = uc.create(user="bob", agent="token-agent", country=1)
    assert uc.resolve_manager("bob") == handle.address
    uc.set_approval_criteria(
        manager="bob",
        agent="token-agent",
        include_recipient_approver=True,
        include_agent_approver=True,
        sequential_approval=False,
        additional_approvers=["charlie"],
    )
    uc.token_approve(manager="bob", sender="alice", amount=100000)
    t = uc.initiate(manager="bob", sender="alice", recipient="bob", amount=100)

    for who in ("token-agent", "charlie", "bob"):
        uc.approve(manager="bob", transfer_id=t.transfer_id, approver=who)

    assert uc.get_transfer(manager="bob", transfer_id=t.transfer_id).status == TransferStatus.COMPLETED
    assert scenario.balance("bob") == 100
