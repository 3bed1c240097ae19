from __future__ import annotations

from typing import Callable, Optional, Sequence, Tuple

from core.domain.entities.transfer_entities import Approval, TransferDetails, TransferSignature
from core.services.exceptions import (
    AlreadyResolvedError,
    ApprovalCriteriaChangedError,
    DuplicateApprovalError,
    NotAnApproverError,
    NotFoundError,
    OutOfOrderApprovalError,
)
from core.services.normalize import same_address

AgentCheck = Callable[[str], bool]


def require_pending(transfer: Optional[TransferDetails], transfer_id: str) -> TransferDetails:
    if transfer is None:
        raise NotFoundError(f"Invalid transferID={transfer_id}", transfer_id=transfer_id)
    if transfer.status.is_terminal:
        raise AlreadyResolvedError(
            f"Transfer is not in pending status (transferID={transfer_id}, status={transfer.status_string})",
            transfer_id=transfer_id,
            status=transfer.status_string,
        )
    return transfer


def check_approval(
    transfer: Optional[TransferDetails],
    transfer_id: str,
    approver: str,
    *,
    is_token_agent: AgentCheck,
    criteria_hash: Optional[str] = None,
) -> int:
    """
    Validates one approval against the current transfer state and returns the
    index of the approver slot it fills. Never mutates `transfer`.

    Checks, in order: transfer exists and is PENDING, the criteria it was
    initiated with are still current, `approver` holds a slot, `approver` has
    not approved yet and has a slot left to fill, and (sequential) that slot
    is the next one.
    """
    transfer = require_pending(transfer, transfer_id)

    if criteria_hash is not None and transfer.approval_criteria_hash not in (None, criteria_hash):
        raise ApprovalCriteriaChangedError(
            f"Approval criteria changed since transfer {transfer_id} was initiated; cancel and initiate it again",
            transfer_id=transfer_id,
        )

    agent: Optional[bool] = None
    matching = []
    for i, slot in enumerate(transfer.approvers):
        if slot.any_token_agent:
            if agent is None:
                agent = bool(is_token_agent(approver))
            if agent:
                matching.append(i)
        elif same_address(slot.wallet, approver):
            matching.append(i)

    if not matching:
        raise NotAnApproverError(
            f"{approver} is not an approver of transfer {transfer_id}",
            transfer_id=transfer_id,
            approver=approver,
        )

    # one approval per party, even when it holds several slots
    already = any(same_address(a.approver, approver) for a in transfer.approvals) or any(
        s.approved and same_address(s.approved_by or s.wallet, approver) for s in transfer.approvers
    )
    open_slots = [i for i in matching if not transfer.approvers[i].approved]
    if already or not open_slots:
        raise DuplicateApprovalError(
            f"{approver} has already approved transfer {transfer_id}",
            transfer_id=transfer_id,
            approver=approver,
        )

    if transfer.sequential:
        nxt = next(i for i, s in enumerate(transfer.approvers) if not s.approved)
        if nxt not in open_slots:
            expected = transfer.approvers[nxt]
            raise OutOfOrderApprovalError(
                f"Sequential approval: {approver} cannot approve transfer {transfer_id} before "
                f"{'a token agent' if expected.any_token_agent else expected.wallet}",
                transfer_id=transfer_id,
                approver=approver,
                expected=None if expected.any_token_agent else expected.wallet,
            )
        return nxt

    return open_slots[0]


def apply_approval(
    transfer: TransferDetails,
    slot: int,
    approver: str,
    signature: Optional[str] = None,
) -> TransferDetails:
    """
    Returns a copy of `transfer` with `slot` approved by `approver`.
    Status is left untouched; completion is decided by the caller once the
    confidential transfer has executed.
    """
    out = transfer.model_copy(deep=True)
    out.approvers[slot].approved = True
    out.approvers[slot].approved_by = approver
    out.approvals.append(Approval(approver=approver, signature=signature))
    return out


def plan_approvals(
    transfer: Optional[TransferDetails],
    transfer_id: str,
    approvals: Sequence[Tuple[str, Optional[TransferSignature]]],
    *,
    is_token_agent: AgentCheck,
    criteria_hash: Optional[str] = None,
) -> TransferDetails:
    """
    Applies a batch of approvals to a copy of `transfer`, each one validated
    against the state left by the previous ones. Any failure raises before
    anything is returned, so a batch applies entirely or not at all.
    """
    current = transfer
    for approver, sig in approvals:
        slot = check_approval(
            current,
            transfer_id,
            approver,
            is_token_agent=is_token_agent,
            criteria_hash=criteria_hash,
        )
        current = apply_approval(current, slot, approver, sig.signature if sig else None)
    if current is None:
        raise NotFoundError(f"Invalid transferID={transfer_id}", transfer_id=transfer_id)
    return current
