from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from adapters.entry.http.dtos.transfer_manager_dtos import (
    ApproveTransferRequest,
    CallerRequest,
    CreateTransferManagerRequest,
    DelegateApproveRequest,
    InitiateTransferRequest,
    SetApprovalCriteriaRequest,
    TokenApproveRequest,
    TransferIdOut,
    TxHashOut,
)
from core.domain.entities.transfer_entities import (
    ApprovalCriteria,
    ApprovalResult,
    InitiatedTransfer,
    ManagerHandle,
    TransferDetails,
)
from core.services.exceptions import (
    DvaSdkError,
    ExecutionFailedError,
    InputValidationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    InvalidSignatureError,
    NetworkError,
    NotFoundError,
    NotVerifiedIdentityError,
    PermissionDeniedError,
    TransactionRevertedError,
    TransferStateError,
)
from core.services.normalize import parse_uint
from core.use_cases.transfer_manager_usecase import TransferManagerUseCase

router = APIRouter(prefix="/transfer-managers", tags=["transfer-manager"])

# most specific first
_STATUS = (
    (InputValidationError, 400),
    (InvalidSignatureError, 400),
    (InsufficientAllowanceError, 402),
    (InsufficientBalanceError, 402),
    (PermissionDeniedError, 403),
    (NotVerifiedIdentityError, 403),
    (NotFoundError, 404),
    (TransferStateError, 409),
    (TransactionRevertedError, 409),
    (ExecutionFailedError, 502),
    (NetworkError, 502),
)


def status_for(exc: DvaSdkError) -> int:
    return next((code for cls, code in _STATUS if isinstance(exc, cls)), 500)


async def _sdk_error_handler(request: Request, exc: DvaSdkError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=exc.as_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DvaSdkError, _sdk_error_handler)


def get_use_case() -> TransferManagerUseCase:
    return TransferManagerUseCase.from_settings()


# ---------------- setup ----------------


@router.post("", response_model=ManagerHandle)
def create_transfer_manager(
    body: CreateTransferManagerRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.create(user=body.identity, agent=body.agent, country=body.country, token=body.token)


@router.get("/history")
def get_history(use_case: TransferManagerUseCase = Depends(get_use_case)):
    return use_case.chain.to_json()


@router.put("/{manager}/approval-criteria", response_model=ApprovalCriteria)
def set_approval_criteria(
    manager: str,
    body: SetApprovalCriteriaRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.set_approval_criteria(
        manager=manager,
        agent=body.agent,
        include_recipient_approver=body.include_recipient_approver,
        include_agent_approver=body.include_agent_approver,
        sequential_approval=body.sequential_approval,
        additional_approvers=body.additional_approvers,
        token=body.token,
    )


@router.get("/{manager}/approval-criteria", response_model=ApprovalCriteria)
def get_approval_criteria(
    manager: str,
    token: Optional[str] = Query(None),
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.get_approval_criteria(manager=manager, token=token)


@router.post("/{manager}/allowance", response_model=TxHashOut)
def token_approve(
    manager: str,
    body: TokenApproveRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    tx_hash = use_case.token_approve(manager=manager, sender=body.sender, amount=body.amount, token=body.token)
    return TxHashOut(tx_hash=tx_hash, spender=use_case.resolve_manager(manager), amount=body.amount)


# ---------------- transfers ----------------


@router.get("/{manager}/transfer-id", response_model=TransferIdOut)
def calculate_transfer_id(
    manager: str,
    nonce: int = Query(..., ge=0),
    sender: str = Query(...),
    recipient: str = Query(...),
    eamount: str = Query(..., description="Encrypted amount handle, decimal or 0x-hex"),
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    tid = use_case.calculate_transfer_id(
        manager=manager, nonce=nonce, sender=sender, recipient=recipient, eamount=eamount
    )
    return TransferIdOut(
        transfer_id=tid,
        manager=use_case.resolve_manager(manager),
        nonce=nonce,
        sender=use_case.chain.resolve_address(sender),
        recipient=use_case.chain.resolve_address(recipient),
        eamount=parse_uint(eamount, name="eamount"),
    )


@router.get("/{manager}/next-nonce")
def next_nonce(manager: str, use_case: TransferManagerUseCase = Depends(get_use_case)):
    return {"next_nonce": use_case.next_nonce(manager=manager)}


@router.post("/{manager}/transfers", response_model=InitiatedTransfer)
def initiate_transfer(
    manager: str,
    body: InitiateTransferRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.initiate(
        manager=manager,
        sender=body.sender,
        recipient=body.recipient,
        amount=body.amount,
        token=body.token,
    )


@router.get("/{manager}/transfers/{transfer_id}")
def get_transfer(manager: str, transfer_id: str, use_case: TransferManagerUseCase = Depends(get_use_case)):
    return use_case.get_transfer(manager=manager, transfer_id=transfer_id).summary()


@router.get("/{manager}/transfers/{transfer_id}/next-approver")
def next_approver(manager: str, transfer_id: str, use_case: TransferManagerUseCase = Depends(get_use_case)):
    return use_case.next_approver(manager=manager, transfer_id=transfer_id)


@router.post("/{manager}/transfers/{transfer_id}/approve", response_model=ApprovalResult)
def approve_transfer(
    manager: str,
    transfer_id: str,
    body: ApproveTransferRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.approve(manager=manager, transfer_id=transfer_id, approver=body.approver)


@router.post("/{manager}/transfers/{transfer_id}/delegate-approve", response_model=ApprovalResult)
def delegate_approve_transfer(
    manager: str,
    transfer_id: str,
    body: DelegateApproveRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    if body.signatures:
        return use_case.relay_signatures(
            manager=manager,
            transfer_id=transfer_id,
            signatures=body.signatures,
            caller=body.caller,
        )
    return use_case.delegate_approve(
        manager=manager,
        transfer_id=transfer_id,
        signers=body.signers,
        caller=body.caller,
    )


@router.post("/{manager}/transfers/{transfer_id}/cancel", response_model=TransferDetails)
def cancel_transfer(
    manager: str,
    transfer_id: str,
    body: CallerRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.cancel(manager=manager, transfer_id=transfer_id, caller=body.caller)


@router.post("/{manager}/transfers/{transfer_id}/reject", response_model=TransferDetails)
def reject_transfer(
    manager: str,
    transfer_id: str,
    body: CallerRequest,
    use_case: TransferManagerUseCase = Depends(get_use_case),
):
    return use_case.reject(manager=manager, transfer_id=transfer_id, caller=body.caller)
