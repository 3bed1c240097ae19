from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.transfer_enums import TransferStatus
from core.services.normalize import ZERO_ADDRESS


class ManagerHandle(BaseModel):
    """
    One deployed DVA transfer manager, bound to a token, the identity it
    was registered with, and the agent that created it.
    """

    address: str
    token: str
    identity: str
    agent: str
    country: int
    user: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ApproverSlot(BaseModel):
    """
    One required approval.

    `any_token_agent` slots hold the zero address as `wallet` and are
    satisfied by any address holding the token agent role.
    """

    wallet: str = ZERO_ADDRESS
    any_token_agent: bool = False
    approved: bool = False
    approved_by: Optional[str] = None


class ApprovalCriteria(BaseModel):
    """
    Approver configuration of a manager for one token.

    The effective approver list of a transfer is, in this order:

        additional_approvers ++ [recipient if include_recipient_approver]
                             ++ [any token agent if include_agent_approver]

    With `sequential_approval` the list order is the required approval order.
    """

    token: str
    include_recipient_approver: bool = True
    include_agent_approver: bool = True
    sequential_approval: bool = False
    additional_approvers: List[str] = Field(default_factory=list)
    hash: Optional[str] = None

    def approvers_for(self, recipient: str) -> List[ApproverSlot]:
        slots = [ApproverSlot(wallet=a) for a in self.additional_approvers]
        if self.include_recipient_approver:
            slots.append(ApproverSlot(wallet=recipient))
        if self.include_agent_approver:
            slots.append(ApproverSlot(any_token_agent=True))
        return slots


class Approval(BaseModel):
    approver: str
    signature: Optional[str] = None


class TransferDetails(BaseModel):
    transfer_id: str
    manager: str
    token: str
    sender: str
    recipient: str
    eamount: int
    nonce: Optional[int] = None
    status: TransferStatus = TransferStatus.PENDING
    approvers: List[ApproverSlot] = Field(default_factory=list)
    approvals: List[Approval] = Field(default_factory=list)
    approval_criteria_hash: Optional[str] = None
    sequential: bool = False
    version: int = 0

    @property
    def status_string(self) -> str:
        return self.status.name

    @property
    def is_complete(self) -> bool:
        return all(s.approved for s in self.approvers)

    def next_slot(self) -> Optional[ApproverSlot]:
        return next((s for s in self.approvers if not s.approved), None)

    def summary(self) -> dict:
        data = self.model_dump(mode="json")
        data["status"] = self.status_string
        return data


class EncryptedAmount(BaseModel):
    """Opaque handle + input proof produced by the confidential layer."""

    handle: int
    proof: str = "0x"


class InitiatedTransfer(BaseModel):
    transfer_id: str
    eamount: int
    nonce: int
    manager: str
    sender: str
    recipient: str
    amount: int
    tx_hash: Optional[str] = None


class TransferSignature(BaseModel):
    signer: str
    v: int
    r: str
    s: str
    signature: str


class ApprovalResult(BaseModel):
    transfer_id: str
    approvers: List[str]
    signatures: List[TransferSignature] = Field(default_factory=list)
    transfer: TransferDetails
    tx_hash: Optional[str] = None
