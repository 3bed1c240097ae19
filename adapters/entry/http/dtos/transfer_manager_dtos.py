from typing import List, Optional

from pydantic import BaseModel, Field

from core.domain.entities.transfer_entities import TransferSignature

WALLET_HELP = "Wallet index, alias, address or private key"


class CreateTransferManagerRequest(BaseModel):
    identity: str = Field(..., description="Alias/index/address of the verified identity owner")
    agent: str = Field(..., description=WALLET_HELP)
    country: int = Field(default=0, ge=0, le=0xFFFF)
    token: Optional[str] = Field(default=None, description="Token address or salt; last recorded token if omitted")


class SetApprovalCriteriaRequest(BaseModel):
    agent: str = Field(..., description=WALLET_HELP)
    include_recipient_approver: bool = True
    include_agent_approver: bool = True
    sequential_approval: bool = False
    additional_approvers: List[str] = Field(default_factory=list)
    token: Optional[str] = None


class TokenApproveRequest(BaseModel):
    sender: str = Field(..., description=WALLET_HELP)
    amount: int = Field(..., ge=0)
    token: Optional[str] = None


class InitiateTransferRequest(BaseModel):
    sender: str = Field(..., description=WALLET_HELP)
    recipient: str
    amount: int = Field(..., ge=0)
    token: Optional[str] = None


class ApproveTransferRequest(BaseModel):
    approver: str = Field(..., description=WALLET_HELP)


class DelegateApproveRequest(BaseModel):
    """
    Either `signers` (signed here) or pre-computed `signatures`.
    """

    caller: str = Field(..., description=WALLET_HELP)
    signers: List[str] = Field(default_factory=list)
    signatures: List[TransferSignature] = Field(default_factory=list)


class CallerRequest(BaseModel):
    caller: str = Field(..., description=WALLET_HELP)


class TransferIdOut(BaseModel):
    transfer_id: str
    manager: str
    nonce: int
    sender: str
    recipient: str
    eamount: int


class TxHashOut(BaseModel):
    tx_hash: Optional[str] = None
    spender: str
    amount: int
