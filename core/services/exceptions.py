from __future__ import annotations

from typing import Any, Optional


class DvaSdkError(Exception):
    """
    Base class of every error surfaced by the SDK.

    `details` keeps the offending identifiers (addresses, transfer ids,
    aliases) so the CLI / HTTP layers can print them next to the message.
    """

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def __str__(self) -> str:
        return self.message

    def as_dict(self) -> dict:
        return {"error": type(self).__name__, "detail": self.message, "details": self.details}


# ---------------------------------------------------------------------------
# input / wallets
# ---------------------------------------------------------------------------


class InputValidationError(DvaSdkError):
    """Bad CLI / API input: not an address, not a number, ..."""


class OutOfRangeError(InputValidationError):
    pass


class InvalidKeyError(InputValidationError):
    pass


class NotFoundError(DvaSdkError):
    """Unknown transfer, manager, deployment or alias."""


class UnknownAliasError(NotFoundError):
    pass


# ---------------------------------------------------------------------------
# roles / identities
# ---------------------------------------------------------------------------


class PermissionDeniedError(DvaSdkError):
    """Caller lacks the role required by the operation."""


class NotOwnerError(PermissionDeniedError):
    pass


class UnresolvableOwnerError(NotOwnerError):
    pass


class NotVerifiedIdentityError(DvaSdkError):
    pass


# ---------------------------------------------------------------------------
# transfer state machine
# ---------------------------------------------------------------------------


class TransferStateError(DvaSdkError):
    """A transfer precondition was violated; the transfer was not mutated."""


class AlreadyResolvedError(TransferStateError):
    pass


class NotAnApproverError(TransferStateError):
    pass


class DuplicateApprovalError(TransferStateError):
    pass


class OutOfOrderApprovalError(TransferStateError):
    pass


class ApprovalCriteriaChangedError(TransferStateError):
    pass


class InsufficientAllowanceError(DvaSdkError):
    pass


class InsufficientBalanceError(DvaSdkError):
    pass


class InvalidSignatureError(DvaSdkError):
    pass


class ExecutionFailedError(DvaSdkError):
    """
    Approval criteria were met but the underlying confidential transfer
    failed. The transfer is still PENDING; replaying the approval retries.
    """

    retryable = True


# ---------------------------------------------------------------------------
# infrastructure
# ---------------------------------------------------------------------------


class NetworkError(DvaSdkError):
    pass


class CorruptHistoryError(DvaSdkError):
    pass


class TransactionRevertedError(DvaSdkError):
    """
    A contract call reverted. `reason` is the revert string as returned by
    the node, untouched; `data` holds the raw revert payload for custom errors.
    """

    def __init__(
        self,
        *,
        msg: str,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
        data: Optional[str] = None,
        receipt: Optional[dict] = None,
    ):
        super().__init__(msg, tx_hash=tx_hash, reason=reason, data=data)
        self.tx_hash = tx_hash
        self.reason = reason
        self.data = data
        self.receipt = receipt
