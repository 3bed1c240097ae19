from __future__ import annotations

from enum import IntEnum

from core.services.exceptions import InputValidationError


class TransferStatus(IntEnum):
    """
    Transfer status as stored by the DVA transfer manager (uint8 on-chain).

    Rules:
    - PENDING is the only non-terminal state.
    - COMPLETED, CANCELLED and REJECTED never transition again.
    """

    PENDING = 0
    COMPLETED = 1
    CANCELLED = 2
    REJECTED = 3

    @property
    def is_terminal(self) -> bool:
        return self is not TransferStatus.PENDING

    @classmethod
    def parse(cls, value: int) -> "TransferStatus":
        try:
            return cls(int(value))
        except ValueError as exc:
            raise InputValidationError(f"Unknown transfer status {value}.", status=value) from exc
