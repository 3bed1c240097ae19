from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from eth_account.signers.local import LocalAccount


@dataclass(frozen=True)
class Wallet:
    """
    A resolved wallet reference.

    - `index` is the position in the HD derivation sequence, None for
      addresses that were given verbatim and match no derived wallet.
    - `names` are the aliases bound to that index, insertion order.
    """

    address: str
    index: Optional[int] = None
    names: Tuple[str, ...] = ()

    @property
    def can_sign(self) -> bool:
        return False

    def label(self) -> str:
        if self.names:
            return f"{self.names[0]} ({self.index})"
        if self.index is not None:
            return f"wallet #{self.index}"
        return self.address

    def as_dict(self) -> dict:
        return {"address": self.address, "index": self.index, "names": list(self.names)}


@dataclass(frozen=True)
class SigningWallet(Wallet):
    """
    A wallet backed by a local private key.
    """

    account: Optional[LocalAccount] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.account is None:
            raise ValueError("SigningWallet requires an account")

    @property
    def can_sign(self) -> bool:
        return True

    @property
    def key(self) -> bytes:
        return bytes(self.account.key)
