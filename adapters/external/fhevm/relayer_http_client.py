from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import get_settings
from core.domain.entities.transfer_entities import EncryptedAmount
from core.domain.repositories.transfer_manager_ledger_interface import ConfidentialCipher
from core.services.exceptions import InputValidationError, NetworkError


@dataclass
class RelayerHttpClient(ConfidentialCipher):
    """
    Encrypt / decrypt through the confidential-computation relayer.

    POST /v1/encrypt {contract, user, value, bits} -> {handle, proof}
    POST /v1/decrypt {handle}                      -> {value}
    """

    base_url: str
    timeout_sec: float = 30.0
    transport: Optional[httpx.BaseTransport] = None

    @classmethod
    def from_settings(cls) -> "RelayerHttpClient":
        st = get_settings()
        return cls(base_url=(st.RELAYER_URL or "").rstrip("/"), timeout_sec=float(st.RPC_TIMEOUT_SEC))

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise NetworkError("RELAYER_URL is not configured")
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout_sec, transport=self.transport) as cli:
                res = cli.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Relayer unreachable ({url}): {exc}", url=url) from exc

        try:
            data = res.json() if res.content else {}
        except ValueError:
            data = {}
        if res.status_code >= 400:
            raise NetworkError(
                data.get("detail") or data.get("message") or f"relayer_error_{res.status_code}",
                url=url,
                status=res.status_code,
            )
        return data

    def encrypt64(self, contract: str, user: str, value: int) -> EncryptedAmount:
        if value < 0 or value >= 2**64:
            raise InputValidationError("amount does not fit in euint64", value=value)
        data = self._post("/v1/encrypt", {"contract": contract, "user": user, "value": str(int(value)), "bits": 64})
        handle = data.get("handle")
        if handle is None:
            raise NetworkError("Relayer returned no handle", url=self.base_url)
        return EncryptedAmount(
            handle=int(handle, 16) if isinstance(handle, str) else int(handle),
            proof=data.get("proof") or "0x",
        )

    def decrypt64(self, handle: int) -> int:
        data = self._post("/v1/decrypt", {"handle": f"0x{int(handle):064x}"})
        value = data.get("value")
        if value is None:
            raise NetworkError(f"Relayer returned no value for handle {handle}", url=self.base_url)
        return int(value)
