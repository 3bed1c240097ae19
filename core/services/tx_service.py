from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional, Sequence

from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.exceptions import ContractLogicError

from core.domain.entities.wallet_entity import SigningWallet
from core.domain.enums.tx_enums import GasStrategy
from core.services.exceptions import TransactionRevertedError
from core.services.utils import to_json_safe
from core.services.web3_cache import network_errors

logger = logging.getLogger(__name__)


def _revert_from(exc: ContractLogicError, *, tx_hash: Optional[str] = None, what: str = "call") -> TransactionRevertedError:
    reason = getattr(exc, "message", None) or str(exc)
    data = getattr(exc, "data", None)
    if data is not None and not isinstance(data, str):
        data = to_json_safe(data)
        data = data if isinstance(data, str) else None
    return TransactionRevertedError(
        msg=f"{what} reverted: {reason}",
        tx_hash=tx_hash,
        reason=reason,
        data=data,
    )


@dataclass
class TxService:
    """
    Transaction sender for the SDK.

    Responsibilities:
    - Build, sign (with the wallet given per call) and broadcast contract calls.
    - Apply gas padding strategy.
    - Wait for the receipt and `confirms` blocks.
    - Surface revert reasons verbatim (TransactionRevertedError).
    - Normalize results so callers can print / persist them.
    """

    w3: Web3
    confirms: int = 1
    timeout_sec: float = 120.0
    poll_interval_sec: float = 0.5

    # ---------- internal helpers ----------

    def _next_nonce(self, address: str) -> int:
        return self.w3.eth.get_transaction_count(address, "pending")

    def _estimate_with_strategy(self, tx: dict, strategy: GasStrategy, what: str) -> int:
        """
        Calls estimateGas(tx) and applies a safety buffer depending on strategy.
        A revert during estimation is surfaced; nothing is broadcast.
        """
        try:
            base_estimate = int(self.w3.eth.estimate_gas(tx))
        except ContractLogicError as exc:
            raise _revert_from(exc, what=what) from exc

        if strategy == GasStrategy.DEFAULT:
            return base_estimate
        if strategy == GasStrategy.BUFFERED:
            return int(base_estimate * 1.25) + 10_000
        if strategy == GasStrategy.AGGRESSIVE:
            return int(base_estimate * 1.5) + 25_000
        return base_estimate  # fallback

    def _finalize_fee_fields(self, tx: dict) -> dict:
        """
        If the caller didn't specify EIP-1559 style fields, fallback to legacy gasPrice.
        """
        if "maxFeePerGas" in tx or "maxPriorityFeePerGas" in tx:
            return tx
        if "gasPrice" not in tx:
            tx["gasPrice"] = self.w3.eth.gas_price
        return tx

    def _sign_and_send(self, tx: dict, signer: SigningWallet) -> str:
        signed = self.w3.eth.account.sign_transaction(tx, signer.key)
        txh = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(txh)

    def _replay_reason(self, tx: dict, block: int) -> Optional[ContractLogicError]:
        call = {k: tx[k] for k in ("from", "to", "data", "value") if k in tx}
        try:
            self.w3.eth.call(call, block_identifier=block)
        except ContractLogicError as exc:
            return exc
        return None

    def _wait(self, tx_hash: str, confirms: int) -> dict:
        rcpt = dict(self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout_sec))
        if confirms > 1:
            target = int(rcpt["blockNumber"]) + confirms - 1
            deadline = time.monotonic() + self.timeout_sec
            while int(self.w3.eth.block_number) < target:
                if time.monotonic() > deadline:
                    break
                time.sleep(self.poll_interval_sec)
        return rcpt

    def _response(self, *, tx_hash: str, receipt: dict, gas_limit: int, gas_price_wei: int) -> dict:
        return to_json_safe(
            {
                "tx_hash": tx_hash,
                "status": int(receipt.get("status", 0)),
                "block_number": receipt.get("blockNumber"),
                "receipt": receipt,
                "gas": {
                    "limit": int(gas_limit),
                    "used": int(receipt.get("gasUsed") or 0),
                    "price_wei": int(gas_price_wei),
                },
                "result": {},
                "ts": datetime.now(UTC).isoformat(),
            }
        )

    def _submit(
        self,
        tx: dict,
        signer: SigningWallet,
        *,
        what: str,
        gas_limit: Optional[int],
        gas_strategy: GasStrategy,
        confirms: Optional[int],
    ) -> dict:
        with network_errors():
            tx["gas"] = int(gas_limit) if gas_limit is not None else self._estimate_with_strategy(tx, gas_strategy, what)
            tx = self._finalize_fee_fields(tx)
            gas_price_wei = int(tx.get("gasPrice", 0))

            tx_hash = self._sign_and_send(tx, signer)
            logger.info("tx %s sent: %s (signer %s)", tx_hash, what, signer.label())

            rcpt = self._wait(tx_hash, self.confirms if confirms is None else int(confirms))
            if int(rcpt.get("status", 0)) == 0:
                exc = self._replay_reason(tx, int(rcpt["blockNumber"]))
                if exc is not None:
                    err = _revert_from(exc, tx_hash=tx_hash, what=what)
                    err.receipt = to_json_safe(rcpt)
                    raise err
                raise TransactionRevertedError(
                    msg=f"{what} reverted (status=0). Possibly out-of-gas or require() failed",
                    tx_hash=tx_hash,
                    receipt=to_json_safe(rcpt),
                )

        return self._response(tx_hash=tx_hash, receipt=rcpt, gas_limit=tx["gas"], gas_price_wei=gas_price_wei)

    # ---------- public API ----------

    def call(self, fn: ContractFunction, *, sender: Optional[str] = None, what: str = "call") -> Any:
        """
        eth_call of a view (or a dry-run of a mutating function).
        """
        with network_errors():
            try:
                return fn.call({"from": sender} if sender else None)
            except ContractLogicError as exc:
                raise _revert_from(exc, what=what) from exc

    def send(
        self,
        fn: ContractFunction,
        signer: SigningWallet,
        *,
        value: int = 0,
        gas_limit: Optional[int] = None,
        gas_strategy: GasStrategy = GasStrategy.BUFFERED,
        confirms: Optional[int] = None,
    ) -> dict:
        """
        Broadcasts a state-changing transaction and waits for `confirms` blocks.

        Raises:
            TransactionRevertedError: the call reverts during estimation (nothing
                is broadcast) or the mined transaction has status 0.
            NetworkError: the node is unreachable or the receipt never shows up.
        """
        what = f"{fn.fn_name}()"
        with network_errors():
            tx = fn.build_transaction(
                {
                    "from": signer.address,
                    "nonce": self._next_nonce(signer.address),
                    "value": int(value or 0),
                }
            )
        return self._submit(tx, signer, what=what, gas_limit=gas_limit, gas_strategy=gas_strategy, confirms=confirms)

    def deploy(
        self,
        *,
        abi: list,
        bytecode: str,
        signer: SigningWallet,
        ctor_args: Sequence[Any] = (),
        gas_limit: Optional[int] = None,
        gas_strategy: GasStrategy = GasStrategy.BUFFERED,
        confirms: Optional[int] = None,
    ) -> dict:
        factory = self.w3.eth.contract(abi=abi, bytecode=bytecode)
        with network_errors():
            tx = factory.constructor(*list(ctor_args)).build_transaction(
                {
                    "from": signer.address,
                    "nonce": self._next_nonce(signer.address),
                    "value": 0,
                }
            )
        res = self._submit(tx, signer, what="deploy", gas_limit=gas_limit, gas_strategy=gas_strategy, confirms=confirms)
        res["result"] = {"contract_address": (res.get("receipt") or {}).get("contractAddress")}
        return res
