from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from adapters.external.memory.in_memory_ledger import InMemoryCipher
from core.domain.enums.transfer_enums import TransferStatus
from core.services.exceptions import NotFoundError, TransferStateError


def test_cipher_round_trip_and_unknown_handle():
    cipher = InMemoryCipher()
    a = cipher.encrypt64("0x" + "de" * 20, "0x" + "5e" * 20, 7)
    b = cipher.encrypt64("0x" + "de" * 20, "0x" + "5e" * 20, 7)

    assert a.handle != b.handle
    assert cipher.decrypt64(a.handle) == 7
    with pytest.raises(NotFoundError):
        cipher.decrypt64(12345)
    with pytest.raises(ValueError):
        cipher.encrypt64("0x" + "de" * 20, "0x" + "5e" * 20, -1)


def test_concurrent_final_approvals_complete_once(scenario, manager):
    uc = scenario.use_case
    uc.set_approval_criteria(
        manager=manager,
        agent="token-agent",
        include_recipient_approver=True,
        include_agent_approver=False,
        sequential_approval=False,
    )
    t = uc.initiate(manager=manager, sender="alice", recipient="bob", amount=100)

    def approve(_):
        try:
            uc.approve(manager=manager, transfer_id=t.transfer_id, approver="bob")
            return "ok"
        except TransferStateError as exc:
            return type(exc).__name__

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(approve, range(8)))

    assert outcomes.count("ok") == 1
    assert scenario.balance("bob") == 100
    done = uc.get_transfer(manager=manager, transfer_id=t.transfer_id)
    assert done.status == TransferStatus.COMPLETED
    assert done.version == 1


def test_nonces_are_unique_per_manager(scenario, manager):
    uc = scenario.use_case
    ids = {uc.initiate(manager=manager, sender="alice", recipient="bob", amount=1).transfer_id for _ in range(3)}
    assert len(ids) == 3
    assert uc.next_nonce(manager=manager) == 3


def test_escrow_is_released_once_transfers_resolve(scenario, manager):
    uc = scenario.use_case
    done, cancelled, rejected = (uc.initiate(manager=manager, sender="alice", recipient="bob", amount=10) for _ in range(3))
    assert len(scenario.ledger._escrow) == 3

    for who in ("charlie", "bob", "token-agent"):
        uc.approve(manager=manager, transfer_id=done.transfer_id, approver=who)
    uc.cancel(manager=manager, transfer_id=cancelled.transfer_id, caller="alice")
    uc.reject(manager=manager, transfer_id=rejected.transfer_id, caller="charlie")

    assert scenario.ledger._escrow == {}
    assert scenario.ledger.balance_of(scenario.token, manager) == 0
    assert scenario.balance("alice") == 990
