from __future__ import annotations

import io
import json

import pytest

from adapters.entry.cli.transfer_manager_cli import build_parser, run, settings_for
from config import get_settings
from core.domain.enums.transfer_enums import TransferStatus
from core.services.transfer_id import calculate_transfer_id


def _run(scenario, *argv):
    out, err = io.StringIO(), io.StringIO()
    code = run(list(argv), factory=lambda args: scenario.use_case, stdout=out, stderr=err)
    return code, out.getvalue(), err.getvalue()


def test_calculate_transfer_id(scenario, manager):
    alice, bob = scenario.addr("alice"), scenario.addr("bob")
    code, out, err = _run(
        scenario,
        "calculate-transfer-id",
        "--dva", "token-owner",
        "--nonce", "0",
        "--sender", "alice",
        "--recipient", "bob",
        "--eamount", "12345",
    )
    assert code == 0, err
    assert calculate_transfer_id(manager, 0, alice, bob, 12345) in out


def test_full_flow_as_json(scenario, manager):
    code, out, err = _run(
        scenario,
        "--format", "json",
        "initiate",
        "--dva", manager,
        "--sender", "alice",
        "--recipient", "bob",
        "--amount", "100",
    )
    assert code == 0, err
    tid = json.loads(out)["transfer_id"]

    code, out, err = _run(
        scenario,
        "--format", "json",
        "sign-delegate-approve",
        "--dva", manager,
        "--transfer-id", tid,
        "--signers", "charlie", "bob", "token-agent",
        "--caller", "david",
    )
    assert code == 0, err
    result = json.loads(out)
    assert result["transfer"]["status"] == TransferStatus.COMPLETED
    assert scenario.balance("bob") == 100


def test_get_transfer_text(scenario, manager):
    t = scenario.use_case.initiate(manager=manager, sender="alice", recipient="bob", amount=5)
    code, out, _ = _run(scenario, "get-transfer", "--dva", manager, "--transfer-id", t.transfer_id)
    assert code == 0
    assert "PENDING" in out
    assert "any token agent (pending)" in out


def test_sdk_errors_exit_with_one(scenario, manager):
    t = scenario.use_case.initiate(manager=manager, sender="alice", recipient="bob", amount=5)
    code, out, err = _run(scenario, "approve", "--dva", manager, "--transfer-id", t.transfer_id, "--approver", "eve")
    assert code == 1
    assert out == ""
    assert err.startswith("error: ")
    assert "is not an approver" in err


def test_unknown_manager(scenario):
    code, _, err = _run(scenario, "next-nonce", "--dva", "alice")
    assert code == 1
    assert "Unable to retrieve DVA Transfer manager associated to alice" in err


def test_set_approval_criteria_flags(scenario, manager):
    code, out, err = _run(
        scenario,
        "--format", "json",
        "set-approval-criteria",
        "--dva", manager,
        "--agent", "token-agent",
        "--no-include-recipient-approver",
        "--sequential-approval",
        "--additional-approvers", "david", "charlie",
    )
    assert code == 0, err
    stored = json.loads(out)
    assert stored["include_recipient_approver"] is False
    assert stored["include_agent_approver"] is True
    assert stored["sequential_approval"] is True
    assert stored["additional_approvers"] == [scenario.addr("david"), scenario.addr("charlie")]


def test_wallets_and_history(scenario, manager):
    code, out, _ = _run(scenario, "wallets")
    assert code == 0
    assert "token-agent" in out

    code, out, _ = _run(scenario, "--format", "json", "history")
    assert code == 0
    assert json.loads(out)["transferManagers"][scenario.addr("token-owner")] == manager


def test_usage_errors_exit_with_two(scenario):
    with pytest.raises(SystemExit) as exc_info:
        _run(scenario, "approve", "--dva", "x")
    assert exc_info.value.code == 2


def test_network_override_moves_the_history_file():
    args = build_parser().parse_args(["--network", "sepolia", "wallets"])
    assert settings_for(args).NETWORK_NAME == "sepolia"
    assert settings_for(args).HISTORY_PATH == ".fhe-erc3643.sepolia.history.json"

    args = build_parser().parse_args(["--history", "/tmp/h.json", "wallets"])
    assert settings_for(args).HISTORY_PATH == "/tmp/h.json"
    assert settings_for(args).NETWORK_NAME == get_settings().NETWORK_NAME


def test_add_and_remove_agent(scenario):
    code, out, err = _run(scenario, "--format", "json", "add-agent", "--agent", "david")
    assert code == 0, err
    assert json.loads(out)["is_agent"] is True
    assert scenario.ledger.is_token_agent(scenario.token, scenario.addr("david"))

    code, out, err = _run(scenario, "--format", "json", "remove-agent", "--agent", "david", "--owner", "token-owner")
    assert code == 0, err
    assert json.loads(out)["is_agent"] is False
