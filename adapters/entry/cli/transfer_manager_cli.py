"""
`trex-dva` sub-commands: one per transfer manager operation.

Every command returns the object to print; `run` renders it as aligned
text rows or JSON and turns SDK errors into exit code 1.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from typing import Any, Callable, List, Optional, Sequence, Tuple

from config import Settings, default_history_path, get_settings
from core.domain.entities.transfer_entities import (
    ApprovalCriteria,
    ApprovalResult,
    InitiatedTransfer,
    ManagerHandle,
    TransferDetails,
)
from core.domain.enums.tx_enums import OutputFormat
from core.services.exceptions import DvaSdkError
from core.services.utils import format_rows, to_json_safe
from core.use_cases.transfer_manager_usecase import TransferManagerUseCase

logger = logging.getLogger(__name__)

UseCaseFactory = Callable[[argparse.Namespace], TransferManagerUseCase]

# commands that never talk to the node
OFFLINE_COMMANDS = {"calculate-transfer-id", "wallets", "history"}


# ---------------------------------------------------------------------------
# text rendering
# ---------------------------------------------------------------------------


def _transfer_rows(t: TransferDetails) -> List[Tuple[str, Any]]:
    rows: List[Tuple[str, Any]] = [
        ("transfer id", t.transfer_id),
        ("transfer manager", t.manager),
        ("token", t.token),
        ("sender", t.sender),
        ("recipient", t.recipient),
        ("eamount", t.eamount),
        ("status", t.status_string),
        ("approval criteria hash", t.approval_criteria_hash),
    ]
    for i, slot in enumerate(t.approvers):
        who = "any token agent" if slot.any_token_agent else slot.wallet
        rows.append((f"approver #{i}", f"{who} ({'approved' if slot.approved else 'pending'})"))
    return rows


def _cell(v: Any) -> str:
    if isinstance(v, (list, tuple)):
        return ", ".join(str(x) for x in v)
    return str(to_json_safe(v))


def render_text(obj: Any) -> str:
    if isinstance(obj, ManagerHandle):
        return format_rows(
            [
                ("transfer manager", obj.address),
                ("token", obj.token),
                ("identity", obj.identity),
                ("identity owner", obj.user),
                ("agent", obj.agent),
                ("country", obj.country),
            ]
        )
    if isinstance(obj, ApprovalCriteria):
        return format_rows(
            [
                ("token", obj.token),
                ("include recipient approver", obj.include_recipient_approver),
                ("include agent approver", obj.include_agent_approver),
                ("sequential approval", obj.sequential_approval),
                ("additional approvers", obj.additional_approvers),
                ("hash", obj.hash),
            ]
        )
    if isinstance(obj, InitiatedTransfer):
        return format_rows(
            [
                ("transfer id", obj.transfer_id),
                ("transfer manager", obj.manager),
                ("sender", obj.sender),
                ("recipient", obj.recipient),
                ("amount", obj.amount),
                ("eamount", obj.eamount),
                ("nonce", obj.nonce),
                ("tx hash", obj.tx_hash),
            ]
        )
    if isinstance(obj, ApprovalResult):
        rows = [("approved by", obj.approvers)]
        rows += [(f"signature #{i}", f"{s.signer} {s.signature}") for i, s in enumerate(obj.signatures)]
        rows.append(("tx hash", obj.tx_hash))
        return format_rows(rows + _transfer_rows(obj.transfer))
    if isinstance(obj, TransferDetails):
        return format_rows(_transfer_rows(obj))
    if isinstance(obj, dict):
        return format_rows(obj.items())
    if isinstance(obj, list):
        return "\n".join(
            "  ".join(_cell(v) for v in x.values()) if isinstance(x, dict) else str(x) for x in obj
        )
    return str(obj)


def render(obj: Any, fmt: OutputFormat) -> str:
    if fmt == OutputFormat.JSON:
        return json.dumps(to_json_safe(obj), indent=2, sort_keys=False)
    return render_text(obj)


# ---------------------------------------------------------------------------
# commands
# ---------------------------------------------------------------------------


def cmd_add_agent(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.add_token_agent(agent=args.agent, owner=args.owner, token=args.token)


def cmd_remove_agent(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.remove_token_agent(agent=args.agent, owner=args.owner, token=args.token)


def cmd_create(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.create(user=args.identity, agent=args.agent, country=args.country, token=args.token)


def cmd_set_approval_criteria(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.set_approval_criteria(
        manager=args.dva,
        agent=args.agent,
        include_recipient_approver=args.include_recipient_approver,
        include_agent_approver=args.include_agent_approver,
        sequential_approval=args.sequential_approval,
        additional_approvers=args.additional_approvers,
        token=args.token,
    )


def cmd_calculate_transfer_id(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    tid = uc.calculate_transfer_id(
        manager=args.dva,
        nonce=args.nonce,
        sender=args.sender,
        recipient=args.recipient,
        eamount=args.eamount,
    )
    return {"transfer id": tid}


def cmd_token_approve(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    tx_hash = uc.token_approve(manager=args.dva, sender=args.sender, amount=args.amount, token=args.token)
    return {"spender": uc.resolve_manager(args.dva), "amount": args.amount, "tx hash": tx_hash}


def cmd_initiate(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.initiate(
        manager=args.dva,
        sender=args.sender,
        recipient=args.recipient,
        amount=args.amount,
        token=args.token,
    )


def cmd_sign_delegate_approve(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.delegate_approve(
        manager=args.dva,
        transfer_id=args.transfer_id,
        signers=args.signers,
        caller=args.caller,
    )


def cmd_approve(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.approve(manager=args.dva, transfer_id=args.transfer_id, approver=args.approver)


def cmd_get_transfer(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.get_transfer(manager=args.dva, transfer_id=args.transfer_id)


def cmd_cancel(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.cancel(manager=args.dva, transfer_id=args.transfer_id, caller=args.caller)


def cmd_reject(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.reject(manager=args.dva, transfer_id=args.transfer_id, caller=args.caller)


def cmd_next_approver(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return uc.next_approver(manager=args.dva, transfer_id=args.transfer_id)


def cmd_next_nonce(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return {"next nonce": uc.next_nonce(manager=args.dva)}


def cmd_wallets(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    return [
        {"index": w.index, "address": w.address, "names": list(w.names)}
        for w in uc.chain.resolver.wallets()
    ]


def cmd_history(uc: TransferManagerUseCase, args: argparse.Namespace) -> Any:
    if args.format == OutputFormat.TEXT:
        return json.dumps(uc.chain.to_json(), indent=2)
    return uc.chain.to_json()


# ---------------------------------------------------------------------------
# parser
# ---------------------------------------------------------------------------


def _token_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("--token", default=None, help="Token address or salt (default: last recorded token)")


def _dva_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--dva", required=True, help="Transfer manager address, or alias/index/address of its identity owner")


def _transfer_args(p: argparse.ArgumentParser) -> None:
    _dva_args(p)
    p.add_argument("--transfer-id", required=True, help="0x-prefixed 32-byte transfer id")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="trex-dva", description="DVA transfer manager operator tool")
    ap.add_argument("--network", default="", help="Network name (default: NETWORK_NAME)")
    ap.add_argument("--history", default="", help="Deployment history file (default: .fhe-erc3643.<network>.history.json)")
    ap.add_argument(
        "--format",
        type=OutputFormat,
        choices=list(OutputFormat),
        default=OutputFormat.TEXT,
        help="Output format",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    for name, func, verb in (("add-agent", cmd_add_agent, "Grant"), ("remove-agent", cmd_remove_agent, "Revoke")):
        ag = sub.add_parser(name, help=f"{verb} the token agent role (no-op when already done)")
        _token_arg(ag)
        ag.add_argument("--agent", required=True)
        ag.add_argument("--owner", default="auto", help="Token owner wallet (default: auto, the live owner)")
        ag.set_defaults(func=func)

    c = sub.add_parser("create", help="Deploy a transfer manager bound to a verified identity")
    _token_arg(c)
    c.add_argument("--identity", required=True, help="Alias/index/address of the identity owner")
    c.add_argument("--agent", required=True, help="Identity registry agent signing the deployment")
    c.add_argument("--country", type=int, default=0)
    c.set_defaults(func=cmd_create)

    s = sub.add_parser("set-approval-criteria", help="Replace the approver configuration of a manager")
    _token_arg(s)
    _dva_args(s)
    s.add_argument("--agent", required=True, help="Token agent")
    s.add_argument("--include-recipient-approver", action=argparse.BooleanOptionalAction, default=True)
    s.add_argument("--include-agent-approver", action=argparse.BooleanOptionalAction, default=True)
    s.add_argument("--sequential-approval", action=argparse.BooleanOptionalAction, default=False)
    s.add_argument("--additional-approvers", nargs="*", default=[], metavar="WALLET")
    s.set_defaults(func=cmd_set_approval_criteria)

    t = sub.add_parser("calculate-transfer-id", help="Compute a transfer id offline")
    _dva_args(t)
    t.add_argument("--nonce", required=True)
    t.add_argument("--sender", required=True)
    t.add_argument("--recipient", required=True)
    t.add_argument("--eamount", required=True, help="Encrypted amount handle")
    t.set_defaults(func=cmd_calculate_transfer_id)

    a = sub.add_parser("token-approve", help="Allow the manager to spend the sender's tokens")
    _token_arg(a)
    _dva_args(a)
    a.add_argument("--sender", required=True)
    a.add_argument("--amount", required=True)
    a.set_defaults(func=cmd_token_approve)

    i = sub.add_parser("initiate", help="Initiate a transfer")
    _token_arg(i)
    _dva_args(i)
    i.add_argument("--sender", required=True)
    i.add_argument("--recipient", required=True)
    i.add_argument("--amount", required=True)
    i.set_defaults(func=cmd_initiate)

    d = sub.add_parser("sign-delegate-approve", help="Sign the transfer id with each signer and relay the signatures")
    _transfer_args(d)
    d.add_argument("--signers", nargs="+", required=True, metavar="WALLET")
    d.add_argument("--caller", required=True)
    d.set_defaults(func=cmd_sign_delegate_approve)

    p = sub.add_parser("approve", help="Approve a transfer")
    _transfer_args(p)
    p.add_argument("--approver", required=True)
    p.set_defaults(func=cmd_approve)

    g = sub.add_parser("get-transfer", help="Show a transfer")
    _transfer_args(g)
    g.set_defaults(func=cmd_get_transfer)

    x = sub.add_parser("cancel", help="Cancel a pending transfer (sender only)")
    _transfer_args(x)
    x.add_argument("--caller", required=True)
    x.set_defaults(func=cmd_cancel)

    r = sub.add_parser("reject", help="Reject a pending transfer (approvers only)")
    _transfer_args(r)
    r.add_argument("--caller", required=True)
    r.set_defaults(func=cmd_reject)

    n = sub.add_parser("next-approver", help="Show the next approver of a pending transfer")
    _transfer_args(n)
    n.set_defaults(func=cmd_next_approver)

    nn = sub.add_parser("next-nonce", help="Nonce the next initiated transfer will use")
    _dva_args(nn)
    nn.set_defaults(func=cmd_next_nonce)

    w = sub.add_parser("wallets", help="List derived wallets and their aliases")
    w.set_defaults(func=cmd_wallets)

    h = sub.add_parser("history", help="Print the deployment history")
    h.set_defaults(func=cmd_history)

    return ap


def settings_for(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    s = base or get_settings()
    changes = {}
    if args.network:
        changes["NETWORK_NAME"] = args.network
        changes["HISTORY_PATH"] = default_history_path(args.network)
    if args.history:
        changes["HISTORY_PATH"] = args.history
    return dataclasses.replace(s, **changes) if changes else s


def default_factory(args: argparse.Namespace) -> TransferManagerUseCase:
    return TransferManagerUseCase.from_settings(settings_for(args), verify_chain=args.cmd not in OFFLINE_COMMANDS)


def run(
    argv: Optional[Sequence[str]] = None,
    *,
    factory: UseCaseFactory = default_factory,
    stdout=None,
    stderr=None,
) -> int:
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    args = build_parser().parse_args(argv)
    try:
        uc = factory(args)
        result = args.func(uc, args)
    except DvaSdkError as exc:
        logger.debug("%s failed: %r", args.cmd, exc.details)
        print(f"error: {exc}", file=stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"error: {exc}", file=stderr)
        return 1

    print(render(result, args.format), file=stdout)
    return 0
