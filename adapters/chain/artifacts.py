from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Union

# Hardhat compile output: artifacts/contracts/<File>.sol/<Contract>.json
ARTIFACTS_DIR = Path("artifacts")

DVA_TRANSFER_MANAGER_ARTIFACT = ("contracts", "DVATransferManager.sol", "DVATransferManager.json")


def load_artifact(*parts: str, root: Union[str, Path, None] = None) -> dict[str, Any]:
    """
    Loads a Solidity artifact JSON below `root` (default ./artifacts).

    Example:
      load_artifact("contracts", "DVATransferManager.sol", "DVATransferManager.json")
    """
    p = Path(root or ARTIFACTS_DIR).joinpath(*parts)
    if not p.exists():
        raise FileNotFoundError(f"Artifact file not found: {p}")
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Expected artifact JSON object in {p}, got {type(data).__name__}")
    return data


def artifact_abi(art: dict[str, Any]) -> list:
    abi = art.get("abi")
    if not isinstance(abi, list) or not abi:
        raise ValueError("Invalid or missing ABI in artifact.")
    return abi


def artifact_bytecode(art: dict[str, Any]) -> str:
    """
    Supports both {bytecode:{object:"0x.."}} (Foundry) and {bytecode:"0x.."}
    (Hardhat) shapes.
    """
    bc = art.get("bytecode")
    if isinstance(bc, dict):
        bc = bc.get("object")
    if not isinstance(bc, str) or not bc.startswith("0x") or len(bc) < 10:
        raise ValueError("Invalid or missing bytecode in artifact.")
    return bc


def load_contract_artifact(*parts: str, root: Union[str, Path, None] = None) -> tuple[list, str]:
    """
    Returns (abi, bytecode) of a compiled contract.
    """
    art = load_artifact(*parts, root=root)
    return artifact_abi(art), artifact_bytecode(art)
