from __future__ import annotations

import json

import pytest

from adapters.chain.artifacts import DVA_TRANSFER_MANAGER_ARTIFACT, load_contract_artifact

ABI = [{"type": "constructor", "inputs": []}]


def _write(root, bytecode):
    p = root.joinpath(*DVA_TRANSFER_MANAGER_ARTIFACT)
    p.parent.mkdir(parents=True)
    p.write_text(json.dumps({"abi": ABI, "bytecode": bytecode}), encoding="utf-8")


@pytest.mark.parametrize("bytecode", ["0x6080604052", {"object": "0x6080604052"}])
def test_loads_hardhat_and_foundry_shapes(tmp_path, bytecode):
    _write(tmp_path, bytecode)
    abi, bc = load_contract_artifact(*DVA_TRANSFER_MANAGER_ARTIFACT, root=tmp_path)
    assert abi == ABI
    assert bc == "0x6080604052"


def test_missing_artifact(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_contract_artifact(*DVA_TRANSFER_MANAGER_ARTIFACT, root=tmp_path)


def test_rejects_empty_bytecode(tmp_path):
    _write(tmp_path, "0x")
    with pytest.raises(ValueError, match="bytecode"):
        load_contract_artifact(*DVA_TRANSFER_MANAGER_ARTIFACT, root=tmp_path)
