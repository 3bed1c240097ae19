from __future__ import annotations

import dataclasses
import json

import pytest

from adapters.external.memory.in_memory_ledger import InMemoryLedger
from config import NetworkConfig, get_settings
from core.domain.entities.wallet_entity import SigningWallet
from core.domain.enums.history_enums import DeploymentKind
from core.services.chain_config import ChainConfig
from core.services.exceptions import CorruptHistoryError, InputValidationError, NetworkError, UnresolvableOwnerError

TOKEN = "0x" + "10" * 20
MANAGER = "0x" + "de" * 20


def _load(network, path, **kwargs):
    return ChainConfig.load(network, path, verify_chain=False, **kwargs)


def test_missing_history_starts_empty_and_is_created_on_first_record(network, history_path):
    chain = _load(network, history_path)
    assert not history_path.exists()
    assert chain.lookup_deployment(DeploymentKind.TOKEN, "TREX-1") is None

    assert chain.record_deployment(DeploymentKind.TOKEN, "TREX-1", TOKEN) is True
    assert history_path.exists()

    data = json.loads(history_path.read_text())
    assert data["chain"] == {"id": 9000, "name": "testnet", "url": ""}
    assert data["tokens"] == {"TREX-1": chain.lookup_deployment(DeploymentKind.TOKEN, "TREX-1")}


def test_history_survives_reload(network, history_path):
    chain = _load(network, history_path)
    chain.record_deployment(DeploymentKind.TOKEN, "TREX-1", TOKEN)
    chain.record_deployment(DeploymentKind.IDENTITY, None, MANAGER)

    reloaded = _load(network, history_path)
    assert reloaded.to_json() == chain.to_json()
    assert reloaded.lookup_deployment(DeploymentKind.IDENTITY) == chain.lookup_deployment(DeploymentKind.IDENTITY)


def test_record_is_last_write_wins_and_idempotent(network, history_path):
    chain = _load(network, history_path)
    assert chain.record_deployment(DeploymentKind.TOKEN, "TREX-1", TOKEN)
    assert not chain.record_deployment(DeploymentKind.TOKEN, "TREX-1", TOKEN)
    assert chain.record_deployment(DeploymentKind.TOKEN, "TREX-1", MANAGER)
    assert chain.history_entries(DeploymentKind.TOKEN) == {"TREX-1": chain.resolve_address(MANAGER)}

    with pytest.raises(InputValidationError):
        chain.record_deployment(DeploymentKind.TOKEN, "", TOKEN)


@pytest.mark.parametrize("content", ["", "{not json", "[1, 2]", '{"tokens": 3}'])
def test_corrupt_history_is_reported(network, history_path, content):
    history_path.write_text(content)
    with pytest.raises(CorruptHistoryError):
        _load(network, history_path)


def test_history_of_another_chain_is_ignored(network, history_path):
    history_path.write_text(json.dumps({"chain": {"id": 1, "name": "mainnet"}, "tokens": {"X": TOKEN}}))
    chain = _load(network, history_path)
    assert chain.history_entries(DeploymentKind.TOKEN) == {}


def test_in_memory_history(network):
    chain = _load(network, None)
    chain.record_deployment(DeploymentKind.TOKEN, "TREX-1", TOKEN)
    assert chain.history_location == ":memory:"
    assert chain.lookup_deployment(DeploymentKind.TOKEN, "TREX-1")


def test_verify_chain_needs_a_connection(network, history_path):
    with pytest.raises(NetworkError):
        ChainConfig.load(network, history_path)


def test_find_transfer_manager_by_address_or_owner(chain):
    owner = chain.resolve_address("alice")
    chain.record_deployment(DeploymentKind.TRANSFER_MANAGER, owner, MANAGER)

    assert chain.find_transfer_manager("alice") == chain.resolve_address(MANAGER)
    assert chain.find_transfer_manager(owner) == chain.resolve_address(MANAGER)
    assert chain.find_transfer_manager(MANAGER) == chain.resolve_address(MANAGER)
    assert chain.find_transfer_manager("bob") is None


def test_owner_wallet_comes_from_the_live_owner(network, history_path):
    ledger = InMemoryLedger()
    chain = _load(network, history_path, owner_reader=ledger.owner_of)
    token = ledger.deploy_token(chain.resolve_address("token-owner"))

    owner = chain.get_owner_wallet(token)
    assert isinstance(owner, SigningWallet)
    assert owner.index == 3
    assert chain.resolve_signing("auto", auto_owner_of=token).address == owner.address

    foreign = ledger.deploy_token("0x" + "99" * 20)
    with pytest.raises(UnresolvableOwnerError):
        chain.get_owner_wallet(foreign)
    with pytest.raises(UnresolvableOwnerError):
        chain.get_owner_wallet(TOKEN)


def test_network_config_from_settings_merges_aliases():
    s = dataclasses.replace(get_settings(), WALLET_ALIASES=[("treasury", 9)], RPC_URL="")
    cfg = NetworkConfig.from_settings(s)
    assert cfg.aliases[9] == ("eve", "treasury")
    assert cfg.url == ""
