from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import pytest

from adapters.external.memory.in_memory_ledger import InMemoryLedger
from config import DEV_MNEMONIC, NetworkConfig
from core.domain.enums.history_enums import DeploymentKind
from core.services.chain_config import ChainConfig
from core.use_cases.transfer_manager_usecase import TransferManagerUseCase

TOKEN_SALT = "TREX-1"

VERIFIED_USERS = ("token-owner", "alice", "bob", "charlie", "david")

IDENTITIES: Dict[str, str] = {
    "token-owner": "0x" + "a1" * 20,
    "alice": "0x" + "a2" * 20,
    "bob": "0x" + "a3" * 20,
    "charlie": "0x" + "a4" * 20,
    "david": "0x" + "a5" * 20,
}


@pytest.fixture
def network() -> NetworkConfig:
    return NetworkConfig(name="testnet", chain_id=9000, url="", mnemonic=DEV_MNEMONIC)


@pytest.fixture
def history_path(tmp_path):
    return tmp_path / "history.json"


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def chain(network, history_path, ledger) -> ChainConfig:
    return ChainConfig.load(network, history_path, verify_chain=False, owner_reader=ledger.owner_of)


@pytest.fixture
def use_case(chain, ledger) -> TransferManagerUseCase:
    return TransferManagerUseCase(chain=chain, ledger=ledger)


@dataclass
class Scenario:
    use_case: TransferManagerUseCase
    ledger: InMemoryLedger
    token: str

    def addr(self, name: str) -> str:
        return self.use_case.chain.resolve_address(name)

    def balance(self, name: str) -> int:
        return self.ledger.balance_of(self.token, self.addr(name))


@pytest.fixture
def scenario(use_case, ledger) -> Scenario:
    """
    One token owned by "token-owner" with "token-agent" as agent, five
    verified holders and 1000 tokens minted to alice. "eve" has no identity.
    """
    chain = use_case.chain
    token = ledger.deploy_token(chain.resolve_address("token-owner"), salt=TOKEN_SALT)
    chain.record_deployment(DeploymentKind.TOKEN, TOKEN_SALT, token)
    ledger.add_token_agent(token, chain.resolve_address("token-agent"))
    for name in VERIFIED_USERS:
        ledger.register_identity(token, chain.resolve_address(name), IDENTITIES[name], 1)
    ledger.mint(token, chain.resolve_address("alice"), 1000)
    return Scenario(use_case=use_case, ledger=ledger, token=token)


@pytest.fixture
def manager(scenario) -> str:
    """Manager created for token-owner, with the default criteria plus charlie."""
    uc = scenario.use_case
    handle = uc.create(user="token-owner", agent="token-agent", country=1)
    uc.set_approval_criteria(
        manager=handle.address,
        agent="token-agent",
        include_recipient_approver=True,
        include_agent_approver=True,
        sequential_approval=False,
        additional_approvers=["charlie"],
    )
    uc.token_approve(manager=handle.address, sender="alice", amount=100000)
    return handle.address
