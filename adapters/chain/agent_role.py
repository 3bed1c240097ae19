# adapters/chain/agent_role.py
from __future__ import annotations

from typing import Optional

from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from core.services.normalize import ZERO_ADDRESS
from core.services.web3_cache import network_errors

ABI_OWNABLE = [
    {
        "name": "owner",
        "inputs": [],
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ABI_AGENT_ROLE = ABI_OWNABLE + [
    {
        "name": "isAgent",
        "inputs": [{"internalType": "address", "name": "_agent", "type": "address"}],
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "addAgent",
        "inputs": [{"internalType": "address", "name": "_agent", "type": "address"}],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "name": "removeAgent",
        "inputs": [{"internalType": "address", "name": "_agent", "type": "address"}],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def read_owner(w3: Web3, address: str) -> Optional[str]:
    """
    owner() of any Ownable contract. None when the contract has no owner()
    (or no code at all); transport failures raise NetworkError.
    """
    c = w3.eth.contract(address=Web3.to_checksum_address(address), abi=ABI_OWNABLE)
    with network_errors():
        try:
            owner = c.functions.owner().call()
        except (BadFunctionCallOutput, ContractLogicError):
            return None
    if not owner or owner == ZERO_ADDRESS:
        return None
    return Web3.to_checksum_address(owner)


class AgentRoleAdapter:
    """
    Thin wrapper for AgentRole-based contracts (token, identity registry, ...).
    Subclasses extend `ABI` with their own entries.
    """

    ABI = ABI_AGENT_ROLE

    def __init__(self, w3: Web3, address: str):
        if not address:
            raise RuntimeError(f"{type(self).__name__}: address not configured")
        self.w3: Web3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=self.ABI)

    def owner(self) -> Optional[str]:
        return read_owner(self.w3, self.address)

    def is_agent(self, agent: str) -> bool:
        with network_errors():
            return bool(self.contract.functions.isAgent(Web3.to_checksum_address(agent)).call())

    # ---------------- fn builders (for TxService.send) ----------------

    def fn_add_agent(self, agent: str) -> ContractFunction:
        return self.contract.functions.addAgent(Web3.to_checksum_address(agent))

    def fn_remove_agent(self, agent: str) -> ContractFunction:
        return self.contract.functions.removeAgent(Web3.to_checksum_address(agent))
