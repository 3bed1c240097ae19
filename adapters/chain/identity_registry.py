# adapters/chain/identity_registry.py
from typing import Optional

from web3 import Web3
from web3.contract.contract import ContractFunction

from adapters.chain.agent_role import ABI_AGENT_ROLE, AgentRoleAdapter
from core.services.normalize import ZERO_ADDRESS
from core.services.web3_cache import network_errors


ABI_IDENTITY_REGISTRY = ABI_AGENT_ROLE + [
    {
        "name": "isVerified",
        "inputs": [{"internalType": "address", "name": "_userAddress", "type": "address"}],
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "identity",
        "inputs": [{"internalType": "address", "name": "_userAddress", "type": "address"}],
        "outputs": [{"internalType": "contract IIdentity", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "investorCountry",
        "inputs": [{"internalType": "address", "name": "_userAddress", "type": "address"}],
        "outputs": [{"internalType": "uint16", "name": "", "type": "uint16"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "registerIdentity",
        "inputs": [
            {"internalType": "address", "name": "_userAddress", "type": "address"},
            {"internalType": "contract IIdentity", "name": "_identity", "type": "address"},
            {"internalType": "uint16", "name": "_country", "type": "uint16"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class IdentityRegistryAdapter(AgentRoleAdapter):
    """
    Thin wrapper for the token's IdentityRegistry.

    - Views: is_verified, contains, identity_of, country_of
    - Agent only: fn_register_identity
    """

    ABI = ABI_IDENTITY_REGISTRY

    def is_verified(self, user: str) -> bool:
        with network_errors():
            return bool(self.contract.functions.isVerified(Web3.to_checksum_address(user)).call())

    def identity_of(self, user: str) -> Optional[str]:
        with network_errors():
            identity = self.contract.functions.identity(Web3.to_checksum_address(user)).call()
        if not identity or identity == ZERO_ADDRESS:
            return None
        return Web3.to_checksum_address(identity)

    def country_of(self, user: str) -> int:
        with network_errors():
            return int(self.contract.functions.investorCountry(Web3.to_checksum_address(user)).call())

    # ---------------- fn builders (for TxService.send) ----------------

    def fn_register_identity(self, user: str, identity: str, country: int) -> ContractFunction:
        return self.contract.functions.registerIdentity(
            Web3.to_checksum_address(user),
            Web3.to_checksum_address(identity),
            int(country),
        )
