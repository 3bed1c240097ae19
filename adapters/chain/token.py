# adapters/chain/token.py
from web3 import Web3
from web3.contract.contract import ContractFunction

from adapters.chain.agent_role import ABI_AGENT_ROLE, AgentRoleAdapter
from core.services.web3_cache import network_errors


ABI_CONFIDENTIAL_TOKEN = ABI_AGENT_ROLE + [
    # views
    {
        "name": "identityRegistry",
        "inputs": [],
        "outputs": [{"internalType": "contract IIdentityRegistry", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "compliance",
        "inputs": [],
        "outputs": [{"internalType": "contract IModularCompliance", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    # confidential balances: uint256 handles, decrypted off-chain
    {
        "name": "balanceOf",
        "inputs": [{"internalType": "address", "name": "_userAddress", "type": "address"}],
        "outputs": [{"internalType": "euint64", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "name": "allowance",
        "inputs": [
            {"internalType": "address", "name": "_owner", "type": "address"},
            {"internalType": "address", "name": "_spender", "type": "address"},
        ],
        "outputs": [{"internalType": "euint64", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    # writes
    {
        "name": "approve",
        "inputs": [
            {"internalType": "address", "name": "_spender", "type": "address"},
            {"internalType": "einput", "name": "_encAmount", "type": "bytes32"},
            {"internalType": "bytes", "name": "_inputProof", "type": "bytes"},
        ],
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class ConfidentialTokenAdapter(AgentRoleAdapter):
    """
    Thin wrapper for the confidential ERC-3643 token.

    Balance / allowance reads return opaque handles; turning them into clear
    values is the cipher's job.
    """

    ABI = ABI_CONFIDENTIAL_TOKEN

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #

    def identity_registry(self) -> str:
        with network_errors():
            return Web3.to_checksum_address(self.contract.functions.identityRegistry().call())

    def balance_handle(self, user: str) -> int:
        with network_errors():
            return int(self.contract.functions.balanceOf(Web3.to_checksum_address(user)).call())

    def allowance_handle(self, owner: str, spender: str) -> int:
        with network_errors():
            return int(
                self.contract.functions.allowance(
                    Web3.to_checksum_address(owner),
                    Web3.to_checksum_address(spender),
                ).call()
            )

    # ---------------- fn builders (for TxService.send) ----------------

    def fn_approve(self, spender: str, handle: int, proof: bytes) -> ContractFunction:
        return self.contract.functions.approve(
            Web3.to_checksum_address(spender),
            int(handle).to_bytes(32, "big"),
            proof,
        )
