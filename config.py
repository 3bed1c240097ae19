import os
from dotenv import load_dotenv
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Tuple

load_dotenv()

DEV_MNEMONIC = "test test test test test test test test test test test junk"

# index -> names, in the order names are reported by WalletResolver.names_of()
DEFAULT_WALLET_ALIASES: Tuple[Tuple[int, Tuple[str, ...]], ...] = (
    (0, ("admin",)),
    (1, ("foo-university", "claim-issuer-1")),
    (2, ("bar-government", "claim-issuer-2")),
    (3, ("super-bank", "token-owner")),
    (4, ("token-agent",)),
    (5, ("alice",)),
    (6, ("bob",)),
    (7, ("charlie",)),
    (8, ("david",)),
    (9, ("eve",)),
)


def _parse_csv(value: str, *, lower: bool = False) -> List[str]:
    if not value:
        return []
    items = [x.strip() for x in value.split(",")]
    items = [x for x in items if x]
    if lower:
        items = [x.lower() for x in items]
    return items


def _parse_aliases(value: str) -> List[Tuple[str, int]]:
    """
    Parses "name:index,name:index" pairs from WALLET_ALIASES.
    """
    out: List[Tuple[str, int]] = []
    for item in _parse_csv(value):
        name, sep, idx = item.partition(":")
        if not sep or not idx.strip().isdigit():
            raise ValueError(f"Invalid WALLET_ALIASES entry: {item!r} (expected name:index)")
        out.append((name.strip(), int(idx)))
    return out


@dataclass
class Settings:
    # network
    NETWORK_NAME: str
    CHAIN_ID: int
    RPC_URL: str
    RPC_TIMEOUT_SEC: float

    # wallets
    MNEMONIC: str
    HD_PATH: str
    WALLET_COUNT: int
    WALLET_ALIASES: List[Tuple[str, int]] = field(default_factory=list)

    # deployment history
    HISTORY_PATH: str = ""

    # tx
    CONFIRMS: int = 1

    # confidential computation relayer (encrypt / decrypt handles)
    RELAYER_URL: str = ""

    # generic
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"


@dataclass
class NetworkConfig:
    """
    Connection + wallet derivation parameters of one network.
    """

    name: str
    chain_id: int
    url: str
    mnemonic: str = DEV_MNEMONIC
    hd_path: str = "m/44'/60'/0'/0"
    wallet_count: int = 10
    aliases: Dict[int, Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_WALLET_ALIASES))
    timeout_sec: float = 30.0

    @classmethod
    def from_settings(cls, s: "Settings | None" = None) -> "NetworkConfig":
        s = s or get_settings()
        aliases: Dict[int, Tuple[str, ...]] = dict(DEFAULT_WALLET_ALIASES)
        for name, idx in s.WALLET_ALIASES:
            aliases[idx] = aliases.get(idx, ()) + (name,)
        return cls(
            name=s.NETWORK_NAME,
            chain_id=int(s.CHAIN_ID),
            url=s.RPC_URL,
            mnemonic=s.MNEMONIC,
            hd_path=s.HD_PATH,
            wallet_count=int(s.WALLET_COUNT),
            aliases=aliases,
            timeout_sec=float(s.RPC_TIMEOUT_SEC),
        )


def default_history_path(network_name: str) -> str:
    return f".fhe-erc3643.{network_name}.history.json"


@lru_cache()
def get_settings() -> Settings:
    network = os.getenv("NETWORK_NAME", "fhevm")

    return Settings(
        # Network
        NETWORK_NAME=network,
        CHAIN_ID=int(os.getenv("CHAIN_ID", "9000")),
        RPC_URL=os.getenv("RPC_URL", "http://localhost:8545"),
        RPC_TIMEOUT_SEC=float(os.getenv("RPC_TIMEOUT_SEC", "30")),

        # Wallets
        MNEMONIC=os.getenv("MNEMONIC", DEV_MNEMONIC),
        HD_PATH=os.getenv("HD_PATH", "m/44'/60'/0'/0"),
        WALLET_COUNT=int(os.getenv("WALLET_COUNT", "10")),
        WALLET_ALIASES=_parse_aliases(os.getenv("WALLET_ALIASES", "")),

        # History
        HISTORY_PATH=os.getenv("HISTORY_PATH", "") or default_history_path(network),

        CONFIRMS=int(os.getenv("CONFIRMS", "1")),
        RELAYER_URL=os.getenv("RELAYER_URL", "http://localhost:7077"),

        ENV=os.getenv("ENV", "dev"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
