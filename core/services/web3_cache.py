# core/services/web3_cache.py

from __future__ import annotations

from contextlib import contextmanager
from time import time
from typing import Dict, Iterator, Tuple

import requests
from web3 import Web3
from web3.exceptions import ProviderConnectionError, TimeExhausted
from web3.providers.rpc import HTTPProvider

from core.services.exceptions import NetworkError

_W3_CACHE: Dict[Tuple[str, float], Tuple[float, Web3]] = {}
_W3_TTL_SEC = 10 * 60  # 10 minutes


def get_web3(rpc_url: str, *, timeout: float = 30.0) -> Web3:
    """
    Cache Web3 instances per rpc_url to avoid rebuilding HTTPProvider each command.
    Building the provider does not open a connection.
    """
    url = (rpc_url or "").strip()
    if not url:
        raise ValueError("rpc_url is required")

    now = time()
    key = (url, float(timeout))
    hit = _W3_CACHE.get(key)
    if hit and (now - hit[0]) < _W3_TTL_SEC:
        return hit[1]

    w3 = Web3(HTTPProvider(url, request_kwargs={"timeout": timeout}))
    _W3_CACHE[key] = (now, w3)
    return w3


@contextmanager
def network_errors(url: str = "") -> Iterator[None]:
    """
    Re-raises transport failures as NetworkError. Nothing is retried.
    """
    try:
        yield
    except (requests.exceptions.RequestException, ProviderConnectionError, TimeExhausted, OSError) as exc:
        raise NetworkError(f"RPC unreachable{f' ({url})' if url else ''}: {exc}", url=url or None) from exc


def check_chain_id(w3: Web3, expected: int, *, url: str = "") -> int:
    with network_errors(url):
        actual = int(w3.eth.chain_id)
    if actual != int(expected):
        raise NetworkError(
            f"Wrong chain id at {url or 'rpc'}: expected {expected}, got {actual}",
            expected=int(expected),
            actual=actual,
        )
    return actual
