"""
Cluster identity and endpoint resolution.

The active cluster is part of every cache key, so switching networks
never serves data read from another one.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional
from urllib.parse import urlparse


class Cluster(str, Enum):
    LOCALNET = "localnet"
    DEVNET = "devnet"
    TESTNET = "testnet"
    MAINNET_BETA = "mainnet-beta"


DEFAULT_CLUSTER = Cluster.DEVNET

DEFAULT_ENDPOINTS = {
    Cluster.LOCALNET: "http://127.0.0.1:8899",
    Cluster.DEVNET: "https://api.devnet.solana.com",
    Cluster.TESTNET: "https://api.testnet.solana.com",
    Cluster.MAINNET_BETA: "https://api.mainnet-beta.solana.com",
}

_ALIASES = {
    "mainnet": Cluster.MAINNET_BETA,
    "local": Cluster.LOCALNET,
}

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0")


def parse_cluster(value: Optional[str]) -> Optional[Cluster]:
    """Parse a cluster name or alias; None when unrecognised."""
    if value is None:
        return None
    normalized = value.strip().lower()
    try:
        return Cluster(normalized)
    except ValueError:
        return _ALIASES.get(normalized)


def infer_cluster_from_rpc_url(rpc_url: str) -> Optional[Cluster]:
    hostname = (urlparse(rpc_url).hostname or "").lower()
    if hostname in _LOCAL_HOSTS:
        return Cluster.LOCALNET

    lower = rpc_url.lower()
    if "devnet" in lower:
        return Cluster.DEVNET
    if "testnet" in lower:
        return Cluster.TESTNET
    if "mainnet" in lower:
        return Cluster.MAINNET_BETA
    return None


def resolve_cluster(
    cluster: Optional[str] = None,
    rpc_url: Optional[str] = None,
) -> Optional[Cluster]:
    """Explicit cluster name wins; otherwise infer from the RPC URL."""
    explicit = parse_cluster(cluster)
    if explicit is not None:
        return explicit
    if not rpc_url:
        return None
    return infer_cluster_from_rpc_url(rpc_url)


class StaticNetworkSelector:
    """NetworkSelector bound to one cluster and endpoint for its lifetime."""

    def __init__(self, cluster: Cluster, endpoint: Optional[str] = None) -> None:
        self._cluster = cluster
        self.endpoint = endpoint or DEFAULT_ENDPOINTS[cluster]

    @property
    def cluster(self) -> str:
        return self._cluster.value

    def __repr__(self) -> str:
        return f"StaticNetworkSelector({self._cluster.value!r}, {self.endpoint!r})"
