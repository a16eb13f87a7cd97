from __future__ import annotations

import os
import pathlib
import re

from .errors import ConfigError, IntentInputError

PRIMARY_NETWORK = "mainnet-beta"
NETWORKS = ("mainnet-beta", "devnet", "testnet")
COMMITMENTS = ("processed", "confirmed", "finalized")
DEFAULT_COMMITMENT = "confirmed"

CLUSTER_URLS = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
}
EXPLORER_BASE_URL = "https://explorer.solana.com"
JUPITER_PUBLIC_BASE_URL = "https://api.jup.ag"
JUPITER_LITE_BASE_URL = "https://lite-api.jup.ag"

DEFAULT_RPC_TIMEOUT_SEC = 20
DEFAULT_TOKEN_INDEX_TIMEOUT_SEC = 5


def agent_home() -> pathlib.Path:
    return pathlib.Path(os.environ.get("SOLFLOW_AGENT_HOME", str(pathlib.Path.home() / ".solflow-agent")))


def _env_str(name: str) -> str | None:
    raw = (os.environ.get(name) or "").strip()
    return raw or None


def _env_timeout_sec(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    if not re.fullmatch(r"[0-9]+", raw):
        raise ConfigError(f"{name} must be an integer number of seconds.")
    value = int(raw)
    if value < 1:
        raise ConfigError(f"{name} must be >= 1.")
    return value


def rpc_timeout_sec() -> int:
    return _env_timeout_sec("SOLFLOW_RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC)


def token_index_timeout_sec() -> int:
    return _env_timeout_sec("SOLFLOW_TOKEN_INDEX_TIMEOUT_SEC", DEFAULT_TOKEN_INDEX_TIMEOUT_SEC)


def default_network() -> str:
    configured = _env_str("SOLFLOW_NETWORK")
    if configured is None:
        return "devnet"
    if configured == "mainnet":
        return PRIMARY_NETWORK
    if configured not in NETWORKS:
        raise ConfigError(f"SOLFLOW_NETWORK must be one of: {', '.join(NETWORKS)}.")
    return configured


def parse_network(value: object = None) -> str:
    """Explicit network, else ``SOLFLOW_NETWORK``, else devnet. Unknown names are rejected."""
    if value is None or value == "":
        return default_network()
    if value in NETWORKS:
        return str(value)
    if value == "mainnet":
        return PRIMARY_NETWORK
    raise IntentInputError(
        f"network must be one of: {', '.join(NETWORKS)}.",
        details={"network": value},
    )


def parse_commitment(value: object = None) -> str:
    if value in COMMITMENTS:
        return str(value)
    configured = _env_str("SOLANA_COMMITMENT")
    if configured in COMMITMENTS:
        return str(configured)
    return DEFAULT_COMMITMENT


def parse_finality(value: object = None) -> str:
    return "finalized" if value == "finalized" else "confirmed"


def rpc_endpoint(network: str) -> str:
    return _env_str("SOLANA_RPC_URL") or CLUSTER_URLS[parse_network(network)]


def jupiter_api_key() -> str | None:
    return _env_str("JUPITER_API_KEY")


def jupiter_base_url_configured() -> bool:
    return _env_str("JUPITER_API_BASE_URL") is not None


def jupiter_api_base_url() -> str:
    configured = _env_str("JUPITER_API_BASE_URL")
    if configured:
        return configured.rstrip("/")
    return JUPITER_PUBLIC_BASE_URL if jupiter_api_key() else JUPITER_LITE_BASE_URL


def builders_factory_path() -> str | None:
    return _env_str("SOLFLOW_BUILDERS")


def explorer_tx_url(signature: str, network: str) -> str:
    return f"{EXPLORER_BASE_URL}/tx/{signature}?cluster={parse_network(network)}"


def explorer_address_url(address: str, network: str) -> str:
    return f"{EXPLORER_BASE_URL}/address/{address}?cluster={parse_network(network)}"
