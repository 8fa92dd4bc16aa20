"""
Environment variable loading and validation for Wallet Sentinel.

- SOLANA_NETWORK: mainnet | devnet (default: mainnet)
- SOLANA_RPC_URL: HTTP RPC endpoint (read from .env)
- HELIUS_API_KEY: Helius API key (fallback for RPC URL when SOLANA_RPC_URL is unset)
- SOLANA_WS_URL: WebSocket endpoint; derived from the HTTP endpoint when unset
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is wallet_sentinel/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
HELIUS_DEVNET_URL_TEMPLATE = "https://devnet.helius-rpc.com/?api-key={key}"

# Placeholder shipped in example .env files; treated as "no key"
PLACEHOLDER_API_KEY = "your_openai_key_here"


def load_sentinel_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    load_dotenv(_ENV_PATH, override=False)


def get_solana_network() -> str:
    """
    Return SOLANA_NETWORK from env: devnet | mainnet.
    Default: mainnet.
    """
    load_sentinel_env()
    raw = (os.getenv("SOLANA_NETWORK") or os.getenv("SOLANA_CLUSTER") or "mainnet").strip().lower()
    if raw == "devnet":
        return "devnet"
    return "mainnet"


def get_solana_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL > HELIUS_API_KEY (network-specific) > devnet/mainnet default.
    """
    load_sentinel_env()
    url = (os.getenv("SOLANA_RPC_URL") or "").strip()
    if url:
        return url
    key = (os.getenv("HELIUS_API_KEY") or "").strip()
    network = get_solana_network()
    if key:
        if network == "devnet":
            return HELIUS_DEVNET_URL_TEMPLATE.format(key=key)
        return HELIUS_MAINNET_URL_TEMPLATE.format(key=key)
    return DEVNET_RPC_URL if network == "devnet" else MAINNET_RPC_URL


def http_url_to_ws(http_url: str) -> str:
    """Convert https:// or http:// to wss:// or ws:// for RPC subscriptions."""
    s = http_url.strip()
    if s.startswith("https://"):
        return "wss://" + s[8:]
    if s.startswith("http://"):
        return "ws://" + s[7:]
    return s


def get_solana_ws_url() -> str:
    """SOLANA_WS_URL when set, else the websocket form of the RPC URL."""
    load_sentinel_env()
    url = (os.getenv("SOLANA_WS_URL") or "").strip()
    if url:
        return url
    return http_url_to_ws(get_solana_rpc_url())


def get_enrichment_api_key() -> str | None:
    """ENRICHMENT_API_KEY or OPENAI_API_KEY; None when unset or still the placeholder."""
    load_sentinel_env()
    key = (os.getenv("ENRICHMENT_API_KEY") or os.getenv("OPENAI_API_KEY") or "").strip()
    if not key or key == PLACEHOLDER_API_KEY:
        return None
    return key


def env_float(name: str, default: float) -> float:
    """Read a float env var; fall back to default when unset or malformed."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    """Read an int env var; fall back to default when unset or malformed."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_str(name: str, default: str) -> str:
    raw = (os.getenv(name) or "").strip()
    return raw or default


def mask_url(url: str) -> str:
    """Hide API keys embedded in RPC URLs before logging them."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
