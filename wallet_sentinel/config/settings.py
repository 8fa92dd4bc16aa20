"""
Application settings and environment configuration.

Loads configuration from environment variables and the project .env file,
validates numeric values (falling back to defaults), and exposes one typed,
immutable Settings object for the gateway, scorer, enrichment adapter and
coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from wallet_sentinel.config.env import (
    env_float,
    env_int,
    env_str,
    get_enrichment_api_key,
    get_solana_network,
    get_solana_rpc_url,
    get_solana_ws_url,
    load_sentinel_env,
)

DEFAULT_COMMITMENT = "confirmed"
DEFAULT_RPC_REQUEST_TIMEOUT_SEC = 15.0
DEFAULT_TX_FETCH_TIMEOUT_SEC = 10.0
DEFAULT_SUBSCRIBE_TIMEOUT_SEC = 10.0
DEFAULT_RPC_RATE_PER_SEC = 8.0
DEFAULT_SWEEP_INTERVAL_SEC = 30.0
DEFAULT_OBSERVATION_WINDOW_SEC = 300.0
DEFAULT_MIN_RATE_WINDOW_SEC = 60.0
DEFAULT_SWEEP_CONCURRENCY = 16
DEFAULT_ENRICHMENT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_ENRICHMENT_MODEL = "gpt-4"
DEFAULT_ENRICHMENT_TIMEOUT_SEC = 10.0
DEFAULT_ENRICHMENT_MAX_CONCURRENCY = 4
DEFAULT_ENRICHMENT_RATE_PER_SEC = 2.0
DEFAULT_DEDUP_TTL_SEC = 3600.0


@dataclass(frozen=True)
class Settings:
    """Typed configuration; build with Settings.from_env() or the cached get_settings()."""

    solana_network: str = "mainnet"
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    solana_ws_url: str = "wss://api.mainnet-beta.solana.com"
    commitment: str = DEFAULT_COMMITMENT
    rpc_request_timeout_sec: float = DEFAULT_RPC_REQUEST_TIMEOUT_SEC
    tx_fetch_timeout_sec: float = DEFAULT_TX_FETCH_TIMEOUT_SEC
    subscribe_timeout_sec: float = DEFAULT_SUBSCRIBE_TIMEOUT_SEC
    rpc_rate_per_sec: float = DEFAULT_RPC_RATE_PER_SEC
    sweep_interval_sec: float = DEFAULT_SWEEP_INTERVAL_SEC
    observation_window_sec: float = DEFAULT_OBSERVATION_WINDOW_SEC
    min_rate_window_sec: float = DEFAULT_MIN_RATE_WINDOW_SEC
    sweep_concurrency: int = DEFAULT_SWEEP_CONCURRENCY
    enrichment_api_key: str | None = None
    enrichment_base_url: str = DEFAULT_ENRICHMENT_BASE_URL
    enrichment_model: str = DEFAULT_ENRICHMENT_MODEL
    enrichment_timeout_sec: float = DEFAULT_ENRICHMENT_TIMEOUT_SEC
    enrichment_max_concurrency: int = DEFAULT_ENRICHMENT_MAX_CONCURRENCY
    enrichment_rate_per_sec: float = DEFAULT_ENRICHMENT_RATE_PER_SEC
    dedup_ttl_sec: float = DEFAULT_DEDUP_TTL_SEC
    wallets: tuple[str, ...] = ()

    @property
    def enrichment_enabled(self) -> bool:
        return bool(self.enrichment_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Read every setting from the environment (after loading .env)."""
        load_sentinel_env()
        wallets_raw = env_str("WALLETS", "")
        return cls(
            solana_network=get_solana_network(),
            solana_rpc_url=get_solana_rpc_url(),
            solana_ws_url=get_solana_ws_url(),
            commitment=env_str("SOLANA_COMMITMENT", DEFAULT_COMMITMENT),
            rpc_request_timeout_sec=env_float("RPC_REQUEST_TIMEOUT_SEC", DEFAULT_RPC_REQUEST_TIMEOUT_SEC),
            tx_fetch_timeout_sec=env_float("TX_FETCH_TIMEOUT_SEC", DEFAULT_TX_FETCH_TIMEOUT_SEC),
            subscribe_timeout_sec=env_float("SUBSCRIBE_TIMEOUT_SEC", DEFAULT_SUBSCRIBE_TIMEOUT_SEC),
            rpc_rate_per_sec=env_float("RPC_RATE_PER_SEC", DEFAULT_RPC_RATE_PER_SEC),
            sweep_interval_sec=max(1.0, env_float("SWEEP_INTERVAL_SEC", DEFAULT_SWEEP_INTERVAL_SEC)),
            observation_window_sec=max(1.0, env_float("OBSERVATION_WINDOW_SEC", DEFAULT_OBSERVATION_WINDOW_SEC)),
            min_rate_window_sec=max(1.0, env_float("MIN_RATE_WINDOW_SEC", DEFAULT_MIN_RATE_WINDOW_SEC)),
            sweep_concurrency=max(1, env_int("SWEEP_CONCURRENCY", DEFAULT_SWEEP_CONCURRENCY)),
            enrichment_api_key=get_enrichment_api_key(),
            enrichment_base_url=env_str("ENRICHMENT_BASE_URL", DEFAULT_ENRICHMENT_BASE_URL).rstrip("/"),
            enrichment_model=env_str("ENRICHMENT_MODEL", DEFAULT_ENRICHMENT_MODEL),
            enrichment_timeout_sec=env_float("ENRICHMENT_TIMEOUT_SEC", DEFAULT_ENRICHMENT_TIMEOUT_SEC),
            enrichment_max_concurrency=max(1, env_int("ENRICHMENT_MAX_CONCURRENCY", DEFAULT_ENRICHMENT_MAX_CONCURRENCY)),
            enrichment_rate_per_sec=env_float("ENRICHMENT_RATE_PER_SEC", DEFAULT_ENRICHMENT_RATE_PER_SEC),
            dedup_ttl_sec=max(1.0, env_float("DEDUP_TTL_SEC", DEFAULT_DEDUP_TTL_SEC)),
            wallets=tuple(w.strip() for w in wallets_raw.split(",") if w.strip()),
        )


@lru_cache
def get_settings() -> Settings:
    """
    Return the current application settings.

    Cached after the first call; tests should use Settings.from_env() or
    get_settings.cache_clear().
    """
    return Settings.from_env()
