"""
Main entrypoint: run the wallet monitor until SIGINT/SIGTERM.

Env: WALLETS (address[:user], comma separated), SOLANA_RPC_URL / HELIUS_API_KEY,
SOLANA_WS_URL, ENRICHMENT_API_KEY, SWEEP_INTERVAL_SEC, LOG_LEVEL, LOG_FORMAT, etc.
"""

import sys

# Configure structured JSON logging before other imports that may log
from wallet_sentinel.sentinel_logging import get_logger

logger = get_logger("main")


def main() -> int:
    from wallet_sentinel.agent_worker.runtime import main as run_monitor

    logger.info("main_starting")
    return run_monitor()


if __name__ == "__main__":
    sys.exit(main())
