"""
Wallet Sentinel — real-time compromise monitoring for Solana wallets.

Watches wallet addresses over RPC subscriptions, scores account and
transaction events with explainable heuristics, optionally enriches the
result with an AI analyst, and emits de-duplicated alerts to a sink.
"""

__version__ = "0.1.0"
