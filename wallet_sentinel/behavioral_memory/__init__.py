"""
Behavioral memory package — per-wallet rolling behavior profiles.
"""

from wallet_sentinel.behavioral_memory.engine import ProfileStore, extract_patterns
from wallet_sentinel.behavioral_memory.models import WalletBehaviorProfile

__all__ = ["ProfileStore", "WalletBehaviorProfile", "extract_patterns"]
