"""Wallet address validation."""

from solders.pubkey import Pubkey

from wallet_sentinel.core.exceptions import InvalidAddress


def validate_wallet(w: str | None) -> str:
    """Return the stripped base58 public key, or raise InvalidAddress."""
    address = (w or "").strip()
    if not address:
        raise InvalidAddress(address, "address must be non-empty")
    try:
        Pubkey.from_string(address)
    except Exception as e:
        raise InvalidAddress(address, str(e)) from e
    return address
