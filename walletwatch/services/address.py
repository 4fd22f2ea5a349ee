"""Helpers for validating Solana address strings before touching the network."""

from __future__ import annotations

from functools import lru_cache

_BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")


@lru_cache(maxsize=1024)
def is_valid_solana_address(address: str) -> bool:
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    return all(ch in _BASE58_ALPHABET for ch in address)


def normalize_address(address: str | None) -> str:
    """Strip surrounding whitespace; base58 is case-sensitive so nothing else changes."""

    return (address or "").strip()
