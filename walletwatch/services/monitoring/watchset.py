"""Caller-facing set of wallets under watch."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from .models import WatchedAddress


class WatchSet:
    """
    Wallets the caller intends to watch.

    This is a view over the registry and may briefly lag it; the registry
    decides what is actually subscribed. Mutations happen under the
    registry's per-address lock.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, WatchedAddress] = {}

    def add(self, address: str) -> WatchedAddress:
        entry = self._entries.get(address)
        if entry is None:
            entry = self._entries[address] = WatchedAddress(address=address)
        return entry

    def discard(self, address: str) -> bool:
        return self._entries.pop(address, None) is not None

    def retain(self, addresses: Iterable[str]) -> List[str]:
        """Keep only ``addresses``; returns what was dropped."""
        keep = set(addresses)
        dropped = [address for address in self._entries if address not in keep]
        for address in dropped:
            del self._entries[address]
        return dropped

    def get(self, address: str) -> Optional[WatchedAddress]:
        return self._entries.get(address)

    def snapshot(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
