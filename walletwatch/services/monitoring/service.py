"""
Wallet Monitoring Service

Public facade over the registry, normalizer, classifier, event bus and
reaper. Notifications are processed by a single worker in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ...config import settings
from ...core.constants import TOKEN_ACCOUNT_MINT_OFFSET, TOKEN_ACCOUNT_SIZE, TOKEN_PROGRAM_ID
from ...core.errors import (
    AlreadyMonitoredError,
    NormalizationError,
    NotMonitoredError,
    SubscribeError,
    WalletValidationError,
)
from ...logging_config import wallet_context
from ...providers.base import ChainClient
from ..address import normalize_address
from ..wallets import WalletValidator
from .classifier import SignificanceClassifier
from .event_bus import EventBus
from .models import RawNotification, SignificantActivity
from .normalizer import ActivityNormalizer
from .reaper import Reaper
from .registry import SubscriptionRegistry
from .watchset import WatchSet

logger = logging.getLogger(__name__)


# Singleton instance
_monitor_instance: Optional["WalletMonitor"] = None


def get_wallet_monitor() -> "WalletMonitor":
    """Get the singleton WalletMonitor instance."""
    global _monitor_instance
    if _monitor_instance is None:
        from ...providers.solana import SolanaRpcClient

        _monitor_instance = WalletMonitor(SolanaRpcClient())

    return _monitor_instance


def _token_account_owner(entry: Dict[str, Any]) -> Optional[str]:
    data = (entry.get("account") or {}).get("data") or {}
    if not isinstance(data, dict):
        return None
    return ((data.get("parsed") or {}).get("info") or {}).get("owner")


class WalletMonitor:
    """
    Watch a set of wallets and surface their significant activity.

    Usage:
        monitor = WalletMonitor(SolanaRpcClient())
        monitor.event_bus.on_activity(my_callback)
        await monitor.start()
        await monitor.add_wallet("9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin")
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        client: ChainClient,
        *,
        validator: Optional[WalletValidator] = None,
        event_bus: Optional[EventBus] = None,
        significance_threshold: Optional[float] = None,
        inactivity_ttl_seconds: Optional[float] = None,
        reap_interval_seconds: Optional[float] = None,
        holder_scan_limit: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.validator = validator or WalletValidator(client)
        self.event_bus = event_bus or EventBus()
        self.ttl_seconds = (
            settings.inactivity_ttl_seconds if inactivity_ttl_seconds is None else inactivity_ttl_seconds
        )
        self.holder_scan_limit = settings.min_holder_scan_count if holder_scan_limit is None else holder_scan_limit

        self.watch_set = WatchSet()
        self.registry = SubscriptionRegistry(client, sink=self._enqueue, clock=clock)
        self.normalizer = ActivityNormalizer(client, clock=clock)
        self.classifier = SignificanceClassifier(client, threshold=significance_threshold)
        self.reaper = Reaper(
            self.registry,
            self.watch_set,
            ttl_seconds=self.ttl_seconds,
            interval_seconds=reap_interval_seconds,
        )

        self._queue: asyncio.Queue[RawNotification] = asyncio.Queue()
        self._worker_task: asyncio.Task | None = None
        self.stats: Dict[str, int] = {"received": 0, "processed": 0, "dropped": 0, "significant": 0}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the notification worker and the reaper."""
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._run_worker(), name="wallet-monitor-worker")
        self.reaper.start()
        logger.info("Wallet monitoring system initialized with %d wallets", len(self.registry))

    async def stop(self, release_subscriptions: bool = True) -> None:
        """Stop background work; by default also release every subscription."""
        await self.reaper.stop()

        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        if release_subscriptions:
            await self.registry.close()
            self.watch_set.retain([])

        logger.info("Wallet monitoring stopped")

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    # =========================================================================
    # Watch set management
    # =========================================================================

    async def add_wallet(self, address: str) -> bool:
        """Validate and start monitoring ``address``. False if rejected or not subscribed."""
        address = normalize_address(address)

        try:
            await self.validator.check_wallet(address)
        except WalletValidationError as exc:
            logger.info("Invalid wallet address %s: %s", address, exc.reason)
            return False

        async with self.registry.locks.hold(address):
            try:
                await self.registry.subscribe(address)
            except AlreadyMonitoredError:
                # Re-adding a watched wallet renews interest without a second subscription.
                self.registry.touch(address)
                self.watch_set.add(address)
                logger.info("Already monitoring wallet: %s", address)
                return False
            except SubscribeError as exc:
                logger.error("Error adding wallet: %s", exc)
                return False

            self.watch_set.add(address)
            return True

    async def remove_wallet(self, address: str) -> bool:
        """Stop monitoring ``address``. False if it was not monitored."""
        address = normalize_address(address)

        async with self.registry.locks.hold(address):
            self.watch_set.discard(address)
            try:
                await self.registry.unsubscribe(address)
            except NotMonitoredError:
                logger.info("Wallet %s was not being monitored", address)
                return False
            return True

    def get_active_wallets(self) -> List[str]:
        return self.registry.list_active(self.ttl_seconds)

    def get_monitored_wallets(self) -> List[str]:
        return self.registry.list_monitored()

    def get_watched_wallets(self) -> List[str]:
        return self.watch_set.snapshot()

    async def discover_top_holders(self, token_mint: str, limit: Optional[int] = None) -> List[str]:
        """
        Start monitoring the owners of up to ``limit`` token accounts for a mint.

        Returns the owners that were newly monitored, in discovery order.
        Invalid or already-watched owners are skipped.
        """
        limit = self.holder_scan_limit if limit is None else limit
        filters = [
            {"dataSize": TOKEN_ACCOUNT_SIZE},
            {"memcmp": {"offset": TOKEN_ACCOUNT_MINT_OFFSET, "bytes": token_mint}},
        ]

        try:
            accounts = await self.client.get_parsed_program_accounts(TOKEN_PROGRAM_ID, filters)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error fetching token holders for %s: %s", token_mint, exc)
            return []

        holders: List[str] = []
        for entry in accounts[:limit]:
            owner = _token_account_owner(entry)
            if not owner:
                continue
            if await self.add_wallet(owner):
                holders.append(owner)

        logger.info(
            "Holder scan for %s: considered %d accounts, monitoring %d new wallets",
            token_mint,
            min(len(accounts), limit),
            len(holders),
        )
        return holders

    async def reap(self):
        """Run one reaper sweep now."""
        return await self.reaper.run_once()

    # =========================================================================
    # Notification pipeline
    # =========================================================================

    def _enqueue(self, raw: RawNotification) -> None:
        self.stats["received"] += 1
        self._queue.put_nowait(raw)

    async def _run_worker(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                with wallet_context(raw.address, raw.kind.value):
                    await self.process_notification(raw)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error handling wallet activity for %s: %s", raw.address, exc, exc_info=True)
            finally:
                self._queue.task_done()

    async def process_notification(self, raw: RawNotification) -> Optional[SignificantActivity]:
        """Normalize, classify and (if significant) publish one notification."""
        try:
            event = await self.normalizer.normalize(raw)
        except NormalizationError as exc:
            self.stats["dropped"] += 1
            logger.warning("Dropped %s notification: %s", raw.kind.value, exc)
            return None

        self.registry.touch(event.address)
        verdict = await self.classifier.classify(event)
        self.stats["processed"] += 1

        if not verdict.significant:
            logger.debug("Activity for %s not significant: %s", event.address, verdict.reason)
            return None

        activity = SignificantActivity(event=event, verdict=verdict)
        self.stats["significant"] += 1
        logger.info(
            "Significant %s for %s: %.4f SOL (%s)",
            event.kind.value,
            event.address,
            verdict.value,
            verdict.reason,
        )
        await self.event_bus.publish(activity)
        return activity

    async def drain(self) -> None:
        """Wait until every queued notification has been processed."""
        await self._queue.join()

    @property
    def pending_notifications(self) -> int:
        return self._queue.qsize()

    # =========================================================================
    # Introspection
    # =========================================================================

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "monitored": len(self.registry),
            "active": len(self.get_active_wallets()),
            "watched": len(self.watch_set),
            "pending_notifications": self.pending_notifications,
            "orphaned_handles": self.registry.orphaned_handles,
            "subscribers": self.event_bus.subscriber_count,
            "stats": dict(self.stats),
            "reaper": self.reaper.status(),
        }

    async def close(self) -> None:
        await self.stop(release_subscriptions=True)
        self.event_bus.close()
        await self.client.close()
