"""
Subscription Registry

Owns the live chain subscriptions and last-activity timestamps for every
monitored wallet. Lifecycle: created empty, populated via subscribe/touch,
drained via unsubscribe (directly or from the reaper).
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from ...core.errors import AlreadyMonitoredError, NotMonitoredError, SubscribeError
from ...providers.base import ChainClient
from .models import NotificationKind, NotificationSink, RawNotification, SubscriptionHandles

logger = logging.getLogger(__name__)


class AddressLocks:
    """Per-address asyncio locks, reentrant for the task that already holds one.

    The facade and the reaper hold an address across a composite step
    (check, subscribe/unsubscribe, WatchSet update) and the registry methods
    they call take the same lock again.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._owners: Dict[str, Optional[asyncio.Task]] = {}
        self._depth: Dict[str, int] = {}
        # Holders plus waiters per address; the lock is dropped when this reaches zero.
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, address: str) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if address in self._owners and self._owners[address] is task:
            self._depth[address] += 1
            try:
                yield
            finally:
                self._depth[address] -= 1
            return

        lock = self._locks.get(address)
        if lock is None:
            lock = self._locks[address] = asyncio.Lock()
        self._users[address] = self._users.get(address, 0) + 1

        try:
            await lock.acquire()
        except BaseException:
            self._leave(address)
            raise

        self._owners[address] = task
        self._depth[address] = 1
        try:
            yield
        finally:
            self._owners.pop(address, None)
            self._depth.pop(address, None)
            lock.release()
            self._leave(address)

    def _leave(self, address: str) -> None:
        remaining = self._users.get(address, 1) - 1
        if remaining > 0:
            self._users[address] = remaining
            return
        self._users.pop(address, None)
        self._locks.pop(address, None)

    def is_locked(self, address: str) -> bool:
        lock = self._locks.get(address)
        return bool(lock and lock.locked())

    @property
    def tracked(self) -> int:
        return len(self._locks)


class SubscriptionRegistry:
    """
    Source of truth for what is actually subscribed.

    Each monitored address has exactly one account-change subscription and one
    log subscription, plus a LastActivity timestamp taken from ``clock``
    (monotonic seconds). Notifications arriving on either subscription are
    forwarded to the configured sink as RawNotification records.
    """

    def __init__(
        self,
        client: ChainClient,
        *,
        sink: Optional[NotificationSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.locks = AddressLocks()
        self._sink = sink
        self._clock = clock
        self._subscriptions: Dict[str, SubscriptionHandles] = {}
        self._last_activity: Dict[str, float] = {}
        # Identity of the subscription each address currently owns
        self._generations: Dict[str, object] = {}
        # Handles whose release failed: (address, kind, handle); retried by release_orphans()
        self._orphans: List[Tuple[str, NotificationKind, int]] = []

    def set_sink(self, sink: Optional[NotificationSink]) -> None:
        self._sink = sink

    def now(self) -> float:
        return self._clock()

    # =========================================================================
    # Mutations
    # =========================================================================

    async def subscribe(self, address: str) -> SubscriptionHandles:
        """Open both subscriptions for ``address`` or leave nothing behind."""

        async with self.locks.hold(address):
            if address in self._subscriptions:
                raise AlreadyMonitoredError(address)

            generation = object()

            try:
                account_handle = await self.client.on_account_change(
                    address, self._make_callback(address, NotificationKind.ACCOUNT, generation)
                )
            except Exception as exc:
                raise SubscribeError(address, f"Account subscription failed: {exc}") from exc

            try:
                log_handle = await self.client.on_logs(
                    address, self._make_callback(address, NotificationKind.LOGS, generation)
                )
            except BaseException as exc:
                # Roll back the account subscription before reporting, even on cancellation.
                await asyncio.shield(
                    self._release(address, NotificationKind.ACCOUNT, account_handle)
                )
                if isinstance(exc, Exception):
                    raise SubscribeError(address, f"Log subscription failed: {exc}") from exc
                raise

            handles = SubscriptionHandles(account_handle=account_handle, log_handle=log_handle)
            self._subscriptions[address] = handles
            self._generations[address] = generation
            self._last_activity[address] = self._clock()

            logger.info("Started monitoring wallet %s", address)
            return handles

    async def unsubscribe(self, address: str) -> List[NotificationKind]:
        """Drop ``address`` and release both handles.

        Bookkeeping is removed first; a handle that fails to release is kept as
        an orphan for a later retry. Returns the kinds whose release failed.
        """

        async with self.locks.hold(address):
            handles = self._subscriptions.pop(address, None)
            if handles is None:
                raise NotMonitoredError(address)
            self._last_activity.pop(address, None)
            self._generations.pop(address, None)

            # Release is not abortable once started.
            failed = await asyncio.shield(self._release_pair(address, handles))

            if failed:
                logger.warning(
                    "Stopped monitoring wallet %s with unreleased handles: %s",
                    address,
                    [kind.value for kind in failed],
                )
            else:
                logger.info("Stopped monitoring wallet %s", address)
            return failed

    def touch(self, address: str) -> None:
        if address in self._subscriptions:
            self._last_activity[address] = self._clock()

    async def release_orphans(self) -> List[str]:
        """Retry releasing handles that failed earlier; returns addresses still failing."""

        pending, self._orphans = self._orphans, []
        for address, kind, handle in pending:
            await asyncio.shield(self._release(address, kind, handle))
        return sorted({address for address, _, _ in self._orphans})

    async def close(self) -> None:
        """Release every live subscription."""

        for address in self.list_monitored():
            try:
                await self.unsubscribe(address)
            except NotMonitoredError:
                continue

    # =========================================================================
    # Queries
    # =========================================================================

    def is_monitored(self, address: str) -> bool:
        return address in self._subscriptions

    def handles_for(self, address: str) -> Optional[SubscriptionHandles]:
        return self._subscriptions.get(address)

    def last_activity(self, address: str) -> Optional[float]:
        return self._last_activity.get(address)

    def is_active(self, address: str, ttl: float) -> bool:
        last = self._last_activity.get(address)
        if last is None:
            return False
        return self._clock() - last <= ttl

    def list_monitored(self) -> List[str]:
        return list(self._subscriptions)

    def list_active(self, ttl: float) -> List[str]:
        return [address for address in self._subscriptions if self.is_active(address, ttl)]

    @property
    def orphaned_handles(self) -> int:
        return len(self._orphans)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, address: object) -> bool:
        return address in self._subscriptions

    # =========================================================================
    # Internal
    # =========================================================================

    def _make_callback(self, address: str, kind: NotificationKind, generation: object):
        def _on_notification(value, context) -> None:
            # Handles left over from an earlier subscription of the same address stay silent.
            if self._sink is None or self._generations.get(address) is not generation:
                return
            self._sink(
                RawNotification(
                    address=address,
                    kind=kind,
                    value=value or {},
                    slot=(context or {}).get("slot"),
                    received_at=self._clock(),
                )
            )

        return _on_notification

    async def _release_pair(self, address: str, handles: SubscriptionHandles) -> List[NotificationKind]:
        failed: List[NotificationKind] = []
        if not await self._release(address, NotificationKind.ACCOUNT, handles.account_handle):
            failed.append(NotificationKind.ACCOUNT)
        if not await self._release(address, NotificationKind.LOGS, handles.log_handle):
            failed.append(NotificationKind.LOGS)
        return failed

    async def _release(self, address: str, kind: NotificationKind, handle: int) -> bool:
        remove: Callable[[int], Awaitable[None]]
        if kind is NotificationKind.ACCOUNT:
            remove = self.client.remove_account_change_listener
        else:
            remove = self.client.remove_on_logs_listener

        try:
            await remove(handle)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Failed to release %s subscription %s for wallet %s: %s",
                kind.value,
                handle,
                address,
                exc,
            )
            self._orphans.append((address, kind, handle))
            return False
        return True
