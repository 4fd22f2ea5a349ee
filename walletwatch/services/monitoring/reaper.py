from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from ...config import settings
from ...core.errors import NotMonitoredError, ReapPartialFailure
from ...logging_config import wallet_context
from .models import ReapReport
from .registry import SubscriptionRegistry
from .watchset import WatchSet


@dataclass(slots=True)
class ReaperState:
    run_count: int = 0
    last_started: Optional[datetime] = None
    last_completed: Optional[datetime] = None
    last_error: Optional[str] = None
    next_run: Optional[datetime] = None
    last_report: Optional[ReapReport] = None


class Reaper:
    """Periodically evicts wallets that have been quiet for longer than the TTL."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        watch_set: WatchSet,
        *,
        ttl_seconds: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.watch_set = watch_set
        self.ttl_seconds = settings.inactivity_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.interval_seconds = settings.reap_interval_seconds if interval_seconds is None else interval_seconds
        self.logger = logger or logging.getLogger("walletwatch.reaper")
        self.state = ReaperState()
        self._task: asyncio.Task | None = None
        self._running = False

    # ---------------------------
    # Lifecycle
    # ---------------------------
    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self.state.next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
        self._task = asyncio.create_task(self._run_loop(), name="wallet-reaper")
        self.logger.info(
            "Reaper started; interval=%ss ttl=%ss", self.interval_seconds, self.ttl_seconds
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.state.next_run = None
        self.logger.info("Reaper stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                try:
                    await self.run_once()
                except Exception as exc:  # noqa: BLE001
                    self.state.last_error = str(exc)
                    self.logger.error("Reaper sweep crashed: %s", exc, exc_info=True)
                self.state.next_run = datetime.now(timezone.utc) + timedelta(seconds=self.interval_seconds)
        except asyncio.CancelledError:
            return

    # ---------------------------
    # Sweep
    # ---------------------------
    async def run_once(self) -> ReapReport:
        """Evict stale wallets and shrink the WatchSet to what is still subscribed."""

        report = ReapReport()
        self.state.last_started = report.started_at

        # Handles that failed to release on an earlier sweep
        for address in await self.registry.release_orphans():
            self._record_failure(report, address, RuntimeError("handle release still failing"))

        active = set(self.registry.list_active(self.ttl_seconds))
        stale = [address for address in self.registry.list_monitored() if address not in active]

        for address in stale:
            with wallet_context(address, "reap"):
                await self._reap_address(address, report)

        for address in self.watch_set.snapshot():
            if self.registry.is_monitored(address):
                continue
            async with self.registry.locks.hold(address):
                if not self.registry.is_monitored(address):
                    self.watch_set.discard(address)

        report.remaining = len(self.registry)
        self.state.run_count += 1
        self.state.last_completed = datetime.now(timezone.utc)
        self.state.last_report = report
        self.state.last_error = None if not report.failed else f"{len(report.failed)} release failures"

        self.logger.info(
            "Cleanup completed. Reaped %d, monitoring %d active wallets",
            len(report.reaped),
            report.remaining,
        )
        return report

    async def _reap_address(self, address: str, report: ReapReport) -> None:
        async with self.registry.locks.hold(address):
            if not self.registry.is_monitored(address):
                return
            # Activity or a re-add may have landed after the stale list was taken.
            if self.registry.is_active(address, self.ttl_seconds):
                report.refreshed.append(address)
                return

            try:
                unreleased = await self.registry.unsubscribe(address)
            except NotMonitoredError:
                return
            except Exception as exc:  # noqa: BLE001
                self._record_failure(report, address, exc)
                return

            self.watch_set.discard(address)
            report.reaped.append(address)
            if unreleased:
                self._record_failure(
                    report,
                    address,
                    RuntimeError(f"unreleased {', '.join(kind.value for kind in unreleased)} handle"),
                )

    def _record_failure(self, report: ReapReport, address: str, cause: BaseException) -> None:
        failure = ReapPartialFailure(address, cause)
        if address not in report.failed:
            report.failed.append(address)
        self.logger.error("%s", failure)

    # ---------------------------
    # Introspection
    # ---------------------------
    def status(self) -> Dict[str, Any]:
        last_report = self.state.last_report
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "ttl_seconds": self.ttl_seconds,
            "run_count": self.state.run_count,
            "last_started": _iso(self.state.last_started),
            "last_completed": _iso(self.state.last_completed),
            "last_error": self.state.last_error,
            "next_run": _iso(self.state.next_run),
            "last_report": last_report.to_dict() if last_report else None,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None
