"""
Tests for the WalletMonitor facade: watch-set management, holder discovery
and the notification pipeline end to end.
"""

import asyncio

import pytest

from walletwatch.core.constants import LAMPORTS_PER_SOL, SYSTEM_PROGRAM_ID, TOKEN_ACCOUNT_SIZE, TOKEN_PROGRAM_ID
from walletwatch.services.monitoring import EventBus, NotificationKind, RawNotification, WalletMonitor

from conftest import make_address, token_transaction


TTL = 24 * 60 * 60
TOKEN_MINT = make_address(1, "Mint")


@pytest.fixture
def monitor(chain_client, clock):
    return WalletMonitor(
        chain_client,
        event_bus=EventBus(),
        significance_threshold=1.0,
        inactivity_ttl_seconds=TTL,
        reap_interval_seconds=3600,
        holder_scan_limit=100,
        clock=clock,
    )


@pytest.fixture
def published(monitor):
    received = []
    monitor.event_bus.on_activity(received.append)
    return received


def funded_wallet(chain_client, index, sol=0.02):
    address = make_address(index)
    chain_client.add_wallet_account(address, sol=sol)
    return address


class TestAddRemove:
    @pytest.mark.asyncio
    async def test_valid_wallet_is_added(self, monitor, chain_client):
        w1 = funded_wallet(chain_client, 1, sol=0.02)

        assert await monitor.add_wallet(w1) is True
        assert w1 in monitor.get_monitored_wallets()
        assert w1 in monitor.get_watched_wallets()
        assert chain_client.live_handles(w1) == 2

    @pytest.mark.asyncio
    async def test_contract_account_is_rejected(self, monitor, chain_client):
        w2 = make_address(2)
        chain_client.add_wallet_account(w2, sol=10, owner=TOKEN_PROGRAM_ID)

        assert await monitor.add_wallet(w2) is False
        assert monitor.get_monitored_wallets() == []
        assert monitor.get_watched_wallets() == []
        assert chain_client.live_handles(w2) == 0

    @pytest.mark.asyncio
    async def test_subscribe_failure_leaves_watch_set_unchanged(self, monitor, chain_client):
        address = funded_wallet(chain_client, 3)
        chain_client.fail_logs_subscribe.add(address)

        assert await monitor.add_wallet(address) is False
        assert monitor.get_watched_wallets() == []
        assert chain_client.live_handles(address) == 0

    @pytest.mark.asyncio
    async def test_adding_twice_keeps_one_subscription(self, monitor, chain_client):
        address = funded_wallet(chain_client, 4)

        assert await monitor.add_wallet(address) is True
        handles = monitor.registry.handles_for(address)
        assert await monitor.add_wallet(address) is False

        assert monitor.registry.handles_for(address) == handles
        assert chain_client.live_handles(address) == 2
        assert monitor.get_watched_wallets() == [address]

    @pytest.mark.asyncio
    async def test_remove_releases_subscription(self, monitor, chain_client):
        address = funded_wallet(chain_client, 5)
        await monitor.add_wallet(address)

        assert await monitor.remove_wallet(address) is True
        assert address not in monitor.get_monitored_wallets()
        assert address not in monitor.get_watched_wallets()
        assert chain_client.live_handles(address) == 0

    @pytest.mark.asyncio
    async def test_remove_unknown_wallet(self, monitor):
        assert await monitor.remove_wallet(make_address(6)) is False

    @pytest.mark.asyncio
    async def test_active_wallets_follow_ttl(self, monitor, chain_client, clock):
        quiet = funded_wallet(chain_client, 7)
        busy = funded_wallet(chain_client, 8)
        await monitor.add_wallet(quiet)
        await monitor.add_wallet(busy)

        clock.advance(TTL)
        monitor.registry.touch(busy)
        clock.advance(1)

        assert monitor.get_active_wallets() == [busy]


class TestHolderDiscovery:
    @pytest.mark.asyncio
    async def test_scan_considers_at_most_the_cap(self, monitor, chain_client):
        owners = []
        for i in range(150):
            owner = make_address(100 + i)
            owners.append(owner)
            chain_client.add_holder_account(owner, TOKEN_MINT)
            # Every third holder is a program-owned account
            if i % 3 == 0:
                chain_client.add_wallet_account(owner, sol=1, owner=TOKEN_PROGRAM_ID)
            else:
                chain_client.add_wallet_account(owner, sol=1)

        holders = await monitor.discover_top_holders(TOKEN_MINT)

        considered = owners[:100]
        expected = [owner for i, owner in enumerate(considered) if i % 3 != 0]
        assert holders == expected
        assert sorted(monitor.get_monitored_wallets()) == sorted(expected)
        assert not set(owners[100:]) & set(monitor.get_monitored_wallets())

    @pytest.mark.asyncio
    async def test_scan_filters_by_size_and_mint(self, monitor, chain_client):
        await monitor.discover_top_holders(TOKEN_MINT)

        program_id, filters = chain_client.program_account_queries[0]
        assert program_id == TOKEN_PROGRAM_ID
        assert filters == [
            {"dataSize": TOKEN_ACCOUNT_SIZE},
            {"memcmp": {"offset": 0, "bytes": TOKEN_MINT}},
        ]

    @pytest.mark.asyncio
    async def test_scan_skips_already_watched_and_malformed(self, monitor, chain_client):
        watched = funded_wallet(chain_client, 9)
        fresh = funded_wallet(chain_client, 10)
        await monitor.add_wallet(watched)
        chain_client.add_holder_account(watched, TOKEN_MINT)
        chain_client.program_accounts.append({"pubkey": "x", "account": {"data": "base64-blob"}})
        chain_client.add_holder_account(fresh, TOKEN_MINT)

        holders = await monitor.discover_top_holders(TOKEN_MINT)

        assert holders == [fresh]
        assert sorted(monitor.get_monitored_wallets()) == sorted([watched, fresh])

    @pytest.mark.asyncio
    async def test_scan_failure_returns_empty(self, monitor, chain_client):
        chain_client.fail_program_accounts = True

        assert await monitor.discover_top_holders(TOKEN_MINT) == []


class TestNotificationPipeline:
    @pytest.mark.asyncio
    async def test_large_balance_change_is_published(self, monitor, chain_client, published):
        address = funded_wallet(chain_client, 11)
        await monitor.add_wallet(address)
        await monitor.start()
        try:
            chain_client.emit_account(address, {"lamports": 2 * LAMPORTS_PER_SOL, "owner": SYSTEM_PROGRAM_ID})
            chain_client.emit_account(address, {"lamports": LAMPORTS_PER_SOL // 2, "owner": SYSTEM_PROGRAM_ID})
            await asyncio.wait_for(monitor.drain(), timeout=1)
        finally:
            await monitor.stop()

        assert len(published) == 1
        assert published[0].address == address
        assert published[0].verdict.value == pytest.approx(2.0)
        assert monitor.stats["processed"] == 2

    @pytest.mark.asyncio
    async def test_missing_transaction_is_dropped_silently(self, monitor, chain_client, published):
        address = funded_wallet(chain_client, 12)
        await monitor.add_wallet(address)
        chain_client.add_transaction(address, "gone", None)

        chain_client.emit_logs(address, {"signature": "gone", "logs": []})
        raw = await monitor._queue.get()
        result = await monitor.process_notification(raw)

        assert result is None
        assert published == []
        assert monitor.stats["dropped"] == 1

    @pytest.mark.asyncio
    async def test_fetch_error_never_reaches_bus(self, monitor, chain_client, published):
        address = funded_wallet(chain_client, 13)
        await monitor.add_wallet(address)
        event_tx = token_transaction("sig", deltas_sol=[-5, 5])
        chain_client.add_transaction(address, "sig", event_tx)

        raw = RawNotification(address=address, kind=NotificationKind.LOGS, value={"signature": "sig"})
        event = await monitor.normalizer.normalize(raw)
        chain_client.fail_transaction_fetch = True
        stripped = event.model_copy(update={"payload": event.payload.model_copy(update={"parsed_transaction": None})})
        verdict = await monitor.classifier.classify(stripped)

        assert verdict.significant is False
        assert published == []

    @pytest.mark.asyncio
    async def test_token_transaction_is_published_in_order(self, monitor, chain_client, published):
        address = funded_wallet(chain_client, 14)
        await monitor.add_wallet(address)
        for i in range(3):
            chain_client.add_transaction(address, f"sig{i}", token_transaction(f"sig{i}", deltas_sol=[-2, 2], slot=i))

        await monitor.start()
        try:
            for i in range(3):
                chain_client.emit_logs(address, {"signature": f"sig{i}", "logs": []}, slot=i)
            await asyncio.wait_for(monitor.drain(), timeout=1)
        finally:
            await monitor.stop()

        assert [item.event.signature for item in published] == ["sig0", "sig1", "sig2"]

    @pytest.mark.asyncio
    async def test_notification_refreshes_activity(self, monitor, chain_client, clock):
        address = funded_wallet(chain_client, 15)
        await monitor.add_wallet(address)
        clock.advance(TTL + 1)

        chain_client.emit_account(address, {"lamports": 1})
        await monitor.process_notification(await monitor._queue.get())

        assert monitor.registry.is_active(address, TTL)


class TestReaping:
    @pytest.mark.asyncio
    async def test_stale_wallet_is_reaped(self, monitor, chain_client, clock):
        address = funded_wallet(chain_client, 16)
        await monitor.add_wallet(address)
        clock.advance(TTL + 1)

        report = await monitor.reap()

        assert report.reaped == [address]
        assert address not in monitor.get_monitored_wallets()
        assert address not in monitor.get_watched_wallets()

    @pytest.mark.asyncio
    async def test_add_racing_reap_ends_consistent(self, monitor, chain_client, clock):
        address = funded_wallet(chain_client, 17)
        await monitor.add_wallet(address)
        clock.advance(TTL + 1)

        await asyncio.gather(monitor.add_wallet(address), monitor.reap())

        monitored = address in monitor.get_monitored_wallets()
        watched = address in monitor.get_watched_wallets()
        assert monitored == watched
        if not monitored:
            # Reap won the race; adding again restores a fresh subscription
            assert await monitor.add_wallet(address) is True
        assert monitor.registry.is_active(address, TTL)
        assert address in monitor.get_watched_wallets()
        assert chain_client.live_handles(address) == 2

    @pytest.mark.asyncio
    async def test_stop_releases_everything(self, monitor, chain_client):
        for i in range(3):
            await monitor.add_wallet(funded_wallet(chain_client, 20 + i))
        await monitor.start()

        await monitor.stop()

        assert monitor.get_monitored_wallets() == []
        assert monitor.get_watched_wallets() == []
        assert not chain_client.account_listeners
        assert not monitor.reaper.is_running
        assert not monitor.is_running


def test_status_shape(monitor):
    status = monitor.status()

    assert status["running"] is False
    assert status["monitored"] == 0
    assert set(status["stats"]) == {"received", "processed", "dropped", "significant"}
    assert status["reaper"]["ttl_seconds"] == TTL
