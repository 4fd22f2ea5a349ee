"""
Tests for the Solana JSON-RPC client (HTTP via httpx.MockTransport, pubsub
message routing without a live socket).
"""

import asyncio
import json

import httpx
import pytest

from walletwatch.providers.base import ChainClientError
from walletwatch.providers.solana import SolanaRpcClient, _Listener
from walletwatch.services.monitoring.models import NotificationKind
from walletwatch.services.monitoring.registry import SubscriptionRegistry

from conftest import make_address


RPC_URL = "https://rpc.test"


def make_client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SolanaRpcClient(rpc_url=RPC_URL, ws_url="wss://rpc.test", commitment="confirmed", http_client=http)


def rpc_result(result):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        handler.calls.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    handler.calls = []
    return handler


class FakeSocket:
    """Pubsub socket that answers every request at once unless told to fail."""

    def __init__(self, client: SolanaRpcClient):
        self.client = client
        self.sent = []
        self.fail = False

    async def send(self, message):
        if self.fail:
            raise OSError("network unreachable")
        payload = json.loads(message)
        self.sent.append(payload)
        self.client._pending[payload["id"]].set_result(1000 + payload["id"])


def attach_socket(client: SolanaRpcClient) -> FakeSocket:
    socket = FakeSocket(client)

    async def connected():
        return None

    client._ws = socket
    client._ensure_connected = connected
    return socket


class TestHttpMethods:
    @pytest.mark.asyncio
    async def test_get_account_info_unwraps_value(self):
        handler = rpc_result({"context": {"slot": 1}, "value": {"lamports": 5, "owner": "11111111111111111111111111111111"}})
        client = make_client(handler)

        info = await client.get_account_info(make_address(1))

        assert info == {"lamports": 5, "owner": "11111111111111111111111111111111"}
        assert handler.calls[0]["method"] == "getAccountInfo"
        assert handler.calls[0]["params"][1]["encoding"] == "jsonParsed"

    @pytest.mark.asyncio
    async def test_get_account_info_missing_account(self):
        client = make_client(rpc_result({"context": {"slot": 1}, "value": None}))

        assert await client.get_account_info(make_address(2)) is None

    @pytest.mark.asyncio
    async def test_get_balance(self):
        client = make_client(rpc_result({"context": {"slot": 1}, "value": 20_000_000}))

        assert await client.get_balance(make_address(3)) == 20_000_000

    @pytest.mark.asyncio
    async def test_get_signatures_passes_limit(self):
        handler = rpc_result([{"signature": "abc", "blockTime": 1}])
        client = make_client(handler)

        signatures = await client.get_signatures_for_address(make_address(4), limit=1)

        assert signatures == [{"signature": "abc", "blockTime": 1}]
        assert handler.calls[0]["params"][1]["limit"] == 1

    @pytest.mark.asyncio
    async def test_get_parsed_transaction_supports_versioned(self):
        handler = rpc_result(None)
        client = make_client(handler)

        assert await client.get_parsed_transaction("sig") is None
        config = handler.calls[0]["params"][1]
        assert handler.calls[0]["method"] == "getTransaction"
        assert config["maxSupportedTransactionVersion"] == 0
        assert config["encoding"] == "jsonParsed"

    @pytest.mark.asyncio
    async def test_program_accounts_forward_filters(self):
        handler = rpc_result([{"pubkey": "a", "account": {}}])
        client = make_client(handler)
        filters = [{"dataSize": 165}]

        accounts = await client.get_parsed_program_accounts("Prog", filters)

        assert accounts == [{"pubkey": "a", "account": {}}]
        assert handler.calls[0]["params"][1]["filters"] == filters

    @pytest.mark.asyncio
    async def test_token_accounts_by_owner(self):
        handler = rpc_result({"context": {"slot": 1}, "value": [{"pubkey": "t"}]})
        client = make_client(handler)

        accounts = await client.get_parsed_token_accounts_by_owner(make_address(5), "Tok")

        assert accounts == [{"pubkey": "t"}]
        assert handler.calls[0]["params"][1] == {"programId": "Tok"}

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self):
        def handler(request):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32602, "message": "Invalid param"}},
            )

        client = make_client(handler)

        with pytest.raises(ChainClientError) as exc_info:
            await client.get_balance(make_address(6))
        assert exc_info.value.code == -32602
        assert exc_info.value.method == "getBalance"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        client = make_client(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(ChainClientError):
            await client.get_balance(make_address(7))


class TestPubsubRouting:
    @pytest.mark.asyncio
    async def test_notification_reaches_listener(self):
        client = make_client(rpc_result(None))
        received = []
        client._listeners[1] = _Listener(
            subscribe_method="accountSubscribe",
            unsubscribe_method="accountUnsubscribe",
            params=[],
            callback=lambda value, context: received.append((value, context)),
            server_id=77,
        )
        client._handle_by_server_id[77] = 1

        await client._handle_message(
            json.dumps(
                {
                    "jsonrpc": "2.0",
                    "method": "accountNotification",
                    "params": {
                        "subscription": 77,
                        "result": {"context": {"slot": 9}, "value": {"lamports": 3}},
                    },
                }
            )
        )

        assert received == [({"lamports": 3}, {"slot": 9})]

    @pytest.mark.asyncio
    async def test_unknown_subscription_and_bad_json_are_ignored(self):
        client = make_client(rpc_result(None))

        await client._handle_message("not json")
        await client._handle_message(
            json.dumps({"method": "logsNotification", "params": {"subscription": 5, "result": {}}})
        )

    @pytest.mark.asyncio
    async def test_response_resolves_pending_request(self):
        client = make_client(rpc_result(None))
        future = asyncio.get_running_loop().create_future()
        client._pending[3] = future

        await client._handle_message(json.dumps({"jsonrpc": "2.0", "id": 3, "result": 1234}))

        assert future.result() == 1234

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_handle(self):
        client = make_client(rpc_result(None))

        with pytest.raises(ChainClientError):
            await client.remove_on_logs_listener(999)

    @pytest.mark.asyncio
    async def test_health_check_reports_configuration(self):
        client = make_client(rpc_result(None))

        health = await client.health_check()

        assert health["status"] == "configured"
        assert health["rpc_url"] == RPC_URL
        assert health["pubsub_connected"] is False


class TestPubsubRelease:
    @pytest.mark.asyncio
    async def test_failed_release_is_retried_after_network_recovers(self):
        client = make_client(rpc_result(None))
        socket = attach_socket(client)
        registry = SubscriptionRegistry(client)
        address = make_address(8)
        await registry.subscribe(address)

        socket.fail = True
        failed = await registry.unsubscribe(address)

        assert failed == [NotificationKind.ACCOUNT, NotificationKind.LOGS]
        assert len(client._listeners) == 2

        socket.fail = False
        assert await registry.release_orphans() == []
        assert [payload["method"] for payload in socket.sent[-2:]] == ["accountUnsubscribe", "logsUnsubscribe"]
        assert client._listeners == {}
        assert client._handle_by_server_id == {}

    @pytest.mark.asyncio
    async def test_release_without_connection_drops_handle_locally(self):
        client = make_client(rpc_result(None))
        socket = attach_socket(client)
        handle = await client.on_account_change(make_address(9), lambda value, context: None)
        client._ws = None

        await client.remove_account_change_listener(handle)

        assert client._listeners == {}
        assert [payload["method"] for payload in socket.sent] == ["accountSubscribe"]
