"""
Solana JSON-RPC client.

Reads go over HTTP via httpx; account and log subscriptions share a single
pubsub websocket that reconnects with backoff and restores live handles.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from ..config import settings
from .base import ChainClient, ChainClientError, NotificationCallback

logger = logging.getLogger(__name__)


@dataclass
class _Listener:
    subscribe_method: str
    unsubscribe_method: str
    params: List[Any]
    callback: NotificationCallback
    server_id: Optional[int] = None


_NOTIFICATION_METHODS = {"accountNotification", "logsNotification"}


class SolanaRpcClient(ChainClient):
    """
    ChainClient backed by a Solana RPC node.

    Usage:
        client = SolanaRpcClient()
        info = await client.get_account_info(address)
        handle = await client.on_account_change(address, callback)
        await client.remove_account_change_listener(handle)
        await client.close()
    """

    name = "solana-rpc"
    timeout_s = 30

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        ws_url: Optional[str] = None,
        commitment: Optional[str] = None,
        timeout_s: Optional[float] = None,
        reconnect_max_delay: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.rpc_http_url
        self.ws_url = ws_url or settings.rpc_ws_url
        self.commitment = commitment or settings.solana_commitment
        self.timeout_s = settings.rpc_timeout_seconds if timeout_s is None else timeout_s
        self.reconnect_max_delay = (
            settings.ws_reconnect_max_delay_seconds if reconnect_max_delay is None else reconnect_max_delay
        )

        self._http = http_client
        self._owns_http = http_client is None
        self._request_ids = itertools.count(1)

        # Pubsub state
        self._ws: Any = None
        self._ws_task: Optional[asyncio.Task] = None
        self._connected = asyncio.Event()
        self._closed = False
        self._pending: Dict[int, asyncio.Future] = {}
        self._listeners: Dict[int, _Listener] = {}
        self._handle_by_server_id: Dict[int, int] = {}
        self._handles = itertools.count(1)

    async def ready(self) -> bool:
        return bool(self.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "unavailable", "reason": "RPC URL not configured"}
        # Report configured state rather than probing the node on every check.
        return {
            "status": "configured",
            "rpc_url": self.rpc_url,
            "pubsub_connected": self._connected.is_set(),
            "subscriptions": len(self._listeners),
        }

    # =========================================================================
    # HTTP JSON-RPC
    # =========================================================================

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout_s)
            self._owns_http = True
        return self._http

    async def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params or [],
        }
        client = await self._get_http()
        try:
            response = await client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ChainClientError(f"{method} request failed: {exc}", method=method) from exc
        except ValueError as exc:
            raise ChainClientError(f"{method} returned invalid JSON", method=method) from exc

        if not isinstance(data, dict):
            raise ChainClientError(f"Unexpected {method} response", method=method)

        error = data.get("error")
        if error:
            raise ChainClientError(
                error.get("message", "RPC error") if isinstance(error, dict) else str(error),
                code=error.get("code") if isinstance(error, dict) else None,
                method=method,
            )
        return data.get("result")

    async def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        if not result:
            return None
        return result.get("value")

    async def get_balance(self, address: str) -> int:
        result = await self._rpc("getBalance", [address, {"commitment": self.commitment}])
        if isinstance(result, dict):
            return int(result.get("value") or 0)
        return int(result or 0)

    async def get_signatures_for_address(self, address: str, limit: int = 10) -> List[Dict[str, Any]]:
        result = await self._rpc(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        return list(result or [])

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self.commitment,
                },
            ],
        )

    async def get_parsed_program_accounts(
        self, program_id: str, filters: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        config: Dict[str, Any] = {"encoding": "jsonParsed", "commitment": self.commitment}
        if filters:
            config["filters"] = filters
        result = await self._rpc("getProgramAccounts", [program_id, config])
        if isinstance(result, dict):
            # withContext responses wrap the list
            return list(result.get("value") or [])
        return list(result or [])

    async def get_parsed_token_accounts_by_owner(self, owner: str, program_id: str) -> List[Dict[str, Any]]:
        result = await self._rpc(
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        if not result:
            return []
        return list(result.get("value") or [])

    # =========================================================================
    # Pubsub
    # =========================================================================

    async def on_account_change(self, address: str, callback: NotificationCallback) -> int:
        return await self._subscribe(
            _Listener(
                subscribe_method="accountSubscribe",
                unsubscribe_method="accountUnsubscribe",
                params=[address, {"encoding": "jsonParsed", "commitment": self.commitment}],
                callback=callback,
            )
        )

    async def on_logs(self, address: str, callback: NotificationCallback) -> int:
        return await self._subscribe(
            _Listener(
                subscribe_method="logsSubscribe",
                unsubscribe_method="logsUnsubscribe",
                params=[{"mentions": [address]}, {"commitment": self.commitment}],
                callback=callback,
            )
        )

    async def remove_account_change_listener(self, handle: int) -> None:
        await self._unsubscribe(handle)

    async def remove_on_logs_listener(self, handle: int) -> None:
        await self._unsubscribe(handle)

    async def _subscribe(self, listener: _Listener) -> int:
        await self._ensure_connected()
        server_id = await self._ws_request(listener.subscribe_method, listener.params)
        handle = next(self._handles)
        listener.server_id = server_id
        self._listeners[handle] = listener
        self._handle_by_server_id[server_id] = handle
        return handle

    async def _unsubscribe(self, handle: int) -> None:
        listener = self._listeners.get(handle)
        if listener is None:
            raise ChainClientError(f"Unknown subscription handle {handle}", method="unsubscribe")

        # A closed connection means the server already dropped the subscription.
        if listener.server_id is not None and self._ws is not None:
            # The handle stays registered until the node confirms, so a failed release can be retried.
            await self._ws_request(listener.unsubscribe_method, [listener.server_id])

        self._listeners.pop(handle, None)
        if listener.server_id is not None:
            self._handle_by_server_id.pop(listener.server_id, None)

    async def _ensure_connected(self) -> None:
        if self._ws_task is None or self._ws_task.done():
            self._closed = False
            self._connected.clear()
            self._ws_task = asyncio.create_task(self._run_pubsub(), name="solana-pubsub")
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise ChainClientError("Pubsub connection timed out", method="connect") from exc

    async def _ws_request(self, method: str, params: List[Any]) -> Any:
        ws = self._ws
        if ws is None:
            raise ChainClientError("Pubsub connection is not open", method=method)

        request_id = next(self._request_ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await ws.send(json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}))
            return await asyncio.wait_for(future, timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise ChainClientError(f"{method} timed out", method=method) from exc
        except ConnectionClosed as exc:
            raise ChainClientError(f"{method} failed: connection closed", method=method) from exc
        finally:
            self._pending.pop(request_id, None)

    async def _run_pubsub(self) -> None:
        """Hold the pubsub connection open with auto-reconnect."""
        retry_delay = 1.0

        while not self._closed:
            try:
                async with websockets.connect(self.ws_url) as ws:
                    self._ws = ws
                    retry_delay = 1.0
                    logger.info("Connected to Solana pubsub at %s", self.ws_url)

                    listen_task = asyncio.create_task(self._listen(ws))
                    try:
                        await self._restore_listeners()
                        self._connected.set()
                        await listen_task
                    finally:
                        listen_task.cancel()

            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                logger.warning("Solana pubsub closed: %s", e)
            except Exception as e:
                logger.error("Solana pubsub error: %s", e)
            finally:
                self._ws = None
                self._connected.clear()
                self._fail_pending("Pubsub connection lost")

            if not self._closed:
                logger.info("Reconnecting to Solana pubsub in %ss...", retry_delay)
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, self.reconnect_max_delay)

    async def _restore_listeners(self) -> None:
        """Re-issue every live subscription on a fresh connection."""
        self._handle_by_server_id.clear()
        for handle, listener in list(self._listeners.items()):
            try:
                server_id = await self._ws_request(listener.subscribe_method, listener.params)
            except ChainClientError as exc:
                logger.error("Failed to restore subscription handle %s: %s", handle, exc)
                listener.server_id = None
                continue
            listener.server_id = server_id
            self._handle_by_server_id[server_id] = handle

        if self._listeners:
            logger.info("Restored %d pubsub subscriptions", len(self._handle_by_server_id))

    async def _listen(self, ws) -> None:
        async for message in ws:
            await self._handle_message(message)

    async def _handle_message(self, message: str | bytes) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON received: %s", str(message)[:100])
            return

        request_id = data.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is not None and not future.done():
                error = data.get("error")
                if error:
                    future.set_exception(
                        ChainClientError(
                            error.get("message", "RPC error"),
                            code=error.get("code"),
                        )
                    )
                else:
                    future.set_result(data.get("result"))
            return

        if data.get("method") not in _NOTIFICATION_METHODS:
            return

        params = data.get("params") or {}
        handle = self._handle_by_server_id.get(params.get("subscription"))
        listener = self._listeners.get(handle) if handle is not None else None
        if listener is None:
            return

        result = params.get("result") or {}
        value = result.get("value") or {}
        context = result.get("context") or {}

        try:
            if asyncio.iscoroutinefunction(listener.callback):
                await listener.callback(value, context)
            else:
                listener.callback(value, context)
        except Exception as e:
            logger.error("Subscription callback error for handle %s: %s", handle, e)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChainClientError(reason))
        self._pending.clear()

    async def close(self) -> None:
        self._closed = True
        if self._ws_task is not None:
            self._ws_task.cancel()
            try:
                await self._ws_task
            except asyncio.CancelledError:
                pass
            self._ws_task = None
        self._listeners.clear()
        self._handle_by_server_id.clear()
        self._fail_pending("Client closed")

        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

        logger.info("Solana RPC client closed")
