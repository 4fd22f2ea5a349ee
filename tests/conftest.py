"""
Shared fixtures: an in-memory ChainClient and a controllable clock.
"""

import itertools
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from walletwatch.core.constants import LAMPORTS_PER_SOL, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from walletwatch.providers.base import ChainClient, ChainClientError


def make_address(index: int, prefix: str = "W") -> str:
    """A syntactically valid base58 address unique per (prefix, index)."""
    return (prefix + str(index).replace("0", "z")).ljust(44, "1")


def token_transaction(
    signature: str,
    *,
    deltas_sol: List[float],
    program_id: str = TOKEN_PROGRAM_ID,
    err: Any = None,
    slot: int = 100,
) -> Dict[str, Any]:
    """Parsed transaction whose per-account balance changes are ``deltas_sol``."""
    pre = [10 * LAMPORTS_PER_SOL for _ in deltas_sol]
    post = [p + int(d * LAMPORTS_PER_SOL) for p, d in zip(pre, deltas_sol)]
    return {
        "slot": slot,
        "meta": {"err": err, "fee": 5000, "preBalances": pre, "postBalances": post},
        "transaction": {
            "signatures": [signature],
            "message": {"instructions": [{"programId": program_id, "parsed": {"type": "transfer"}}]},
        },
    }


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChainClient(ChainClient):
    """In-memory stand-in for a Solana node with controllable failures."""

    name = "fake"

    def __init__(self):
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.transactions: Dict[str, Optional[Dict[str, Any]]] = {}
        self.signatures: Dict[str, List[Dict[str, Any]]] = {}
        self.program_accounts: List[Dict[str, Any]] = []
        self.token_accounts: Dict[str, List[Dict[str, Any]]] = {}

        self.account_listeners: Dict[int, Tuple[str, Callable]] = {}
        self.log_listeners: Dict[int, Tuple[str, Callable]] = {}
        self._handles = itertools.count(1)

        self.fail_account_subscribe: Set[str] = set()
        self.fail_logs_subscribe: Set[str] = set()
        self.fail_account_release = False
        self.fail_logs_release = False
        self.fail_transaction_fetch = False
        self.fail_program_accounts = False

        self.transaction_fetches: List[str] = []
        self.program_account_queries: List[Tuple[str, Any]] = []
        self.released: List[int] = []

    # --- seeding helpers ---------------------------------------------------

    def add_wallet_account(self, address: str, sol: float = 0.02, owner: str = SYSTEM_PROGRAM_ID) -> None:
        self.accounts[address] = {
            "lamports": int(sol * LAMPORTS_PER_SOL),
            "owner": owner,
            "executable": False,
        }

    def add_transaction(self, address: str, signature: str, transaction: Optional[Dict[str, Any]]) -> None:
        self.transactions[signature] = transaction
        self.signatures.setdefault(address, []).insert(0, {"signature": signature, "blockTime": None})

    def add_holder_account(self, owner: str, mint: str) -> None:
        self.program_accounts.append(
            {
                "pubkey": make_address(len(self.program_accounts), "TA"),
                "account": {"data": {"parsed": {"info": {"owner": owner, "mint": mint}}}},
            }
        )

    def add_token_holding(self, owner: str, mint: str, amount: float) -> None:
        self.token_accounts.setdefault(owner, []).append(
            {
                "pubkey": make_address(len(self.token_accounts.get(owner, [])), "TH"),
                "account": {
                    "data": {
                        "parsed": {
                            "info": {"mint": mint, "tokenAmount": {"uiAmount": amount, "decimals": 6}}
                        }
                    }
                },
            }
        )

    # --- notification helpers ----------------------------------------------

    def emit_account(self, address: str, value: Dict[str, Any], slot: int = 1) -> int:
        count = 0
        for listener_address, callback in list(self.account_listeners.values()):
            if listener_address == address:
                callback(value, {"slot": slot})
                count += 1
        return count

    def emit_logs(self, address: str, value: Dict[str, Any], slot: int = 1) -> int:
        count = 0
        for listener_address, callback in list(self.log_listeners.values()):
            if listener_address == address:
                callback(value, {"slot": slot})
                count += 1
        return count

    def live_handles(self, address: str) -> int:
        return sum(
            1
            for listeners in (self.account_listeners, self.log_listeners)
            for listener_address, _ in listeners.values()
            if listener_address == address
        )

    # --- ChainClient -------------------------------------------------------

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        return {"status": "healthy", "subscriptions": len(self.account_listeners) + len(self.log_listeners)}

    async def get_account_info(self, address):
        return self.accounts.get(address)

    async def get_balance(self, address):
        account = self.accounts.get(address)
        return account["lamports"] if account else 0

    async def get_signatures_for_address(self, address, limit=10):
        return self.signatures.get(address, [])[:limit]

    async def get_parsed_transaction(self, signature):
        self.transaction_fetches.append(signature)
        if self.fail_transaction_fetch:
            raise ChainClientError("node unavailable", method="getTransaction")
        return self.transactions.get(signature)

    async def get_parsed_program_accounts(self, program_id, filters=None):
        self.program_account_queries.append((program_id, filters))
        if self.fail_program_accounts:
            raise ChainClientError("too many accounts", method="getProgramAccounts")
        return list(self.program_accounts)

    async def get_parsed_token_accounts_by_owner(self, owner, program_id):
        return list(self.token_accounts.get(owner, []))

    async def on_account_change(self, address, callback):
        if address in self.fail_account_subscribe:
            raise ChainClientError("accountSubscribe rejected", method="accountSubscribe")
        handle = next(self._handles)
        self.account_listeners[handle] = (address, callback)
        return handle

    async def on_logs(self, address, callback):
        if address in self.fail_logs_subscribe:
            raise ChainClientError("logsSubscribe rejected", method="logsSubscribe")
        handle = next(self._handles)
        self.log_listeners[handle] = (address, callback)
        return handle

    async def remove_account_change_listener(self, handle):
        if self.fail_account_release:
            raise ChainClientError("accountUnsubscribe failed", method="accountUnsubscribe")
        self.account_listeners.pop(handle)
        self.released.append(handle)

    async def remove_on_logs_listener(self, handle):
        if self.fail_logs_release:
            raise ChainClientError("logsUnsubscribe failed", method="logsUnsubscribe")
        self.log_listeners.pop(handle)
        self.released.append(handle)


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
