"""Wallet validity checks and token/transaction helpers backed by the chain client."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from ..config import settings
from ..core.constants import LAMPORTS_PER_SOL, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID, sol_to_lamports
from ..core.errors import WalletValidationError
from ..providers.base import ChainClient
from .address import is_valid_solana_address, normalize_address

logger = logging.getLogger(__name__)


def calculate_transaction_value(transaction: Optional[Dict[str, Any]]) -> float:
    """Sum of absolute native balance changes across every account, in SOL."""

    meta = (transaction or {}).get("meta")
    if not meta:
        return 0.0

    pre_balances = meta.get("preBalances") or []
    post_balances = meta.get("postBalances") or []

    value = 0.0
    for pre, post in zip(pre_balances, post_balances):
        value += abs((post - pre) / LAMPORTS_PER_SOL)
    return value


class WalletValidator:
    """
    Decide whether an address is a plain, funded wallet worth watching.

    A wallet must exist, be owned by the system program (not a program or PDA)
    and hold more than ``min_balance`` SOL.
    """

    def __init__(self, client: ChainClient, min_balance: Optional[float] = None):
        self.client = client
        self.min_balance = settings.min_wallet_balance if min_balance is None else min_balance

    async def check_wallet(self, address: str) -> None:
        """Raise WalletValidationError with the reason the address is rejected."""

        address = normalize_address(address)
        if not is_valid_solana_address(address):
            raise WalletValidationError(address, "malformed address")

        try:
            account = await self.client.get_account_info(address)
        except Exception as exc:  # noqa: BLE001
            raise WalletValidationError(address, f"account lookup failed: {exc}") from exc

        if not account:
            raise WalletValidationError(address, "account does not exist")

        owner = account.get("owner")
        if owner != SYSTEM_PROGRAM_ID:
            raise WalletValidationError(address, f"owned by {owner}, not the system program")

        try:
            balance = await self.client.get_balance(address)
        except Exception as exc:  # noqa: BLE001
            raise WalletValidationError(address, f"balance lookup failed: {exc}") from exc

        if balance <= sol_to_lamports(self.min_balance):
            raise WalletValidationError(
                address,
                f"balance {balance / LAMPORTS_PER_SOL:.6f} SOL not above {self.min_balance} SOL",
            )

    async def is_valid_wallet(self, address: str) -> bool:
        try:
            await self.check_wallet(address)
        except WalletValidationError as exc:
            logger.info("Invalid wallet address %s: %s", exc.address, exc.reason)
            return False
        return True

    async def get_wallet_token_accounts(self, address: str) -> List[Dict[str, Any]]:
        """Token holdings as [{mint, amount, decimals}]; empty on failure."""

        try:
            accounts = await self.client.get_parsed_token_accounts_by_owner(address, TOKEN_PROGRAM_ID)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error fetching token accounts for %s: %s", address, exc)
            return []

        holdings: List[Dict[str, Any]] = []
        for entry in accounts:
            info = (((entry.get("account") or {}).get("data") or {}).get("parsed") or {}).get("info") or {}
            mint = info.get("mint")
            if not mint:
                continue
            token_amount = info.get("tokenAmount") or {}
            holdings.append(
                {
                    "mint": mint,
                    "amount": float(token_amount.get("uiAmount") or 0),
                    "decimals": int(token_amount.get("decimals") or 0),
                }
            )
        return holdings

    async def is_active_trader(
        self,
        address: str,
        min_transactions: int = 5,
        window_days: int = 30,
    ) -> bool:
        """True when the last ``min_transactions`` signatures all fall inside the window."""

        try:
            signatures = await self.client.get_signatures_for_address(address, limit=min_transactions)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Activity lookup failed for %s: %s", address, exc)
            return False

        if len(signatures) < min_transactions:
            return False

        oldest_block_time = signatures[-1].get("blockTime")
        if oldest_block_time is None:
            return False

        age_seconds = time.time() - oldest_block_time
        return age_seconds <= window_days * 24 * 60 * 60

    async def filter_wallets(
        self,
        wallets: Iterable[str],
        min_balance: Optional[float] = None,
        min_transactions: int = 5,
        active_only: bool = True,
    ) -> List[str]:
        """Keep wallets holding at least ``min_balance`` SOL (and trading recently if requested)."""

        floor = sol_to_lamports(self.min_balance if min_balance is None else min_balance)
        valid: List[str] = []

        for wallet in wallets:
            try:
                if active_only:
                    balance, is_active = await asyncio.gather(
                        self.client.get_balance(wallet),
                        self.is_active_trader(wallet, min_transactions),
                    )
                else:
                    balance, is_active = await self.client.get_balance(wallet), True
            except Exception as exc:  # noqa: BLE001
                logger.error("Error filtering wallet %s: %s", wallet, exc)
                continue

            if balance >= floor and is_active:
                valid.append(wallet)

        return valid
