"""
Activity Normalizer

Turns raw pubsub notifications into ActivityEvent records. Account
notifications carry everything needed; log notifications only carry a
signature and log lines, so the transaction body is fetched separately.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from ...core.constants import TRANSACTION_TYPE_BY_PROGRAM
from ...core.errors import NormalizationError
from ...providers.base import ChainClient
from .models import (
    AccountChangePayload,
    ActivityEvent,
    ActivityKind,
    NotificationKind,
    RawNotification,
    TransactionPayload,
    TransactionType,
)

logger = logging.getLogger(__name__)


def get_transaction_type(transaction: Optional[Dict[str, Any]]) -> TransactionType:
    """Tag a parsed transaction by the program of its first instruction."""

    if not transaction or not transaction.get("meta") or not transaction.get("transaction"):
        return TransactionType.UNKNOWN

    message = transaction["transaction"].get("message") or {}
    instructions = message.get("instructions") or []
    if not instructions:
        return TransactionType.UNKNOWN

    program_id = instructions[0].get("programId")
    tag = TRANSACTION_TYPE_BY_PROGRAM.get(program_id)
    return TransactionType(tag) if tag else TransactionType.OTHER


class ActivityNormalizer:
    """Build ActivityEvent records from raw notifications."""

    def __init__(self, client: ChainClient, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.client = client
        self._clock = clock

    async def normalize(self, raw: RawNotification, address: Optional[str] = None) -> ActivityEvent:
        """Raise NormalizationError when no event can be produced."""

        address = address or raw.address
        if raw.kind is NotificationKind.ACCOUNT:
            return self._from_account_change(raw, address)
        return await self._from_logs(raw, address)

    def _from_account_change(self, raw: RawNotification, address: str) -> ActivityEvent:
        value = raw.value
        lamports = value.get("lamports")
        if lamports is None:
            raise NormalizationError(address, "Account notification without lamports")

        try:
            payload = AccountChangePayload(
                lamports=int(lamports),
                owner=value.get("owner"),
                executable=bool(value.get("executable", False)),
                rent_epoch=value.get("rentEpoch"),
            )
        except (TypeError, ValueError) as exc:
            raise NormalizationError(address, f"Malformed account notification: {exc}") from exc

        return ActivityEvent(
            address=address,
            kind=ActivityKind.ACCOUNT_CHANGE,
            timestamp_monotonic=self._clock(),
            slot=raw.slot,
            payload=payload,
        )

    async def _from_logs(self, raw: RawNotification, address: str) -> ActivityEvent:
        signature = raw.value.get("signature") or await self._latest_signature(address)

        try:
            transaction = await self.client.get_parsed_transaction(signature)
        except Exception as exc:  # noqa: BLE001
            raise NormalizationError(address, f"Transaction fetch failed for {signature}: {exc}") from exc

        if not transaction:
            raise NormalizationError(address, f"No transaction body for {signature}")

        meta = transaction.get("meta")
        payload = TransactionPayload(
            signature=signature,
            transaction_type=get_transaction_type(transaction),
            successful=bool(meta) and meta.get("err") is None,
            fee=int(meta.get("fee") or 0) if meta else 0,
            logs=list(raw.value.get("logs") or []),
            parsed_transaction=transaction,
        )

        return ActivityEvent(
            address=address,
            kind=ActivityKind.TRANSACTION,
            timestamp_monotonic=self._clock(),
            slot=raw.slot if raw.slot is not None else transaction.get("slot"),
            payload=payload,
        )

    async def _latest_signature(self, address: str) -> str:
        """Fallback for log notifications that arrive without a signature."""

        try:
            signatures = await self.client.get_signatures_for_address(address, limit=1)
        except Exception as exc:  # noqa: BLE001
            raise NormalizationError(address, f"Signature lookup failed: {exc}") from exc

        if not signatures or not signatures[0].get("signature"):
            raise NormalizationError(address, "No recent signature for log notification")

        logger.debug("Log notification for %s had no signature; using most recent", address)
        return signatures[0]["signature"]
