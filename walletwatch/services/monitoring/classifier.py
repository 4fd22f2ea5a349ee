"""
Significance Classifier

Decides whether an activity event moved enough value to surface downstream.
Classification fails closed: anything that cannot be evaluated is not
significant.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ...config import settings
from ...core.constants import TOKEN_PROGRAM_ID, lamports_to_sol
from ...core.errors import ClassificationError
from ...providers.base import ChainClient
from ..wallets import calculate_transaction_value
from .models import AccountChangePayload, ActivityEvent, ActivityKind, SignificanceVerdict, TransactionPayload

logger = logging.getLogger(__name__)


def has_token_program_instruction(transaction: Dict[str, Any]) -> bool:
    message = (transaction.get("transaction") or {}).get("message") or {}
    instructions = message.get("instructions") or []
    return any(ix.get("programId") == TOKEN_PROGRAM_ID for ix in instructions)


class SignificanceClassifier:
    """
    Threshold-based significance.

    - Account changes: |lamports| in SOL above the threshold.
    - Transactions: at least one token-program instruction and a total
      absolute balance movement above the threshold.
    """

    def __init__(self, client: ChainClient, threshold: Optional[float] = None) -> None:
        self.client = client
        self.threshold = settings.significance_threshold if threshold is None else threshold

    async def classify(self, event: ActivityEvent) -> SignificanceVerdict:
        try:
            if event.kind is ActivityKind.ACCOUNT_CHANGE:
                return self._classify_account_change(event)
            return await self._classify_transaction(event)
        except Exception as exc:  # noqa: BLE001
            error = exc if isinstance(exc, ClassificationError) else ClassificationError(event.address, str(exc))
            logger.error("Error checking %s significance: %s", event.kind.value, error)
            return SignificanceVerdict(
                significant=False,
                threshold=self.threshold,
                reason=f"classification failed: {error.message}",
            )

    def _classify_account_change(self, event: ActivityEvent) -> SignificanceVerdict:
        payload = event.payload
        if not isinstance(payload, AccountChangePayload):
            raise ClassificationError(event.address, "Account change event without account payload")

        value = abs(lamports_to_sol(payload.lamports))
        return SignificanceVerdict(
            significant=value > self.threshold,
            value=value,
            threshold=self.threshold,
            reason="account balance",
        )

    async def _classify_transaction(self, event: ActivityEvent) -> SignificanceVerdict:
        payload = event.payload
        if not isinstance(payload, TransactionPayload):
            raise ClassificationError(event.address, "Transaction event without transaction payload")

        transaction = payload.parsed_transaction
        if transaction is None:
            try:
                transaction = await self.client.get_parsed_transaction(payload.signature)
            except Exception as exc:  # noqa: BLE001
                raise ClassificationError(
                    event.address, f"Transaction fetch failed for {payload.signature}: {exc}"
                ) from exc

        if not transaction:
            return SignificanceVerdict(
                significant=False,
                threshold=self.threshold,
                reason="transaction unavailable",
            )

        if not has_token_program_instruction(transaction):
            return SignificanceVerdict(
                significant=False,
                threshold=self.threshold,
                has_token_transfer=False,
                reason="no token program instruction",
            )

        value = calculate_transaction_value(transaction)
        return SignificanceVerdict(
            significant=value > self.threshold,
            value=value,
            threshold=self.threshold,
            has_token_transfer=True,
            reason="token transfer value",
        )
