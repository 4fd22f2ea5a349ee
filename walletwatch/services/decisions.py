"""
Token Scoring

Downstream consumer of the monitor: aggregates the tokens held by the
watched wallets into ranked buy recommendations. Per-wallet behavioural
insight (e.g. from a language model) is optional and plugged in through
InsightProvider.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol

from pydantic import BaseModel, Field

from ..config import settings
from .monitoring.event_bus import EventBus
from .monitoring.models import SignificantActivity
from .wallets import WalletValidator

logger = logging.getLogger(__name__)


class WalletInsight(BaseModel):
    """Behavioural read on one wallet."""

    strategy: Optional[str] = None
    risk_level: Optional[str] = None
    confidence_score: float = 0.0


class TokenScore(BaseModel):
    """A ranked token with the aggregates that produced its score."""

    mint: str
    score: float
    confidence: float
    holder_count: int
    total_amount: float
    recommendation: str


class InsightProvider(Protocol):
    """Supplies per-wallet insight; returns None when nothing is known."""

    async def analyze_wallet(self, address: str) -> Optional[WalletInsight]:
        ...


def calculate_insight_score(insight: WalletInsight) -> float:
    score = 0.0
    if insight.strategy == "momentum":
        score += 0.3
    if insight.risk_level == "moderate":
        score += 0.2
    if insight.confidence_score > 0.8:
        score += 0.5
    return score


def generate_recommendation(confidence: float, score: float) -> str:
    if confidence > 0.9 and score > 0.8:
        return "Strong Buy"
    if confidence > 0.7 and score > 0.6:
        return "Buy"
    if confidence > 0.5 and score > 0.4:
        return "Hold"
    return "Monitor"


class TokenScorer:
    """
    Rank tokens held across a wallet set.

    score = 0.3 * holder_count + 0.3 * total_amount + 0.4 * insight_score

    Confidence is the mean insight score per holder. Tokens below
    ``min_confidence`` are dropped only when an insight provider is set;
    without one every token is returned with zero confidence.
    """

    COUNT_WEIGHT = 0.3
    AMOUNT_WEIGHT = 0.3
    INSIGHT_WEIGHT = 0.4

    def __init__(
        self,
        validator: WalletValidator,
        insight_provider: Optional[InsightProvider] = None,
        min_confidence: Optional[float] = None,
    ):
        self.validator = validator
        self.insight_provider = insight_provider
        self.min_confidence = settings.min_confidence if min_confidence is None else min_confidence

    async def _insight_for(self, address: str) -> Optional[WalletInsight]:
        if self.insight_provider is None:
            return None
        try:
            return await self.insight_provider.analyze_wallet(address)
        except Exception as e:
            logger.error("Error analyzing wallet behavior for %s: %s", address, e)
            return None

    async def score_tokens(self, wallets: Iterable[str]) -> List[TokenScore]:
        totals: Dict[str, Dict[str, float]] = {}

        for wallet in wallets:
            holdings = await self.validator.get_wallet_token_accounts(wallet)
            insight = await self._insight_for(wallet)
            insight_score = calculate_insight_score(insight) if insight else 0.0

            for holding in holdings:
                entry = totals.setdefault(holding["mint"], {"count": 0, "amount": 0.0, "insight": 0.0})
                entry["count"] += 1
                entry["amount"] += holding["amount"]
                entry["insight"] += insight_score

        scored: List[TokenScore] = []
        for mint, entry in totals.items():
            count = int(entry["count"])
            score = (
                count * self.COUNT_WEIGHT
                + entry["amount"] * self.AMOUNT_WEIGHT
                + entry["insight"] * self.INSIGHT_WEIGHT
            )
            confidence = entry["insight"] / count if count else 0.0

            if self.insight_provider is not None and confidence < self.min_confidence:
                continue

            scored.append(
                TokenScore(
                    mint=mint,
                    score=score,
                    confidence=confidence,
                    holder_count=count,
                    total_amount=entry["amount"],
                    recommendation=generate_recommendation(confidence, score),
                )
            )

        scored.sort(key=lambda item: item.score, reverse=True)
        return scored


class ActivityRecord(BaseModel):
    address: str
    kind: str
    value: float
    signature: Optional[str] = None
    slot: Optional[int] = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActivityRecorder:
    """Keeps the latest significant activity per wallet from an EventBus."""

    def __init__(self) -> None:
        self._latest: Dict[str, ActivityRecord] = {}
        self.count = 0

    def attach(self, bus: EventBus) -> "ActivityRecorder":
        bus.on_activity(self.record)
        return self

    def detach(self, bus: EventBus) -> None:
        bus.off_activity(self.record)

    def record(self, activity: SignificantActivity) -> None:
        self.count += 1
        self._latest[activity.address] = ActivityRecord(
            address=activity.address,
            kind=activity.event.kind.value,
            value=activity.verdict.value,
            signature=activity.event.signature,
            slot=activity.event.slot,
        )

    def latest(self, address: str) -> Optional[ActivityRecord]:
        return self._latest.get(address)

    def recent_wallets(self) -> List[str]:
        """Wallets ordered by most recent significant activity first."""
        return [
            record.address
            for record in sorted(self._latest.values(), key=lambda r: r.recorded_at, reverse=True)
        ]

    def snapshot(self) -> List[ActivityRecord]:
        return list(self._latest.values())
