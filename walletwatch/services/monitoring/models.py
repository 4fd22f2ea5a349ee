"""
Wallet Monitoring Models

Data structures shared by the registry, normalizer, classifier and event bus.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ActivityKind(str, Enum):
    """Kinds of normalized wallet activity."""

    ACCOUNT_CHANGE = "account_change"
    TRANSACTION = "transaction"


class NotificationKind(str, Enum):
    """Raw pubsub notification streams opened per wallet."""

    ACCOUNT = "account"
    LOGS = "logs"


class TransactionType(str, Enum):
    """Classification tag derived from a transaction's first instruction."""

    TOKEN_TRANSACTION = "token_transaction"
    SYSTEM_TRANSACTION = "system_transaction"
    OTHER = "other"
    UNKNOWN = "unknown"


class WatchedAddress(BaseModel):
    """A wallet accepted for monitoring."""

    address: str
    is_valid: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class SubscriptionHandles:
    """The pair of live chain subscriptions held for one wallet."""

    account_handle: int
    log_handle: int


@dataclass(frozen=True, slots=True)
class RawNotification:
    """A pubsub notification as received, tagged with the wallet it belongs to."""

    address: str
    kind: NotificationKind
    value: Dict[str, Any]
    slot: Optional[int] = None
    received_at: float = 0.0


class AccountChangePayload(BaseModel):
    """Account fields copied verbatim from an account notification."""

    model_config = ConfigDict(frozen=True)

    lamports: int
    owner: Optional[str] = None
    executable: bool = False
    rent_epoch: Optional[int] = None


class TransactionPayload(BaseModel):
    """Summary of the transaction behind a log notification."""

    model_config = ConfigDict(frozen=True)

    signature: str
    transaction_type: TransactionType
    successful: bool
    fee: int = 0
    logs: List[str] = Field(default_factory=list)

    # Parsed body kept so classification does not refetch it
    parsed_transaction: Optional[Dict[str, Any]] = Field(default=None, repr=False)


class ActivityEvent(BaseModel):
    """Normalized, immutable record of one piece of wallet activity."""

    model_config = ConfigDict(frozen=True)

    address: str
    kind: ActivityKind
    timestamp_monotonic: float
    slot: Optional[int] = None
    payload: Union[AccountChangePayload, TransactionPayload]
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def signature(self) -> Optional[str]:
        if isinstance(self.payload, TransactionPayload):
            return self.payload.signature
        return None


class SignificanceVerdict(BaseModel):
    """Outcome of significance classification and the measure behind it."""

    model_config = ConfigDict(frozen=True)

    significant: bool
    value: float = 0.0
    threshold: float = 0.0
    has_token_transfer: Optional[bool] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.significant


class SignificantActivity(BaseModel):
    """What downstream consumers receive: an event plus the verdict that surfaced it."""

    model_config = ConfigDict(frozen=True)

    event: ActivityEvent
    verdict: SignificanceVerdict

    @property
    def address(self) -> str:
        return self.event.address


@dataclass(slots=True)
class ReapReport:
    """Result of one reaper sweep."""

    reaped: List[str] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    remaining: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reaped": list(self.reaped),
            "refreshed": list(self.refreshed),
            "failed": list(self.failed),
            "remaining": self.remaining,
            "started_at": self.started_at.isoformat(),
        }


# Callback types
ActivityCallback = Callable[[SignificantActivity], Union[Awaitable[None], None]]
NotificationSink = Callable[[RawNotification], None]
