"""
Wallet Activity Monitoring

Subscribes to account and log notifications for watched wallets,
normalizes them into ActivityEvents, keeps the significant ones and fans
them out through an EventBus. Quiet wallets are reaped after a TTL.
"""

from .classifier import SignificanceClassifier
from .event_bus import EventBus, EventChannel
from .models import (
    AccountChangePayload,
    ActivityEvent,
    ActivityKind,
    NotificationKind,
    RawNotification,
    ReapReport,
    SignificanceVerdict,
    SignificantActivity,
    SubscriptionHandles,
    TransactionPayload,
    TransactionType,
    WatchedAddress,
)
from .normalizer import ActivityNormalizer
from .reaper import Reaper
from .registry import AddressLocks, SubscriptionRegistry
from .service import WalletMonitor, get_wallet_monitor
from .watchset import WatchSet

__all__ = [
    # Models
    "AccountChangePayload",
    "ActivityEvent",
    "ActivityKind",
    "NotificationKind",
    "RawNotification",
    "ReapReport",
    "SignificanceVerdict",
    "SignificantActivity",
    "SubscriptionHandles",
    "TransactionPayload",
    "TransactionType",
    "WatchedAddress",
    # Components
    "ActivityNormalizer",
    "AddressLocks",
    "EventBus",
    "EventChannel",
    "Reaper",
    "SignificanceClassifier",
    "SubscriptionRegistry",
    "WatchSet",
    # Facade
    "WalletMonitor",
    "get_wallet_monitor",
]
