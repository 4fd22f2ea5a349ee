"""
Monitoring Errors

Every failure in the monitoring pipeline is contained: the facade turns
validation and subscription failures into ``False``, the worker drops events
that fail normalization, the classifier fails closed, and the reaper retries
failed releases on its next sweep. The types below carry enough context
(address, operation) to diagnose the failure from the log line alone.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Where in the pipeline an error happened."""

    VALIDATION = "validation"
    SUBSCRIPTION = "subscription"
    NORMALIZATION = "normalization"
    CLASSIFICATION = "classification"
    REAP = "reap"


class MonitoringError(Exception):
    """Base class for monitoring failures."""

    category: ErrorCategory = ErrorCategory.SUBSCRIPTION

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.address = address
        self.operation = operation

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.address:
            parts.append(f"address={self.address}")
        return " ".join(parts)


class WalletValidationError(MonitoringError):
    """Address failed the wallet validity check."""

    category = ErrorCategory.VALIDATION

    def __init__(self, address: str, reason: str):
        super().__init__(f"Wallet rejected: {reason}", address=address, operation="validate")
        self.reason = reason


class SubscribeError(MonitoringError):
    """Opening a chain subscription failed; nothing was left behind."""

    category = ErrorCategory.SUBSCRIPTION

    def __init__(self, address: str, message: str = "Subscription failed"):
        super().__init__(message, address=address, operation="subscribe")


class AlreadyMonitoredError(SubscribeError):
    """The address already has a live subscription."""

    def __init__(self, address: str):
        super().__init__(address, "Address is already monitored")


class NotMonitoredError(MonitoringError):
    """The address has no live subscription."""

    category = ErrorCategory.SUBSCRIPTION

    def __init__(self, address: str):
        super().__init__("Address is not monitored", address=address, operation="unsubscribe")


class NormalizationError(MonitoringError):
    """A raw notification could not be turned into an activity event."""

    category = ErrorCategory.NORMALIZATION

    def __init__(self, address: str, message: str):
        super().__init__(message, address=address, operation="normalize")


class ClassificationError(MonitoringError):
    """Significance could not be determined for an event."""

    category = ErrorCategory.CLASSIFICATION

    def __init__(self, address: str, message: str):
        super().__init__(message, address=address, operation="classify")


class ReapPartialFailure(MonitoringError):
    """One address could not be released during a sweep."""

    category = ErrorCategory.REAP

    def __init__(self, address: str, cause: BaseException):
        super().__init__(f"Release failed: {cause}", address=address, operation="reap")
        self.cause = cause
