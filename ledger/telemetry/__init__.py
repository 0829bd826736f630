"""Telemetry package: structured logging of ledger events."""

from ledger.telemetry.logger import (
    EventListener,
    LedgerEventLogger,
)

__all__ = [
    "EventListener",
    "LedgerEventLogger",
]
