"""
Ledger Event Logger

Every significant decision of the ledger core is written to the structured
local log. Registered listeners receive the same events, which is how
callers (and tests) observe heuristic matches, ignored truncations or
failed flushes without scraping log output.

The logger:
- Is synchronous (nothing is persisted, so there is nothing to await)
- Never lets a failing listener break the operation that emitted the event
"""

from typing import Callable, Optional

import structlog

from ledger.models.events import LedgerEvent, LedgerSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


EventListener = Callable[[LedgerEvent], None]


class LedgerEventLogger:
    """Central event logging service for the ledger core."""

    def __init__(self, profile: Optional[str] = None):
        """
        Initialize the event logger.

        Args:
            profile: Active profile, bound to every log line when given.
        """
        self._logger = structlog.get_logger("ledger")
        if profile:
            self._logger = self._logger.bind(profile=profile)
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener for every future event.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def log(self, event: LedgerEvent) -> None:
        """Log an event locally and forward it to listeners."""
        log_dict = event.to_log_dict()

        if event.severity == LedgerSeverity.ERROR:
            self._logger.error("ledger_event", **log_dict)
        elif event.severity == LedgerSeverity.WARNING:
            self._logger.warning("ledger_event", **log_dict)
        elif event.severity == LedgerSeverity.DEBUG:
            self._logger.debug("ledger_event", **log_dict)
        else:
            self._logger.info("ledger_event", **log_dict)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self._logger.error(
                    "ledger_listener_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
