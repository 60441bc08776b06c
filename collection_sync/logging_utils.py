"""
Logging helpers for the sync engine.

The orchestrator logs from timers and background tasks, so a message on its
own rarely says which device, remote snapshot or sync phase it came from.
SyncLoggerAdapter attaches that context to every record as ``extra`` fields.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any


class SyncLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds live sync context to all log messages.

    ``context`` is called once per record, so fields such as the sync state
    and the online flag describe the moment the message was logged rather
    than the moment the adapter was built. Values passed explicitly through
    ``extra`` take precedence over context fields.

    Example:
        >>> log = SyncLoggerAdapter(logger, lambda: {"sync_state": "idle"})
        >>> log.info("Auto-sync started")
    """

    def __init__(self, logger: logging.Logger, context: Callable[[], Mapping[str, Any]]):
        super().__init__(logger, {})
        self.context = context

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        """Merge the current sync context into the record's extra fields."""
        extra = dict(self.context())
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs
