# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rookcsi/observers/logger.py
from __future__ import annotations

import logging

from .events import BaseEvent

_CONTEXT_FIELDS = ("ts", "run_id", "env", "context")


class LoggerObserver:
    """Writes reconcile events to the log file, tagged with a short pass id."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        etype = event.__class__.__name__
        fields = ", ".join(
            f"{k}={v}" for k, v in event.dict().items()
            if k not in _CONTEXT_FIELDS and v is not None
        )
        failed = etype.endswith("Failed") or getattr(event, "status", None) == "FAILED"
        level = logging.ERROR if failed else logging.INFO
        self.logger.log(level, "[%s] %s: %s", event.run_id[:8], etype, fields)
