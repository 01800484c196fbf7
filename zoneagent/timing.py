"""Timing of zone lifecycle operations and the remote commands they issue.

Both timers observe a Prometheus histogram labelled with a success/error
status and emit one structured log record when the block exits. Failures
to record a metric or a log line are logged and never replace the outcome
of the timed block.

Usage:
    async with ZoneOperationTimer("create", zone_name):
        await self._create(state)

    async with RemoteCommandTimer(command):
        return await self.run(command)
"""
from __future__ import annotations

import logging
import time

from zoneagent.commands import RemoteCommand
from zoneagent.errors import ZoneError
from zoneagent.metrics import (
    remote_command_duration,
    zone_operation_duration,
    zone_operation_errors,
)

logger = logging.getLogger(__name__)


class _Timer:
    """Monotonic stopwatch shared by the async timers below."""

    log_event = ""
    log_level = logging.INFO

    def __init__(self):
        self.duration_ms: int = 0
        self.status: str = "success"
        self._start: float = 0.0

    async def __aenter__(self):
        self._start = time.monotonic()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.monotonic() - self._start
        self.duration_ms = int(elapsed * 1000)
        self.status = "success" if exc_type is None else "error"

        try:
            self._observe(elapsed, exc_type)
        except Exception as e:
            logger.warning(f"Failed to record {self.log_event} metric: {e}")

        try:
            extra = {
                "event": self.log_event,
                "duration_ms": self.duration_ms,
                "status": self.status,
                **self._log_fields(),
            }
            if exc_val is not None:
                extra["error"] = str(exc_val)
            logger.log(self.log_level, "%s %s", self.log_event, self.status, extra=extra)
        except Exception as e:
            logger.debug(f"Failed to log {self.log_event}: {e}")

        return False

    @property
    def success(self) -> bool:
        return self.status == "success"

    def _observe(self, elapsed: float, exc_type) -> None:
        raise NotImplementedError

    def _log_fields(self) -> dict:
        return {}


class ZoneOperationTimer(_Timer):
    """Times one create() or destroy() of a zone.

    A ZoneError leaving the block is also counted in
    zoneagent_zone_operation_errors_total.
    """

    log_event = "zone_operation"

    def __init__(self, operation: str, zone_name: str | None = None):
        super().__init__()
        self.operation = operation
        self.zone_name = zone_name or ""

    def _observe(self, elapsed: float, exc_type) -> None:
        zone_operation_duration.labels(operation=self.operation, status=self.status).observe(elapsed)
        if exc_type is not None and issubclass(exc_type, ZoneError):
            zone_operation_errors.labels(operation=self.operation).inc()

    def _log_fields(self) -> dict:
        return {"operation": self.operation, "zone_name": self.zone_name}


class RemoteCommandTimer(_Timer):
    """Times one remote command, labelled by its kind."""

    log_event = "remote_command"
    log_level = logging.DEBUG

    def __init__(self, command: RemoteCommand):
        super().__init__()
        self.kind = command.kind.value

    def _observe(self, elapsed: float, exc_type) -> None:
        remote_command_duration.labels(kind=self.kind, status=self.status).observe(elapsed)

    def _log_fields(self) -> dict:
        return {"kind": self.kind}
