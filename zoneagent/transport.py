"""Command channels to the global zone.

A Transport opens one logical session per batch of commands. The session
is an async context manager and is closed when the batch ends, whether it
succeeded or not. SSHTransport is the asyncssh implementation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from asyncio import sleep
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Iterable

import asyncssh

from zoneagent.commands import RemoteCommand
from zoneagent.errors import ReadinessTimeoutError, RemoteExecutionError
from zoneagent.timing import RemoteCommandTimer

if TYPE_CHECKING:
    from zoneagent.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionParams:
    """Where and how to reach the global zone."""
    host: str
    port: int = 22
    username: str = "root"
    private_key: str | None = None
    connect_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConnectionParams":
        return cls(
            host=settings.transport_host,
            port=settings.transport_port,
            username=settings.transport_username,
            private_key=settings.transport_private_key or None,
            connect_timeout=settings.connect_timeout,
        )


@dataclass
class CommandResult:
    """Outcome of one remote command."""
    exit_status: int
    stdout: str = ""
    stderr: str = ""


class CommandChannel(ABC):
    """Runs commands on the global zone over an open session."""

    @abstractmethod
    async def run(self, command: RemoteCommand) -> CommandResult:
        """Run a command and return its result whatever the exit status."""
        ...

    async def _run_timed(self, command: RemoteCommand) -> CommandResult:
        logger.debug(f"Running: {command}")
        async with RemoteCommandTimer(command):
            return await self.run(command)

    async def execute(self, command: RemoteCommand) -> int:
        """Run a command that must succeed.

        Raises:
            RemoteExecutionError: on a non-zero exit status
        """
        result = await self._run_timed(command)
        if result.exit_status != 0:
            raise RemoteExecutionError(
                f"{command.kind.value} failed with exit status {result.exit_status}: "
                f"{result.stderr.strip() or result.stdout.strip()}",
                command=command.to_shell(),
                exit_status=result.exit_status,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result.exit_status

    async def try_execute(self, command: RemoteCommand) -> CommandResult:
        """Run a command whose failure is tolerated by the caller.

        A non-zero exit status is returned, not raised. Transport
        failures still raise.
        """
        return await self._run_timed(command)

    async def execute_with_retry(
        self,
        command: RemoteCommand,
        accepted: Iterable[int],
        interval: float,
        max_attempts: int,
    ) -> int:
        """Run a command until its exit status is accepted.

        Sleeps interval seconds between attempts, never after the last one.

        Raises:
            ReadinessTimeoutError: when max_attempts attempts all fail
        """
        accepted = set(accepted)
        for attempt in range(1, max_attempts + 1):
            result = await self._run_timed(command)
            if result.exit_status in accepted:
                return result.exit_status
            logger.debug(
                f"Attempt {attempt}/{max_attempts} of {command.kind.value} "
                f"returned {result.exit_status}"
            )
            if attempt < max_attempts:
                await sleep(interval)
        raise ReadinessTimeoutError(
            f"{command.kind.value} did not return {sorted(accepted)} "
            f"after {max_attempts} attempts",
            command=command.to_shell(),
            attempts=max_attempts,
        )


class Transport(ABC):
    """Opens command sessions to the global zone."""

    @abstractmethod
    def connection(self, params: ConnectionParams):
        """Async context manager yielding a CommandChannel."""
        ...


class SSHCommandChannel(CommandChannel):
    """CommandChannel over an asyncssh connection."""

    def __init__(self, conn: asyncssh.SSHClientConnection, host: str):
        self._conn = conn
        self.host = host

    async def run(self, command: RemoteCommand) -> CommandResult:
        try:
            result = await self._conn.run(command.to_shell(), check=False)
        except (asyncssh.Error, OSError) as e:
            raise RemoteExecutionError(
                f"Failed to run {command.kind.value} on {self.host}: {e}",
                command=command.to_shell(),
            ) from e
        # exit_status is None when the remote process died on a signal
        exit_status = result.exit_status if result.exit_status is not None else -1
        return CommandResult(
            exit_status=exit_status,
            stdout=_text(result.stdout),
            stderr=_text(result.stderr),
        )


class SSHTransport(Transport):
    """Key-authenticated SSH sessions to the global zone."""

    @asynccontextmanager
    async def connection(self, params: ConnectionParams) -> AsyncIterator[SSHCommandChannel]:
        options = {}
        if params.private_key:
            options["client_keys"] = [params.private_key]
        try:
            conn = await asyncssh.connect(
                params.host,
                port=params.port,
                username=params.username,
                known_hosts=None,  # Hosts are ephemeral test machines
                connect_timeout=params.connect_timeout,
                **options,
            )
        except (asyncssh.Error, OSError) as e:
            raise RemoteExecutionError(
                f"SSH connection failed to {params.username}@{params.host}:{params.port}: {e}"
            ) from e

        logger.debug(f"SSH session opened to {params.host}")
        try:
            yield SSHCommandChannel(conn, params.host)
        finally:
            conn.close()
            await conn.wait_closed()
            logger.debug(f"SSH session closed to {params.host}")


def _text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
