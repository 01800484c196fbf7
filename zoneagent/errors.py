"""Errors raised by zone lifecycle operations.

Every error is fatal to the create/destroy invocation that raised it.
The only retry is the bounded boot-readiness poll.
"""


class ZoneError(Exception):
    """Base exception for zone provisioning errors."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ZoneError):
    """Malformed or missing template, bad parameter, or key file failure."""


class ResourceNotFoundError(ConfigurationError):
    """A referenced template or key file does not exist."""
    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class RemoteExecutionError(ZoneError):
    """A required remote command exited with an unexpected status."""
    def __init__(
        self,
        message: str,
        command: str = "",
        exit_status: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr


class ReadinessTimeoutError(ZoneError):
    """Polling exhausted its retry budget without an accepted status."""
    def __init__(self, message: str, command: str = "", attempts: int = 0):
        super().__init__(message)
        self.command = command
        self.attempts = attempts
