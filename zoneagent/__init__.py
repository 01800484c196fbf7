"""Ephemeral Solaris zone provisioning for automated testing."""

from zoneagent.driver import ZoneDriver
from zoneagent.errors import (
    ConfigurationError,
    ReadinessTimeoutError,
    RemoteExecutionError,
    ResourceNotFoundError,
    ZoneError,
)
from zoneagent.keys import KeyPair, KeyProvider, ensure_keypair
from zoneagent.naming import ZoneIdentity, resolve_identity
from zoneagent.render import TemplateRenderer
from zoneagent.state import (
    JsonStateStore,
    MemoryStateStore,
    ProvisioningState,
    StateStore,
    ZonePhase,
)
from zoneagent.transport import CommandChannel, ConnectionParams, SSHTransport, Transport

__all__ = [
    # Orchestrator
    "ZoneDriver",
    # Errors
    "ZoneError",
    "ConfigurationError",
    "ResourceNotFoundError",
    "RemoteExecutionError",
    "ReadinessTimeoutError",
    # Collaborators
    "KeyPair",
    "KeyProvider",
    "ensure_keypair",
    "TemplateRenderer",
    "CommandChannel",
    "ConnectionParams",
    "SSHTransport",
    "Transport",
    # Identity and state
    "ZoneIdentity",
    "resolve_identity",
    "ProvisioningState",
    "ZonePhase",
    "StateStore",
    "JsonStateStore",
    "MemoryStateStore",
]
