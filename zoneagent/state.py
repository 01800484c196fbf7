"""Persisted provisioning state for a zone instance.

ProvisioningState is the record the harness keeps alongside the instance.
The orchestrator reads it, then conditionally mutates single fields; each
mutation is written through to the attached StateStore immediately so a
crash between steps leaves a record that create() can resume from and
destroy() can clean up.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError, field_validator

from zoneagent.errors import ConfigurationError
from zoneagent.naming import ZONE_PORT_MAX, ZONE_PORT_MIN, is_valid_zone_name

logger = logging.getLogger(__name__)


class ZonePhase(str, Enum):
    """Last completed lifecycle step of a zone."""

    UNPROVISIONED = "unprovisioned"
    CONFIG_RENDERED = "config_rendered"
    ZONE_DEFINED = "zone_defined"
    ZONE_CLONED = "zone_cloned"
    ZONE_BOOTED = "zone_booted"
    NAT_CONFIGURED = "nat_configured"
    READY = "ready"
    # Destruction
    NAT_REMOVED = "nat_removed"
    ZONE_HALTED = "zone_halted"
    ZONE_UNINSTALLED = "zone_uninstalled"
    ZONE_DELETED = "zone_deleted"


class StateStore(ABC):
    """Durable key/value storage for one instance's provisioning state."""

    @abstractmethod
    def load(self) -> dict[str, Any]:
        ...

    @abstractmethod
    def save(self, data: dict[str, Any]) -> None:
        ...


class MemoryStateStore(StateStore):
    """Keeps state in memory; for harnesses that persist it themselves."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(data or {})

    def load(self) -> dict[str, Any]:
        return dict(self.data)

    def save(self, data: dict[str, Any]) -> None:
        self.data = dict(data)


class JsonStateStore(StateStore):
    """Persist state as a JSON file, replaced atomically on every save."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Failed to load state file {self.path}: {e}") from e

    def save(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise ConfigurationError(f"Failed to save state file {self.path}: {e}") from e
        logger.debug(f"Saved provisioning state to {self.path}")


class ProvisioningState(BaseModel):
    """Provisioning progress of one zone instance.

    Every field is either None (absent) or valid. Write through update()
    and clear() so changes reach the store.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    zone_name: Optional[str] = None
    zone_port: Optional[int] = None
    zone_ip: Optional[str] = None
    zone_config_path: Optional[str] = None
    zone_profile_path: Optional[str] = None
    hostname: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    phase: Optional[ZonePhase] = None

    _store: StateStore = PrivateAttr(default_factory=MemoryStateStore)

    @field_validator("zone_name")
    @classmethod
    def _check_zone_name(cls, value: str | None) -> str | None:
        if value is not None and not is_valid_zone_name(value):
            raise ValueError(f"invalid zone name {value!r}")
        return value

    @field_validator("zone_port", "port")
    @classmethod
    def _check_port(cls, value: int | None) -> int | None:
        if value is not None and not 0 < value < 65536:
            raise ValueError(f"port {value} out of range")
        return value

    @field_validator("zone_ip")
    @classmethod
    def _check_zone_ip(cls, value: str | None) -> str | None:
        if value is not None:
            return str(ipaddress.IPv4Address(value))
        return value

    @field_validator("zone_config_path", "zone_profile_path", "hostname", "username")
    @classmethod
    def _check_not_empty(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("must not be empty")
        return value

    @classmethod
    def load(cls, store: StateStore) -> "ProvisioningState":
        """Load state from a store and keep writing back to it."""
        try:
            state = cls.model_validate(store.load())
        except ValidationError as e:
            raise ConfigurationError(f"Invalid provisioning state: {e}") from e
        state._store = store
        return state

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def update(self, **fields: Any) -> None:
        """Set fields and persist. Nothing is assigned unless all are valid."""
        try:
            validated = self.model_validate({**self.model_dump(), **fields})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid provisioning state update: {e}") from e
        for name in fields:
            setattr(self, name, getattr(validated, name))
        self.save()

    def clear(self, *names: str) -> None:
        """Remove fields and persist."""
        self.update(**{name: None for name in names})

    def save(self) -> None:
        self._store.save(self.to_dict())

    @property
    def has_nat_mapping(self) -> bool:
        return self.zone_port is not None and self.zone_ip is not None
