"""Structured remote commands for zone administration.

Each remote operation is a RemoteCommand built from typed, validated
parameters and serialized to shell syntax only at the transport boundary.
"""

from __future__ import annotations

import ipaddress
import os
import re
import shlex
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from zoneagent.errors import ConfigurationError
from zoneagent.naming import validate_zone_name, validate_zone_port

if TYPE_CHECKING:
    from zoneagent.config import Settings

SSH_PORT = 22

_INTERFACE_RE = re.compile(r"^[A-Za-z0-9_.]+$")


class CommandKind(str, Enum):
    """Kinds of remote zone operations."""
    ZONE_DEFINE = "zone_define"
    ZONE_CLONE = "zone_clone"
    ZONE_BOOT = "zone_boot"
    ZONE_STATUS = "zone_status"
    NAT_ADD = "nat_add"
    NAT_REMOVE = "nat_remove"
    ZONE_HALT = "zone_halt"
    ZONE_UNINSTALL = "zone_uninstall"
    ZONE_DELETE = "zone_delete"


@dataclass(frozen=True)
class RemoteCommand:
    """A remote command: argv plus optional text fed to its stdin."""
    kind: CommandKind
    argv: tuple[str, ...]
    stdin: str | None = None

    def to_shell(self) -> str:
        """Serialize to a single shell command line."""
        command = shlex.join(self.argv)
        if self.stdin is None:
            return command
        return f"echo {shlex.quote(self.stdin)} | {command}"

    def __str__(self) -> str:
        return self.to_shell()


def _absolute_path(path: str, what: str) -> str:
    if not os.path.isabs(path):
        raise ConfigurationError(f"{what} must be an absolute path: {path!r}")
    return path


def _interface(name: str) -> str:
    if not _INTERFACE_RE.match(name):
        raise ConfigurationError(f"Invalid NAT interface name: {name!r}")
    return name


def _ip(value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value))
    except ValueError as e:
        raise ConfigurationError(f"Invalid zone IP {value!r}: {e}") from e


def nat_rule(interface: str, port: int, ip: str) -> str:
    """ipnat redirect rule forwarding host port to ssh inside the zone."""
    return (
        f"rdr {_interface(interface)} 0.0.0.0/0 port {validate_zone_port(port)} "
        f"-> {_ip(ip)} port {SSH_PORT}"
    )


class ZoneCommands:
    """Build zone commands using the binary paths from settings."""

    def __init__(self, settings: Settings):
        self.zonecfg = _absolute_path(settings.zonecfg_path, "zonecfg_path")
        self.zoneadm = _absolute_path(settings.zoneadm_path, "zoneadm_path")
        self.zlogin = _absolute_path(settings.zlogin_path, "zlogin_path")
        self.ipnat = _absolute_path(settings.ipnat_path, "ipnat_path")
        self.nat_interface = _interface(settings.nat_interface)

    def define(self, zone: str, config_path: str) -> RemoteCommand:
        return RemoteCommand(
            CommandKind.ZONE_DEFINE,
            (self.zonecfg, "-z", validate_zone_name(zone), "-f", _absolute_path(config_path, "zone config")),
        )

    def clone(self, zone: str, profile_path: str, source: str) -> RemoteCommand:
        return RemoteCommand(
            CommandKind.ZONE_CLONE,
            (
                self.zoneadm, "-z", validate_zone_name(zone), "clone",
                "-c", _absolute_path(profile_path, "zone profile"),
                validate_zone_name(source),
            ),
        )

    def boot(self, zone: str) -> RemoteCommand:
        return RemoteCommand(CommandKind.ZONE_BOOT, (self.zoneadm, "-z", validate_zone_name(zone), "boot"))

    def status(self, zone: str) -> RemoteCommand:
        """Succeeds once the zone's network stack answers."""
        return RemoteCommand(
            CommandKind.ZONE_STATUS,
            (self.zlogin, validate_zone_name(zone), "ipadm", "show-addr"),
        )

    def nat_add(self, port: int, ip: str) -> RemoteCommand:
        return RemoteCommand(
            CommandKind.NAT_ADD,
            (self.ipnat, "-f", "-"),
            stdin=nat_rule(self.nat_interface, port, ip),
        )

    def nat_remove(self, port: int, ip: str) -> RemoteCommand:
        return RemoteCommand(
            CommandKind.NAT_REMOVE,
            (self.ipnat, "-r", "-f", "-"),
            stdin=nat_rule(self.nat_interface, port, ip),
        )

    def halt(self, zone: str) -> RemoteCommand:
        return RemoteCommand(CommandKind.ZONE_HALT, (self.zoneadm, "-z", validate_zone_name(zone), "halt"))

    def uninstall(self, zone: str) -> RemoteCommand:
        return RemoteCommand(
            CommandKind.ZONE_UNINSTALL,
            (self.zoneadm, "-z", validate_zone_name(zone), "uninstall", "-F"),
        )

    def delete(self, zone: str) -> RemoteCommand:
        return RemoteCommand(
            CommandKind.ZONE_DELETE,
            (self.zonecfg, "-z", validate_zone_name(zone), "delete", "-F"),
        )
