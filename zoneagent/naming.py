"""Zone naming conventions and per-instance identity.

Zone names are checked by zonecfg against these rules:
    Must begin with an alpha-numeric character.
    May contain alpha-numeric characters, underbars (_), hyphens (-) and periods (.).
    Must not be longer than 64 characters.
    "global" and all names beginning with "SUNW" are reserved.
"""

from __future__ import annotations

import ipaddress
import random
import re
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

from zoneagent.errors import ConfigurationError

if TYPE_CHECKING:
    from zoneagent.config import Settings

ZONE_NAME_MAX_LEN = 64

# Suffix is "-" plus 20 hex characters
ZONE_SUFFIX_BYTES = 10
ZONE_BASE_MAX_LEN = ZONE_NAME_MAX_LEN - 1 - 2 * ZONE_SUFFIX_BYTES

# Ephemeral port range for the NAT forward, upper bound exclusive
ZONE_PORT_MIN = 1025
ZONE_PORT_MAX = 65534

_ZONE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class ZoneIdentity:
    """Immutable identity of one zone instance."""
    name: str
    port: int
    ip: str


def sanitize_id(value: str, max_len: int = 0) -> str:
    """Sanitize a string for use in zone names.

    Strips all characters except alphanumeric, underscore, dash and period,
    then any leading characters that cannot start a zone name.
    Optionally truncates to max_len if > 0.
    """
    safe = re.sub(r"[^a-zA-Z0-9_.-]", "", value)
    safe = re.sub(r"^[^a-zA-Z0-9]+", "", safe)
    if max_len > 0:
        safe = safe[:max_len]
    return safe


def is_valid_zone_name(name: str) -> bool:
    """Check a zone name against the zonecfg naming rules."""
    if not name or len(name) > ZONE_NAME_MAX_LEN:
        return False
    if name == "global" or name.startswith("SUNW"):
        return False
    return bool(_ZONE_NAME_RE.match(name))


def validate_zone_name(name: str) -> str:
    if not is_valid_zone_name(name):
        raise ConfigurationError(f"Invalid zone name: {name!r}")
    return name


def zone_name(instance_name: str) -> str:
    """Derive a unique zone name from an instance name.

    Format: {safe_instance_name[:43]}-{20 hex chars}
    """
    base = sanitize_id(instance_name, max_len=ZONE_BASE_MAX_LEN) or "zone"
    if base.startswith("SUNW"):
        base = ("z" + base)[:ZONE_BASE_MAX_LEN]
    return f"{base}-{secrets.token_hex(ZONE_SUFFIX_BYTES)}"


def validate_zone_port(port: int) -> int:
    if not ZONE_PORT_MIN <= port < ZONE_PORT_MAX:
        raise ConfigurationError(
            f"Zone port {port} outside [{ZONE_PORT_MIN}, {ZONE_PORT_MAX})"
        )
    return port


def zone_port() -> int:
    return random.randrange(ZONE_PORT_MIN, ZONE_PORT_MAX)


def zone_gateway(subnet: str) -> str:
    """First host of the zone subnet, reserved for the global zone."""
    network = _parse_subnet(subnet)
    return str(network.network_address + 1)


def zone_ip(subnet: str) -> str:
    """Pick a random host address in subnet, skipping the gateway."""
    network = _parse_subnet(subnet)
    if network.num_addresses < 4:
        raise ConfigurationError(f"Zone subnet {subnet} has no room for zones")
    # Skip network address and gateway at the bottom, broadcast at the top
    offset = random.randrange(2, network.num_addresses - 1)
    return str(network.network_address + offset)


def validate_zone_ip(value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value))
    except ValueError as e:
        raise ConfigurationError(f"Invalid zone IP {value!r}: {e}") from e


def _parse_subnet(subnet: str) -> ipaddress.IPv4Network:
    try:
        return ipaddress.IPv4Network(subnet, strict=False)
    except ValueError as e:
        raise ConfigurationError(f"Invalid zone subnet {subnet!r}: {e}") from e


def resolve_identity(instance_name: str, settings: Settings) -> ZoneIdentity:
    """Resolve the identity of one zone instance.

    Explicit settings win over generated values but are validated.
    """
    name = validate_zone_name(settings.zone_name) if settings.zone_name else zone_name(instance_name)
    port = validate_zone_port(settings.zone_port) if settings.zone_port else zone_port()
    ip = validate_zone_ip(settings.zone_ip) if settings.zone_ip else zone_ip(settings.zone_subnet)
    return ZoneIdentity(name=name, port=port, ip=ip)


def zone_prefixlen(subnet: str) -> int:
    return _parse_subnet(subnet).prefixlen
