"""Zone agent configuration."""

import os

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Zone agent settings loaded from environment variables."""

    # Working directory for rendered zone artifacts
    kitchen_root: str = os.getcwd()

    # Zone identity overrides (generated per instance if not set)
    zone_name: str = ""
    zone_port: int = 0
    zone_ip: str = ""
    zone_subnet: str = "192.168.128.0/24"

    # Source zone that new zones are cloned from
    zone_template: str = "template"

    # Jinja2 templates, relative to kitchen_root unless absolute
    zone_config_template: str = os.path.join(os.path.dirname(__file__), "templates", "zone.cfg.j2")
    zone_profile_template: str = os.path.join(os.path.dirname(__file__), "templates", "profile.xml.j2")

    # Boot readiness polling (seconds)
    zone_boot_timeout: int = 30
    boot_poll_interval: int = 5

    # Key material shared by every zone
    ssh_private_key: str = os.path.join(os.getcwd(), ".kitchen", "id_rsa")
    ssh_public_key: str = os.path.join(os.getcwd(), ".kitchen", "id_rsa.pub")
    ssh_key_comment: str = "test_kitchen"

    # Global zone connection
    transport_host: str = "localhost"
    transport_port: int = 22
    transport_username: str = "root"
    transport_private_key: str = ""  # asyncssh default keys if empty
    connect_timeout: float = 10.0

    # Account published to consumers of the zone
    provisioning_username: str = "kitchen"

    # Host interface carrying the NAT rule
    nat_interface: str = "net0"

    # Keep tearing down (uninstall/delete) when halt fails
    teardown_continue_on_halt_failure: bool = False

    # Remote binaries
    zonecfg_path: str = "/usr/sbin/zonecfg"
    zoneadm_path: str = "/usr/sbin/zoneadm"
    zlogin_path: str = "/usr/sbin/zlogin"
    ipnat_path: str = "/usr/sbin/ipnat"

    @field_validator(
        "kitchen_root",
        "ssh_private_key",
        "ssh_public_key",
    )
    @classmethod
    def _expand_path(cls, value: str) -> str:
        return os.path.abspath(os.path.expanduser(value))

    class Config:
        env_prefix = "ZONEAGENT_"


settings = Settings()
