"""Zone lifecycle orchestration.

ZoneDriver creates and destroys one Solaris zone on a remote host:

create:
    ensure keypair -> render zone config/profile -> zonecfg define
        -> zoneadm clone -> boot and wait for the network -> ipnat rdr
        -> publish ssh coordinates
destroy:
    remove ipnat rdr -> zoneadm halt -> zoneadm uninstall -> zonecfg delete

Every step is recorded in ProvisioningState as soon as it completes, so a
failed create() can be resumed by calling it again, or cleaned up by
destroy(), and a failed destroy() can be resumed by calling it again.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from zoneagent.commands import RemoteCommand, ZoneCommands
from zoneagent.config import Settings
from zoneagent.errors import ConfigurationError, RemoteExecutionError
from zoneagent.keys import KeyPair, KeyProvider
from zoneagent.naming import ZoneIdentity, resolve_identity, zone_gateway, zone_prefixlen
from zoneagent.render import TemplateRenderer
from zoneagent.state import ProvisioningState, ZonePhase
from zoneagent.state_machine import TeardownAction, TeardownStep, ZoneStateMachine
from zoneagent.timing import ZoneOperationTimer
from zoneagent.transport import CommandChannel, ConnectionParams, SSHTransport, Transport

logger = logging.getLogger(__name__)

RemoteStep = Callable[[CommandChannel, ProvisioningState], Awaitable[None]]


class ZoneDriver:
    """Create and destroy one zone, resuming from persisted state."""

    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        identity: ZoneIdentity,
        key_provider: KeyProvider | None = None,
        renderer: TemplateRenderer | None = None,
    ):
        if settings.boot_poll_interval <= 0:
            raise ConfigurationError(
                f"boot_poll_interval must be positive, got {settings.boot_poll_interval}"
            )
        self.settings = settings
        self.transport = transport
        self.identity = identity
        self.commands = ZoneCommands(settings)
        self.key_provider = key_provider or KeyProvider(
            settings.ssh_private_key,
            settings.ssh_public_key,
            comment=settings.ssh_key_comment,
        )
        self.renderer = renderer or TemplateRenderer(settings.kitchen_root)
        self.connection_params = ConnectionParams.from_settings(settings)

    @classmethod
    def for_instance(
        cls,
        instance_name: str,
        settings: Settings,
        transport: Transport | None = None,
    ) -> "ZoneDriver":
        """Build a driver with a freshly resolved identity and SSH transport."""
        return cls(settings, transport or SSHTransport(), resolve_identity(instance_name, settings))

    @property
    def max_boot_attempts(self) -> int:
        return max(1, self.settings.zone_boot_timeout // self.settings.boot_poll_interval)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create(self, state: ProvisioningState) -> None:
        """Create the zone, skipping steps already recorded in state.

        Raises:
            ZoneError: on any failure; state keeps every completed step
        """
        async with ZoneOperationTimer("create", state.zone_name or self.identity.name):
            await self._create(state)

    async def _create(self, state: ProvisioningState) -> None:
        if state.phase in ZoneStateMachine.DESTROY_PHASES:
            raise ConfigurationError(
                f"Zone {state.zone_name} is being destroyed (phase {state.phase.value}); "
                f"finish destroy before creating it again"
            )

        keypair = await asyncio.to_thread(self.key_provider.ensure_keypair)
        self._record_identity(state)

        if not self._done(state, ZonePhase.CONFIG_RENDERED):
            self._render_config(state, keypair)
            self._advance(state, ZonePhase.CONFIG_RENDERED)

        remote_steps = [
            (target, step) for target, step in self._remote_create_steps()
            if not self._done(state, target)
        ]
        if remote_steps:
            async with self.transport.connection(self.connection_params) as channel:
                for target, step in remote_steps:
                    await step(channel, state)
                    self._advance(state, target)

        if not self._done(state, ZonePhase.READY):
            self._publish_connection(state)
            self._advance(state, ZonePhase.READY)

        logger.info(
            f"Zone '{state.zone_name}' ready at {state.username}@{state.hostname}:{state.port}"
        )

    def _remote_create_steps(self) -> tuple[tuple[ZonePhase, RemoteStep], ...]:
        return (
            (ZonePhase.ZONE_DEFINED, self._define_zone),
            (ZonePhase.ZONE_CLONED, self._clone_zone),
            (ZonePhase.ZONE_BOOTED, self._boot_zone),
            (ZonePhase.NAT_CONFIGURED, self._configure_nat),
        )

    @staticmethod
    def _done(state: ProvisioningState, target: ZonePhase) -> bool:
        return ZoneStateMachine.is_complete(state.phase, target)

    @staticmethod
    def _advance(state: ProvisioningState, phase: ZonePhase) -> None:
        state.update(phase=phase)
        logger.debug(f"Zone '{state.zone_name}' reached {phase.value}")

    def _record_identity(self, state: ProvisioningState) -> None:
        """Copy identity into state before anything remote references it."""
        missing = {
            field: value
            for field, value in (
                ("zone_name", self.identity.name),
                ("zone_port", self.identity.port),
                ("zone_ip", self.identity.ip),
            )
            if getattr(state, field) is None
        }
        if "zone_name" in missing and state.phase is None:
            missing["phase"] = ZonePhase.UNPROVISIONED
        if missing:
            state.update(**missing)

    def _render_config(self, state: ProvisioningState, keypair: KeyPair) -> None:
        context = self._template_context(state, keypair)
        root = Path(self.settings.kitchen_root)
        self.renderer.render_artifact(
            state,
            "zone_config_path",
            self.settings.zone_config_template,
            root / f"{state.zone_name}.cfg",
            context,
        )
        self.renderer.render_artifact(
            state,
            "zone_profile_path",
            self.settings.zone_profile_template,
            root / f"{state.zone_name}.xml",
            context,
        )

    def _template_context(self, state: ProvisioningState, keypair: KeyPair) -> dict[str, Any]:
        return {
            "settings": self.settings,
            "state": state.to_dict(),
            "zone_name": state.zone_name,
            "zone_port": state.zone_port,
            "zone_ip": state.zone_ip,
            "zone_gateway": zone_gateway(self.settings.zone_subnet),
            "zone_prefixlen": zone_prefixlen(self.settings.zone_subnet),
            "public_key": keypair.public_key(),
            "username": self.settings.provisioning_username,
        }

    async def _define_zone(self, channel: CommandChannel, state: ProvisioningState) -> None:
        await channel.execute(self.commands.define(state.zone_name, state.zone_config_path))
        logger.info(f"Defined zone '{state.zone_name}'")

    async def _clone_zone(self, channel: CommandChannel, state: ProvisioningState) -> None:
        await channel.execute(
            self.commands.clone(state.zone_name, state.zone_profile_path, self.settings.zone_template)
        )
        logger.info(f"Cloned zone '{state.zone_name}' from '{self.settings.zone_template}'")

    async def _boot_zone(self, channel: CommandChannel, state: ProvisioningState) -> None:
        # The readiness poll decides success; boot fails harmlessly when
        # a resumed create finds the zone already running.
        result = await channel.try_execute(self.commands.boot(state.zone_name))
        if result.exit_status != 0:
            logger.warning(
                f"Boot of zone '{state.zone_name}' returned {result.exit_status}: "
                f"{result.stderr.strip()}"
            )

        logger.info(f"Waiting for local zone '{state.zone_name}' to be available...")
        await channel.execute_with_retry(
            self.commands.status(state.zone_name),
            [0],
            self.settings.boot_poll_interval,
            self.max_boot_attempts,
        )

    async def _configure_nat(self, channel: CommandChannel, state: ProvisioningState) -> None:
        await channel.execute(self.commands.nat_add(state.zone_port, state.zone_ip))
        logger.info(
            f"Forwarding port {state.zone_port} to {state.zone_ip}:22 for zone '{state.zone_name}'"
        )

    def _publish_connection(self, state: ProvisioningState) -> None:
        state.update(
            hostname=self.settings.transport_host,
            port=state.zone_port,
            username=self.settings.provisioning_username,
        )

    # ------------------------------------------------------------------
    # destroy
    # ------------------------------------------------------------------

    async def destroy(self, state: ProvisioningState) -> None:
        """Destroy whatever state says exists. Safe to call repeatedly.

        Raises:
            ZoneError: on any failure; state keeps what is left to remove
        """
        if not state.has_nat_mapping and state.zone_name is None:
            logger.debug("Nothing to destroy")
            return

        async with ZoneOperationTimer("destroy", state.zone_name):
            await self._destroy(state)

    async def _destroy(self, state: ProvisioningState) -> None:
        if state.has_nat_mapping:
            await self._remove_nat(state)
        if state.zone_name is not None:
            await self._teardown_zone(state)

    async def _remove_nat(self, state: ProvisioningState) -> None:
        rule_may_exist = ZoneStateMachine.nat_rule_may_exist(state.phase)
        if rule_may_exist:
            await self._remove_nat_rule(state)
        else:
            logger.debug(
                f"No NAT rule was installed for port {state.zone_port} "
                f"(phase {state.phase.value}), forgetting it"
            )

        fields: dict[str, Any] = dict.fromkeys(("zone_port", "zone_ip", "hostname", "port", "username"))
        if state.zone_name is None:
            fields["phase"] = ZonePhase.UNPROVISIONED
        elif rule_may_exist:
            fields["phase"] = ZonePhase.NAT_REMOVED
        state.update(**fields)

    async def _remove_nat_rule(self, state: ProvisioningState) -> None:
        command = self.commands.nat_remove(state.zone_port, state.zone_ip)
        async with self.transport.connection(self.connection_params) as channel:
            result = await channel.try_execute(command)
        if result.exit_status != 0:
            # ipnat fails when the rule is already gone
            logger.warning(
                f"Removing NAT rule for port {state.zone_port} returned "
                f"{result.exit_status}: {result.stderr.strip()}"
            )
        else:
            logger.info(f"Removed NAT rule for port {state.zone_port}")

    async def _teardown_zone(self, state: ProvisioningState) -> None:
        plan = ZoneStateMachine.teardown_plan(state.phase)
        if plan:
            async with self.transport.connection(self.connection_params) as channel:
                for step in plan:
                    await self._run_teardown_step(channel, state, step)
                    self._advance(state, ZoneStateMachine.TEARDOWN_RESULT[step.action])

        self._remove_artifacts(state)
        logger.info(f"Destroyed zone '{state.zone_name}'")
        state.update(
            zone_name=None,
            zone_config_path=None,
            zone_profile_path=None,
            phase=ZonePhase.UNPROVISIONED,
        )

    def _teardown_command(self, action: TeardownAction, zone: str) -> RemoteCommand:
        if action is TeardownAction.HALT:
            return self.commands.halt(zone)
        if action is TeardownAction.UNINSTALL:
            return self.commands.uninstall(zone)
        return self.commands.delete(zone)

    async def _run_teardown_step(
        self,
        channel: CommandChannel,
        state: ProvisioningState,
        step: TeardownStep,
    ) -> None:
        command = self._teardown_command(step.action, state.zone_name)

        if not step.required:
            result = await channel.try_execute(command)
            if result.exit_status != 0:
                logger.warning(
                    f"{step.action.value} of zone '{state.zone_name}' returned "
                    f"{result.exit_status}, continuing: {result.stderr.strip()}"
                )
            return

        try:
            await channel.execute(command)
        except RemoteExecutionError as e:
            continue_teardown = (
                step.action is TeardownAction.HALT
                and e.exit_status is not None
                and self.settings.teardown_continue_on_halt_failure
            )
            if not continue_teardown:
                raise
            logger.warning(f"Halt of zone '{state.zone_name}' failed, uninstalling anyway: {e}")

    def _remove_artifacts(self, state: ProvisioningState) -> None:
        for path in (state.zone_config_path, state.zone_profile_path):
            if path is None:
                continue
            try:
                Path(path).unlink(missing_ok=True)
            except OSError as e:
                raise ConfigurationError(f"Failed to remove {path}: {e}") from e
