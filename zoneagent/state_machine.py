"""Zone lifecycle state machine.

Create path:
    unprovisioned -> config_rendered -> zone_defined -> zone_cloned
        -> zone_booted -> nat_configured -> ready
Destroy path:
    ready -> nat_removed -> zone_halted -> zone_uninstalled
        -> zone_deleted -> unprovisioned

The persisted phase is the last *completed* step. The step after it may
have been in flight when a previous invocation failed, so teardown of the
resource that step creates is best-effort.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from zoneagent.state import ZonePhase


class TeardownAction(str, Enum):
    """Remote zone teardown commands, in issue order."""
    HALT = "halt"
    UNINSTALL = "uninstall"
    DELETE = "delete"


@dataclass(frozen=True)
class TeardownStep:
    action: TeardownAction
    required: bool = True


_HALT = TeardownStep(TeardownAction.HALT)
_UNINSTALL = TeardownStep(TeardownAction.UNINSTALL)
_DELETE = TeardownStep(TeardownAction.DELETE)
_FULL_TEARDOWN = (_HALT, _UNINSTALL, _DELETE)


class ZoneStateMachine:
    """Lookup tables for resuming create and destroy."""

    CREATE_SEQUENCE: tuple[ZonePhase, ...] = (
        ZonePhase.UNPROVISIONED,
        ZonePhase.CONFIG_RENDERED,
        ZonePhase.ZONE_DEFINED,
        ZonePhase.ZONE_CLONED,
        ZonePhase.ZONE_BOOTED,
        ZonePhase.NAT_CONFIGURED,
        ZonePhase.READY,
    )

    DESTROY_PHASES: set[ZonePhase] = {
        ZonePhase.NAT_REMOVED,
        ZonePhase.ZONE_HALTED,
        ZonePhase.ZONE_UNINSTALLED,
        ZonePhase.ZONE_DELETED,
    }

    # Phases in which a NAT rule may have been installed
    NAT_POSSIBLE_PHASES: set[ZonePhase] = {
        ZonePhase.ZONE_BOOTED,
        ZonePhase.NAT_CONFIGURED,
        ZonePhase.READY,
    }

    # None means the phase was never recorded: assume the zone fully exists
    TEARDOWN_PLAN: dict[Optional[ZonePhase], tuple[TeardownStep, ...]] = {
        None: _FULL_TEARDOWN,
        ZonePhase.UNPROVISIONED: (),
        ZonePhase.CONFIG_RENDERED: (TeardownStep(TeardownAction.DELETE, required=False),),
        ZonePhase.ZONE_DEFINED: (TeardownStep(TeardownAction.UNINSTALL, required=False), _DELETE),
        ZonePhase.ZONE_CLONED: (TeardownStep(TeardownAction.HALT, required=False), _UNINSTALL, _DELETE),
        ZonePhase.ZONE_BOOTED: _FULL_TEARDOWN,
        ZonePhase.NAT_CONFIGURED: _FULL_TEARDOWN,
        ZonePhase.READY: _FULL_TEARDOWN,
        ZonePhase.NAT_REMOVED: _FULL_TEARDOWN,
        ZonePhase.ZONE_HALTED: (_UNINSTALL, _DELETE),
        ZonePhase.ZONE_UNINSTALLED: (_DELETE,),
        ZonePhase.ZONE_DELETED: (),
    }

    # Phase recorded once each teardown action completes
    TEARDOWN_RESULT: dict[TeardownAction, ZonePhase] = {
        TeardownAction.HALT: ZonePhase.ZONE_HALTED,
        TeardownAction.UNINSTALL: ZonePhase.ZONE_UNINSTALLED,
        TeardownAction.DELETE: ZonePhase.ZONE_DELETED,
    }

    @classmethod
    def is_complete(cls, current: Optional[ZonePhase], target: ZonePhase) -> bool:
        """Check whether the create step reaching target already ran."""
        if current is None or current in cls.DESTROY_PHASES:
            return False
        return cls.CREATE_SEQUENCE.index(current) >= cls.CREATE_SEQUENCE.index(target)

    @classmethod
    def remaining(cls, current: Optional[ZonePhase]) -> list[ZonePhase]:
        """Create phases still to reach, in order."""
        return [p for p in cls.CREATE_SEQUENCE[1:] if not cls.is_complete(current, p)]

    @classmethod
    def teardown_plan(cls, current: Optional[ZonePhase]) -> tuple[TeardownStep, ...]:
        return cls.TEARDOWN_PLAN[current]

    @classmethod
    def nat_rule_may_exist(cls, current: Optional[ZonePhase]) -> bool:
        """Whether create may have installed the ipnat rule by this phase."""
        return current is None or current in cls.NAT_POSSIBLE_PHASES
