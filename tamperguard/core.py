"""
TamperGuard - Core Module

Shared vocabulary for the detection pipeline: severity and level enums,
per-channel readings and verdicts, and the fixed-width arithmetic that
every stage uses.

Every stage produces a defined record every tick. Nothing here raises at
run time; configuration problems are reported when components are built.
"""

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Dict, Optional, Tuple, Iterable


class ConfigError(ValueError):
    """Raised when a configuration or override is invalid."""


class Severity(IntEnum):
    """Per-channel and fused 2-bit confidence."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class ThreatLevel(IntEnum):
    """Discrete threat level driving the response ladder."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class AttackType(IntEnum):
    """Coarse attack classification."""
    NONE = 0
    POWER_GLITCH = 1
    CLOCK_ATTACK = 2
    THERMAL = 3
    FAULT_INJECTION = 4
    SIDE_CHANNEL = 5
    COMBINED = 6


class AttackCategory(IntFlag):
    """Per-domain category bits reported alongside the attack type."""
    NONE = 0
    POWER = 1
    CLOCK = 2
    THERMAL = 4
    FAULT = 8
    SIDE_CHANNEL = 16


class ResponseLevel(IntEnum):
    """Response controller states."""
    IDLE = 0
    LOG = 1
    ALERT = 2
    THROTTLE = 3
    ISOLATE = 4
    LOCKDOWN = 5
    RECOVER = 6
    HOLD = 7


class RecoveryState(IntEnum):
    """Recovery FSM states. PERM_LOCK is terminal."""
    IDLE = 0
    INIT = 1
    INTEG_CHECK = 2
    CLK_RAMP = 3
    BUS_RESTORE = 4
    DMA_RESTORE = 5
    MOD_RESTORE = 6
    VALIDATE = 7
    DONE = 8
    FAILED = 9
    PERM_LOCK = 10


def width_max(width: int) -> int:
    """Largest unsigned value representable in `width` bits."""
    return (1 << width) - 1


def saturate(value: int, width: int) -> int:
    """Clamp a value into the unsigned range of `width` bits."""
    if value < 0:
        return 0
    return min(value, width_max(width))


def abs_diff(a: int, b: int) -> int:
    """Unsigned absolute difference."""
    return a - b if a >= b else b - a


def all_ones(count: int) -> int:
    """Bitmask with the low `count` bits set."""
    return (1 << count) - 1


@dataclass(frozen=True)
class Reading:
    """One sub-channel observation compared against its baseline."""
    name: str
    sample: int = 0
    baseline: int = 0
    delta: int = 0

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'sample': self.sample,
            'baseline': self.baseline,
            'delta': self.delta
        }


@dataclass(frozen=True)
class ChannelVerdict:
    """
    Per-channel output for one tick.

    Flags are kind-specific (e.g. `voltage_anomaly`, `clock_glitch`).
    Readings carry raw, baseline and delta values for every sub-channel.
    """
    channel: str
    ready: bool = False
    severity: Severity = Severity.NONE
    flags: Dict[str, bool] = field(default_factory=dict)
    readings: Tuple[Reading, ...] = ()
    context: Dict[str, int] = field(default_factory=dict)

    @property
    def anomaly(self) -> bool:
        return any(self.flags.values())

    def flag(self, name: str) -> bool:
        return self.flags.get(name, False)

    def reading(self, name: str) -> Optional[Reading]:
        for reading in self.readings:
            if reading.name == name:
                return reading
        return None

    @property
    def delta(self) -> int:
        """Delta of the primary (first) sub-channel."""
        return self.readings[0].delta if self.readings else 0

    @property
    def baseline(self) -> int:
        return self.readings[0].baseline if self.readings else 0

    @classmethod
    def idle(
        cls,
        channel: str,
        flag_names: Iterable[str],
        reading_names: Iterable[str],
        context: Optional[Dict[str, int]] = None
    ) -> 'ChannelVerdict':
        """The record a channel emits straight after reset."""
        return cls(
            channel=channel,
            flags={name: False for name in flag_names},
            readings=tuple(Reading(name) for name in reading_names),
            context=dict(context or {})
        )

    def to_dict(self) -> dict:
        return {
            'channel': self.channel,
            'ready': self.ready,
            'severity': self.severity.name,
            'flags': dict(self.flags),
            'readings': [r.to_dict() for r in self.readings],
            'context': dict(self.context)
        }
