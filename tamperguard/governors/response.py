"""
TamperGuard - Response Controller

Maps the active threat level onto a ladder of protective actions.

Each rung adds to the rungs below it:
    LOG      -> event logging
    ALERT    -> alert interrupt and GPIO
    THROTTLE -> clock throttling and DMA halt
    ISOLATE  -> bus isolation, debug disable, masked module isolation
    LOCKDOWN -> every module isolated, system lockdown, PUF lock,
                crypto zeroize for fault-injection or combined attacks,
                and the external watchdog is no longer kicked

The ladder is climbed one rung per tick. A CRITICAL threat or an expired
watchdog jumps straight to LOCKDOWN. Stepping down always goes through
HOLD. LOCKDOWN is only left once forensics have been captured and the
recovery sequencer is ready.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional

from ..classifier import ThreatState
from ..config import LADDER, ResponseConfig
from ..core import AttackType, ResponseLevel, ThreatLevel, all_ones

_WATCHDOG_LEVELS = (
    ResponseLevel.LOG,
    ResponseLevel.ALERT,
    ResponseLevel.THROTTLE,
    ResponseLevel.ISOLATE,
    ResponseLevel.HOLD,
)

_ZEROIZE_ATTACKS = (AttackType.FAULT_INJECTION, AttackType.COMBINED)


@dataclass(frozen=True)
class ResponseActions:
    """The action vector driven to the protected system."""
    log_enable: bool = False
    alert_irq: bool = False
    alert_gpio: bool = False
    clk_throttle: bool = False
    clk_divider: int = 1
    dma_halt: bool = False
    bus_isolate: bool = False
    debug_disable: bool = False
    isolation_mask: int = 0
    system_lockdown: bool = False
    puf_lock: bool = False
    crypto_zeroize: bool = False
    watchdog_kick: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    def active(self) -> List[str]:
        """Names of asserted actions, for display."""
        names = []
        for name, value in asdict(self).items():
            if name == 'watchdog_kick':
                continue
            if name == 'clk_divider':
                if value > 1:
                    names.append(f'clk_div/{value}')
                continue
            if name == 'isolation_mask':
                if value:
                    names.append(f'isolate=0x{value:02X}')
                continue
            if value:
                names.append(name)
        return names


def actions_for(
    level: ResponseLevel,
    attack_type: AttackType,
    isolation_mask: int,
    config: ResponseConfig
) -> ResponseActions:
    """Complete action vector for one response level."""
    full_mask = all_ones(config.module_count)

    if level == ResponseLevel.RECOVER:
        # Isolation stays until the recovery sequencer releases it stage by stage
        return ResponseActions(
            log_enable=True,
            alert_irq=True,
            alert_gpio=True,
            dma_halt=True,
            bus_isolate=True,
            debug_disable=True,
            isolation_mask=full_mask,
            puf_lock=True,
            watchdog_kick=True
        )

    rank = LADDER.index(level)
    throttled = rank >= LADDER.index(ResponseLevel.THROTTLE)
    isolated = rank >= LADDER.index(ResponseLevel.ISOLATE)
    locked = level == ResponseLevel.LOCKDOWN

    if attack_type == AttackType.CLOCK_ATTACK:
        divider = config.throttle_div_clock
    else:
        divider = config.throttle_div_default

    if locked:
        mask = full_mask
    elif isolated:
        mask = isolation_mask & full_mask
    else:
        mask = 0

    return ResponseActions(
        log_enable=rank >= LADDER.index(ResponseLevel.LOG),
        alert_irq=rank >= LADDER.index(ResponseLevel.ALERT),
        alert_gpio=rank >= LADDER.index(ResponseLevel.ALERT),
        clk_throttle=throttled,
        clk_divider=divider if throttled else 1,
        dma_halt=throttled,
        bus_isolate=isolated,
        debug_disable=isolated,
        isolation_mask=mask,
        system_lockdown=locked,
        puf_lock=locked,
        crypto_zeroize=locked and attack_type in _ZEROIZE_ATTACKS,
        watchdog_kick=not locked
    )


@dataclass(frozen=True)
class ResponseInputs:
    """Everything the response controller reads in one tick."""
    threat: ThreatState = field(default_factory=ThreatState)
    forensic_captured: bool = False
    recovery_ready: bool = True
    recovery_done: bool = False
    permanent_lockdown: bool = False
    override_enable: bool = False
    override_level: ThreatLevel = ThreatLevel.NONE
    isolation_mask: Optional[int] = None


@dataclass(frozen=True)
class ResponseState:
    """Committed response output for one tick."""
    level: ResponseLevel = ResponseLevel.IDLE
    previous_level: ResponseLevel = ResponseLevel.IDLE
    held_level: ResponseLevel = ResponseLevel.IDLE
    active_threat: ThreatLevel = ThreatLevel.NONE
    watchdog_count: int = 0
    watchdog_expired: bool = False
    hold_count: int = 0
    actions: ResponseActions = field(default_factory=ResponseActions)
    forensic_trigger: bool = False
    # Validity of the threat this tick answered; travels with forensic_trigger
    threat_valid: bool = False
    recovery_trigger: bool = False

    def to_dict(self) -> dict:
        return {
            'level': self.level.name,
            'previous_level': self.previous_level.name,
            'held_level': self.held_level.name,
            'active_threat': self.active_threat.name,
            'watchdog_count': self.watchdog_count,
            'watchdog_expired': self.watchdog_expired,
            'hold_count': self.hold_count,
            'actions': self.actions.to_dict(),
            'forensic_trigger': self.forensic_trigger,
            'threat_valid': self.threat_valid,
            'recovery_trigger': self.recovery_trigger
        }


def _step_toward(current: ResponseLevel, target: ResponseLevel) -> ResponseLevel:
    """One rung up the ladder toward the target, or stay if already there."""
    here = LADDER.index(current)
    there = LADDER.index(target)
    if there > here:
        return LADDER[here + 1]
    return current


class ResponseController:
    """
    Graded response state machine.

    The watchdog counts ticks spent responding without any new confirmed
    threat event; a silent or stuck pipeline ends in LOCKDOWN.
    """

    def __init__(self, config: ResponseConfig = None):
        self.config = config or ResponseConfig()
        self.reset()

    def _ladder_rank(self, level: ResponseLevel) -> int:
        if level == ResponseLevel.HOLD:
            return LADDER.index(self.held_level)
        if level == ResponseLevel.RECOVER:
            return LADDER.index(ResponseLevel.LOCKDOWN)
        return LADDER.index(level)

    def _next_level(self, target: ResponseLevel, inputs: ResponseInputs, expired: bool) -> ResponseLevel:
        current = self.level

        if current == ResponseLevel.LOCKDOWN:
            if inputs.forensic_captured and inputs.recovery_ready:
                return ResponseLevel.RECOVER
            return ResponseLevel.LOCKDOWN

        if current == ResponseLevel.RECOVER:
            if inputs.permanent_lockdown:
                return ResponseLevel.LOCKDOWN
            if inputs.recovery_done:
                return ResponseLevel.IDLE
            return ResponseLevel.RECOVER

        if expired or target == ResponseLevel.LOCKDOWN:
            return ResponseLevel.LOCKDOWN

        if current == ResponseLevel.HOLD:
            if target != ResponseLevel.IDLE and LADDER.index(target) >= LADDER.index(self.held_level):
                return _step_toward(self.held_level, target)
            if self.hold_count + 1 >= self.config.hold_window:
                return ResponseLevel.IDLE
            return ResponseLevel.HOLD

        if current == ResponseLevel.IDLE:
            return _step_toward(current, target)

        if LADDER.index(target) < LADDER.index(current):
            return ResponseLevel.HOLD
        return _step_toward(current, target)

    def step(self, inputs: ResponseInputs) -> ResponseState:
        """Advance the response ladder one tick."""
        cfg = self.config
        threat = inputs.threat
        active = inputs.override_level if inputs.override_enable else threat.level
        target = cfg.level_map[ThreatLevel(active)]

        # Watchdog: no new confirmed event while responding
        if self.level in _WATCHDOG_LEVELS and not threat.upgraded:
            self.watchdog_count = min(self.watchdog_count + 1, cfg.watchdog_timeout)
        else:
            self.watchdog_count = 0
        expired = self.watchdog_count >= cfg.watchdog_timeout
        if expired:
            self.watchdog_expiries += 1

        previous = self.level
        previous_rank = self._ladder_rank(previous)
        nxt = self._next_level(target, inputs, expired)

        if nxt == ResponseLevel.HOLD:
            if previous == ResponseLevel.HOLD:
                self.hold_count += 1
            else:
                self.held_level = previous
                self.hold_count = 0
        else:
            self.hold_count = 0
            self.held_level = ResponseLevel.IDLE

        if nxt == ResponseLevel.LOCKDOWN or nxt == ResponseLevel.IDLE:
            self.watchdog_count = 0

        self.level = nxt

        escalated = nxt in LADDER and nxt != ResponseLevel.IDLE and self._ladder_rank(nxt) > previous_rank
        forensic_trigger = escalated or nxt == ResponseLevel.LOCKDOWN
        recovery_trigger = nxt == ResponseLevel.RECOVER and previous != ResponseLevel.RECOVER

        if escalated:
            self.escalations += 1
        if nxt == ResponseLevel.LOCKDOWN and previous != ResponseLevel.LOCKDOWN:
            self.lockdowns += 1
        if recovery_trigger:
            self.recoveries_started += 1

        action_level = self.held_level if nxt == ResponseLevel.HOLD else nxt
        mask = cfg.isolation_mask if inputs.isolation_mask is None else inputs.isolation_mask
        actions = actions_for(action_level, threat.attack_type, mask, cfg)

        self.state = ResponseState(
            level=nxt,
            previous_level=previous,
            held_level=self.held_level,
            active_threat=ThreatLevel(active),
            watchdog_count=self.watchdog_count,
            watchdog_expired=expired,
            hold_count=self.hold_count,
            actions=actions,
            forensic_trigger=forensic_trigger,
            threat_valid=threat.valid,
            recovery_trigger=recovery_trigger
        )
        return self.state

    def get_stats(self) -> Dict[str, Any]:
        """Get response controller statistics."""
        return {
            'level': self.level.name,
            'held_level': self.held_level.name,
            'watchdog_count': self.watchdog_count,
            'watchdog_timeout': self.config.watchdog_timeout,
            'escalations': self.escalations,
            'lockdowns': self.lockdowns,
            'watchdog_expiries': self.watchdog_expiries,
            'recoveries_started': self.recoveries_started,
            'active_actions': self.state.actions.active()
        }

    def reset(self):
        self.level = ResponseLevel.IDLE
        self.held_level = ResponseLevel.IDLE
        self.watchdog_count = 0
        self.hold_count = 0
        self.escalations = 0
        self.lockdowns = 0
        self.watchdog_expiries = 0
        self.recoveries_started = 0
        self.state = ResponseState()
