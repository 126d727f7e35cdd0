"""
TamperGuard - Threat Classifier

Turns channel flags and the fused state into a discrete threat level and
an attack-type classification.

Escalation is immediate: a single tick's score can move IDLE straight to
CRITICAL. De-escalation always passes through HYSTERESIS, which keeps
reporting the level it came from until the score re-qualifies or the
hysteresis window runs out.

A privilege anomaly forces CRITICAL, but only from IDLE. From any other
level it contributes its weight like every other flag. A correlated
attack from the fusion engine forces CRITICAL from every level.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Any, Mapping, Optional

from .config import ClassifierConfig
from .core import AttackCategory, AttackType, ChannelVerdict, ThreatLevel, saturate
from .fusion import FusedState


class ClassifierState(IntEnum):
    """Internal level FSM states. HYSTERESIS is never exposed as a level."""
    IDLE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4
    HYSTERESIS = 5


_LEVEL_OF_STATE = {
    ClassifierState.IDLE: ThreatLevel.NONE,
    ClassifierState.LOW: ThreatLevel.LOW,
    ClassifierState.MEDIUM: ThreatLevel.MEDIUM,
    ClassifierState.HIGH: ThreatLevel.HIGH,
    ClassifierState.CRITICAL: ThreatLevel.CRITICAL,
}

_STATE_OF_LEVEL = {level: state for state, level in _LEVEL_OF_STATE.items()}

POWER_FLAGS = ('voltage_anomaly', 'current_anomaly', 'power_glitch')
CLOCK_FLAGS = ('clock_glitch', 'freq_drift')
THERMAL_FLAGS = ('temp_hi', 'temp_lo', 'temp_spike', 'temp_rate')
FAULT_FLAGS = ('priv_anomaly', 'pc_jump')


@dataclass(frozen=True)
class ThreatState:
    """Committed classifier output for one tick."""
    state: ClassifierState = ClassifierState.IDLE
    level: ThreatLevel = ThreatLevel.NONE
    previous_level: ThreatLevel = ThreatLevel.NONE
    score: int = 0
    attack_type: AttackType = AttackType.NONE
    categories: AttackCategory = AttackCategory.NONE
    hysteresis_count: int = 0
    valid: bool = False
    upgraded: bool = False
    cleared: bool = False
    clear: bool = True
    flags: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'state': self.state.name,
            'level': self.level.name,
            'previous_level': self.previous_level.name,
            'score': self.score,
            'attack_type': self.attack_type.name,
            'categories': int(self.categories),
            'hysteresis_count': self.hysteresis_count,
            'valid': self.valid,
            'upgraded': self.upgraded,
            'cleared': self.cleared,
            'clear': self.clear
        }


def collect_flags(verdicts: Mapping[str, ChannelVerdict], fused: FusedState) -> Dict[str, bool]:
    """Merge every channel's flags with the fused multi-domain/correlation flags."""
    flags: Dict[str, bool] = {}
    for verdict in verdicts.values():
        flags.update(verdict.flags)
    flags['multi_domain'] = fused.multi_domain
    flags['correlated_attack'] = fused.correlated_attack
    return flags


def classify_attack(flags: Mapping[str, bool]):
    """
    Strictly ordered attack-type decision tree.

    Returns:
        (AttackType, AttackCategory)
    """
    def any_of(names):
        return any(flags.get(n, False) for n in names)

    power = flags.get('power_glitch', False) or (
        flags.get('voltage_anomaly', False) and flags.get('current_anomaly', False))
    clock = any_of(CLOCK_FLAGS)
    thermal = any_of(THERMAL_FLAGS)
    fault = any_of(FAULT_FLAGS)
    side = flags.get('ipc_anomaly', False)

    if flags.get('correlated_attack', False) or flags.get('multi_domain', False):
        categories = AttackCategory.NONE
        if any_of(POWER_FLAGS):
            categories |= AttackCategory.POWER
        if clock:
            categories |= AttackCategory.CLOCK
        if thermal:
            categories |= AttackCategory.THERMAL
        if fault:
            categories |= AttackCategory.FAULT
        if side:
            categories |= AttackCategory.SIDE_CHANNEL
        return AttackType.COMBINED, categories

    if fault:
        return AttackType.FAULT_INJECTION, AttackCategory.FAULT
    if power:
        return AttackType.POWER_GLITCH, AttackCategory.POWER
    if clock:
        return AttackType.CLOCK_ATTACK, AttackCategory.CLOCK
    if thermal:
        return AttackType.THERMAL, AttackCategory.THERMAL
    if side:
        return AttackType.SIDE_CHANNEL, AttackCategory.SIDE_CHANNEL
    return AttackType.NONE, AttackCategory.NONE


class ThreatClassifier:
    """
    Level FSM plus attack-type classification.

    Use `step()` in the pipeline; `advance()` drives the level FSM from a
    precomputed weighted score.
    """

    def __init__(self, config: ClassifierConfig = None):
        self.config = config or ClassifierConfig()
        self.reset()

    def weighted_score(self, fused_score: int, flags: Mapping[str, bool]) -> int:
        """Fused score plus the weight of every raised flag, saturating."""
        total = fused_score
        for name, weight in self.config.weights.items():
            if flags.get(name, False):
                total += weight
        return saturate(total, self.config.score_width)

    def qualifying_level(self, score: int) -> ThreatLevel:
        """Highest level whose threshold the score meets."""
        cfg = self.config
        if score >= cfg.critical_threshold:
            return ThreatLevel.CRITICAL
        if score >= cfg.high_threshold:
            return ThreatLevel.HIGH
        if score >= cfg.medium_threshold:
            return ThreatLevel.MEDIUM
        if score >= cfg.low_threshold:
            return ThreatLevel.LOW
        return ThreatLevel.NONE

    def _next_state(self, score: int, priv_anomaly: bool, correlated_attack: bool) -> ClassifierState:
        state = self.fsm_state
        target = self.qualifying_level(score)
        if correlated_attack:
            # A confirmed cross-domain attack goes straight to CRITICAL from any level
            target = ThreatLevel.CRITICAL

        if state == ClassifierState.IDLE:
            if priv_anomaly:
                return ClassifierState.CRITICAL
            return _STATE_OF_LEVEL[target]

        if state == ClassifierState.HYSTERESIS:
            if target != ThreatLevel.NONE and target >= self.held_level:
                return _STATE_OF_LEVEL[target]
            if self.hysteresis_count + 1 >= self.config.hysteresis_window:
                return ClassifierState.IDLE
            return ClassifierState.HYSTERESIS

        current = _LEVEL_OF_STATE[state]
        if target >= current:
            return _STATE_OF_LEVEL[target]
        return ClassifierState.HYSTERESIS

    def _effective_level(self, state: ClassifierState) -> ThreatLevel:
        if state == ClassifierState.HYSTERESIS:
            return self.held_level
        return _LEVEL_OF_STATE[state]

    def advance(
        self,
        score: int,
        priv_anomaly: bool = False,
        correlated_attack: bool = False,
        attack_type: AttackType = AttackType.NONE,
        categories: AttackCategory = AttackCategory.NONE,
        flags: Optional[Dict[str, bool]] = None
    ) -> ThreatState:
        """Run the level FSM for one tick with an already-weighted score."""
        previous_state = self.fsm_state
        previous_level = self._effective_level(previous_state)
        next_state = self._next_state(score, priv_anomaly, correlated_attack)

        if next_state == ClassifierState.HYSTERESIS:
            if previous_state == ClassifierState.HYSTERESIS:
                self.hysteresis_count += 1
            else:
                self.held_level = _LEVEL_OF_STATE[previous_state]
                self.hysteresis_count = 0
        else:
            self.hysteresis_count = 0
            if next_state == ClassifierState.IDLE:
                self.held_level = ThreatLevel.NONE

        self.fsm_state = next_state
        level = self._effective_level(next_state)

        upgraded = next_state != ClassifierState.HYSTERESIS and level > previous_level
        cleared = next_state == ClassifierState.IDLE and previous_state != ClassifierState.IDLE
        valid = next_state not in (ClassifierState.IDLE, ClassifierState.HYSTERESIS)

        if upgraded:
            self.upgrades += 1
        if cleared:
            self.clears += 1
        if level > self.peak_level:
            self.peak_level = level

        self.state = ThreatState(
            state=next_state,
            level=level,
            previous_level=previous_level,
            score=score,
            attack_type=attack_type,
            categories=categories,
            hysteresis_count=self.hysteresis_count,
            valid=valid,
            upgraded=upgraded,
            cleared=cleared,
            clear=next_state == ClassifierState.IDLE,
            flags=dict(flags or {})
        )
        return self.state

    def step(self, verdicts: Mapping[str, ChannelVerdict], fused: FusedState) -> ThreatState:
        """Classify one tick of committed channel verdicts and fused state."""
        flags = collect_flags(verdicts, fused)
        score = self.weighted_score(fused.score, flags)
        attack_type, categories = classify_attack(flags)
        return self.advance(
            score,
            priv_anomaly=flags.get('priv_anomaly', False),
            correlated_attack=flags.get('correlated_attack', False),
            attack_type=attack_type,
            categories=categories,
            flags=flags
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get classifier statistics."""
        return {
            'state': self.fsm_state.name,
            'level': self.state.level.name,
            'score': self.state.score,
            'attack_type': self.state.attack_type.name,
            'held_level': self.held_level.name,
            'hysteresis_count': self.hysteresis_count,
            'upgrades': self.upgrades,
            'clears': self.clears,
            'peak_level': self.peak_level.name
        }

    def reset(self):
        self.fsm_state = ClassifierState.IDLE
        self.held_level = ThreatLevel.NONE
        self.hysteresis_count = 0
        self.upgrades = 0
        self.clears = 0
        self.peak_level = ThreatLevel.NONE
        self.state = ThreatState()
