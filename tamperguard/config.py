"""
TamperGuard - Configuration

One dataclass per component, each with working defaults and validation in
`__post_init__`. `PipelineConfig` bundles them and round-trips through
plain dicts and JSON files.
"""

import json
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Dict, Any, Optional

from .core import ConfigError, ThreatLevel, ResponseLevel


def _require(condition: bool, message: str):
    if not condition:
        raise ConfigError(message)


def _positive(name: str, value: int):
    _require(isinstance(value, int) and value > 0, f"{name} must be a positive integer, got {value!r}")


def _member(enum_cls, value):
    """Accept an enum member, its name or its integer value."""
    try:
        if isinstance(value, str):
            return enum_cls[value]
        return enum_cls(int(value))
    except (KeyError, ValueError) as e:
        raise ConfigError(f"{value!r} is not a valid {enum_cls.__name__}") from e


@dataclass
class PowerConfig:
    """Voltage and current rail monitoring."""
    sample_width: int = 12
    shift: int = 4
    max_shift: int = 8
    warmup_samples: int = 16

    voltage_threshold: int = 64
    current_threshold: int = 64
    glitch_threshold: int = 256   # Single-sample deviation on either rail
    sustain_window: int = 4

    def __post_init__(self):
        _positive('power.sample_width', self.sample_width)
        _positive('power.max_shift', self.max_shift)
        _require(1 <= self.shift <= self.max_shift, "power.shift must be within 1..max_shift")
        _positive('power.warmup_samples', self.warmup_samples)
        _positive('power.sustain_window', self.sustain_window)


@dataclass
class TimingConfig:
    """Monitored clock period measurement (in system ticks)."""
    counter_width: int = 16
    shift: int = 3
    max_shift: int = 8
    warmup_samples: int = 16     # Periods, not ticks
    sync_stages: int = 2

    glitch_threshold: int = 3
    drift_threshold: int = 1
    drift_window: int = 8
    stall_ticks: int = 64        # No rising edge for this long is a glitch

    def __post_init__(self):
        _positive('timing.counter_width', self.counter_width)
        _positive('timing.max_shift', self.max_shift)
        _require(1 <= self.shift <= self.max_shift, "timing.shift must be within 1..max_shift")
        _positive('timing.warmup_samples', self.warmup_samples)
        _require(self.sync_stages >= 2, "timing.sync_stages must be at least 2")
        _positive('timing.drift_window', self.drift_window)
        _positive('timing.stall_ticks', self.stall_ticks)
        _require(self.glitch_threshold > self.drift_threshold,
                 "timing.glitch_threshold must exceed timing.drift_threshold")


@dataclass
class ThermalConfig:
    """Die temperature monitoring (raw sensor units)."""
    sample_width: int = 10
    shift: int = 5
    max_shift: int = 8
    warmup_samples: int = 32

    spike_threshold: int = 40
    rate_threshold: int = 16     # Sample-to-sample change that freezes the baseline
    temp_max: int = 850
    temp_min: int = 100
    sustain_window: int = 8

    def __post_init__(self):
        _positive('thermal.sample_width', self.sample_width)
        _positive('thermal.max_shift', self.max_shift)
        _require(1 <= self.shift <= self.max_shift, "thermal.shift must be within 1..max_shift")
        _positive('thermal.warmup_samples', self.warmup_samples)
        _positive('thermal.sustain_window', self.sustain_window)
        _require(self.temp_min < self.temp_max, "thermal.temp_min must be below thermal.temp_max")


@dataclass
class ExecutionConfig:
    """Program counter, privilege and pipeline-event monitoring."""
    pc_width: int = 32
    warmup_ticks: int = 32

    jump_threshold: int = 0x1000
    bounds_check: bool = True
    code_base: int = 0x0000_0000
    code_limit: int = 0x000F_FFFF

    mem_base: int = 0x2000_0000
    mem_limit: int = 0x2003_FFFF

    ipc_window: int = 32
    ipc_shift: int = 3
    ipc_warmup_windows: int = 4
    ipc_threshold: int = 8

    priv_confirm: int = 2

    event_window: int = 64
    mem_oob_threshold: int = 4
    nmi_threshold: int = 8
    flush_threshold: int = 16

    def __post_init__(self):
        _positive('execution.pc_width', self.pc_width)
        _positive('execution.warmup_ticks', self.warmup_ticks)
        _require(self.code_base <= self.code_limit, "execution.code_base must not exceed code_limit")
        _require(self.mem_base <= self.mem_limit, "execution.mem_base must not exceed mem_limit")
        _positive('execution.ipc_window', self.ipc_window)
        _positive('execution.ipc_shift', self.ipc_shift)
        _positive('execution.ipc_warmup_windows', self.ipc_warmup_windows)
        _positive('execution.priv_confirm', self.priv_confirm)
        _positive('execution.event_window', self.event_window)
        _positive('execution.mem_oob_threshold', self.mem_oob_threshold)
        _positive('execution.nmi_threshold', self.nmi_threshold)
        _positive('execution.flush_threshold', self.flush_threshold)


@dataclass
class FusionConfig:
    """Cross-domain fusion."""
    score_width: int = 4
    fused_threshold: int = 6
    corr_window: int = 32
    corr_min_hits: int = 3

    def __post_init__(self):
        _positive('fusion.score_width', self.score_width)
        _require(self.fused_threshold >= 2, "fusion.fused_threshold must be at least 2")
        _positive('fusion.corr_window', self.corr_window)
        _positive('fusion.corr_min_hits', self.corr_min_hits)
        _require(self.corr_min_hits <= self.corr_window,
                 "fusion.corr_min_hits cannot exceed fusion.corr_window")


DEFAULT_WEIGHTS = {
    'priv_anomaly': 40,
    'correlated_attack': 35,
    'power_glitch': 30,
    'clock_glitch': 25,
    'pc_jump': 20,
    'mem_oob': 20,
    'nmi_flood': 15,
    'multi_domain': 15,
    'voltage_anomaly': 10,
    'current_anomaly': 10,
    'temp_hi': 10,
    'temp_lo': 10,
    'freq_drift': 8,
    'ipc_anomaly': 8,
    'excess_flush': 5,
    'temp_rate': 5,
}


@dataclass
class ClassifierConfig:
    """Threat scoring and level thresholds."""
    score_width: int = 8
    low_threshold: int = 10
    medium_threshold: int = 30
    high_threshold: int = 60
    critical_threshold: int = 200
    hysteresis_window: int = 16
    weights: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    def __post_init__(self):
        _positive('classifier.score_width', self.score_width)
        _require(
            0 < self.low_threshold < self.medium_threshold < self.high_threshold < self.critical_threshold,
            "classifier thresholds must be positive and strictly ascending"
        )
        _positive('classifier.hysteresis_window', self.hysteresis_window)
        self.weights = {**DEFAULT_WEIGHTS, **self.weights}
        unknown = set(self.weights) - set(DEFAULT_WEIGHTS)
        _require(not unknown, f"classifier.weights has unknown flags: {sorted(unknown)}")
        for name, weight in self.weights.items():
            _require(isinstance(weight, int) and weight >= 0, f"classifier weight {name} must be >= 0")


DEFAULT_LEVEL_MAP = {
    ThreatLevel.NONE: ResponseLevel.IDLE,
    ThreatLevel.LOW: ResponseLevel.LOG,
    ThreatLevel.MEDIUM: ResponseLevel.ALERT,
    ThreatLevel.HIGH: ResponseLevel.ISOLATE,
    ThreatLevel.CRITICAL: ResponseLevel.LOCKDOWN,
}

LADDER = (
    ResponseLevel.IDLE,
    ResponseLevel.LOG,
    ResponseLevel.ALERT,
    ResponseLevel.THROTTLE,
    ResponseLevel.ISOLATE,
    ResponseLevel.LOCKDOWN,
)


@dataclass
class ResponseConfig:
    """Graded response ladder."""
    module_count: int = 8
    isolation_mask: int = 0x0F        # Modules isolated at ISOLATE
    hold_window: int = 32
    watchdog_timeout: int = 4096
    throttle_div_clock: int = 8       # Divider for clock attacks
    throttle_div_default: int = 4
    level_map: Dict[ThreatLevel, ResponseLevel] = field(default_factory=lambda: dict(DEFAULT_LEVEL_MAP))

    def __post_init__(self):
        _positive('response.module_count', self.module_count)
        _require(0 <= self.isolation_mask < (1 << self.module_count),
                 "response.isolation_mask does not fit module_count")
        _positive('response.hold_window', self.hold_window)
        _positive('response.watchdog_timeout', self.watchdog_timeout)
        _positive('response.throttle_div_clock', self.throttle_div_clock)
        _positive('response.throttle_div_default', self.throttle_div_default)
        self.level_map = {
            _member(ThreatLevel, k): _member(ResponseLevel, v)
            for k, v in self.level_map.items()
        }
        _require(set(self.level_map) == set(ThreatLevel), "response.level_map must cover every threat level")
        _require(all(v in LADDER for v in self.level_map.values()),
                 "response.level_map targets must be ladder levels")
        _require(self.level_map[ThreatLevel.NONE] == ResponseLevel.IDLE,
                 "response.level_map must map NONE to IDLE")


@dataclass
class ForensicConfig:
    """Forensic slot log."""
    slots: int = 16
    warmup_ticks: int = 8

    def __post_init__(self):
        _positive('forensic.slots', self.slots)
        _require(self.warmup_ticks >= 0, "forensic.warmup_ticks must be >= 0")


@dataclass
class RecoveryConfig:
    """Staged recovery sequence."""
    module_count: int = 8
    step_hold: int = 4
    integ_timeout: int = 64
    mod_restore_timeout: int = 256
    max_retry: int = 3

    def __post_init__(self):
        _positive('recovery.module_count', self.module_count)
        _positive('recovery.step_hold', self.step_hold)
        _positive('recovery.integ_timeout', self.integ_timeout)
        _positive('recovery.mod_restore_timeout', self.mod_restore_timeout)
        _positive('recovery.max_retry', self.max_retry)


_SECTIONS = {
    'power': PowerConfig,
    'timing': TimingConfig,
    'thermal': ThermalConfig,
    'execution': ExecutionConfig,
    'fusion': FusionConfig,
    'classifier': ClassifierConfig,
    'response': ResponseConfig,
    'forensic': ForensicConfig,
    'recovery': RecoveryConfig,
}


@dataclass
class PipelineConfig:
    """Every component's configuration in one place."""
    power: PowerConfig = field(default_factory=PowerConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    thermal: ThermalConfig = field(default_factory=ThermalConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    response: ResponseConfig = field(default_factory=ResponseConfig)
    forensic: ForensicConfig = field(default_factory=ForensicConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    state_path: Optional[str] = None

    def __post_init__(self):
        _require(self.response.module_count == self.recovery.module_count,
                 "response.module_count and recovery.module_count must match")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PipelineConfig':
        """Build a config from nested dicts; unknown sections or keys raise ConfigError."""
        unknown = set(data) - set(_SECTIONS) - {'state_path'}
        if unknown:
            raise ConfigError(f"Unknown config sections: {sorted(unknown)}")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name, {})
            if not isinstance(values, dict):
                raise ConfigError(f"Config section '{name}' must be an object")
            allowed = {f.name for f in fields(section_cls)}
            bad = set(values) - allowed
            if bad:
                raise ConfigError(f"Unknown keys in '{name}': {sorted(bad)}")
            try:
                sections[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigError(f"Invalid '{name}' section: {e}") from e

        return cls(state_path=data.get('state_path'), **sections)

    def to_dict(self) -> dict:
        result = {}
        for name in _SECTIONS:
            section = asdict(getattr(self, name))
            if name == 'response':
                section['level_map'] = {k.name: v.name for k, v in self.response.level_map.items()}
            result[name] = section
        result['state_path'] = self.state_path
        return result

    @classmethod
    def load(cls, path: Path) -> 'PipelineConfig':
        """Load a JSON config file."""
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain an object")
        return cls.from_dict(data)

    def save(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))
