"""
TamperGuard - Scenario Simulation

Synthesizes per-tick telemetry for the pipeline from a small JSON
description: nominal channel values with a little deterministic noise,
plus timed events that disturb them over a tick range.

    {
      "name": "power-glitch",
      "ticks": 400,
      "nominal": {"voltage": 2048, "temperature": 400},
      "events": [{"kind": "voltage_offset", "start": 200, "duration": 1, "value": -800}]
    }
"""

import json
import random
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Dict, Any, Iterator, List, Optional

from .core import ThreatLevel, all_ones
from .forensics import ForensicRequest
from .governors.recovery import RecoveryInputs
from .monitors import PowerSample, ProcessorObservation, ThermalSample
from .pipeline import RuntimeOverrides, TickInputs


class ScenarioError(ValueError):
    """Raised when a scenario description is malformed."""


EVENT_KINDS = {
    'voltage_offset': 'Add value to the voltage rail',
    'current_offset': 'Add value to the current rail',
    'clock_period': 'Run the monitored clock with a period of value ticks',
    'clock_stop': 'Hold the monitored clock low',
    'temperature_offset': 'Add value to the die temperature',
    'temperature_ramp': 'Ramp the die temperature linearly by value over the event',
    'privilege_escalation': 'Raise privilege by one level per tick, up to value',
    'pc_jump': 'Drive the program counter to value',
    'nmi_storm': 'Assert NMI every tick',
    'mem_oob': 'Access memory at value (default outside the data region)',
    'flush_storm': 'Flush the pipeline every tick',
    'ipc_drop': 'Retire only every value-th tick',
    'manual_override': 'Force the response controller to threat level value',
    'integrity_fail': 'Report failing integrity checks',
    'unstable': 'Report the system as not stable',
    'no_ack': 'Withhold module restore acknowledgements',
}

_DEFAULT_VALUES = {
    'voltage_offset': -800,
    'current_offset': 600,
    'clock_period': 10,
    'temperature_offset': 500,
    'temperature_ramp': 500,
    'privilege_escalation': 3,
    'pc_jump': 0x0080_0000,
    'mem_oob': 0x4000_0000,
    'ipc_drop': 4,
    'manual_override': int(ThreatLevel.HIGH),
}


@dataclass
class ScenarioEvent:
    """A disturbance applied over [start, start + duration)."""
    kind: str
    start: int
    duration: int = 1
    value: Optional[int] = None

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ScenarioError(f"Unknown event kind '{self.kind}'")
        if not isinstance(self.start, int) or self.start < 0:
            raise ScenarioError(f"Event '{self.kind}' start must be a non-negative integer")
        if not isinstance(self.duration, int) or self.duration < 1:
            raise ScenarioError(f"Event '{self.kind}' duration must be a positive integer")
        if self.value is None:
            self.value = _DEFAULT_VALUES.get(self.kind, 0)
        if self.kind == 'manual_override' and self.value not in set(int(level) for level in ThreatLevel):
            raise ScenarioError(f"manual_override value {self.value!r} is not a threat level")

    def active(self, tick: int) -> bool:
        return self.start <= tick < self.start + self.duration

    def elapsed(self, tick: int) -> int:
        """Ticks since the event started, counting the start tick as 1."""
        return tick - self.start + 1


@dataclass
class Nominal:
    """Undisturbed operating point of the protected system."""
    voltage: int = 2048
    current: int = 1024
    power_noise: int = 4
    temperature: int = 400
    thermal_noise: int = 1
    thermal_interval: int = 2      # Temperature sample every N ticks
    clock_period: int = 4          # Monitored clock period in ticks
    code_base: int = 0x1000
    code_span: int = 0x100
    data_base: int = 0x2000_0000
    mem_interval: int = 4          # Memory access every N ticks
    privilege: int = 0
    seed: int = 369

    def __post_init__(self):
        if self.clock_period < 2:
            raise ScenarioError("nominal.clock_period must be at least 2")
        if self.thermal_interval < 1 or self.mem_interval < 1:
            raise ScenarioError("nominal sample intervals must be positive")
        if self.code_span < 4:
            raise ScenarioError("nominal.code_span must be at least 4")


@dataclass
class Scenario:
    """A complete simulated run."""
    name: str
    ticks: int = 400
    description: str = ''
    nominal: Nominal = field(default_factory=Nominal)
    events: List[ScenarioEvent] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.ticks, int) or self.ticks < 1:
            raise ScenarioError("Scenario ticks must be a positive integer")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Scenario':
        if not isinstance(data, dict):
            raise ScenarioError("Scenario must be a JSON object")
        allowed = {f.name for f in fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise ScenarioError(f"Unknown scenario keys: {sorted(unknown)}")
        if 'name' not in data:
            raise ScenarioError("Scenario needs a name")

        nominal_data = data.get('nominal', {})
        if not isinstance(nominal_data, dict):
            raise ScenarioError("Scenario nominal must be an object")
        nominal_allowed = {f.name for f in fields(Nominal)}
        bad = set(nominal_data) - nominal_allowed
        if bad:
            raise ScenarioError(f"Unknown nominal keys: {sorted(bad)}")

        try:
            events = [ScenarioEvent(**e) for e in data.get('events', [])]
        except TypeError as e:
            raise ScenarioError(f"Malformed event: {e}") from e

        return cls(
            name=data['name'],
            ticks=data.get('ticks', 400),
            description=data.get('description', ''),
            nominal=Nominal(**nominal_data),
            events=events
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def load(cls, path: Path) -> 'Scenario':
        """Load a scenario from a JSON file."""
        path = Path(path)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ScenarioError(f"Scenario file {path} is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def _active(self, tick: int) -> Dict[str, ScenarioEvent]:
        """Events active this tick, the latest-starting one winning per kind."""
        active = {}
        for event in sorted(self.events, key=lambda e: e.start):
            if event.active(tick):
                active[event.kind] = event
        return active

    def inputs(self, ticks: Optional[int] = None) -> Iterator[TickInputs]:
        """Yield one TickInputs per tick."""
        nominal = self.nominal
        rng = random.Random(nominal.seed)
        total = self.ticks if ticks is None else ticks

        clock_phase = 0
        pc = nominal.code_base
        privilege = nominal.privilege

        for tick in range(total):
            active = self._active(tick)

            def value(kind):
                return active[kind].value if kind in active else 0

            # Power rails
            voltage = nominal.voltage + value('voltage_offset') + rng.randint(-nominal.power_noise, nominal.power_noise)
            current = nominal.current + value('current_offset') + rng.randint(-nominal.power_noise, nominal.power_noise)
            power = PowerSample(voltage=voltage, current=current, valid=True)

            # Die temperature
            temperature = nominal.temperature + value('temperature_offset')
            if 'temperature_ramp' in active:
                ramp = active['temperature_ramp']
                temperature += ramp.value * ramp.elapsed(tick) // ramp.duration
            temperature += rng.randint(-nominal.thermal_noise, nominal.thermal_noise)
            thermal = ThermalSample(
                temperature=temperature,
                valid=tick % nominal.thermal_interval == 0
            )

            # Monitored clock
            period = max(2, value('clock_period')) if 'clock_period' in active else nominal.clock_period
            if 'clock_stop' in active:
                clk_level = False
            else:
                clk_level = clock_phase < period // 2
                clock_phase = (clock_phase + 1) % period

            # Processor observation bus
            prev_pc = pc
            if 'pc_jump' in active:
                pc = value('pc_jump')
            else:
                offset = (tick * 4) % nominal.code_span
                pc = nominal.code_base + offset

            if 'privilege_escalation' in active:
                event = active['privilege_escalation']
                privilege = nominal.privilege + min(event.elapsed(tick), event.value)
            else:
                privilege = nominal.privilege

            retire = True
            if 'ipc_drop' in active:
                retire = tick % max(1, value('ipc_drop')) == 0

            mem_access = tick % nominal.mem_interval == 0
            mem_addr = nominal.data_base + (tick % 64) * 4
            if 'mem_oob' in active:
                mem_access = True
                mem_addr = value('mem_oob')

            cpu = ProcessorObservation(
                pc=pc,
                prev_pc=prev_pc,
                retire=retire,
                flush='flush_storm' in active,
                exception=False,
                nmi='nmi_storm' in active,
                privilege=privilege,
                mem_addr=mem_addr,
                mem_access=mem_access,
                mem_write=mem_access and tick % 2 == 0
            )

            # External recovery sequencer answers every request
            recovery = RecoveryInputs(
                integ_done=True,
                integ_pass='integrity_fail' not in active,
                restore_ack=0 if 'no_ack' in active else all_ones(32),
                sys_stable='unstable' not in active
            )

            overrides = RuntimeOverrides()
            if 'manual_override' in active:
                overrides = RuntimeOverrides(
                    manual_override_enable=True,
                    manual_override_level=ThreatLevel(value('manual_override'))
                )

            yield TickInputs(
                power=power,
                thermal=thermal,
                clk_level=clk_level,
                ref_pulse=tick % 64 == 0,
                cpu=cpu,
                recovery=recovery,
                forensic=ForensicRequest(),
                overrides=overrides
            )


def _scenario(name: str, description: str, events: List[ScenarioEvent], ticks: int = 400) -> Scenario:
    return Scenario(name=name, ticks=ticks, description=description, events=events)


BUILTIN_SCENARIOS = {
    'quiet': _scenario(
        'quiet', 'Nominal telemetry only; nothing should fire.', []),
    'power-glitch': _scenario(
        'power-glitch', 'A single deep voltage glitch, then a sagging voltage rail with a current surge.', [
            ScenarioEvent('voltage_offset', 200, 1, -800),
            ScenarioEvent('voltage_offset', 260, 12, -120),
            ScenarioEvent('current_offset', 260, 12, 120),
        ]),
    'clock-attack': _scenario(
        'clock-attack', 'Monitored clock slowed to a 10-tick period, then stopped.', [
            ScenarioEvent('clock_period', 200, 80, 10),
            ScenarioEvent('clock_stop', 320, 80),
        ], ticks=480),
    'thermal-ramp': _scenario(
        'thermal-ramp', 'Fast heating ramp past the upper limit, then a sustained hot plateau.', [
            ScenarioEvent('temperature_ramp', 200, 60, 500),
            ScenarioEvent('temperature_offset', 260, 40, 500),
        ]),
    'privilege-escalation': _scenario(
        'privilege-escalation', 'Privilege climbs three levels with no exception taken.', [
            ScenarioEvent('privilege_escalation', 200, 3, 3),
        ]),
    'combined': _scenario(
        'combined', 'Simultaneous power, clock and execution faults.', [
            ScenarioEvent('voltage_offset', 200, 40, -400),
            ScenarioEvent('current_offset', 200, 40, 400),
            ScenarioEvent('clock_period', 200, 40, 12),
            ScenarioEvent('nmi_storm', 200, 40),
            ScenarioEvent('mem_oob', 200, 40),
            ScenarioEvent('pc_jump', 220, 2),
        ], ticks=500),
}


def get_scenario(name: str) -> Scenario:
    """Look up a built-in scenario by name."""
    try:
        return BUILTIN_SCENARIOS[name]
    except KeyError:
        raise ScenarioError(
            f"Unknown scenario '{name}'. Built-in: {', '.join(BUILTIN_SCENARIOS)}"
        ) from None
