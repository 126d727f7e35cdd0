"""
TamperGuard - Threat Pipeline

Central coordinator for the detection-and-response pipeline.

Owns one instance of every stage and advances them together, one tick
per `tick()` call:

    monitors -> fusion -> classifier -> response -> {forensics, recovery}
                                           ^                |
                                           +----------------+

Every stage reads only the previous tick's committed outputs of its
neighbours, so each stage adds exactly one tick of latency and the order
in which stages are stepped inside a tick does not matter.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Callable, Iterable, Optional

from .classifier import ThreatClassifier, ThreatState
from .config import PipelineConfig
from .core import ChannelVerdict, ConfigError, RecoveryState, ThreatLevel
from .events import EventLog
from .forensics import ForensicCapture, ForensicOutput, ForensicRequest, ForensicSnapshot
from .fusion import DOMAINS, FusedState, FusionEngine
from .governors.recovery import RecoveryFSM, RecoveryInputs, RecoveryStatus
from .governors.response import ResponseController, ResponseInputs, ResponseState
from .monitors import (
    ExecutionMonitor, PowerMonitor, PowerSample, ProcessorObservation,
    ThermalMonitor, ThermalSample, TimingMonitor
)


@dataclass(frozen=True)
class RuntimeOverrides:
    """Per-tick operator controls."""
    # channel -> {threshold name or 'shift': value}
    thresholds: Dict[str, Dict[str, int]] = field(default_factory=dict)
    manual_override_enable: bool = False
    manual_override_level: ThreatLevel = ThreatLevel.NONE
    isolation_mask: Optional[int] = None
    bounds_check: Optional[bool] = None


@dataclass(frozen=True)
class TickInputs:
    """Everything the pipeline consumes in one tick."""
    power: PowerSample = field(default_factory=PowerSample)
    thermal: ThermalSample = field(default_factory=ThermalSample)
    clk_level: bool = False
    ref_pulse: bool = False
    cpu: ProcessorObservation = field(default_factory=ProcessorObservation)
    recovery: RecoveryInputs = field(default_factory=RecoveryInputs)
    forensic: ForensicRequest = field(default_factory=ForensicRequest)
    overrides: RuntimeOverrides = field(default_factory=RuntimeOverrides)


@dataclass(frozen=True)
class PipelineStatus:
    """Every committed record after one tick."""
    tick: int = 0
    verdicts: Dict[str, ChannelVerdict] = field(default_factory=dict)
    fused: FusedState = field(default_factory=FusedState)
    threat: ThreatState = field(default_factory=ThreatState)
    response: ResponseState = field(default_factory=ResponseState)
    forensic: ForensicOutput = field(default_factory=ForensicOutput)
    recovery: RecoveryStatus = field(default_factory=RecoveryStatus)

    @property
    def actions(self):
        return self.response.actions

    def to_dict(self) -> dict:
        return {
            'tick': self.tick,
            'verdicts': {name: v.to_dict() for name, v in self.verdicts.items()},
            'fused': self.fused.to_dict(),
            'threat': self.threat.to_dict(),
            'response': self.response.to_dict(),
            'forensic': self.forensic.to_dict(),
            'recovery': self.recovery.to_dict()
        }


class ThreatPipeline:
    """
    The complete tamper-detection pipeline.

    Manages:
    - Four channel monitors (power, timing, thermal, execution)
    - Fusion and classification
    - Response ladder, forensic log and recovery sequencer
    - Event trail of every state change
    """

    def __init__(self, config: PipelineConfig = None, state_path: Optional[Path] = None):
        self.config = config or PipelineConfig()
        cfg = self.config

        self.power = PowerMonitor(cfg.power)
        self.timing = TimingMonitor(cfg.timing)
        self.thermal = ThermalMonitor(cfg.thermal)
        self.execution = ExecutionMonitor(cfg.execution)
        self.fusion = FusionEngine(cfg.fusion)
        self.classifier = ThreatClassifier(cfg.classifier)
        self.response = ResponseController(cfg.response)
        self.forensics = ForensicCapture(cfg.forensic)
        self.recovery = RecoveryFSM(cfg.recovery)

        self.events = EventLog(state_path or cfg.state_path)
        self.reset()

    @property
    def monitors(self) -> Dict[str, Any]:
        return {
            'power': self.power,
            'timing': self.timing,
            'thermal': self.thermal,
            'execution': self.execution,
        }

    def _check_overrides(self, overrides: RuntimeOverrides):
        """Validate every channel's overrides before any stage steps."""
        unknown = set(overrides.thresholds) - set(DOMAINS)
        if unknown:
            raise ConfigError(f"Unknown override channels: {sorted(unknown)}")
        for name, monitor in self.monitors.items():
            monitor.check_overrides(overrides.thresholds.get(name))

    def _snapshot(self, status: PipelineStatus) -> ForensicSnapshot:
        """Forensic snapshot of a committed status."""
        context = status.verdicts['execution'].context
        return ForensicSnapshot(
            tick=status.tick,
            threat_level=status.threat.level,
            attack_type=status.threat.attack_type,
            threat_score=status.threat.score,
            response_level=status.response.level,
            readings={name: verdict.readings for name, verdict in status.verdicts.items()},
            pc=context.get('pc', 0),
            privilege=context.get('privilege', 0),
            last_bad_pc=context.get('last_bad_pc', 0)
        )

    def tick(self, inputs: TickInputs = None) -> PipelineStatus:
        """
        Advance every stage by one tick.

        Args:
            inputs: This tick's telemetry, handshakes and overrides

        Returns:
            The newly committed status
        """
        inputs = inputs or TickInputs()
        overrides = inputs.overrides
        self._check_overrides(overrides)
        thresholds = overrides.thresholds
        prev = self.status

        verdicts = {
            'power': self.power.step(inputs.power, thresholds.get('power')),
            'timing': self.timing.step(inputs.clk_level, inputs.ref_pulse, thresholds.get('timing')),
            'thermal': self.thermal.step(inputs.thermal, thresholds.get('thermal')),
            'execution': self.execution.step(inputs.cpu, thresholds.get('execution'), overrides.bounds_check),
        }

        fused = self.fusion.step(prev.verdicts)
        threat = self.classifier.step(prev.verdicts, prev.fused)

        response = self.response.step(ResponseInputs(
            threat=prev.threat,
            forensic_captured=prev.forensic.capture_done,
            recovery_ready=prev.recovery.recovery_ready,
            recovery_done=prev.recovery.recovery_done,
            permanent_lockdown=prev.recovery.permanent_lockdown,
            override_enable=overrides.manual_override_enable,
            override_level=overrides.manual_override_level,
            isolation_mask=overrides.isolation_mask
        ))

        forensic = self.forensics.step(
            prev.response.forensic_trigger,
            prev.response.threat_valid,
            self._snapshot(prev),
            inputs.forensic
        )

        recovery = self.recovery.step(
            prev.response.recovery_trigger,
            prev.threat.clear,
            inputs.recovery
        )

        self.tick_count += 1
        status = PipelineStatus(
            tick=self.tick_count,
            verdicts=verdicts,
            fused=fused,
            threat=threat,
            response=response,
            forensic=forensic,
            recovery=recovery
        )
        self._log_transitions(prev, status)
        self.status = status
        return status

    def run(
        self,
        inputs: Iterable[TickInputs],
        on_tick: Optional[Callable[[PipelineStatus], None]] = None
    ) -> PipelineStatus:
        """Tick through a sequence of inputs; returns the final status."""
        for tick_inputs in inputs:
            status = self.tick(tick_inputs)
            if on_tick:
                on_tick(status)
        return self.status

    def _log_transitions(self, prev: PipelineStatus, status: PipelineStatus):
        """Log threat, response and recovery state changes."""
        tick = status.tick
        threat = status.threat
        response = status.response
        recovery = status.recovery

        if threat.state != prev.threat.state:
            self.events.log(tick, 'threat_level', {
                'from': prev.threat.state.name,
                'to': threat.state.name,
                'level': threat.level.name,
                'score': threat.score,
                'attack_type': threat.attack_type.name
            })

        if response.level != prev.response.level:
            self.events.log(tick, 'response_level', {
                'from': prev.response.level.name,
                'to': response.level.name,
                'actions': response.actions.active()
            })

        if response.watchdog_expired:
            self.events.log(tick, 'watchdog_expired', {'count': response.watchdog_count})

        if self.forensics.last_written is not None:
            self.events.log(tick, 'forensic_capture', {
                'slot': self.forensics.last_written,
                'occupancy': status.forensic.occupancy
            })
        if status.forensic.dropped_captures > prev.forensic.dropped_captures:
            self.events.log(tick, 'forensic_drop', {
                'slot': status.forensic.write_cursor,
                'dropped_captures': status.forensic.dropped_captures
            })

        if recovery.state != prev.recovery.state:
            self.events.log(tick, 'recovery_state', {
                'from': prev.recovery.state.name,
                'to': recovery.state.name,
                'retry_count': recovery.retry_count
            })
            if recovery.state == RecoveryState.PERM_LOCK:
                self.events.log(tick, 'permanent_lockdown', {'retry_count': recovery.retry_count})

    def get_health(self) -> Dict[str, Any]:
        """Aggregate statistics from every stage."""
        return {
            'tick': self.tick_count,
            'threat_level': self.status.threat.level.name,
            'response_level': self.status.response.level.name,
            'recovery_state': self.status.recovery.state.name,
            'monitors': {name: monitor.get_stats() for name, monitor in self.monitors.items()},
            'fusion': self.fusion.get_stats(),
            'classifier': self.classifier.get_stats(),
            'response': self.response.get_stats(),
            'forensics': self.forensics.get_stats(),
            'recovery': self.recovery.get_stats(),
            'events': self.events.get_stats()
        }

    def reset(self):
        """Return every stage to its post-reset state."""
        for monitor in self.monitors.values():
            monitor.reset()
        self.fusion.reset()
        self.classifier.reset()
        self.response.reset()
        self.forensics.reset()
        self.recovery.reset()

        self.tick_count = 0
        self.status = PipelineStatus(
            verdicts={name: monitor.verdict for name, monitor in self.monitors.items()},
            fused=self.fusion.state,
            threat=self.classifier.state,
            response=self.response.state,
            forensic=self.forensics.output,
            recovery=self.recovery.status
        )
