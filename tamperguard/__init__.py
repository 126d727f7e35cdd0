"""
TamperGuard - Autonomous Tamper Detection and Response

Watches digitized hardware telemetry and answers attacks on its own:
- Adaptive-baseline monitors for power, clock timing, temperature and execution
- Cross-domain fusion and a hysteretic threat classifier
- A graded response ladder with watchdog-backed lockdown
- A lock-on-write forensic log
- A staged, retry-bounded recovery sequence

Everything advances in lockstep, one tick per ThreatPipeline.tick() call.
"""

from .core import (
    AttackCategory, AttackType, ChannelVerdict, ConfigError, Reading,
    RecoveryState, ResponseLevel, Severity, ThreatLevel
)
from .config import (
    PipelineConfig, PowerConfig, TimingConfig, ThermalConfig, ExecutionConfig,
    FusionConfig, ClassifierConfig, ResponseConfig, ForensicConfig, RecoveryConfig
)
from .monitors import (
    PowerMonitor, PowerSample, TimingMonitor, ThermalMonitor, ThermalSample,
    ExecutionMonitor, ProcessorObservation
)
from .fusion import FusionEngine, FusedState
from .classifier import ThreatClassifier, ThreatState, classify_attack
from .governors import (
    ResponseController, ResponseActions, ResponseInputs, ResponseState,
    RecoveryFSM, RecoveryInputs, RecoveryStatus
)
from .forensics import ForensicCapture, ForensicRequest, ForensicSnapshot, ForensicOutput
from .events import EventLog, EventEntry
from .pipeline import ThreatPipeline, TickInputs, RuntimeOverrides, PipelineStatus
from .scenario import Scenario, ScenarioEvent, ScenarioError, BUILTIN_SCENARIOS, get_scenario

__version__ = '0.1.0'
