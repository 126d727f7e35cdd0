"""
TamperGuard - Monitors

One adaptive-baseline pattern, four telemetry channels:
- PowerMonitor: voltage and current rails
- TimingMonitor: monitored clock period
- ThermalMonitor: die temperature
- ExecutionMonitor: PC, privilege, IPC and pipeline events
"""

from .base import ChannelMonitor, EwmaBaseline, BaselineState, SustainCounter, WindowCounter
from .power import PowerMonitor, PowerSample
from .timing import TimingMonitor, Synchronizer, EdgeDetector
from .thermal import ThermalMonitor, ThermalSample
from .execution import ExecutionMonitor, ProcessorObservation
