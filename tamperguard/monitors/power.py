"""
TamperGuard - Power Rail Monitor

Tracks supply voltage and current against adaptive baselines.

- Sustained deviation on either rail -> voltage_anomaly / current_anomaly
- Single-sample deviation beyond the glitch threshold -> power_glitch

A glitch rides on one sample, which is how voltage fault injection looks
from the rail. Sustained deviations take `sustain_window` samples to
confirm so ordinary supply noise never surfaces.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from ..config import PowerConfig
from ..core import Severity
from .base import ChannelMonitor, EwmaBaseline, SustainCounter


@dataclass(frozen=True)
class PowerSample:
    """Digitized rail sample pair with one validity strobe."""
    voltage: int = 0
    current: int = 0
    valid: bool = False


class PowerMonitor(ChannelMonitor):
    """Voltage + current sub-channels sharing one strobe."""

    channel = 'power'
    flag_names = ('voltage_anomaly', 'current_anomaly', 'power_glitch')
    reading_names = ('voltage', 'current')
    pulse_flags = ('power_glitch',)

    def __init__(self, config: PowerConfig = None):
        self.config = config or PowerConfig()
        cfg = self.config
        self.voltage = EwmaBaseline(cfg.sample_width, cfg.shift, cfg.warmup_samples, cfg.max_shift)
        self.current = EwmaBaseline(cfg.sample_width, cfg.shift, cfg.warmup_samples, cfg.max_shift)
        self.voltage_sustain = SustainCounter(cfg.sustain_window)
        self.current_sustain = SustainCounter(cfg.sustain_window)
        self.glitches_seen = 0
        super().__init__(self.config)

    def step(self, sample: PowerSample, overrides: Optional[Dict[str, int]] = None):
        """Process one tick of rail telemetry."""
        self.check_overrides(overrides)
        if not sample.valid:
            return self._hold()

        self.samples_seen += 1
        shift = (overrides or {}).get('shift')
        v = self.voltage.observe('voltage', sample.voltage, shift)
        i = self.current.observe('current', sample.current, shift)
        ready = self.voltage.ready and self.current.ready

        voltage_anomaly = self.voltage_sustain.step(v.delta > self.threshold('voltage_threshold', overrides))
        current_anomaly = self.current_sustain.step(i.delta > self.threshold('current_threshold', overrides))

        glitch_threshold = self.threshold('glitch_threshold', overrides)
        power_glitch = v.delta > glitch_threshold or i.delta > glitch_threshold
        if ready and power_glitch:
            self.glitches_seen += 1

        flags = {
            'voltage_anomaly': voltage_anomaly,
            'current_anomaly': current_anomaly,
            'power_glitch': power_glitch,
        }
        return self._commit(ready, flags, (v, i))

    def severity_for(self, flags: Dict[str, bool]) -> Severity:
        glitch = flags['power_glitch']
        v = flags['voltage_anomaly']
        i = flags['current_anomaly']

        if glitch and (v or i):
            return Severity.HIGH
        if v and i:
            return Severity.MEDIUM
        if glitch:
            return Severity.MEDIUM
        if v or i:
            return Severity.LOW
        return Severity.NONE

    def get_stats(self):
        stats = super().get_stats()
        stats['glitches_seen'] = self.glitches_seen
        stats['voltage_baseline'] = self.voltage.baseline
        stats['current_baseline'] = self.current.baseline
        return stats

    def reset(self):
        super().reset()
        self.voltage.reset()
        self.current.reset()
        self.voltage_sustain.reset()
        self.current_sustain.reset()
        self.glitches_seen = 0
