"""
TamperGuard - Thermal Monitor

Die temperature against an adaptive baseline and absolute limits.

A fast sample-to-sample change freezes the baseline for that tick, so an
attacker cannot drag the baseline toward an attack temperature with a
staircase of quick steps. Genuine fast transients cost one stale
baseline tick each.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from ..config import ThermalConfig
from ..core import Severity, abs_diff, saturate
from .base import ChannelMonitor, EwmaBaseline, SustainCounter


@dataclass(frozen=True)
class ThermalSample:
    """Digitized temperature sample."""
    temperature: int = 0
    valid: bool = False


class ThermalMonitor(ChannelMonitor):
    """Temperature channel with rate-of-change baseline freeze."""

    channel = 'thermal'
    flag_names = ('temp_hi', 'temp_lo', 'temp_spike', 'temp_rate')
    reading_names = ('temperature',)
    pulse_flags = ('temp_spike', 'temp_rate')

    def __init__(self, config: ThermalConfig = None):
        self.config = config or ThermalConfig()
        cfg = self.config
        self.temperature = EwmaBaseline(cfg.sample_width, cfg.shift, cfg.warmup_samples, cfg.max_shift)
        self.hi_sustain = SustainCounter(cfg.sustain_window)
        self.lo_sustain = SustainCounter(cfg.sustain_window)
        self.previous_sample: Optional[int] = None
        self.frozen_ticks = 0
        super().__init__(self.config)

    def step(self, sample: ThermalSample, overrides: Optional[Dict[str, int]] = None):
        """Process one temperature sample."""
        self.check_overrides(overrides)
        if not sample.valid:
            return self._hold()

        self.samples_seen += 1
        value = saturate(sample.temperature, self.config.sample_width)

        rate = 0 if self.previous_sample is None else abs_diff(value, self.previous_sample)
        self.previous_sample = value
        temp_rate = rate > self.threshold('rate_threshold', overrides)
        if temp_rate:
            self.frozen_ticks += 1

        reading = self.temperature.observe('temperature', value, (overrides or {}).get('shift'), freeze=temp_rate)
        ready = self.temperature.ready

        flags = {
            'temp_hi': self.hi_sustain.step(value > self.config.temp_max),
            'temp_lo': self.lo_sustain.step(value < self.config.temp_min),
            'temp_spike': reading.delta > self.threshold('spike_threshold', overrides),
            'temp_rate': temp_rate,
        }
        return self._commit(ready, flags, (reading,))

    def severity_for(self, flags: Dict[str, bool]) -> Severity:
        sustained = flags['temp_hi'] or flags['temp_lo']
        spike = flags['temp_spike']

        if sustained and spike:
            return Severity.HIGH
        if spike or flags['temp_rate']:
            return Severity.MEDIUM
        if sustained:
            return Severity.LOW
        return Severity.NONE

    def get_stats(self):
        stats = super().get_stats()
        stats['temperature_baseline'] = self.temperature.baseline
        stats['frozen_ticks'] = self.frozen_ticks
        return stats

    def reset(self):
        super().reset()
        self.temperature.reset()
        self.hi_sustain.reset()
        self.lo_sustain.reset()
        self.previous_sample = None
        self.frozen_ticks = 0
