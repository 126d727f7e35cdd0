"""
TamperGuard - Clock Timing Monitor

Measures the period of an externally clocked signal in system ticks.

The monitored clock is asynchronous to the system tick, so its level is
passed through a two-register synchronizer before edge detection. Each
rising edge after the first closes a period measurement, which becomes
the channel sample.

- Single period far from baseline, or a stopped clock -> clock_glitch
- Period persistently off baseline -> freq_drift
"""

from typing import Dict, Optional

from ..config import TimingConfig
from ..core import Reading, Severity, abs_diff, saturate
from .base import ChannelMonitor, EwmaBaseline, SustainCounter


class Synchronizer:
    """Delay line of `stages` registers for a signal from another clock domain."""

    def __init__(self, stages: int = 2):
        self.stages = [False] * stages

    def step(self, level: bool) -> bool:
        self.stages = [bool(level)] + self.stages[:-1]
        return self.stages[-1]

    def reset(self):
        self.stages = [False] * len(self.stages)


class EdgeDetector:
    """Rising-edge detector on a synchronized level."""

    def __init__(self):
        self.previous = False

    def step(self, level: bool) -> bool:
        rising = level and not self.previous
        self.previous = level
        return rising

    def reset(self):
        self.previous = False


class TimingMonitor(ChannelMonitor):
    """
    Clock period monitor.

    The reference pulse input is synchronized and counted but does not
    feed the period measurement.
    """

    channel = 'timing'
    flag_names = ('clock_glitch', 'freq_drift')
    reading_names = ('period',)
    pulse_flags = ('clock_glitch',)

    def __init__(self, config: TimingConfig = None):
        self.config = config or TimingConfig()
        cfg = self.config
        self.period = EwmaBaseline(cfg.counter_width, cfg.shift, cfg.warmup_samples, cfg.max_shift)
        self.drift_sustain = SustainCounter(cfg.drift_window)
        self.clk_sync = Synchronizer(cfg.sync_stages)
        self.clk_edge = EdgeDetector()
        self.ref_sync = Synchronizer(cfg.sync_stages)
        self.ref_edge = EdgeDetector()
        self.period_counter = 0
        self.seen_edge = False
        self.ref_edges = 0
        self.stalls = 0
        super().__init__(self.config)

    def step(self, clk_level: bool, ref_pulse: bool = False, overrides: Optional[Dict[str, int]] = None):
        """Sample the monitored clock and reference pulse for one tick."""
        self.check_overrides(overrides)

        if self.ref_edge.step(self.ref_sync.step(ref_pulse)):
            self.ref_edges += 1

        rising = self.clk_edge.step(self.clk_sync.step(clk_level))
        self.period_counter = saturate(self.period_counter + 1, self.config.counter_width)

        if not rising:
            return self._between_edges()

        first_edge = not self.seen_edge
        self.seen_edge = True
        period = self.period_counter
        self.period_counter = 0

        # The first edge only opens a measurement
        if first_edge:
            return self._hold()

        self.samples_seen += 1
        reading = self.period.observe('period', period, (overrides or {}).get('shift'))
        ready = self.period.ready

        clock_glitch = reading.delta > self.threshold('glitch_threshold', overrides)
        freq_drift = self.drift_sustain.step(reading.delta > self.threshold('drift_threshold', overrides))

        flags = {'clock_glitch': clock_glitch, 'freq_drift': freq_drift}
        return self._commit(ready, flags, (reading,))

    def _between_edges(self):
        """No edge this tick: hold drift, and flag a stopped clock once ready."""
        stalled = self.verdict.ready and self.period_counter > self.config.stall_ticks
        if not stalled:
            return self._hold()

        if self.period_counter == self.config.stall_ticks + 1:
            self.stalls += 1
        flags = dict(self.verdict.flags)
        flags['clock_glitch'] = True
        live = Reading('period', self.period_counter, self.period.baseline,
                       abs_diff(self.period_counter, self.period.baseline))
        return self._commit(True, flags, (live,))

    def severity_for(self, flags: Dict[str, bool]) -> Severity:
        glitch = flags['clock_glitch']
        drift = flags['freq_drift']

        if glitch and drift:
            return Severity.HIGH
        if glitch:
            return Severity.MEDIUM
        if drift:
            return Severity.LOW
        return Severity.NONE

    def get_stats(self):
        stats = super().get_stats()
        stats.update({
            'period_baseline': self.period.baseline,
            'period_counter': self.period_counter,
            'ref_edges': self.ref_edges,
            'stalls': self.stalls
        })
        return stats

    def reset(self):
        super().reset()
        self.period.reset()
        self.drift_sustain.reset()
        self.clk_sync.reset()
        self.clk_edge.reset()
        self.ref_sync.reset()
        self.ref_edge.reset()
        self.period_counter = 0
        self.seen_edge = False
        self.ref_edges = 0
        self.stalls = 0
