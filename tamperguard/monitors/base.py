"""
TamperGuard - Channel Monitor Pattern

The building blocks every telemetry channel shares:
- EwmaBaseline: shift-based exponential baseline with warm-up
- SustainCounter: consecutive-violation confirmation
- WindowCounter: event counting over fixed tick windows
- ChannelMonitor: base class wiring them to per-channel rules
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple, Iterable

from ..core import ChannelVerdict, ConfigError, Reading, Severity, abs_diff, saturate


@dataclass
class BaselineState:
    """Registers behind one adaptive baseline."""
    accumulator: int = 0
    baseline: int = 0
    warmup_count: int = 0
    ready: bool = False


class EwmaBaseline:
    """
    Exponential baseline with smoothing factor 2^-shift.

    accumulator' = accumulator - (accumulator >> shift) + sample
    baseline     = accumulator >> shift

    The first valid sample preloads the accumulator with sample << shift.
    The accumulator is sample_width + max_shift bits wide so any permitted
    shift override fits. The channel is not ready until `warmup_samples`
    valid samples have been seen.
    """

    def __init__(self, sample_width: int, shift: int, warmup_samples: int, max_shift: int = 8):
        if not 1 <= shift <= max_shift:
            raise ConfigError(f"shift {shift} outside 1..{max_shift}")
        self.sample_width = sample_width
        self.shift = shift
        self.max_shift = max_shift
        self.warmup_samples = warmup_samples
        self.accumulator_width = sample_width + max_shift
        self.state = BaselineState()

    def resolve_shift(self, override: Optional[int]) -> int:
        """Pick the configured shift or a runtime override."""
        if override is None:
            return self.shift
        if not 1 <= override <= self.max_shift:
            raise ConfigError(f"shift override {override} outside 1..{self.max_shift}")
        return override

    def observe(self, name: str, sample: int, shift: Optional[int] = None, freeze: bool = False) -> Reading:
        """
        Compare a valid sample to the committed baseline, then update.

        Args:
            name: Sub-channel name for the returned reading
            sample: Raw sample (saturated to the sample width)
            shift: Optional runtime shift override
            freeze: Skip the accumulator update this tick (still counts for warm-up)

        Returns:
            Reading with the baseline the sample was compared against
        """
        state = self.state
        shift = self.resolve_shift(shift)
        sample = saturate(sample, self.sample_width)

        reading = Reading(name, sample, state.baseline, abs_diff(sample, state.baseline))

        if state.warmup_count == 0:
            # First valid sample preloads the accumulator
            acc = sample << shift
        elif not freeze:
            acc = state.accumulator - (state.accumulator >> shift) + sample
        else:
            acc = state.accumulator
        state.accumulator = saturate(acc, self.accumulator_width)
        state.baseline = state.accumulator >> shift

        if state.warmup_count < self.warmup_samples:
            state.warmup_count += 1
        state.ready = state.warmup_count >= self.warmup_samples

        return reading

    @property
    def ready(self) -> bool:
        return self.state.ready

    @property
    def baseline(self) -> int:
        return self.state.baseline

    def reset(self):
        self.state = BaselineState()


class SustainCounter:
    """Asserts once a condition has held for `window` consecutive observations."""

    def __init__(self, window: int):
        self.window = window
        self.count = 0

    def step(self, violating: bool) -> bool:
        if not violating:
            self.count = 0
            return False
        self.count = min(self.count + 1, self.window)
        return self.count >= self.window

    @property
    def active(self) -> bool:
        return self.count >= self.window

    def reset(self):
        self.count = 0


class WindowCounter:
    """Counts events over fixed windows of `window` ticks."""

    def __init__(self, window: int):
        self.window = window
        self.tick = 0
        self.count = 0

    def step(self, event: bool) -> Tuple[int, bool]:
        """
        Advance one tick.

        Returns:
            (events counted so far in this window including this tick,
             whether this tick closed the window)
        """
        if event:
            self.count += 1
        count = self.count

        self.tick += 1
        closed = self.tick >= self.window
        if closed:
            self.tick = 0
            self.count = 0

        return count, closed

    def reset(self):
        self.tick = 0
        self.count = 0


class ChannelMonitor(ABC):
    """
    Base class for telemetry channel monitors.

    Subclasses declare their flag and reading names, evaluate their own
    anomaly rules and map flags to a severity. The base class keeps the
    committed verdict and handles threshold overrides.
    """

    channel: str = 'channel'
    flag_names: Tuple[str, ...] = ()
    reading_names: Tuple[str, ...] = ()
    # Single-tick flags that drop on ticks without a valid sample
    pulse_flags: Tuple[str, ...] = ()

    def __init__(self, config):
        self.config = config
        self.verdict = self._idle_verdict()
        self.samples_seen = 0
        self.anomalies_raised = 0

    @abstractmethod
    def severity_for(self, flags: Dict[str, bool]) -> Severity:
        """Map this tick's flags to a 2-bit severity."""
        pass

    def _idle_verdict(self) -> ChannelVerdict:
        return ChannelVerdict.idle(self.channel, self.flag_names, self.reading_names)

    def threshold(self, name: str, overrides: Optional[Dict[str, int]]) -> int:
        """Configured threshold, unless overridden for this tick."""
        if overrides and name in overrides:
            return overrides[name]
        return getattr(self.config, name)

    def check_overrides(self, overrides: Optional[Dict[str, int]]):
        """Reject unknown override keys and out-of-range values."""
        if not overrides:
            return
        allowed = set(self.override_names())
        unknown = set(overrides) - allowed
        if unknown:
            raise ConfigError(f"Unknown {self.channel} overrides: {sorted(unknown)}")
        for name, value in overrides.items():
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(f"{self.channel} override {name} must be a non-negative integer")
        if 'shift' in overrides:
            for baseline in self.baselines():
                baseline.resolve_shift(overrides['shift'])

    def baselines(self) -> List[EwmaBaseline]:
        return [v for v in vars(self).values() if isinstance(v, EwmaBaseline)]

    def override_names(self) -> Iterable[str]:
        names = [n for n in vars(self.config) if n.endswith('_threshold')]
        names.append('shift')
        return names

    def _commit(
        self,
        ready: bool,
        flags: Dict[str, bool],
        readings: Tuple[Reading, ...],
        context: Optional[Dict[str, int]] = None
    ) -> ChannelVerdict:
        """Gate flags on readiness, grade severity and commit the verdict."""
        if not ready:
            flags = {name: False for name in self.flag_names}
        severity = self.severity_for(flags) if ready else Severity.NONE

        if any(flags.values()) and not self.verdict.anomaly:
            self.anomalies_raised += 1

        self.verdict = ChannelVerdict(
            channel=self.channel,
            ready=ready,
            severity=severity,
            flags=flags,
            readings=readings,
            context=dict(context or {})
        )
        return self.verdict

    def _hold(self) -> ChannelVerdict:
        """Re-emit the committed verdict with single-tick flags dropped."""
        verdict = self.verdict
        flags = dict(verdict.flags)
        for name in self.pulse_flags:
            flags[name] = False
        return self._commit(verdict.ready, flags, verdict.readings, verdict.context)

    def get_stats(self) -> Dict[str, Any]:
        """Get monitor statistics."""
        return {
            'channel': self.channel,
            'ready': self.verdict.ready,
            'severity': self.verdict.severity.name,
            'samples_seen': self.samples_seen,
            'anomalies_raised': self.anomalies_raised,
            'active_flags': [name for name, on in self.verdict.flags.items() if on],
            'readings': [r.to_dict() for r in self.verdict.readings]
        }

    def reset(self):
        """Return to the post-reset state."""
        self.verdict = self._idle_verdict()
        self.samples_seen = 0
        self.anomalies_raised = 0
