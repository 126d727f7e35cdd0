"""
TamperGuard - Fusion Engine

Combines the four domain severities into one score and looks for attacks
that touch several physical domains at once.

Correlation is windowed: multi-domain ticks are counted over a fixed
window, and if enough of them land inside it the correlated-attack flag
is raised for the whole of the following window.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Mapping, Tuple

from .config import FusionConfig
from .core import ChannelVerdict, Severity, saturate

DOMAINS = ('power', 'timing', 'thermal', 'execution')


@dataclass(frozen=True)
class FusedState:
    """Committed fusion output for one tick."""
    score: int = 0
    severity: Severity = Severity.NONE
    multi_domain: bool = False
    correlated_attack: bool = False
    ready: bool = False
    active_domains: Tuple[str, ...] = ()
    deltas: Dict[str, int] = field(default_factory=dict)
    window_tick: int = 0
    window_hits: int = 0

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'severity': self.severity.name,
            'multi_domain': self.multi_domain,
            'correlated_attack': self.correlated_attack,
            'ready': self.ready,
            'active_domains': list(self.active_domains),
            'deltas': dict(self.deltas),
            'window_tick': self.window_tick,
            'window_hits': self.window_hits
        }


class FusionEngine:
    """Cross-domain fusion of channel verdicts."""

    def __init__(self, config: FusionConfig = None):
        self.config = config or FusionConfig()
        self.reset()

    def classify(self, score: int) -> Severity:
        """Two thresholds: the fused threshold and half of it."""
        threshold = self.config.fused_threshold
        if score >= threshold:
            return Severity.HIGH
        if score >= threshold // 2:
            return Severity.MEDIUM
        if score > 0:
            return Severity.LOW
        return Severity.NONE

    def step(self, verdicts: Mapping[str, ChannelVerdict]) -> FusedState:
        """Fuse one tick of committed channel verdicts."""
        missing = [d for d in DOMAINS if d not in verdicts]
        if missing:
            raise KeyError(f"Missing channel verdicts: {missing}")

        severities = {d: int(verdicts[d].severity) for d in DOMAINS}
        active = tuple(d for d in DOMAINS if severities[d] > 0)
        score = saturate(sum(severities.values()), self.config.score_width)
        multi_domain = len(active) >= 2
        ready = all(verdicts[d].ready for d in DOMAINS)

        # The correlation flag shown this tick was decided at the last window close
        correlated = self.correlated
        if multi_domain:
            self.window_hits += 1
            self.multi_domain_ticks += 1
        self.window_tick += 1

        if self.window_tick >= self.config.corr_window:
            self.correlated = self.window_hits >= self.config.corr_min_hits
            if self.correlated:
                self.correlations_raised += 1
            self.window_tick = 0
            self.window_hits = 0

        self.state = FusedState(
            score=score,
            severity=self.classify(score),
            multi_domain=multi_domain,
            correlated_attack=correlated,
            ready=ready,
            active_domains=active,
            deltas={d: verdicts[d].delta for d in DOMAINS},
            window_tick=self.window_tick,
            window_hits=self.window_hits
        )
        return self.state

    def get_stats(self) -> Dict[str, Any]:
        """Get fusion statistics."""
        return {
            'score': self.state.score,
            'severity': self.state.severity.name,
            'correlated_attack': self.correlated,
            'multi_domain_ticks': self.multi_domain_ticks,
            'correlations_raised': self.correlations_raised,
            'window_tick': self.window_tick,
            'window_hits': self.window_hits
        }

    def reset(self):
        self.window_tick = 0
        self.window_hits = 0
        self.correlated = False
        self.multi_domain_ticks = 0
        self.correlations_raised = 0
        self.state = FusedState()
