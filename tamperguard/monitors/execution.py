"""
TamperGuard - Execution Monitor

Watches the processor observation bus for the fingerprints of fault
injection and control-flow hijacking:

- IPC deviating from its own baseline (measured per tick window)
- PC jumps larger than the jump threshold or outside the code region
- Privilege rising without an exception having been taken
- Floods of out-of-range memory accesses, NMIs or pipeline flushes

Unlike the analogue channels this monitor runs every tick. Its warm-up is
counted in ticks; IPC additionally waits for its own baseline.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from ..config import ExecutionConfig
from ..core import ChannelVerdict, Reading, Severity, abs_diff, width_max
from .base import ChannelMonitor, EwmaBaseline, SustainCounter, WindowCounter


@dataclass(frozen=True)
class ProcessorObservation:
    """One tick of the processor observation bus."""
    pc: int = 0
    prev_pc: int = 0
    retire: bool = False
    flush: bool = False
    exception: bool = False
    nmi: bool = False
    privilege: int = 0
    mem_addr: int = 0
    mem_access: bool = False
    mem_write: bool = False


class ExecutionMonitor(ChannelMonitor):
    """Execution-behaviour channel."""

    channel = 'execution'
    flag_names = ('pc_jump', 'priv_anomaly', 'mem_oob', 'nmi_flood', 'ipc_anomaly', 'excess_flush')
    reading_names = ('ipc',)

    def __init__(self, config: ExecutionConfig = None):
        self.config = config or ExecutionConfig()
        cfg = self.config
        ipc_width = cfg.ipc_window.bit_length()
        self.ipc = EwmaBaseline(ipc_width, cfg.ipc_shift, cfg.ipc_warmup_windows, max(cfg.ipc_shift, 8))
        self.ipc_window = WindowCounter(cfg.ipc_window)
        self.oob_window = WindowCounter(cfg.event_window)
        self.nmi_window = WindowCounter(cfg.event_window)
        self.flush_window = WindowCounter(cfg.event_window)
        self.priv_sustain = SustainCounter(cfg.priv_confirm)
        self._reset_registers()
        super().__init__(self.config)

    def _reset_registers(self):
        self.ticks_seen = 0
        self.ipc_reading = Reading('ipc')
        self.ipc_flag = False
        self.prev_privilege = 0
        self.last_bad_pc = 0
        self.privilege_escalations = 0
        self.oob_accesses = 0

    def override_names(self):
        return ['jump_threshold', 'ipc_threshold', 'mem_oob_threshold',
                'nmi_threshold', 'flush_threshold', 'shift']

    def step(
        self,
        obs: ProcessorObservation,
        overrides: Optional[Dict[str, int]] = None,
        bounds_check: Optional[bool] = None
    ):
        """Observe one tick of processor activity."""
        self.check_overrides(overrides)
        cfg = self.config
        pc_mask = width_max(cfg.pc_width)

        self.samples_seen += 1
        if self.ticks_seen < cfg.warmup_ticks:
            self.ticks_seen += 1
        ready = self.ticks_seen >= cfg.warmup_ticks

        # IPC over fixed windows
        retired, closed = self.ipc_window.step(obs.retire)
        if closed:
            self.ipc_reading = self.ipc.observe('ipc', retired, (overrides or {}).get('shift'))
            self.ipc_flag = self.ipc.ready and self.ipc_reading.delta > self.threshold('ipc_threshold', overrides)

        # Control flow, recomputed every tick
        pc = obs.pc & pc_mask
        jumped = abs_diff(pc, obs.prev_pc & pc_mask) > self.threshold('jump_threshold', overrides)
        check_bounds = cfg.bounds_check if bounds_check is None else bounds_check
        outside = check_bounds and not (cfg.code_base <= pc <= cfg.code_limit)
        pc_jump = jumped or outside
        if ready and pc_jump:
            self.last_bad_pc = pc

        # Privilege rising with no exception taken; clears on the first tick it stops
        rising = obs.privilege > self.prev_privilege and not obs.exception
        self.prev_privilege = obs.privilege
        priv_anomaly = self.priv_sustain.step(rising)
        if ready and priv_anomaly and not self.verdict.flag('priv_anomaly'):
            self.privilege_escalations += 1

        out_of_range = obs.mem_access and not (cfg.mem_base <= obs.mem_addr <= cfg.mem_limit)
        if out_of_range:
            self.oob_accesses += 1
        oob_count, _ = self.oob_window.step(out_of_range)
        nmi_count, _ = self.nmi_window.step(obs.nmi)
        flush_count, _ = self.flush_window.step(obs.flush)

        flags = {
            'pc_jump': pc_jump,
            'priv_anomaly': priv_anomaly,
            'mem_oob': oob_count >= self.threshold('mem_oob_threshold', overrides),
            'nmi_flood': nmi_count >= self.threshold('nmi_threshold', overrides),
            'ipc_anomaly': self.ipc_flag,
            'excess_flush': flush_count >= self.threshold('flush_threshold', overrides),
        }
        context = {
            'pc': pc,
            'privilege': obs.privilege,
            'last_bad_pc': self.last_bad_pc,
        }
        return self._commit(ready, flags, (self.ipc_reading,), context)

    def severity_for(self, flags: Dict[str, bool]) -> Severity:
        others = any(on for name, on in flags.items() if name != 'nmi_flood')

        if flags['priv_anomaly'] or (flags['nmi_flood'] and others):
            return Severity.HIGH
        if flags['pc_jump'] or flags['mem_oob']:
            return Severity.MEDIUM
        if flags['ipc_anomaly'] or flags['excess_flush'] or flags['nmi_flood']:
            return Severity.LOW
        return Severity.NONE

    def _idle_verdict(self):
        return ChannelVerdict.idle(
            self.channel, self.flag_names, self.reading_names,
            context={'pc': 0, 'privilege': 0, 'last_bad_pc': 0}
        )

    def get_stats(self):
        stats = super().get_stats()
        stats.update({
            'ipc_baseline': self.ipc.baseline,
            'ipc_ready': self.ipc.ready,
            'last_bad_pc': f'0x{self.last_bad_pc:08X}',
            'privilege_escalations': self.privilege_escalations,
            'oob_accesses': self.oob_accesses
        })
        return stats

    def reset(self):
        super().reset()
        self.ipc.reset()
        self.ipc_window.reset()
        self.oob_window.reset()
        self.nmi_window.reset()
        self.flush_window.reset()
        self.priv_sustain.reset()
        self._reset_registers()
