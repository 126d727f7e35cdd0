"""
TamperGuard - Recovery FSM

Staged, retry-bounded return to normal operation after a lockdown:

    IDLE -> INIT -> INTEG_CHECK -> CLK_RAMP (/8, /4, /2, /1)
         -> BUS_RESTORE -> DMA_RESTORE -> MOD_RESTORE -> VALIDATE -> DONE

Any failed stage lands in FAILED, which retries from INIT until
`max_retry` failures have accumulated. After that the sequencer parks in
PERM_LOCK and only a reset brings it back.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any

from ..config import RecoveryConfig
from ..core import RecoveryState, all_ones

RAMP_DIVIDERS = (8, 4, 2, 1)

# States that simply dwell for step_hold ticks before moving on
_TIMED_STAGES = {
    RecoveryState.INIT: RecoveryState.INTEG_CHECK,
    RecoveryState.BUS_RESTORE: RecoveryState.DMA_RESTORE,
    RecoveryState.DMA_RESTORE: RecoveryState.MOD_RESTORE,
}


@dataclass(frozen=True)
class RecoveryInputs:
    """External handshakes consumed by the recovery sequencer."""
    integ_done: bool = False
    integ_pass: bool = False
    restore_ack: int = 0
    sys_stable: bool = True


@dataclass(frozen=True)
class RecoveryStatus:
    """Committed recovery output for one tick."""
    state: RecoveryState = RecoveryState.IDLE
    retry_count: int = 0
    step_timer: int = 0
    ramp_step: int = 0
    pending_mask: int = 0
    recovery_ready: bool = True
    recovery_done: bool = False
    recovery_failed: bool = False
    permanent_lockdown: bool = False
    integ_check_req: bool = False
    clk_restore: bool = False
    clk_divider: int = 1
    bus_restore: bool = False
    dma_restore: bool = False
    module_restore_mask: int = 0
    debug_restore: bool = False
    puf_restore: bool = False

    def to_dict(self) -> dict:
        result = asdict(self)
        result['state'] = self.state.name
        return result


def _outputs(state: RecoveryState, retry_count: int, step_timer: int, ramp_step: int,
             pending_mask: int, max_retry: int) -> RecoveryStatus:
    """Every output is derived from the state alone; nothing is carried over."""
    in_ramp = state == RecoveryState.CLK_RAMP
    done = state == RecoveryState.DONE
    return RecoveryStatus(
        state=state,
        retry_count=retry_count,
        step_timer=step_timer,
        ramp_step=ramp_step,
        pending_mask=pending_mask,
        recovery_ready=(
            state == RecoveryState.IDLE
            or (state == RecoveryState.FAILED and retry_count < max_retry)
        ),
        recovery_done=done,
        recovery_failed=state == RecoveryState.FAILED,
        permanent_lockdown=state == RecoveryState.PERM_LOCK,
        integ_check_req=state == RecoveryState.INTEG_CHECK,
        clk_restore=in_ramp,
        clk_divider=RAMP_DIVIDERS[ramp_step] if in_ramp else 1,
        bus_restore=state == RecoveryState.BUS_RESTORE,
        dma_restore=state == RecoveryState.DMA_RESTORE,
        module_restore_mask=pending_mask if state == RecoveryState.MOD_RESTORE else 0,
        debug_restore=done,
        puf_restore=done
    )


class RecoveryFSM:
    """
    Recovery sequencer.

    `step()` takes the response controller's recovery trigger, the
    classifier's clear level and the external handshakes.
    """

    def __init__(self, config: RecoveryConfig = None):
        self.config = config or RecoveryConfig()
        self.reset()

    def _enter(self, state: RecoveryState):
        self.state = state
        self.step_timer = 0

    def _dwell(self) -> bool:
        """Count one tick in the current stage; True when the hold is complete."""
        if self.step_timer + 1 >= self.config.step_hold:
            return True
        self.step_timer += 1
        return False

    def _fail(self):
        self.retry_count += 1
        self.failures += 1
        self.pending_mask = 0
        self._enter(RecoveryState.FAILED)

    def step(self, trigger: bool, threat_clear: bool, inputs: RecoveryInputs = None) -> RecoveryStatus:
        """Advance the sequencer one tick."""
        cfg = self.config
        inputs = inputs or RecoveryInputs()
        state = self.state

        if state == RecoveryState.IDLE:
            if trigger:
                self.retry_count = 0
                self.attempts += 1
                self._enter(RecoveryState.INIT)

        elif state in _TIMED_STAGES:
            if self._dwell():
                self._enter(_TIMED_STAGES[state])
                if self.state == RecoveryState.MOD_RESTORE:
                    self.pending_mask = all_ones(cfg.module_count)

        elif state == RecoveryState.INTEG_CHECK:
            if inputs.integ_done and inputs.integ_pass:
                self.ramp_step = 0
                self._enter(RecoveryState.CLK_RAMP)
            elif inputs.integ_done or self.step_timer + 1 >= cfg.integ_timeout:
                self._fail()
            else:
                self.step_timer += 1

        elif state == RecoveryState.CLK_RAMP:
            if self._dwell():
                if self.ramp_step + 1 < len(RAMP_DIVIDERS):
                    self.ramp_step += 1
                    self.step_timer = 0
                else:
                    self.ramp_step = 0
                    self._enter(RecoveryState.BUS_RESTORE)

        elif state == RecoveryState.MOD_RESTORE:
            self.pending_mask &= ~inputs.restore_ack
            if self.pending_mask == 0:
                self._enter(RecoveryState.VALIDATE)
            elif self.step_timer + 1 >= cfg.mod_restore_timeout:
                self._fail()
            else:
                self.step_timer += 1

        elif state == RecoveryState.VALIDATE:
            if not (threat_clear and inputs.sys_stable):
                self._fail()
            elif self._dwell():
                self.successes += 1
                self._enter(RecoveryState.DONE)

        elif state == RecoveryState.DONE:
            self._enter(RecoveryState.IDLE)

        elif state == RecoveryState.FAILED:
            if self.retry_count >= cfg.max_retry:
                self._enter(RecoveryState.PERM_LOCK)
            else:
                self._enter(RecoveryState.INIT)

        # PERM_LOCK is terminal until reset()

        self.status = _outputs(
            self.state, self.retry_count, self.step_timer, self.ramp_step,
            self.pending_mask, cfg.max_retry
        )
        return self.status

    def get_stats(self) -> Dict[str, Any]:
        """Get recovery statistics."""
        return {
            'state': self.state.name,
            'retry_count': self.retry_count,
            'max_retry': self.config.max_retry,
            'attempts': self.attempts,
            'successes': self.successes,
            'failures': self.failures,
            'permanent_lockdown': self.state == RecoveryState.PERM_LOCK
        }

    def reset(self):
        self.state = RecoveryState.IDLE
        self.retry_count = 0
        self.step_timer = 0
        self.ramp_step = 0
        self.pending_mask = 0
        self.attempts = 0
        self.successes = 0
        self.failures = 0
        self.status = RecoveryStatus()
