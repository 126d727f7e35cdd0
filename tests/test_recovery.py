from tamperguard.config import RecoveryConfig
from tamperguard.core import RecoveryState
from tamperguard.governors import RecoveryFSM, RecoveryInputs

GOOD = RecoveryInputs(integ_done=True, integ_pass=True, restore_ack=0xFF, sys_stable=True)
BAD_INTEGRITY = RecoveryInputs(integ_done=True, integ_pass=False, restore_ack=0xFF)
S = RecoveryState


def run(fsm: RecoveryFSM, ticks: int, inputs: RecoveryInputs = GOOD, threat_clear: bool = True):
    """Trigger on the first tick, then step with fixed inputs."""
    return [fsm.step(tick == 0, threat_clear, inputs) for tick in range(ticks)]


def test_idle_until_triggered() -> None:
    fsm = RecoveryFSM()
    status = fsm.step(False, True, GOOD)
    assert status.state == S.IDLE
    assert status.recovery_ready
    assert not status.recovery_done


def test_happy_path_stage_order() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=2))
    statuses = run(fsm, 20)

    assert [s.state for s in statuses] == (
        [S.INIT] * 2 + [S.INTEG_CHECK] + [S.CLK_RAMP] * 8 + [S.BUS_RESTORE] * 2
        + [S.DMA_RESTORE] * 2 + [S.MOD_RESTORE] + [S.VALIDATE] * 2 + [S.DONE, S.IDLE]
    )
    ramp = [s.clk_divider for s in statuses if s.state == S.CLK_RAMP]
    assert ramp == [8, 8, 4, 4, 2, 2, 1, 1]
    assert all(s.clk_restore for s in statuses if s.state == S.CLK_RAMP)

    done = statuses[-2]
    assert done.recovery_done and done.debug_restore and done.puf_restore
    assert sum(s.recovery_done for s in statuses) == 1
    assert statuses[-1].recovery_ready
    assert fsm.get_stats()['successes'] == 1


def test_not_ready_while_active() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=2))
    statuses = run(fsm, 19)
    assert not any(s.recovery_ready for s in statuses)


def test_integrity_check_is_requested() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    statuses = run(fsm, 3, RecoveryInputs())
    assert statuses[1].state == S.INTEG_CHECK
    assert statuses[1].integ_check_req


def test_three_failures_end_in_permanent_lock() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=2))
    statuses = run(fsm, 13, BAD_INTEGRITY)

    failed = [(i, s.retry_count) for i, s in enumerate(statuses) if s.state == S.FAILED]
    assert failed == [(3, 1), (7, 2), (11, 3)]
    assert [statuses[i].recovery_ready for i, _ in failed] == [True, True, False]
    assert statuses[4].state == S.INIT
    assert statuses[12].state == S.PERM_LOCK
    assert statuses[12].permanent_lockdown


def test_permanent_lock_never_exits() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    run(fsm, 20, BAD_INTEGRITY)
    assert fsm.state == S.PERM_LOCK

    for _ in range(50):
        status = fsm.step(True, True, GOOD)
        assert status.state == S.PERM_LOCK
        assert not status.recovery_ready


def test_reset_clears_permanent_lock() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    run(fsm, 20, BAD_INTEGRITY)
    fsm.reset()
    assert fsm.state == S.IDLE
    assert fsm.status.recovery_ready


def test_integrity_timeout() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1, integ_timeout=3))
    statuses = run(fsm, 5, RecoveryInputs(integ_done=False))
    assert [s.state for s in statuses] == [
        S.INIT, S.INTEG_CHECK, S.INTEG_CHECK, S.INTEG_CHECK, S.FAILED
    ]


def test_module_restore_waits_for_every_ack() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    statuses = run(fsm, 9, RecoveryInputs(integ_done=True, integ_pass=True, restore_ack=0))
    entry = next(s for s in statuses if s.state == S.MOD_RESTORE)
    assert entry.module_restore_mask == 0xFF

    partial = fsm.step(False, True, RecoveryInputs(restore_ack=0x0F))
    assert partial.state == S.MOD_RESTORE
    assert partial.pending_mask == 0xF0

    complete = fsm.step(False, True, RecoveryInputs(restore_ack=0xF0))
    assert complete.state == S.VALIDATE
    assert complete.module_restore_mask == 0


def test_module_restore_timeout() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1, mod_restore_timeout=4))
    statuses = run(fsm, 20, RecoveryInputs(integ_done=True, integ_pass=True, restore_ack=0))
    states = [s.state for s in statuses]
    first_mod = states.index(S.MOD_RESTORE)
    assert states[first_mod:first_mod + 5] == [S.MOD_RESTORE] * 4 + [S.FAILED]


def test_validate_fails_when_threat_returns() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    statuses = run(fsm, 10)
    assert statuses[-1].state == S.VALIDATE

    status = fsm.step(False, False, GOOD)
    assert status.state == S.FAILED
    assert status.recovery_failed
    assert status.retry_count == 1


def test_validate_fails_when_unstable() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    run(fsm, 10)
    status = fsm.step(False, True, RecoveryInputs(sys_stable=False))
    assert status.state == S.FAILED


def test_new_attempt_resets_retry_count() -> None:
    fsm = RecoveryFSM(RecoveryConfig(step_hold=1))
    run(fsm, 10)
    fsm.step(False, False, GOOD)
    assert fsm.retry_count == 1

    for _ in range(12):
        status = fsm.step(False, True, GOOD)
    assert status.state == S.IDLE

    fsm.step(True, True, GOOD)
    assert fsm.retry_count == 0
    assert fsm.get_stats()['attempts'] == 2
