import pytest

from tamperguard.classifier import ThreatState
from tamperguard.config import ResponseConfig
from tamperguard.core import AttackType, ResponseLevel, ThreatLevel
from tamperguard.governors import ResponseController, ResponseInputs, actions_for


def threat(level: ThreatLevel = ThreatLevel.NONE, upgraded: bool = False,
           attack_type: AttackType = AttackType.NONE) -> ThreatState:
    return ThreatState(level=level, upgraded=upgraded, attack_type=attack_type, valid=level > 0,
                       clear=level == ThreatLevel.NONE)


def step(controller: ResponseController, level: ThreatLevel = ThreatLevel.NONE, **kwargs):
    upgraded = kwargs.pop('upgraded', False)
    attack_type = kwargs.pop('attack_type', AttackType.NONE)
    return controller.step(ResponseInputs(threat=threat(level, upgraded, attack_type), **kwargs))


def lock(controller: ResponseController, attack_type: AttackType = AttackType.NONE):
    return step(controller, ThreatLevel.CRITICAL, upgraded=True, attack_type=attack_type)


def test_idle_without_threat() -> None:
    state = step(ResponseController())
    assert state.level == ResponseLevel.IDLE
    assert state.actions.watchdog_kick
    assert state.actions.active() == []
    assert not state.forensic_trigger


def test_ladder_climbs_one_rung_per_tick() -> None:
    controller = ResponseController()
    states = [step(controller, ThreatLevel.HIGH, upgraded=i == 0) for i in range(5)]

    assert [s.level for s in states] == [
        ResponseLevel.LOG, ResponseLevel.ALERT, ResponseLevel.THROTTLE,
        ResponseLevel.ISOLATE, ResponseLevel.ISOLATE
    ]
    assert [s.forensic_trigger for s in states] == [True, True, True, True, False]
    assert controller.get_stats()['escalations'] == 4


def test_critical_jumps_straight_to_lockdown() -> None:
    controller = ResponseController()
    state = lock(controller, AttackType.FAULT_INJECTION)

    assert state.level == ResponseLevel.LOCKDOWN
    assert state.forensic_trigger
    actions = state.actions
    assert actions.system_lockdown and actions.puf_lock and actions.crypto_zeroize
    assert actions.isolation_mask == 0xFF
    assert not actions.watchdog_kick


def test_lockdown_keeps_requesting_forensics() -> None:
    controller = ResponseController()
    lock(controller)
    state = step(controller, ThreatLevel.CRITICAL, forensic_captured=False)
    assert state.level == ResponseLevel.LOCKDOWN
    assert state.forensic_trigger


def test_trigger_carries_threat_validity() -> None:
    controller = ResponseController()
    assert lock(controller).threat_valid

    manual = step(ResponseController(), override_enable=True, override_level=ThreatLevel.CRITICAL)
    assert manual.forensic_trigger
    assert not manual.threat_valid


def test_zeroize_only_for_fault_or_combined_attacks() -> None:
    assert not lock(ResponseController(), AttackType.POWER_GLITCH).actions.crypto_zeroize
    assert lock(ResponseController(), AttackType.COMBINED).actions.crypto_zeroize


def test_lockdown_to_recover_needs_both_handshakes() -> None:
    controller = ResponseController()
    lock(controller)

    assert step(controller, forensic_captured=True, recovery_ready=False).level == ResponseLevel.LOCKDOWN
    assert step(controller, forensic_captured=False, recovery_ready=True).level == ResponseLevel.LOCKDOWN

    entered = step(controller, forensic_captured=True, recovery_ready=True)
    assert entered.level == ResponseLevel.RECOVER
    assert entered.recovery_trigger

    held = step(controller)
    assert held.level == ResponseLevel.RECOVER
    assert not held.recovery_trigger


def test_recover_actions_keep_isolation_and_kick_watchdog() -> None:
    controller = ResponseController()
    lock(controller, AttackType.FAULT_INJECTION)
    actions = step(controller, forensic_captured=True).actions

    assert actions.isolation_mask == 0xFF
    assert actions.bus_isolate
    assert actions.watchdog_kick
    assert not actions.system_lockdown
    assert not actions.crypto_zeroize


def test_recover_ignores_new_critical_until_done() -> None:
    controller = ResponseController()
    lock(controller)
    step(controller, forensic_captured=True)

    assert step(controller, ThreatLevel.CRITICAL, upgraded=True).level == ResponseLevel.RECOVER
    assert step(controller, recovery_done=True).level == ResponseLevel.IDLE


def test_permanent_lockdown_returns_to_lockdown() -> None:
    controller = ResponseController()
    lock(controller)
    step(controller, forensic_captured=True)

    state = step(controller, permanent_lockdown=True)
    assert state.level == ResponseLevel.LOCKDOWN
    assert step(controller, forensic_captured=True, recovery_ready=False).level == ResponseLevel.LOCKDOWN


def test_step_down_goes_through_hold() -> None:
    controller = ResponseController(ResponseConfig(hold_window=3))
    step(controller, ThreatLevel.LOW, upgraded=True)

    states = [step(controller) for _ in range(4)]

    assert [s.level for s in states] == [
        ResponseLevel.HOLD, ResponseLevel.HOLD, ResponseLevel.HOLD, ResponseLevel.IDLE
    ]
    assert [s.hold_count for s in states] == [0, 1, 2, 0]
    assert states[0].held_level == ResponseLevel.LOG
    assert states[0].actions.log_enable
    assert not states[-1].actions.log_enable


def test_hold_resumes_from_held_level() -> None:
    controller = ResponseController()
    step(controller, ThreatLevel.MEDIUM, upgraded=True)
    step(controller, ThreatLevel.MEDIUM)

    assert step(controller).level == ResponseLevel.HOLD
    assert step(controller, ThreatLevel.LOW).level == ResponseLevel.HOLD
    assert step(controller, ThreatLevel.MEDIUM).level == ResponseLevel.ALERT
    step(controller)
    assert step(controller, ThreatLevel.HIGH, upgraded=True).level == ResponseLevel.THROTTLE


def test_hold_keeps_held_level_actions() -> None:
    controller = ResponseController()
    for _ in range(4):
        step(controller, ThreatLevel.HIGH)
    state = step(controller)

    assert state.level == ResponseLevel.HOLD
    assert state.held_level == ResponseLevel.ISOLATE
    assert state.actions.bus_isolate
    assert state.actions.isolation_mask == 0x0F


def test_watchdog_expiry_forces_lockdown() -> None:
    controller = ResponseController(ResponseConfig(watchdog_timeout=5))
    states = [step(controller, ThreatLevel.LOW) for _ in range(6)]

    assert [s.level for s in states[:5]] == [ResponseLevel.LOG] * 5
    assert [s.watchdog_count for s in states[:5]] == [0, 1, 2, 3, 4]
    assert states[5].level == ResponseLevel.LOCKDOWN
    assert states[5].watchdog_expired
    assert controller.get_stats()['watchdog_expiries'] == 1


def test_upgrade_resets_watchdog() -> None:
    controller = ResponseController(ResponseConfig(watchdog_timeout=5))
    for _ in range(4):
        step(controller, ThreatLevel.LOW)
    state = step(controller, ThreatLevel.LOW, upgraded=True)
    assert state.watchdog_count == 0


def test_manual_override_selects_active_threat() -> None:
    controller = ResponseController()
    state = step(controller, override_enable=True, override_level=ThreatLevel.CRITICAL)
    assert state.active_threat == ThreatLevel.CRITICAL
    assert state.level == ResponseLevel.LOCKDOWN

    ignored = ResponseController()
    assert step(ignored, override_enable=False, override_level=ThreatLevel.CRITICAL).level == ResponseLevel.IDLE


def test_isolation_mask_override() -> None:
    controller = ResponseController()
    for _ in range(4):
        state = step(controller, ThreatLevel.HIGH, isolation_mask=0x30)
    assert state.level == ResponseLevel.ISOLATE
    assert state.actions.isolation_mask == 0x30


def test_custom_level_map() -> None:
    config = ResponseConfig(level_map={'NONE': 'IDLE', 'LOW': 'ALERT', 'MEDIUM': 'THROTTLE',
                                       'HIGH': 'LOCKDOWN', 'CRITICAL': 'LOCKDOWN'})
    controller = ResponseController(config)
    assert step(controller, ThreatLevel.HIGH).level == ResponseLevel.LOCKDOWN


@pytest.mark.parametrize(
    "attack_type, divider",
    [(AttackType.CLOCK_ATTACK, 8), (AttackType.POWER_GLITCH, 4), (AttackType.NONE, 4)],
)
def test_throttle_divider_depends_on_attack(attack_type, divider) -> None:
    actions = actions_for(ResponseLevel.THROTTLE, attack_type, 0x0F, ResponseConfig())
    assert actions.clk_throttle
    assert actions.clk_divider == divider
    assert actions.dma_halt
    assert not actions.bus_isolate


def test_actions_are_cumulative() -> None:
    config = ResponseConfig()
    log = actions_for(ResponseLevel.LOG, AttackType.NONE, 0x0F, config)
    alert = actions_for(ResponseLevel.ALERT, AttackType.NONE, 0x0F, config)
    isolate = actions_for(ResponseLevel.ISOLATE, AttackType.NONE, 0x0F, config)

    assert log.active() == ['log_enable']
    assert alert.active() == ['log_enable', 'alert_irq', 'alert_gpio']
    assert set(alert.active()) < set(isolate.active())
    assert 'isolate=0x0F' in isolate.active()
    assert isolate.watchdog_kick
