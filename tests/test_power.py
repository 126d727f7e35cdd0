import pytest

from tamperguard.config import PowerConfig
from tamperguard.core import ConfigError, Severity
from tamperguard.monitors import PowerMonitor, PowerSample


def warm(monitor: PowerMonitor, voltage: int = 2048, current: int = 1024, count: int = 16):
    verdict = None
    for _ in range(count):
        verdict = monitor.step(PowerSample(voltage, current, True))
    return verdict


def test_not_ready_during_warmup_even_with_large_deltas() -> None:
    monitor = PowerMonitor()
    monitor.step(PowerSample(2048, 1024, True))
    verdict = monitor.step(PowerSample(0, 4095, True))

    assert not verdict.ready
    assert not verdict.anomaly
    assert verdict.severity == Severity.NONE


def test_ready_after_warmup() -> None:
    monitor = PowerMonitor()
    verdict = warm(monitor)
    assert verdict.ready
    assert verdict.severity == Severity.NONE
    assert verdict.reading('voltage').baseline == 2048
    assert verdict.reading('current').baseline == 1024


def test_single_glitch_is_medium() -> None:
    monitor = PowerMonitor()
    warm(monitor)

    verdict = monitor.step(PowerSample(2048 - 800, 1024, True))

    assert verdict.flag('power_glitch')
    assert not verdict.flag('voltage_anomaly')
    assert verdict.severity == Severity.MEDIUM
    assert verdict.delta == 800
    assert monitor.get_stats()['glitches_seen'] == 1


def test_sustained_voltage_offset_is_low() -> None:
    monitor = PowerMonitor()
    warm(monitor)

    verdicts = [monitor.step(PowerSample(2148, 1024, True)) for _ in range(4)]

    assert [v.flag('voltage_anomaly') for v in verdicts] == [False, False, False, True]
    assert not any(v.flag('power_glitch') for v in verdicts)
    assert verdicts[-1].severity == Severity.LOW


def test_glitch_during_sustained_anomaly_is_high() -> None:
    monitor = PowerMonitor()
    warm(monitor)
    for _ in range(4):
        monitor.step(PowerSample(2148, 1024, True))

    verdict = monitor.step(PowerSample(2148, 1024 + 600, True))

    assert verdict.flag('power_glitch')
    assert verdict.flag('voltage_anomaly')
    assert verdict.severity == Severity.HIGH


@pytest.mark.parametrize(
    "flags, expected",
    [
        ((False, False, False), Severity.NONE),
        ((True, False, False), Severity.LOW),
        ((False, True, False), Severity.LOW),
        ((True, True, False), Severity.MEDIUM),
        ((False, False, True), Severity.MEDIUM),
        ((True, False, True), Severity.HIGH),
        ((True, True, True), Severity.HIGH),
    ],
)
def test_severity_table(flags, expected) -> None:
    names = ('voltage_anomaly', 'current_anomaly', 'power_glitch')
    assert PowerMonitor().severity_for(dict(zip(names, flags))) == expected


def test_invalid_sample_holds_sustained_and_drops_glitch() -> None:
    monitor = PowerMonitor()
    warm(monitor)
    for _ in range(4):
        monitor.step(PowerSample(2148, 1024, True))
    monitor.step(PowerSample(2148, 1024 + 600, True))

    held = monitor.step(PowerSample())

    assert held.flag('voltage_anomaly')
    assert not held.flag('power_glitch')
    assert held.severity == Severity.LOW
    assert held.readings == monitor.verdict.readings


def test_threshold_override_applies_for_one_tick() -> None:
    monitor = PowerMonitor()
    warm(monitor)

    quiet = monitor.step(PowerSample(1748, 1024, True), {'glitch_threshold': 1000})
    assert not quiet.flag('power_glitch')

    loud = monitor.step(PowerSample(1400, 1024, True))
    assert loud.flag('power_glitch')


def test_unknown_override_raises() -> None:
    monitor = PowerMonitor()
    with pytest.raises(ConfigError):
        monitor.step(PowerSample(2048, 1024, True), {'spike_threshold': 3})


def test_samples_saturate_to_twelve_bits() -> None:
    monitor = PowerMonitor(PowerConfig(warmup_samples=1))
    verdict = monitor.step(PowerSample(10_000, -5, True))
    assert verdict.reading('voltage').sample == 4095
    assert verdict.reading('current').sample == 0


def test_reset_clears_state() -> None:
    monitor = PowerMonitor()
    warm(monitor)
    monitor.step(PowerSample(1248, 1024, True))
    monitor.reset()

    assert not monitor.verdict.ready
    assert monitor.voltage.baseline == 0
    assert monitor.get_stats()['glitches_seen'] == 0
