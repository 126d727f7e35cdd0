import json

from tamperguard.config import ForensicConfig
from tamperguard.core import AttackType, Reading, ResponseLevel, ThreatLevel
from tamperguard.forensics import CaptureState, ForensicCapture, ForensicRequest, ForensicSnapshot


def snapshot(tick: int) -> ForensicSnapshot:
    return ForensicSnapshot(
        tick=tick,
        threat_level=ThreatLevel.HIGH,
        attack_type=AttackType.POWER_GLITCH,
        threat_score=75,
        response_level=ResponseLevel.ISOLATE,
        readings={'power': (Reading('voltage', 1248, 2048, 800), Reading('current', 1024, 1024, 0))},
        pc=0x1040,
        privilege=0,
        last_bad_pc=0
    )


def ready_unit(**config) -> ForensicCapture:
    unit = ForensicCapture(ForensicConfig(**config))
    for _ in range(unit.config.warmup_ticks):
        unit.step(False, False, ForensicSnapshot())
    assert unit.ready
    return unit


def capture(unit: ForensicCapture, snap: ForensicSnapshot, valid: bool = True):
    """Run one full trigger; returns the outputs of the three FSM ticks."""
    return [
        unit.step(True, valid, snap),
        unit.step(False, valid, snap),
        unit.step(False, valid, snap),
    ]


def read(unit: ForensicCapture, index: int, ack: bool = False):
    return unit.step(False, False, ForensicSnapshot(),
                     ForensicRequest(read_req=True, read_index=index, read_ack=ack))


def test_capture_sequence_completes_in_three_ticks() -> None:
    unit = ready_unit()
    outputs = capture(unit, snapshot(100))

    assert [o.capture_state for o in outputs] == [CaptureState.WRITE, CaptureState.DONE, CaptureState.IDLE]
    assert [o.capture_done for o in outputs] == [False, True, False]
    assert outputs[1].occupancy == 1
    assert outputs[1].write_cursor == 1
    assert not outputs[1].log_empty


def test_round_trip_and_idempotent_reads() -> None:
    unit = ready_unit()
    snap = snapshot(100)
    capture(unit, snap)

    first = read(unit, 0)
    second = read(unit, 0)
    assert first.read_valid and second.read_valid
    assert first.read_data == snap
    assert second.read_data == first.read_data
    assert unit.occupancy == 1

    acked = read(unit, 0, ack=True)
    assert acked.read_data == snap
    assert acked.occupancy == 0
    assert acked.log_empty

    after = read(unit, 0)
    assert not after.read_valid
    assert after.read_data is None


def test_locked_slot_drops_capture_without_moving_cursor() -> None:
    unit = ready_unit(slots=2, warmup_ticks=0)
    capture(unit, snapshot(1))
    capture(unit, snapshot(2))
    assert unit.log_full
    assert unit.write_cursor == 0

    outputs = capture(unit, snapshot(3))

    assert outputs[1].capture_done
    assert outputs[1].dropped_captures == 1
    assert unit.write_cursor == 0
    assert unit.read(0).tick == 1
    assert unit.get_stats()['captures'] == 2


def test_freed_slot_is_reused() -> None:
    unit = ready_unit(slots=2, warmup_ticks=0)
    capture(unit, snapshot(1))
    capture(unit, snapshot(2))
    unit.acknowledge(0)

    capture(unit, snapshot(3))

    assert unit.read(0).tick == 3
    assert unit.write_cursor == 1
    assert unit.dropped_captures == 0


def test_no_write_before_warmup() -> None:
    unit = ForensicCapture(ForensicConfig(warmup_ticks=8))
    outputs = capture(unit, snapshot(1))

    assert outputs[1].capture_done
    assert outputs[1].occupancy == 0
    assert unit.get_stats()['skipped'] == 1


def test_no_write_without_valid_threat() -> None:
    unit = ready_unit()
    outputs = capture(unit, snapshot(1), valid=False)
    assert outputs[1].capture_done
    assert outputs[1].log_empty


def test_validity_is_taken_when_trigger_is_accepted() -> None:
    unit = ready_unit()
    unit.step(True, True, snapshot(1))
    written = unit.step(False, False, snapshot(1))
    assert written.occupancy == 1

    unit.step(False, False, snapshot(1))
    unit.step(True, False, snapshot(2))
    skipped = unit.step(False, True, snapshot(2))
    assert skipped.capture_done
    assert skipped.occupancy == 1
    assert unit.get_stats()['skipped'] == 1


def test_trigger_during_capture_is_absorbed() -> None:
    unit = ready_unit()
    unit.step(True, True, snapshot(1))
    unit.step(True, True, snapshot(2))
    done = unit.step(True, True, snapshot(3))

    assert done.capture_state == CaptureState.IDLE
    assert unit.occupancy == 1
    assert unit.step(False, True, snapshot(4)).capture_state == CaptureState.IDLE


def test_out_of_range_read_is_invalid() -> None:
    unit = ready_unit()
    capture(unit, snapshot(1))
    assert not read(unit, 99).read_valid
    assert not unit.acknowledge(99)
    assert not unit.acknowledge(5)


def test_drain_returns_oldest_first() -> None:
    unit = ready_unit(slots=4, warmup_ticks=0)
    for tick in (10, 11, 12):
        capture(unit, snapshot(tick))
    unit.acknowledge(0)
    capture(unit, snapshot(13))
    capture(unit, snapshot(14))

    assert unit.locked_indices() == [1, 2, 3, 0]
    drained = unit.drain()
    assert [snap.tick for _, snap in drained] == [11, 12, 13, 14]
    assert unit.log_empty


def test_snapshot_serializes() -> None:
    data = json.loads(snapshot(7).to_json())
    assert data['tick'] == 7
    assert data['threat_level'] == 'HIGH'
    assert data['readings']['power'][0]['delta'] == 800


def test_reset_clears_slots() -> None:
    unit = ready_unit()
    capture(unit, snapshot(1))
    unit.reset()
    assert unit.log_empty
    assert unit.read(0) is None
    assert not unit.ready
