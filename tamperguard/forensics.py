"""
TamperGuard - Forensic Capture

Fixed-capacity, tamper-evident record of system state at each escalation.

Slots lock when written and only unlock when an external reader
acknowledges them. A capture that lands on a locked slot is dropped rather
than overwriting evidence; the drop is counted. The capture handshake
always completes so the response controller is never stalled by a full
log.
"""

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Any, List, Optional, Tuple

from .config import ForensicConfig
from .core import AttackType, Reading, ResponseLevel, ThreatLevel


class CaptureState(IntEnum):
    IDLE = 0
    WRITE = 1
    DONE = 2


@dataclass(frozen=True)
class ForensicSnapshot:
    """System state at the moment of a capture."""
    tick: int = 0
    threat_level: ThreatLevel = ThreatLevel.NONE
    attack_type: AttackType = AttackType.NONE
    threat_score: int = 0
    response_level: ResponseLevel = ResponseLevel.IDLE
    readings: Dict[str, Tuple[Reading, ...]] = field(default_factory=dict)
    pc: int = 0
    privilege: int = 0
    last_bad_pc: int = 0

    def to_dict(self) -> dict:
        return {
            'tick': self.tick,
            'threat_level': self.threat_level.name,
            'attack_type': self.attack_type.name,
            'threat_score': self.threat_score,
            'response_level': self.response_level.name,
            'readings': {
                channel: [r.to_dict() for r in readings]
                for channel, readings in self.readings.items()
            },
            'pc': self.pc,
            'privilege': self.privilege,
            'last_bad_pc': self.last_bad_pc
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class ForensicSlot:
    """One log entry: a snapshot plus its lock bit."""
    snapshot: Optional[ForensicSnapshot] = None
    locked: bool = False


@dataclass(frozen=True)
class ForensicRequest:
    """External read port for one tick."""
    read_req: bool = False
    read_index: int = 0
    read_ack: bool = False


@dataclass(frozen=True)
class ForensicOutput:
    """Committed forensic unit output for one tick."""
    capture_state: CaptureState = CaptureState.IDLE
    capture_done: bool = False
    read_valid: bool = False
    read_data: Optional[ForensicSnapshot] = None
    log_full: bool = False
    log_empty: bool = True
    occupancy: int = 0
    write_cursor: int = 0
    dropped_captures: int = 0

    def to_dict(self) -> dict:
        return {
            'capture_state': self.capture_state.name,
            'capture_done': self.capture_done,
            'read_valid': self.read_valid,
            'read_data': self.read_data.to_dict() if self.read_data else None,
            'log_full': self.log_full,
            'log_empty': self.log_empty,
            'occupancy': self.occupancy,
            'write_cursor': self.write_cursor,
            'dropped_captures': self.dropped_captures
        }


class ForensicCapture:
    """
    Lock-on-write, unlock-on-acknowledge slot log.

    Each trigger runs IDLE -> WRITE -> DONE. Triggers that arrive while a
    capture is already in flight are absorbed by it.
    """

    def __init__(self, config: ForensicConfig = None):
        self.config = config or ForensicConfig()
        self.reset()

    @property
    def ready(self) -> bool:
        return self.ticks_seen >= self.config.warmup_ticks

    @property
    def log_full(self) -> bool:
        return self.occupancy >= self.config.slots

    @property
    def log_empty(self) -> bool:
        return self.occupancy == 0

    def read(self, index: int) -> Optional[ForensicSnapshot]:
        """Snapshot in a locked slot, or None. Reading never changes state."""
        if not 0 <= index < self.config.slots:
            return None
        slot = self.slots[index]
        return slot.snapshot if slot.locked else None

    def acknowledge(self, index: int) -> bool:
        """Unlock a locked slot; acknowledging a free slot does nothing."""
        if not 0 <= index < self.config.slots or not self.slots[index].locked:
            return False
        self.slots[index] = ForensicSlot(self.slots[index].snapshot, locked=False)
        self.occupancy -= 1
        self.acknowledged += 1
        return True

    def _write(self, snapshot: ForensicSnapshot):
        if not self.armed:
            self.skipped += 1
            return
        cursor = self.write_cursor
        if self.slots[cursor].locked:
            self.dropped_captures += 1
            return
        self.slots[cursor] = ForensicSlot(snapshot, locked=True)
        self.write_cursor = (cursor + 1) % self.config.slots
        self.occupancy += 1
        self.captures += 1
        self.last_written = cursor

    def step(
        self,
        trigger: bool,
        threat_valid: bool,
        snapshot: ForensicSnapshot,
        request: ForensicRequest = None
    ) -> ForensicOutput:
        """
        Advance the capture FSM and serve the read port for one tick.

        Args:
            trigger: Response controller's forensic trigger
            threat_valid: The trigger was raised for a confirmed threat
            snapshot: State to record if this tick writes
            request: Read/acknowledge request from the external reader
        """
        request = request or ForensicRequest()
        self.last_written = None

        read_data = self.read(request.read_index) if request.read_req else None
        if request.read_ack:
            self.acknowledge(request.read_index)

        state = self.capture_state
        if state == CaptureState.IDLE:
            if trigger:
                # Gate decided when the trigger is accepted, not when it lands
                self.armed = self.ready and threat_valid
                self.capture_state = CaptureState.WRITE
        elif state == CaptureState.WRITE:
            self._write(snapshot)
            self.capture_state = CaptureState.DONE
        else:
            self.capture_state = CaptureState.IDLE

        if self.ticks_seen < self.config.warmup_ticks:
            self.ticks_seen += 1

        self.output = ForensicOutput(
            capture_state=self.capture_state,
            capture_done=self.capture_state == CaptureState.DONE,
            read_valid=read_data is not None,
            read_data=read_data,
            log_full=self.log_full,
            log_empty=self.log_empty,
            occupancy=self.occupancy,
            write_cursor=self.write_cursor,
            dropped_captures=self.dropped_captures
        )
        return self.output

    def locked_indices(self) -> List[int]:
        """Locked slots, oldest first."""
        slots = self.config.slots
        order = [(self.write_cursor + i) % slots for i in range(slots)]
        return [i for i in order if self.slots[i].locked]

    def drain(self) -> List[Tuple[int, ForensicSnapshot]]:
        """Read and acknowledge every locked slot, oldest first."""
        drained = []
        for index in self.locked_indices():
            drained.append((index, self.read(index)))
            self.acknowledge(index)
        return drained

    def get_stats(self) -> Dict[str, Any]:
        """Get forensic log statistics."""
        return {
            'slots': self.config.slots,
            'occupancy': self.occupancy,
            'write_cursor': self.write_cursor,
            'ready': self.ready,
            'captures': self.captures,
            'dropped_captures': self.dropped_captures,
            'skipped': self.skipped,
            'acknowledged': self.acknowledged,
            'log_full': self.log_full
        }

    def reset(self):
        self.slots = [ForensicSlot() for _ in range(self.config.slots)]
        self.write_cursor = 0
        self.occupancy = 0
        self.ticks_seen = 0
        self.capture_state = CaptureState.IDLE
        self.armed = False
        self.captures = 0
        self.dropped_captures = 0
        self.skipped = 0
        self.acknowledged = 0
        self.last_written = None
        self.output = ForensicOutput()
