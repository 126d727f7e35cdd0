"""
TamperGuard - Governors

Governors act on the threat verdict:
- ResponseController: graded protective actions, HOLD and watchdog
- RecoveryFSM: staged, retry-bounded restoration
"""

from .response import (
    ResponseController, ResponseActions, ResponseInputs, ResponseState, actions_for
)
from .recovery import RecoveryFSM, RecoveryInputs, RecoveryStatus, RAMP_DIVIDERS
