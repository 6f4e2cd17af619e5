from enum import Enum


class ScanPhase(str, Enum):
    """
    Finite-state machine for one tool's scan.
    Runtime-only. Never persisted.
    """

    IDLE = "idle"
    STARTING = "starting"
    SCANNING = "scanning"
    COMPLETED = "completed"
    ERROR = "error"


# Phases a session may move to from each phase.
# Any phase may also be reset to IDLE.
TRANSITIONS = {
    ScanPhase.IDLE: {ScanPhase.STARTING},
    ScanPhase.STARTING: {ScanPhase.SCANNING, ScanPhase.ERROR},
    ScanPhase.SCANNING: {ScanPhase.COMPLETED, ScanPhase.ERROR},
    ScanPhase.COMPLETED: {ScanPhase.STARTING},
    ScanPhase.ERROR: {ScanPhase.STARTING},
}

ACTIVE_PHASES = frozenset({ScanPhase.STARTING, ScanPhase.SCANNING})
