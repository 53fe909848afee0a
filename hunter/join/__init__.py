"""Fan-in of the verification branches."""

from .coordinator import (
    STATE_AWAITING,
    STATE_AWAITING_BOTH,
    STATE_COMPLETE,
    STATE_DISPATCHED,
    STATE_TIMED_OUT,
    JoinCoordinator,
    JoinOutcome,
    SweepReport,
    degraded_qc,
    degraded_verification,
)

__all__ = [
    "STATE_AWAITING",
    "STATE_AWAITING_BOTH",
    "STATE_COMPLETE",
    "STATE_DISPATCHED",
    "STATE_TIMED_OUT",
    "JoinCoordinator",
    "JoinOutcome",
    "SweepReport",
    "degraded_qc",
    "degraded_verification",
]
