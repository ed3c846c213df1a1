"""State machine for rally lifecycle transitions."""

from __future__ import annotations

from ai_rally.models import RallyState

VALID_TRANSITIONS: dict[RallyState, set[RallyState]] = {
    RallyState.INITIALIZING: {RallyState.REVIEWER_REVIEWING, RallyState.ERROR},
    RallyState.REVIEWER_REVIEWING: {
        RallyState.COMPLETED,
        RallyState.REVIEWEE_FIX,
        RallyState.ERROR,
    },
    RallyState.REVIEWEE_FIX: {
        RallyState.REVIEWER_REVIEWING,
        RallyState.WAITING_FOR_CLARIFICATION,
        RallyState.WAITING_FOR_PERMISSION,
        RallyState.ERROR,
    },
    RallyState.WAITING_FOR_CLARIFICATION: {RallyState.REVIEWEE_FIX, RallyState.ERROR},
    RallyState.WAITING_FOR_PERMISSION: {
        RallyState.REVIEWEE_FIX,
        RallyState.REVIEWER_REVIEWING,  # denied under the rereview policy
        RallyState.ERROR,
    },
    RallyState.COMPLETED: set(),  # terminal
    # Terminal for the rally itself; retry re-enters the pre-failure phase.
    RallyState.ERROR: {
        RallyState.REVIEWER_REVIEWING,
        RallyState.REVIEWEE_FIX,
        RallyState.WAITING_FOR_CLARIFICATION,  # reviewer-routed answer failed
    },
}

TERMINAL_STATES: frozenset[RallyState] = frozenset({RallyState.COMPLETED, RallyState.ERROR})
WAITING_STATES: frozenset[RallyState] = frozenset(
    {RallyState.WAITING_FOR_CLARIFICATION, RallyState.WAITING_FOR_PERMISSION}
)


def validate_transition(current: RallyState, target: RallyState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current)
    if allowed is None:
        raise ValueError(f"Unknown state: {current}")
    if target not in allowed:
        raise ValueError(
            f"Invalid transition: {current} -> {target}. "
            f"Valid targets from {current}: {sorted(allowed)}"
        )
