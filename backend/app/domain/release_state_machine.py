from __future__ import annotations

from enum import Enum


class ReleaseState(str, Enum):
    DRAFT = "draft"
    READINESS_EVALUATED = "readiness_evaluated"
    READY = "ready"
    BLOCKED = "blocked"
    WINDOW_SCHEDULED = "window_scheduled"
    DEPLOYED = "deployed"
    ROLLED_BACK = "rolled_back"


class BlockedReasonCode(str, Enum):
    READINESS_NO_GO = "READINESS_NO_GO"
    READINESS_UNRESOLVED = "READINESS_UNRESOLVED"
    NO_DEPLOYMENT_WINDOW = "NO_DEPLOYMENT_WINDOW"
    CONDITIONAL_GO_REJECTED = "CONDITIONAL_GO_REJECTED"


TERMINAL_STATES = {
    ReleaseState.ROLLED_BACK,
}

# Releases a periodic readiness pass picks up again.
PENDING_STATES = {
    ReleaseState.READINESS_EVALUATED,
    ReleaseState.READY,
    ReleaseState.BLOCKED,
    ReleaseState.WINDOW_SCHEDULED,
}

VALID_TRANSITIONS: dict[ReleaseState, set[ReleaseState]] = {
    ReleaseState.DRAFT: {ReleaseState.READINESS_EVALUATED},
    ReleaseState.READINESS_EVALUATED: {ReleaseState.READY, ReleaseState.BLOCKED},
    ReleaseState.READY: {
        ReleaseState.READINESS_EVALUATED,
        ReleaseState.WINDOW_SCHEDULED,
        ReleaseState.BLOCKED,
    },
    ReleaseState.BLOCKED: {ReleaseState.READINESS_EVALUATED},
    ReleaseState.WINDOW_SCHEDULED: {
        ReleaseState.READINESS_EVALUATED,
        ReleaseState.DEPLOYED,
        ReleaseState.BLOCKED,
    },
    ReleaseState.DEPLOYED: {ReleaseState.ROLLED_BACK},
    ReleaseState.ROLLED_BACK: set(),
}


class TransitionRuleError(ValueError):
    """Raised when an invalid release status transition is requested."""


def ensure_transition_allowed(
    current: ReleaseState,
    target: ReleaseState,
    blocked_reason: BlockedReasonCode | None = None,
) -> None:
    if current in TERMINAL_STATES:
        raise TransitionRuleError(f"Cannot transition terminal state '{current.value}'.")

    allowed_targets = VALID_TRANSITIONS[current]
    if target not in allowed_targets:
        allowed_text = ", ".join(sorted(state.value for state in allowed_targets))
        raise TransitionRuleError(
            f"Invalid transition '{current.value}' -> '{target.value}'. Allowed: [{allowed_text}]"
        )

    if target == ReleaseState.BLOCKED and blocked_reason is None:
        raise TransitionRuleError("blocked_reason is required when transitioning to blocked.")

    if target != ReleaseState.BLOCKED and blocked_reason is not None:
        raise TransitionRuleError("blocked_reason is only valid for blocked transitions.")


def list_release_states() -> list[str]:
    return [state.value for state in ReleaseState]


def list_blocked_reason_codes() -> list[str]:
    return [code.value for code in BlockedReasonCode]


class ReleaseInvariantError(ValueError):
    """Raised when an operation does not apply to the release in its current state."""
