"""Notification log status transitions enforced by the log store."""

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"RETRYING", "SENT", "FAILED"},
    "RETRYING": {"RETRYING", "SENT", "FAILED"},
    "SENT": set(),
    "FAILED": set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def allowed_sources(new: str) -> set[str]:
    """States from which `new` may be entered."""

    return {state for state, targets in ALLOWED_TRANSITIONS.items() if new in targets}
