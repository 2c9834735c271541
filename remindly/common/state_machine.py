"""Per-request delivery state machine enforced by the orchestrator."""

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "INIT": {"DEDUP_CHECK"},
    "DEDUP_CHECK": {"ALREADY_SENT", "QUOTA_CHECK", "NEXT_CHANNEL", "ALL_CHANNELS_EXHAUSTED"},
    "QUOTA_CHECK": {"ATTEMPTING", "QUOTA_EXCEEDED"},
    "QUOTA_EXCEEDED": {"NEXT_CHANNEL", "ALL_CHANNELS_EXHAUSTED"},
    "ATTEMPTING": {"SENT", "NEXT_CHANNEL", "ALL_CHANNELS_EXHAUSTED"},
    "NEXT_CHANNEL": {"QUOTA_CHECK", "NEXT_CHANNEL", "ALL_CHANNELS_EXHAUSTED"},
    "ALREADY_SENT": set(),
    "SENT": set(),
    "ALL_CHANNELS_EXHAUSTED": set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
