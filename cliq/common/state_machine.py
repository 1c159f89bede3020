"""Delivery status transitions enforced by the queue's conditional updates."""

PENDING = "pending"
PROCESSING = "processing"
SENT = "sent"
FAILED = "failed"

# processing -> processing is a reclaim after the previous lease expired.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {PROCESSING},
    PROCESSING: {PROCESSING, SENT, PENDING, FAILED},
    SENT: set(),
    FAILED: set(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


def sources_for(new: str) -> list[str]:
    """Statuses a row may be in for an update to `new` to apply."""

    return sorted(status for status, targets in ALLOWED_TRANSITIONS.items() if new in targets)
