# Overview: Order status state machine; pure functions with no database access.

from __future__ import annotations

PENDING = "pending"
CONFIRMED = "confirmed"
PREPARING = "preparing"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
CANCELLED = "cancelled"

STATUSES = (PENDING, CONFIRMED, PREPARING, OUT_FOR_DELIVERY, DELIVERED, CANCELLED)
TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED})

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({OUT_FOR_DELIVERY, CANCELLED}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}


def validate_status(status: str) -> None:
    if status not in STATUSES:
        raise ValueError(f"Invalid status: {status}")


def is_valid_transition(from_status: str, to_status: str) -> bool:
    """Unknown statuses on either side are never valid."""
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def transitions_map() -> dict[str, list[str]]:
    """Adjacency for clients, in status order so the output is stable."""
    return {
        status: [s for s in STATUSES if s in ALLOWED_TRANSITIONS[status]]
        for status in STATUSES
    }
