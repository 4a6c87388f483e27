"""Probabilistic stand-in for the external OPS ticketing system.

The simulator is pure decision logic: given a ticket's current status it
decides whether a simulated remote call succeeds and which status the ticket
ends up in. Every probability test compares a single uniform draw in
``[0, 1)`` against a threshold with ``<``; cumulative buckets are half-open so
adjacent outcomes never overlap.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence

from apps.api.services.tickets import TicketStatus

DEFAULT_SEND_SUCCESS_RATE = 0.8
DEFAULT_QUERY_SUCCESS_RATE = 0.9

QUERYABLE_STATUSES: frozenset[TicketStatus] = frozenset(
    {TicketStatus.SENT, TicketStatus.IN_PROGRESS, TicketStatus.CLOSED, TicketStatus.DELAYED}
)

SEND_FAILURE_REASON = "connection timeout"
QUERY_FAILURE_REASON = "OPS system unavailable"

_STATUS_DETAILS: Mapping[str, str] = {
    TicketStatus.NEW.value: "Ticket is new and awaiting processing",
    TicketStatus.PENDING.value: "Ticket is pending submission to OPS",
    TicketStatus.SENT.value: "Ticket has been sent to OPS and is awaiting processing",
    TicketStatus.IN_PROGRESS.value: "Ticket is being processed by OPS",
    TicketStatus.CLOSED.value: "Ticket has been processed and closed",
    TicketStatus.DELAYED.value: "Ticket processing has been delayed",
    TicketStatus.FAILED.value: "Ticket processing failed",
}

# (upper bound, target) pairs; the last bound must be 1.0.
Transitions = Sequence[tuple[float, TicketStatus]]

DEFAULT_TRANSITIONS: Mapping[TicketStatus, Transitions] = {
    TicketStatus.SENT: (
        (0.7, TicketStatus.IN_PROGRESS),
        (0.9, TicketStatus.DELAYED),
        (1.0, TicketStatus.FAILED),
    ),
    TicketStatus.IN_PROGRESS: (
        (0.6, TicketStatus.IN_PROGRESS),
        (1.0, TicketStatus.CLOSED),
    ),
    TicketStatus.DELAYED: (
        (0.5, TicketStatus.DELAYED),
        (0.9, TicketStatus.IN_PROGRESS),
        (1.0, TicketStatus.FAILED),
    ),
}


class OpsServiceError(RuntimeError):
    """Base error for OPS interaction issues."""


class InvalidTicketStateError(OpsServiceError):
    """Raised when a ticket's status does not permit the requested OPS action."""


class RandomSource(Protocol):
    def random(self) -> float:
        ...


@dataclass(frozen=True, slots=True)
class SendOutcome:
    """Result of a simulated submission to OPS."""

    success: bool
    target_status: TicketStatus | None = None
    ops_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class QueryOutcome:
    """Result of a simulated OPS status poll."""

    success: bool
    status: TicketStatus
    updated: bool
    details: str
    reason: str | None = None


def describe_status(status: TicketStatus | str) -> str:
    """Return the human readable explanation shown for ``status``."""

    value = status.value if isinstance(status, TicketStatus) else str(status)
    return _STATUS_DETAILS.get(value, "Unknown status")


def generate_ops_id() -> str:
    return f"OPS-{uuid.uuid4().hex[:8]}"


class TransitionSimulator:
    """Decide simulated OPS outcomes from a single owned random source."""

    def __init__(
        self,
        *,
        rng: RandomSource | None = None,
        seed: int | None = None,
        send_success_rate: float = DEFAULT_SEND_SUCCESS_RATE,
        query_success_rate: float = DEFAULT_QUERY_SUCCESS_RATE,
        transitions: Mapping[TicketStatus, Transitions] | None = None,
    ) -> None:
        if rng is not None and seed is not None:
            raise ValueError("Pass either an rng or a seed, not both")
        for name, rate in (("send_success_rate", send_success_rate), ("query_success_rate", query_success_rate)):
            if not 0.0 <= rate <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {rate}")
        self._rng: RandomSource = rng if rng is not None else random.Random(seed)
        self._send_success_rate = send_success_rate
        self._query_success_rate = query_success_rate
        self._transitions = transitions or DEFAULT_TRANSITIONS

    @staticmethod
    def is_queryable(status: TicketStatus) -> bool:
        return status in QUERYABLE_STATUSES

    def attempt_send(self, current_status: TicketStatus) -> SendOutcome:
        """Simulate handing a ticket over to OPS.

        Any status may be sent. The caller applies ``target_status`` when the
        attempt succeeds; a failed attempt leaves the ticket untouched.
        """

        if self._rng.random() < self._send_success_rate:
            return SendOutcome(success=True, target_status=TicketStatus.SENT, ops_id=generate_ops_id())
        return SendOutcome(success=False, reason=SEND_FAILURE_REASON)

    def attempt_status_query(self, current_status: TicketStatus) -> QueryOutcome:
        """Simulate polling OPS for the status of a submitted ticket.

        Raises:
            InvalidTicketStateError: if ``current_status`` is not one of the
                queryable states. No random draw is consumed in that case.
        """

        if not self.is_queryable(current_status):
            raise InvalidTicketStateError(
                f"Cannot query status for ticket in '{current_status.value}' state"
            )

        if not self._rng.random() < self._query_success_rate:
            return QueryOutcome(
                success=False,
                status=current_status,
                updated=False,
                details=describe_status(current_status),
                reason=QUERY_FAILURE_REASON,
            )

        resulting = self._next_status(current_status)
        return QueryOutcome(
            success=True,
            status=resulting,
            updated=resulting != current_status,
            details=describe_status(resulting),
        )

    def _next_status(self, current_status: TicketStatus) -> TicketStatus:
        buckets = self._transitions.get(current_status)
        if not buckets:
            # closed and failed are terminal
            return current_status
        draw = self._rng.random()
        for upper_bound, target in buckets:
            if draw < upper_bound:
                return target
        return buckets[-1][1]
