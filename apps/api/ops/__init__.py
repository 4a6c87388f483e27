"""Simulated OPS integration."""

from .simulator import (
    QUERYABLE_STATUSES,
    InvalidTicketStateError,
    OpsServiceError,
    QueryOutcome,
    SendOutcome,
    TransitionSimulator,
    describe_status,
)

__all__ = [
    "QUERYABLE_STATUSES",
    "InvalidTicketStateError",
    "OpsServiceError",
    "QueryOutcome",
    "SendOutcome",
    "TransitionSimulator",
    "describe_status",
]
