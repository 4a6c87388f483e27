"""Service layer exports."""

from .tickets import (
    Customer,
    Priority,
    Ticket,
    TicketConflictError,
    TicketNotFoundError,
    TicketRepository,
    TicketService,
    TicketStatus,
)

__all__ = [
    "Customer",
    "Priority",
    "Ticket",
    "TicketConflictError",
    "TicketNotFoundError",
    "TicketRepository",
    "TicketService",
    "TicketStatus",
]
