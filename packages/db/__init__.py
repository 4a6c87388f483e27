"""Database models and utilities."""

from .models import OpsLogTable, TicketTable

__all__ = [
    "OpsLogTable",
    "TicketTable",
]
