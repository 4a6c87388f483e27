"""SQLModel table definitions for the ticket OPS data layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class TicketTable(SQLModel, table=True):
    """Support tickets managed through the CRUD API and the OPS workflow."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    subject: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    priority: str = Field(sa_column=Column(String(50), nullable=False))
    category: str = Field(default="", sa_column=Column(String(100), nullable=False))
    assigned_to: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    customer_name: str = Field(default="", sa_column=Column(String(255), nullable=False))
    customer_email: str = Field(default="", sa_column=Column(String(255), nullable=False))
    customer_phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class OpsLogTable(SQLModel, table=True):
    """Append-only audit trail of simulated OPS interactions."""

    __tablename__ = "ops_logs"

    # ticket_id is a plain back-reference; deleting a ticket keeps its history.
    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    action: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    response: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    timestamp: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
