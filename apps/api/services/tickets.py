from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Sequence

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import TicketTable


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when an operation targets a non-existent ticket."""


class TicketConflictError(TicketServiceError):
    """Raised when creating a ticket whose id is already taken."""


class TicketStatus(str, Enum):
    """Lifecycle states shared by the CRUD API and the OPS simulator."""

    NEW = "new"
    PENDING = "pending"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    DELAYED = "delayed"
    FAILED = "failed"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(slots=True)
class Customer:
    """Contact details of the customer who raised the ticket."""

    name: str = ""
    email: str = ""
    phone: str | None = None


@dataclass(slots=True)
class Ticket:
    """Primary ticket record."""

    id: str
    subject: str
    description: str
    status: TicketStatus
    priority: Priority
    category: str
    customer: Customer
    created_at: datetime
    assigned_to: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


class TicketRepository:
    """Persistence helper wrapping the `tickets` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create_ticket(self, ticket: Ticket) -> bool:
        """Insert ``ticket``; returns ``False`` when the id is already in use."""

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if await session.get(TicketTable, ticket.id) is not None:
                        return False
                    session.add(ticket_to_row(ticket))
            except IntegrityError:
                return False
        return True

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            return ticket_from_row(row)

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        search: str | None = None,
    ) -> Sequence[Ticket]:
        statement = select(TicketTable)
        if status is not None:
            statement = statement.where(TicketTable.status == status.value)
        if search:
            term = search.lower()
            statement = statement.where(
                or_(
                    func.lower(TicketTable.id).contains(term, autoescape=True),
                    func.lower(TicketTable.subject).contains(term, autoescape=True),
                    func.lower(TicketTable.customer_name).contains(term, autoescape=True),
                )
            )
        statement = statement.order_by(TicketTable.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [ticket_from_row(row) for row in result.scalars().all()]

    async def replace_ticket(self, ticket: Ticket) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket.id)
            if row is None:
                return None
            values = ticket_to_row(ticket)
            for name in (
                "subject",
                "description",
                "status",
                "priority",
                "category",
                "assigned_to",
                "customer_name",
                "customer_email",
                "customer_phone",
                "metadata_",
                "created_at",
            ):
                setattr(row, name, getattr(values, name))
            await session.commit()
            await session.refresh(row)
            return ticket_from_row(row)

    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def count_by_status(self) -> Mapping[TicketStatus, int]:
        statement = select(TicketTable.status, func.count()).group_by(TicketTable.status)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            rows = result.all()
        counts: dict[TicketStatus, int] = {}
        for status_value, count in rows:
            counts[TicketStatus(status_value)] = int(count)
        return counts


class TicketService:
    """CRUD orchestration and dashboard statistics for tickets."""

    def __init__(self, repository: TicketRepository) -> None:
        self._repository = repository

    async def create_ticket(
        self,
        *,
        subject: str,
        description: str = "",
        customer: Customer | None = None,
        priority: Priority = Priority.MEDIUM,
        category: str = "",
        assigned_to: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        ticket_id: str | None = None,
        status: TicketStatus | None = None,
        created_at: datetime | None = None,
    ) -> Ticket:
        ticket = Ticket(
            id=ticket_id or str(uuid.uuid4()),
            subject=subject,
            description=description,
            status=status or TicketStatus.NEW,
            priority=priority,
            category=category,
            customer=customer or Customer(),
            created_at=created_at or datetime.now(timezone.utc),
            assigned_to=assigned_to,
            metadata=dict(metadata or {}),
        )
        created = await self._repository.create_ticket(ticket)
        if not created:
            raise TicketConflictError(f"Ticket {ticket.id} already exists")
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        search: str | None = None,
    ) -> Sequence[Ticket]:
        return await self._repository.list_tickets(status=status, search=search)

    async def update_ticket(
        self,
        ticket_id: str,
        *,
        subject: str,
        description: str = "",
        customer: Customer | None = None,
        priority: Priority = Priority.MEDIUM,
        category: str = "",
        assigned_to: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        status: TicketStatus | None = None,
    ) -> Ticket:
        """Replace the descriptive fields of a ticket.

        ``status`` is kept as-is when omitted; the creation timestamp is never
        rewritten.
        """

        current = await self._repository.get_ticket(ticket_id)
        if current is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

        candidate = replace(
            current,
            subject=subject,
            description=description,
            status=status or current.status,
            priority=priority,
            category=category,
            customer=customer or Customer(),
            assigned_to=assigned_to,
            metadata=dict(metadata or {}),
        )
        updated = await self._repository.replace_ticket(candidate)
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return updated

    async def delete_ticket(self, ticket_id: str) -> None:
        deleted = await self._repository.delete_ticket(ticket_id)
        if not deleted:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

    async def get_stats(self) -> dict[str, int]:
        counts = await self._repository.count_by_status()
        stats = {"total": sum(counts.values())}
        for status in TicketStatus:
            stats[status.value] = counts.get(status, 0)
        return stats


def ticket_to_row(ticket: Ticket) -> TicketTable:
    return TicketTable(
        id=ticket.id,
        subject=ticket.subject,
        description=ticket.description,
        status=ticket.status.value,
        priority=ticket.priority.value,
        category=ticket.category,
        assigned_to=ticket.assigned_to,
        customer_name=ticket.customer.name,
        customer_email=ticket.customer.email,
        customer_phone=ticket.customer.phone,
        metadata_=dict(ticket.metadata),
        created_at=ticket.created_at,
    )


def ticket_from_row(row: TicketTable) -> Ticket:
    return Ticket(
        id=row.id,
        subject=row.subject,
        description=row.description,
        status=TicketStatus(row.status),
        priority=Priority(row.priority),
        category=row.category,
        customer=Customer(
            name=row.customer_name,
            email=row.customer_email,
            phone=row.customer_phone,
        ),
        created_at=ensure_datetime(row.created_at),
        assigned_to=row.assigned_to,
        metadata=dict(row.metadata_ or {}),
    )


def ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
