"""Simulated OPS interactions and their append-only audit log."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from apps.api.metrics import MetricsRegistry, metrics_registry
from apps.api.metrics.definitions import (
    OPS_INTERACTION_DURATION_SECONDS,
    OPS_INTERACTIONS_TOTAL,
    OPS_STATUS_TRANSITIONS_TOTAL,
)
from apps.api.ops.simulator import (
    InvalidTicketStateError,
    OpsServiceError,
    TransitionSimulator,
)
from apps.api.services.tickets import (
    Ticket,
    TicketNotFoundError,
    TicketRepository,
    TicketStatus,
    ensure_datetime,
    ticket_from_row,
)
from packages.db.models import OpsLogTable, TicketTable

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RETRYABLE_STATUSES: frozenset[TicketStatus] = frozenset(
    {TicketStatus.FAILED}
)


class OpsPersistenceError(OpsServiceError):
    """Raised when the outcome of an OPS interaction could not be stored."""


class OpsUnavailableError(OpsServiceError):
    """Raised when the OPS service has not been wired into the application."""


class OpsAction(str, Enum):
    SEND = "send"
    QUERY = "query"
    RETRY = "retry"


class OpsOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True)
class ApiResponse:
    """Envelope returned to callers and embedded in every log entry."""

    success: bool
    message: str
    timestamp: datetime
    data: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.data is not None:
            payload["data"] = dict(self.data)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ApiResponse":
        timestamp = payload.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        data = payload.get("data")
        return cls(
            success=bool(payload.get("success")),
            message=str(payload.get("message", "")),
            timestamp=ensure_datetime(timestamp),
            data=dict(data) if data is not None else None,
        )

    @classmethod
    def failure(cls, message: str) -> "ApiResponse":
        return cls(success=False, message=message, timestamp=_utcnow())


@dataclass(slots=True)
class LogEntry:
    """Audit record of a single OPS interaction."""

    id: str
    ticket_id: str
    action: OpsAction
    status: OpsOutcome
    response: ApiResponse
    timestamp: datetime


@dataclass(slots=True)
class OpsResult:
    """What an OPS interaction produced: the response, the ticket and its log entry."""

    response: ApiResponse
    ticket: Ticket
    log_entry: LogEntry


class OpsLogRepository:
    """Persistence for `ops_logs`, including the combined ticket/log write."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_interaction(
        self,
        entry: LogEntry,
        *,
        new_status: TicketStatus | None = None,
    ) -> Ticket | None:
        """Append ``entry`` and, if given, apply ``new_status`` in one transaction.

        Returns the updated ticket when a status was applied.
        """

        updated: Ticket | None = None
        async with self._session_factory() as session:
            async with session.begin():
                if new_status is not None:
                    ticket_row = await session.get(TicketTable, entry.ticket_id)
                    if ticket_row is None:
                        raise TicketNotFoundError(f"Ticket {entry.ticket_id} not found")
                    ticket_row.status = new_status.value
                    updated = ticket_from_row(ticket_row)
                session.add(
                    OpsLogTable(
                        id=entry.id,
                        ticket_id=entry.ticket_id,
                        action=entry.action.value,
                        status=entry.status.value,
                        response=entry.response.to_dict(),
                        timestamp=entry.timestamp,
                    )
                )
        return updated

    async def list_logs(
        self,
        *,
        ticket_id: str | None = None,
        action: OpsAction | None = None,
        status: OpsOutcome | None = None,
    ) -> Sequence[LogEntry]:
        statement = select(OpsLogTable)
        if ticket_id is not None:
            statement = statement.where(OpsLogTable.ticket_id == ticket_id)
        if action is not None:
            statement = statement.where(OpsLogTable.action == action.value)
        if status is not None:
            statement = statement.where(OpsLogTable.status == status.value)
        statement = statement.order_by(OpsLogTable.timestamp.desc())
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_entry(row) for row in result.scalars().all()]

    @staticmethod
    def _table_to_entry(row: OpsLogTable) -> LogEntry:
        return LogEntry(
            id=row.id,
            ticket_id=row.ticket_id,
            action=OpsAction(row.action),
            status=OpsOutcome(row.status),
            response=ApiResponse.from_dict(row.response or {}),
            timestamp=ensure_datetime(row.timestamp),
        )


class OpsService:
    """Run simulated OPS interactions and record exactly one log entry for each.

    Ticket lookup and state validation happen before the simulator is invoked;
    a missing ticket or an invalid state short-circuits without a log entry.
    A simulated failure is an ordinary outcome: it is logged with outcome
    ``failed`` and returned to the caller like any other response.
    """

    def __init__(
        self,
        tickets: TicketRepository,
        logs: OpsLogRepository,
        *,
        simulator: TransitionSimulator | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tickets = tickets
        self._logs = logs
        self._simulator = simulator or TransitionSimulator()
        self._metrics = metrics or metrics_registry
        self._clock = clock or _utcnow

    async def send_to_ops(self, ticket_id: str) -> OpsResult:
        return await self._send(ticket_id, action=OpsAction.SEND)

    async def retry_send(self, ticket_id: str) -> OpsResult:
        return await self._send(ticket_id, action=OpsAction.RETRY)

    async def query_status(self, ticket_id: str) -> OpsResult:
        action = OpsAction.QUERY
        with tracer.start_as_current_span("ops.query") as span, self._timed(action):
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._load_ticket(ticket_id)
            outcome = self._simulator.attempt_status_query(ticket.status)
            timestamp = self._clock()

            if outcome.success:
                response = ApiResponse(
                    success=True,
                    message=f"Status for ticket {ticket_id}: {outcome.status.value}",
                    timestamp=timestamp,
                    data={
                        "ticketId": ticket_id,
                        "status": outcome.status.value,
                        "updated": outcome.updated,
                        "details": outcome.details,
                    },
                )
            else:
                response = ApiResponse(
                    success=False,
                    message=f"Failed to query status for ticket {ticket_id}: {outcome.reason}",
                    timestamp=timestamp,
                )

            new_status = outcome.status if outcome.success and outcome.updated else None
            result = await self._record(ticket, action, response, new_status)
            span.set_attribute("ops.outcome", result.log_entry.status.value)
            span.set_attribute("ticket.status", result.ticket.status.value)
            return result

    async def list_logs(
        self,
        *,
        ticket_id: str | None = None,
        action: OpsAction | None = None,
        status: OpsOutcome | None = None,
    ) -> Sequence[LogEntry]:
        return await self._logs.list_logs(ticket_id=ticket_id, action=action, status=status)

    async def get_ticket_logs(self, ticket_id: str) -> Sequence[LogEntry]:
        ticket = await self._tickets.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return await self._logs.list_logs(ticket_id=ticket_id)

    async def _send(self, ticket_id: str, *, action: OpsAction) -> OpsResult:
        with tracer.start_as_current_span(f"ops.{action.value}") as span, self._timed(action):
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._load_ticket(ticket_id)
            if action is OpsAction.RETRY and ticket.status not in RETRYABLE_STATUSES:
                raise InvalidTicketStateError(
                    f"Cannot retry sending ticket in '{ticket.status.value}' state"
                )

            outcome = self._simulator.attempt_send(ticket.status)
            timestamp = self._clock()

            if outcome.success:
                response = ApiResponse(
                    success=True,
                    message=f"Ticket {ticket_id} successfully sent to OPS",
                    timestamp=timestamp,
                    data={
                        "ticketId": ticket_id,
                        "opsId": outcome.ops_id,
                        "timestamp": timestamp.isoformat(),
                    },
                )
            else:
                response = ApiResponse(
                    success=False,
                    message=f"Failed to send ticket {ticket_id} to OPS: {outcome.reason}",
                    timestamp=timestamp,
                )

            new_status = outcome.target_status
            if new_status == ticket.status:
                new_status = None
            result = await self._record(ticket, action, response, new_status)
            span.set_attribute("ops.outcome", result.log_entry.status.value)
            return result

    async def _load_ticket(self, ticket_id: str) -> Ticket:
        try:
            ticket = await self._tickets.get_ticket(ticket_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load ticket %s", ticket_id)
            raise OpsPersistenceError(f"Failed to load ticket {ticket_id}") from exc
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _record(
        self,
        ticket: Ticket,
        action: OpsAction,
        response: ApiResponse,
        new_status: TicketStatus | None,
    ) -> OpsResult:
        entry = LogEntry(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            action=action,
            status=OpsOutcome.SUCCESS if response.success else OpsOutcome.FAILED,
            response=response,
            timestamp=response.timestamp,
        )
        try:
            updated = await self._logs.record_interaction(entry, new_status=new_status)
        except SQLAlchemyError as exc:
            logger.exception("Failed to record %s interaction for ticket %s", action.value, ticket.id)
            raise OpsPersistenceError("Error creating log entry") from exc

        self._metrics.counter(OPS_INTERACTIONS_TOTAL, label_names=("action", "outcome")).inc(
            labels={"action": action.value, "outcome": entry.status.value}
        )
        if updated is not None:
            self._metrics.counter(
                OPS_STATUS_TRANSITIONS_TOTAL, label_names=("from_status", "to_status")
            ).inc(labels={"from_status": ticket.status.value, "to_status": updated.status.value})
            logger.info(
                "Ticket %s moved %s -> %s after OPS %s",
                ticket.id,
                ticket.status.value,
                updated.status.value,
                action.value,
            )
        else:
            logger.info("OPS %s for ticket %s logged as %s", action.value, ticket.id, entry.status.value)

        return OpsResult(response=response, ticket=updated or ticket, log_entry=entry)

    def _timed(self, action: OpsAction):
        return self._metrics.distribution(
            OPS_INTERACTION_DURATION_SECONDS, label_names=("action",)
        ).time(labels={"action": action.value})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
