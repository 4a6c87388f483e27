from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies.services import TicketServiceDep
from apps.api.services.tickets import (
    Customer,
    Priority,
    Ticket,
    TicketConflictError,
    TicketNotFoundError,
    TicketStatus,
)

router = APIRouter(prefix="/tickets", tags=["tickets"])


class CustomerModel(BaseModel):
    name: str = ""
    email: str = ""
    phone: str | None = None

    def to_entity(self) -> Customer:
        return Customer(name=self.name, email=self.email, phone=self.phone)


class TicketFieldsModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    priority: Priority = Priority.MEDIUM
    category: str = Field(default="", max_length=100)
    customer: CustomerModel = Field(default_factory=CustomerModel)
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    metadata: dict[str, Any] = Field(default_factory=dict)


class TicketCreateRequest(TicketFieldsModel):
    id: str | None = Field(default=None, min_length=1, max_length=255)
    status: TicketStatus | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")


class TicketUpdateRequest(TicketFieldsModel):
    status: TicketStatus | None = None


class TicketModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    subject: str
    description: str
    status: TicketStatus
    priority: Priority
    category: str
    customer: CustomerModel
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.id,
            subject=ticket.subject,
            description=ticket.description,
            status=ticket.status,
            priority=ticket.priority,
            category=ticket.category,
            customer=CustomerModel(
                name=ticket.customer.name,
                email=ticket.customer.email,
                phone=ticket.customer.phone,
            ),
            assigned_to=ticket.assigned_to,
            metadata=dict(ticket.metadata),
            created_at=ticket.created_at,
        )


class TicketStatsModel(BaseModel):
    total: int
    new: int
    pending: int
    sent: int
    in_progress: int
    closed: int
    delayed: int
    failed: int


@router.get("", response_model=list[TicketModel], summary="List existing tickets")
async def list_tickets(
    service: TicketServiceDep,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, alias="q", max_length=255),
) -> list[TicketModel]:
    tickets = await service.list_tickets(status=status_filter, search=search)
    return [TicketModel.from_entity(ticket) for ticket in tickets]


@router.get("/stats", response_model=TicketStatsModel, summary="Ticket counts per status")
async def get_ticket_stats(service: TicketServiceDep) -> TicketStatsModel:
    return TicketStatsModel(**await service.get_stats())


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep) -> TicketModel:
    try:
        ticket = await service.create_ticket(
            ticket_id=payload.id,
            subject=payload.subject,
            description=payload.description,
            customer=payload.customer.to_entity(),
            priority=payload.priority,
            category=payload.category,
            assigned_to=payload.assigned_to,
            metadata=payload.metadata,
            status=payload.status,
            created_at=payload.created_at,
        )
    except TicketConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return TicketModel.from_entity(ticket)


@router.get("/{ticket_id}", response_model=TicketModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep) -> TicketModel:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TicketModel.from_entity(ticket)


@router.put("/{ticket_id}", response_model=TicketModel)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
) -> TicketModel:
    try:
        ticket = await service.update_ticket(
            ticket_id,
            subject=payload.subject,
            description=payload.description,
            customer=payload.customer.to_entity(),
            priority=payload.priority,
            category=payload.category,
            assigned_to=payload.assigned_to,
            metadata=payload.metadata,
            status=payload.status,
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TicketModel.from_entity(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep) -> None:
    try:
        await service.delete_ticket(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
