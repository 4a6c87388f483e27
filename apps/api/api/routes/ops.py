"""Endpoints simulating the OPS integration and exposing its audit log.

Simulated failures are reported with HTTP 200 and ``success: false``; only
lookup, state and persistence problems change the transport status.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies.services import OpsServiceDep
from apps.api.ops.simulator import InvalidTicketStateError
from apps.api.services.ops import (
    ApiResponse,
    LogEntry,
    OpsAction,
    OpsOutcome,
    OpsPersistenceError,
    OpsResult,
    OpsUnavailableError,
)
from apps.api.services.tickets import TicketNotFoundError

router = APIRouter(tags=["ops"])


class ApiResponseModel(BaseModel):
    success: bool
    message: str
    data: dict[str, Any] | None = None
    timestamp: datetime

    @classmethod
    def from_entity(cls, response: ApiResponse) -> "ApiResponseModel":
        return cls(
            success=response.success,
            message=response.message,
            data=dict(response.data) if response.data is not None else None,
            timestamp=response.timestamp,
        )


class LogEntryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    ticket_id: str = Field(alias="ticketId")
    action: OpsAction
    status: OpsOutcome
    timestamp: datetime
    response: ApiResponseModel

    @classmethod
    def from_entity(cls, entry: LogEntry) -> "LogEntryModel":
        return cls(
            id=entry.id,
            ticket_id=entry.ticket_id,
            action=entry.action,
            status=entry.status,
            timestamp=entry.timestamp,
            response=ApiResponseModel.from_entity(entry.response),
        )


_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ApiResponseModel},
    status.HTTP_404_NOT_FOUND: {"model": ApiResponseModel},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ApiResponseModel},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ApiResponseModel},
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ApiResponse.failure(message).to_dict())


async def ops_unavailable_handler(request: Request, exc: OpsUnavailableError) -> JSONResponse:
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))


async def _run(operation, ticket_id: str) -> ApiResponseModel | JSONResponse:
    try:
        result: OpsResult = await operation(ticket_id)
    except TicketNotFoundError:
        return _error(status.HTTP_404_NOT_FOUND, "Ticket not found")
    except InvalidTicketStateError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    except OpsPersistenceError as exc:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return ApiResponseModel.from_entity(result.response)


@router.post(
    "/api/ops/{ticket_id}",
    response_model=ApiResponseModel,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    summary="Send a ticket to OPS",
)
async def send_to_ops(ticket_id: str, service: OpsServiceDep) -> ApiResponseModel | JSONResponse:
    return await _run(service.send_to_ops, ticket_id)


@router.post(
    "/api/ops/{ticket_id}/retry",
    response_model=ApiResponseModel,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    summary="Retry sending a ticket whose OPS submission failed",
)
async def retry_send(ticket_id: str, service: OpsServiceDep) -> ApiResponseModel | JSONResponse:
    return await _run(service.retry_send, ticket_id)


@router.get(
    "/api/status/{ticket_id}",
    response_model=ApiResponseModel,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    summary="Poll OPS for the status of a ticket",
)
async def query_status(ticket_id: str, service: OpsServiceDep) -> ApiResponseModel | JSONResponse:
    return await _run(service.query_status, ticket_id)


@router.get("/api/logs", response_model=list[LogEntryModel], summary="List OPS interaction logs")
async def list_logs(
    service: OpsServiceDep,
    ticket_id: str | None = Query(default=None, alias="ticketId"),
    action: OpsAction | None = Query(default=None),
    outcome: OpsOutcome | None = Query(default=None, alias="status"),
) -> list[LogEntryModel]:
    entries = await service.list_logs(ticket_id=ticket_id, action=action, status=outcome)
    return [LogEntryModel.from_entity(entry) for entry in entries]


@router.get(
    "/tickets/{ticket_id}/logs",
    response_model=list[LogEntryModel],
    summary="List OPS interaction logs for one ticket",
)
async def get_ticket_logs(ticket_id: str, service: OpsServiceDep) -> list[LogEntryModel] | JSONResponse:
    try:
        entries = await service.get_ticket_logs(ticket_id)
    except TicketNotFoundError:
        return _error(status.HTTP_404_NOT_FOUND, "Ticket not found")
    return [LogEntryModel.from_entity(entry) for entry in entries]
