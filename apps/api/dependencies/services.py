from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from apps.api.metrics import MetricsRegistry, metrics_registry
from apps.api.services.ops import OpsService, OpsUnavailableError
from apps.api.services.tickets import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not available")
    return service


async def get_ops_service(request: Request) -> OpsService:
    service = getattr(request.app.state, "ops_service", None)
    if service is None:
        raise OpsUnavailableError("OPS service is not available")
    return service


async def get_metrics_registry(request: Request) -> MetricsRegistry:
    return getattr(request.app.state, "metrics_registry", None) or metrics_registry


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
OpsServiceDep = Annotated[OpsService, Depends(get_ops_service)]
MetricsRegistryDep = Annotated[MetricsRegistry, Depends(get_metrics_registry)]
