from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from apps.api.dependencies.services import MetricsRegistryDep
from apps.api.metrics import PrometheusExporter

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse, summary="Prometheus metrics")
async def metrics(registry: MetricsRegistryDep) -> PlainTextResponse:
    payload = PrometheusExporter(registry).build_payload()
    return PlainTextResponse(payload, media_type="text/plain; version=0.0.4")
