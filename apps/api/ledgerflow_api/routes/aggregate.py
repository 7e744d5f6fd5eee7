"""Aggregation over encrypted records."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ledgerflow_api.coprocessor.service import AggregationService
from ledgerflow_api.dependencies import get_aggregation_service

router = APIRouter(prefix="/v1", tags=["aggregate"])


class AggregateRequest(BaseModel):
    """Aggregate request. Operation is validated by the service."""

    content_addresses: list[str]
    operation: str = "sum"


@router.post("/aggregate")
async def aggregate(
    request: AggregateRequest,
    service: AggregationService = Depends(get_aggregation_service),
):
    result = await service.aggregate(request.content_addresses, request.operation)
    return {"success": True, **result}


@router.get("/aggregate/health")
async def aggregate_health(service: AggregationService = Depends(get_aggregation_service)):
    health = await service.health_check()
    return {"success": health["ok"], **health}
