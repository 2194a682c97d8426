"""Network load balancer endpoints"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException

from edgeagent.errors import ProxyConfigError, status_code_for
from edgeagent.models.entities import NetworkLoadBalancer
from edgeagent.models.nginx import ApplyResponse, HealthCheckItem, HealthCheckResponse, ToggleRequest
from edgeagent.routers.domains import apply_response
from edgeagent.services.health_prober import HealthCheckResult
from edgeagent.services.nlb_config import get_nlb_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/nlb", tags=["nlb"])


def _health_response(name: str, results: list[HealthCheckResult]) -> HealthCheckResponse:
    items = [
        HealthCheckItem(
            upstream_host=r.upstream_host,
            upstream_port=r.upstream_port,
            status=r.status,
            response_time_ms=r.response_time_ms,
            error=r.error,
            checked_at=r.checked_at
        )
        for r in results
    ]
    return HealthCheckResponse(name=name, count=len(items), results=items)


@router.post("/apply", response_model=ApplyResponse)
async def apply_nlb(nlb: NetworkLoadBalancer):
    """Publish a stream config and reload"""
    service = get_nlb_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(None, lambda: service.apply(nlb))
    except ProxyConfigError as e:
        logger.error(f"Failed to apply NLB {nlb.name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)


@router.post("/health-check", response_model=HealthCheckResponse)
async def run_health_check(nlb: NetworkLoadBalancer):
    """Probe all upstreams now"""
    results = await get_nlb_service().health_check(nlb)
    return _health_response(nlb.name, results)


@router.post("/{name}/toggle", response_model=ApplyResponse)
async def toggle_nlb(name: str, request: ToggleRequest):
    """Enable or disable an NLB"""
    if request.nlb.name != name:
        raise HTTPException(status_code=400, detail="NLB name does not match path")
    service = get_nlb_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(
            None,
            lambda: service.toggle(request.nlb, request.enabled)
        )
    except ProxyConfigError as e:
        logger.error(f"Failed to toggle NLB {name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)


@router.get("/{name}/health", response_model=HealthCheckResponse)
async def get_nlb_health(name: str, limit: int = 50):
    """Recorded health history, newest first"""
    history = get_nlb_service().monitor.history(name, limit=limit)
    return _health_response(name, history)


@router.delete("/{name}", response_model=ApplyResponse)
async def delete_nlb(name: str):
    """Disable and remove an NLB's stream config"""
    service = get_nlb_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(None, lambda: service.remove(name))
    except ProxyConfigError as e:
        logger.error(f"Failed to remove NLB {name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)
