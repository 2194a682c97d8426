"""Domain (virtual host) push endpoints"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException

from edgeagent.errors import ProxyConfigError, status_code_for
from edgeagent.models.entities import Domain
from edgeagent.models.nginx import ApplyResponse, PreviewResponse
from edgeagent.routers.nginx import reload_response
from edgeagent.services.domain_config import get_domain_service
from edgeagent.services.pipeline import ApplyResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/domains", tags=["domains"])


def apply_response(result: ApplyResult) -> ApplyResponse:
    return ApplyResponse(
        success=result.status != "error",
        name=result.name,
        status=result.status,
        reloaded=result.reloaded,
        message=result.message,
        referenced_files=result.referenced_files,
        reload=reload_response(result.reload)
    )


@router.post("/apply", response_model=ApplyResponse)
async def apply_domain(domain: Domain):
    """Generate, publish, validate and reload a domain's site config"""
    service = get_domain_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(None, lambda: service.apply(domain))
    except ProxyConfigError as e:
        logger.error(f"Failed to apply domain {domain.name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)


@router.post("/preview", response_model=PreviewResponse)
async def preview_domain(domain: Domain):
    """Generated config text, nothing is written"""
    try:
        generated = get_domain_service().render(domain)
    except ProxyConfigError as e:
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return PreviewResponse(name=domain.name, config=generated.text, referenced_files=generated.referenced_files)


@router.delete("/{name}", response_model=ApplyResponse)
async def delete_domain(name: str):
    """Disable and remove a domain's site config"""
    service = get_domain_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(None, lambda: service.remove(name))
    except ProxyConfigError as e:
        logger.error(f"Failed to remove domain {name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)
