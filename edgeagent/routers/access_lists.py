"""Access list endpoints"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from edgeagent.errors import ProxyConfigError, status_code_for
from edgeagent.models.nginx import AccessListApplyRequest, AccessListDeleteRequest, ApplyResponse
from edgeagent.routers.domains import apply_response
from edgeagent.services.access_list_config import get_access_list_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/access-lists", tags=["access-lists"])


@router.post("/apply", response_model=ApplyResponse)
async def apply_access_list(request: AccessListApplyRequest):
    """Write rules and credentials, re-publish bound domains, reload once"""
    service = get_access_list_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(
            None,
            lambda: service.apply(request.access_list, request.domains)
        )
    except ProxyConfigError as e:
        logger.error(f"Failed to apply access list {request.access_list.name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)


@router.delete("/{name}", response_model=ApplyResponse)
async def delete_access_list(name: str, request: Optional[AccessListDeleteRequest] = None):
    """Unbind from the given domains, then remove the rules and credentials"""
    domains = request.domains if request else []
    service = get_access_list_service()
    try:
        result = await asyncio.get_event_loop().run_in_executor(None, lambda: service.remove(name, domains))
    except ProxyConfigError as e:
        logger.error(f"Failed to remove access list {name}: {e}")
        raise HTTPException(status_code=status_code_for(e), detail=str(e))
    return apply_response(result)
