"""nginx status, validation and reload endpoints"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter

from edgeagent.models.nginx import ReloadResponse, StatusResponse, ValidateResponse
from edgeagent.services.config_publisher import get_publisher
from edgeagent.services.config_validator import get_validator
from edgeagent.services.reload_orchestrator import ReloadResult, get_reload_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/nginx", tags=["nginx"])


def reload_response(result: Optional[ReloadResult]) -> Optional[ReloadResponse]:
    if result is None:
        return None
    return ReloadResponse(
        success=result.success,
        mode=result.mode,
        method=result.method,
        stage=result.stage,
        diagnostic=result.diagnostic,
        transitions=result.transitions
    )


def _collect_status() -> StatusResponse:
    orchestrator = get_reload_orchestrator()
    validation = get_validator().validate()
    return StatusResponse(
        running=orchestrator.controller.is_running(),
        mode=orchestrator.mode,
        config_valid=validation.ok,
        config_message=validation.diagnostic,
        reload_state=orchestrator.state.value,
        last_reload=reload_response(orchestrator.last_result),
        sites=get_publisher("site").list_definitions(),
        streams=get_publisher("stream").list_definitions(),
        access_lists=get_publisher("access_list").list_definitions()
    )


@router.get("/status", response_model=StatusResponse)
async def get_nginx_status():
    """Process state, config test and published definitions"""
    return await asyncio.get_event_loop().run_in_executor(None, _collect_status)


@router.post("/validate", response_model=ValidateResponse)
async def validate_config():
    """Run nginx -t against the whole tree"""
    result = await asyncio.get_event_loop().run_in_executor(None, get_validator().validate)
    return ValidateResponse(valid=result.ok, message=result.diagnostic)


@router.post("/reload", response_model=ReloadResponse)
async def reload_nginx():
    """Validate, reload, and fall back to restart; failures are reported, not raised"""
    result = await asyncio.get_event_loop().run_in_executor(None, get_reload_orchestrator().run)
    if not result.success:
        logger.warning(f"Manual reload failed at {result.stage}")
    return reload_response(result)
