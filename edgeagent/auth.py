"""API key authentication"""

import logging
import secrets

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from edgeagent.config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: str = Security(API_KEY_HEADER)
) -> str:
    """Verify API key"""
    settings = get_settings()
    client_ip = request.client.host if request.client else "unknown"

    if not api_key:
        logger.warning(f"Missing API key from {client_ip}")
        raise HTTPException(status_code=403)

    if not secrets.compare_digest(api_key, settings.api_key):
        logger.warning(f"Invalid API key from {client_ip}")
        raise HTTPException(status_code=403)

    return api_key
