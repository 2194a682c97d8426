"""Edge Proxy Agent API - Main Application

Receives domain, NLB and access list records from the panel, renders them
into nginx config, and keeps the live nginx process in sync.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from edgeagent import __version__
from edgeagent.auth import verify_api_key
from edgeagent.config import get_settings
from edgeagent.errors import PublishError
from edgeagent.routers import access_lists, domains, nginx, nlb
from edgeagent.services.cloudflare_ips import get_cloudflare_ips
from edgeagent.services.config_publisher import ensure_acl_rules_file, ensure_acme_snippet, get_publisher
from edgeagent.services.health_prober import get_health_monitor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan"""
    logger.info("Starting Edge Proxy Agent...")
    settings = get_settings()
    logger.info(f"nginx environment mode: {settings.environment_mode}")

    for kind in ("site", "stream", "access_list"):
        try:
            get_publisher(kind).init()
        except PublishError as e:
            logger.warning(f"Publisher init failed: {e}")

    try:
        if ensure_acme_snippet(settings.acme_snippet_path, settings.acme_webroot):
            logger.info("ACME challenge snippet created")
    except PublishError as e:
        logger.warning(f"ACME snippet setup failed: {e}")

    try:
        if ensure_acl_rules_file(settings.acl_rules_path):
            logger.info("ACL rules file created")
    except PublishError as e:
        logger.warning(f"ACL rules file setup failed: {e}")

    # Cloudflare ranges fall back to the bundled list on any fetch error
    await get_cloudflare_ips().refresh()

    monitor = get_health_monitor()
    if settings.health_monitor_enabled:
        await monitor.start()

    logger.info("Server ready")
    yield

    await monitor.stop()
    logger.info("Shutdown complete")


settings = get_settings()

app = FastAPI(
    title="Edge Proxy Agent API",
    version=__version__,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    lifespan=lifespan
)

# Routers with API key authentication
app.include_router(nginx.router, dependencies=[Depends(verify_api_key)])
app.include_router(domains.router, dependencies=[Depends(verify_api_key)])
app.include_router(nlb.router, dependencies=[Depends(verify_api_key)])
app.include_router(access_lists.router, dependencies=[Depends(verify_api_key)])


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/version")
async def api_version():
    """Agent version (for panel checks)"""
    return {
        "version": __version__,
        "component": "edge-agent",
        "node_name": settings.node_name
    }


def run():
    import uvicorn
    uvicorn.run("edgeagent.main:app", host=settings.api_host, port=settings.api_port)
