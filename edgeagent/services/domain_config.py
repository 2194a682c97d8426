"""Domain (HTTP virtual host) configuration: generate, publish, validate, reload"""

import logging
from datetime import datetime, timezone
from typing import Optional

from edgeagent.models.entities import Domain
from edgeagent.services.cloudflare_ips import CloudflareIPs, get_cloudflare_ips
from edgeagent.services.config_generator import (
    GeneratedConfig,
    NginxConfigGenerator,
    get_config_generator,
)
from edgeagent.services.config_publisher import ConfigPublisher, get_publisher
from edgeagent.services.pipeline import ApplyResult, ConfigPipeline, get_pipeline

logger = logging.getLogger(__name__)


class DomainConfigService:
    """Keeps one site file per domain in sync with the panel's record"""

    def __init__(
        self,
        generator: NginxConfigGenerator,
        publisher: ConfigPublisher,
        pipeline: ConfigPipeline,
        cloudflare: Optional[CloudflareIPs] = None
    ):
        self.generator = generator
        self.publisher = publisher
        self.pipeline = pipeline
        self.cloudflare = cloudflare

    def _cloudflare_ips(self, domain: Domain) -> list[str]:
        if not (domain.real_ip_enabled and domain.real_ip_cloudflare) or self.cloudflare is None:
            return []
        return self.cloudflare.current()

    def _warn_certificate(self, domain: Domain):
        if not domain.tls_enabled:
            return
        if domain.certificate is None:
            logger.warning(f"Domain {domain.name} has TLS enabled but no certificate, serving plain HTTP only")
            return
        valid_to = domain.certificate.valid_to
        if valid_to is not None:
            if valid_to.tzinfo is None:
                valid_to = valid_to.replace(tzinfo=timezone.utc)
            if valid_to < datetime.now(timezone.utc):
                logger.warning(f"Certificate for {domain.name} expired at {valid_to.isoformat()}")

    def render(self, domain: Domain) -> GeneratedConfig:
        """Generate the site config without touching disk"""
        return self.generator.generate_domain_config(domain, self._cloudflare_ips(domain))

    def apply(self, domain: Domain, silent: bool = False, reload: bool = True) -> ApplyResult:
        """Regenerate and publish a domain's site file.

        reload=False leaves the reload to the caller (bulk re-publish after an
        access list change). silent=True logs a failed reload instead of raising.
        """
        self._warn_certificate(domain)
        generated = self.render(domain)
        active = domain.status != "inactive"

        with self.pipeline.locks.hold(f"site:{domain.name}"):
            self.pipeline.publish_checked(self.publisher, domain.name, generated.text, activate=active)
            logger.info(f"Published site config for {domain.name} ({'enabled' if active else 'disabled'})")

            result = ApplyResult(
                name=domain.name,
                status="active" if active else "inactive",
                referenced_files=generated.referenced_files
            )
            if reload:
                result.reload = self.pipeline.reload(silent=silent)
                if not result.reload.success:
                    result.status = "error"
                    result.message = result.reload.diagnostic
        return result

    def remove(self, name: str, reload: bool = True) -> ApplyResult:
        """Disable and delete a domain's site file"""
        with self.pipeline.locks.hold(f"site:{name}"):
            self.pipeline.unpublish(self.publisher, name)
            result = ApplyResult(name=name, status="deleted")
            if reload:
                result.reload = self.pipeline.reload()
        logger.info(f"Removed site config for {name}")
        return result


_service: Optional[DomainConfigService] = None


def get_domain_service() -> DomainConfigService:
    global _service
    if _service is None:
        _service = DomainConfigService(
            get_config_generator(),
            get_publisher("site"),
            get_pipeline(),
            get_cloudflare_ips()
        )
    return _service
