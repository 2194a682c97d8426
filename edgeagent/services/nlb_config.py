"""Network load balancer (stream) configuration and health checks"""

import logging
from typing import Optional

from edgeagent.models.entities import NetworkLoadBalancer
from edgeagent.services.config_generator import NginxConfigGenerator, get_config_generator
from edgeagent.services.config_publisher import ConfigPublisher, get_publisher
from edgeagent.services.health_prober import HealthCheckResult, HealthMonitor, get_health_monitor
from edgeagent.services.pipeline import ApplyResult, ConfigPipeline, get_pipeline

logger = logging.getLogger(__name__)


class NLBConfigService:
    def __init__(
        self,
        generator: NginxConfigGenerator,
        publisher: ConfigPublisher,
        pipeline: ConfigPipeline,
        monitor: HealthMonitor
    ):
        self.generator = generator
        self.publisher = publisher
        self.pipeline = pipeline
        self.monitor = monitor

    def apply(self, nlb: NetworkLoadBalancer, silent: bool = False) -> ApplyResult:
        """Publish the stream file, activate it when enabled, and reload"""
        generated = self.generator.generate_nlb_config(nlb)

        with self.pipeline.locks.hold(f"stream:{nlb.name}"):
            self.pipeline.publish_checked(self.publisher, nlb.name, generated.text, activate=nlb.enabled)
            result = ApplyResult(name=nlb.name, status="active" if nlb.enabled else "inactive")
            result.reload = self.pipeline.reload(silent=silent)
            if not result.reload.success:
                result.status = "error"
                result.message = result.reload.diagnostic

        if nlb.enabled and result.status == "active":
            self.monitor.register(nlb)
        else:
            self.monitor.unregister(nlb.name)

        logger.info(f"Applied NLB {nlb.name} on port {nlb.port}/{nlb.protocol}: {result.status}")
        return result

    def toggle(self, nlb: NetworkLoadBalancer, enabled: bool) -> ApplyResult:
        """Flip the enabled flag and re-apply"""
        return self.apply(nlb.model_copy(update={"enabled": enabled}))

    def remove(self, name: str) -> ApplyResult:
        """Disable, delete and reload; health history is dropped"""
        with self.pipeline.locks.hold(f"stream:{name}"):
            self.pipeline.unpublish(self.publisher, name)
            result = ApplyResult(name=name, status="deleted")
            result.reload = self.pipeline.reload()
        self.monitor.forget(name)
        logger.info(f"Removed NLB {name}")
        return result

    async def health_check(self, nlb: NetworkLoadBalancer) -> list[HealthCheckResult]:
        """Probe every upstream now and record the results"""
        return await self.monitor.check(nlb)


_service: Optional[NLBConfigService] = None


def get_nlb_service() -> NLBConfigService:
    global _service
    if _service is None:
        _service = NLBConfigService(
            get_config_generator(),
            get_publisher("stream"),
            get_pipeline(),
            get_health_monitor()
        )
    return _service
