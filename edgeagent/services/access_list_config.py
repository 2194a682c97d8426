"""Access list configuration: rules file, htpasswd file and bound domain re-publish"""

import logging
from typing import Iterable, Optional

from edgeagent.errors import ProxyConfigError, PublishError
from edgeagent.models.entities import AccessList, Domain
from edgeagent.services.config_generator import NginxConfigGenerator, get_config_generator
from edgeagent.services.config_publisher import ConfigPublisher, get_publisher
from edgeagent.services.credentials import CredentialWriter, get_credential_writer
from edgeagent.services.domain_config import DomainConfigService, get_domain_service
from edgeagent.services.pipeline import ApplyResult, ConfigPipeline, get_pipeline

logger = logging.getLogger(__name__)


class AccessListConfigService:
    """Publishes access lists and re-publishes the domains bound to them"""

    def __init__(
        self,
        generator: NginxConfigGenerator,
        publisher: ConfigPublisher,
        credentials: CredentialWriter,
        pipeline: ConfigPipeline,
        domains: DomainConfigService
    ):
        self.generator = generator
        self.publisher = publisher
        self.credentials = credentials
        self.pipeline = pipeline
        self.domains = domains

    def _republish_domains(self, domains: Iterable[Domain]) -> list[str]:
        """Re-apply bound domains without reloading; failures are logged per domain"""
        failed = []
        for domain in domains:
            try:
                self.domains.apply(domain, silent=True, reload=False)
            except ProxyConfigError as e:
                logger.error(f"Failed to re-publish domain {domain.name}: {e}")
                failed.append(domain.name)
        return failed

    def apply(self, access_list: AccessList, domains: Iterable[Domain] = (), silent: bool = False) -> ApplyResult:
        """Write the rules (and credentials), then refresh bound domains and reload once"""
        generated = self.generator.generate_access_list_config(access_list)
        name = access_list.name

        with self.pipeline.locks.hold(f"access_list:{name}"):
            if generated.needs_credential_file:
                self.credentials.write(name, access_list.auth_users)

            try:
                self.pipeline.publish_checked(self.publisher, name, generated.text, activate=access_list.enabled)
            except ProxyConfigError:
                if generated.needs_credential_file:
                    self._rollback_credentials(name)
                raise

            if generated.needs_credential_file:
                self.credentials.commit(name)
            else:
                # rules no longer reference a credential file
                self.credentials.remove(name)

            failed = self._republish_domains(domains)

            result = ApplyResult(
                name=name,
                status="active" if access_list.enabled else "inactive",
                referenced_files=generated.referenced_files
            )
            if failed:
                result.message = f"Failed to re-publish domains: {', '.join(failed)}"
            result.reload = self.pipeline.reload(silent=silent)
            if not result.reload.success:
                result.status = "error"
                result.message = result.reload.diagnostic

        logger.info(f"Applied access list {name} ({access_list.type})")
        return result

    def _rollback_credentials(self, name: str):
        try:
            self.credentials.rollback(name)
        except PublishError as e:
            logger.error(f"Credential rollback for {name} failed: {e}")

    def remove(self, name: str, domains: Iterable[Domain] = ()) -> ApplyResult:
        """Unbind from domains first so no site includes a missing file"""
        failed = self._republish_domains(domains)

        with self.pipeline.locks.hold(f"access_list:{name}"):
            self.pipeline.unpublish(self.publisher, name)
            self.credentials.remove(name)

            result = ApplyResult(name=name, status="deleted")
            if failed:
                result.message = f"Failed to re-publish domains: {', '.join(failed)}"
            result.reload = self.pipeline.reload()

        logger.info(f"Removed access list {name}")
        return result


_service: Optional[AccessListConfigService] = None


def get_access_list_service() -> AccessListConfigService:
    global _service
    if _service is None:
        _service = AccessListConfigService(
            get_config_generator(),
            get_publisher("access_list"),
            get_credential_writer(),
            get_pipeline(),
            get_domain_service()
        )
    return _service
