"""Shared publish -> validate -> reload sequence for entity config services"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from edgeagent.errors import PublishError, ValidationError
from edgeagent.services.config_publisher import ConfigPublisher
from edgeagent.services.config_validator import Validator, get_validator
from edgeagent.services.locks import NameLocks
from edgeagent.services.reload_orchestrator import (
    ReloadOrchestrator,
    ReloadResult,
    get_reload_orchestrator,
)

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """What an apply/remove did to one entity"""
    name: str
    status: str  # active | inactive | error | deleted
    reload: Optional[ReloadResult] = None
    referenced_files: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def reloaded(self) -> bool:
        return self.reload is not None and self.reload.success


class ConfigPipeline:
    """Publishes one entity's file safely and drives the reload cycle"""

    def __init__(self, validator: Validator, orchestrator: ReloadOrchestrator, locks: Optional[NameLocks] = None):
        self.validator = validator
        self.orchestrator = orchestrator
        self.locks = locks or NameLocks()

    def publish_checked(self, publisher: ConfigPublisher, name: str, text: str, activate: bool):
        """Publish, set activation, validate; roll the file back if nginx rejects it"""
        was_enabled = publisher.is_enabled(name)
        publisher.publish(name, text)

        try:
            if activate:
                publisher.enable(name)
            else:
                publisher.disable(name)
        except PublishError:
            self._rollback(publisher, name, was_enabled)
            raise

        validation = self.validator.validate()
        if not validation.ok:
            self._rollback(publisher, name, was_enabled)
            raise ValidationError(
                "nginx rejected the generated configuration",
                entity=name,
                stage="validate",
                output=validation.diagnostic
            )

        publisher.commit(name)

    def _rollback(self, publisher: ConfigPublisher, name: str, was_enabled: bool):
        try:
            restored = publisher.rollback(name)
            if restored:
                if was_enabled:
                    publisher.enable(name)
                else:
                    publisher.disable(name)
        except PublishError as e:
            # never mask the original failure
            logger.error(f"Rollback of {publisher.kind} {name} failed: {e}")

    def unpublish(self, publisher: ConfigPublisher, name: str):
        """Deactivate then delete the definition"""
        publisher.disable(name)
        publisher.delete(name)

    def reload(self, silent: bool = False) -> ReloadResult:
        """Run a reload cycle; raise on failure unless silent"""
        result = self.orchestrator.run()
        if not result.success:
            if silent:
                logger.error(f"Reload failed at {result.stage} (silent): {result.diagnostic}")
            else:
                self.orchestrator.raise_for_result(result)
        return result


_pipeline: Optional[ConfigPipeline] = None


def get_pipeline() -> ConfigPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = ConfigPipeline(get_validator(), get_reload_orchestrator())
    return _pipeline
