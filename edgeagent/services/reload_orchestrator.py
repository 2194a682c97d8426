"""Validate -> graceful reload -> verify, falling back to a full restart

    idle -> testing -> reloading -> verifying -> done
                  \\            \\-> restarting -> verifying -> done | failed
                   \\-> failed

One cycle at a time per process: nginx is a single global resource.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from edgeagent.config import get_settings
from edgeagent.errors import ReloadError, ValidationError
from edgeagent.services.config_validator import Validator, get_validator
from edgeagent.services.process_controller import ProcessController, get_process_controller

logger = logging.getLogger(__name__)


class ReloadState(str, Enum):
    IDLE = "idle"
    TESTING = "testing"
    RELOADING = "reloading"
    RESTARTING = "restarting"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ReloadResult:
    """Outcome of one reload cycle"""
    success: bool
    mode: str
    method: Optional[str] = None  # reload | restart
    stage: Optional[str] = None  # stage that failed
    diagnostic: str = ""
    transitions: list[str] = field(default_factory=list)


class ReloadOrchestrator:
    """Runs reload cycles against the live nginx process"""

    def __init__(
        self,
        validator: Validator,
        controller: ProcessController,
        reload_settle_delay: float = 0.5,
        restart_settle_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.validator = validator
        self.controller = controller
        self.reload_settle_delay = reload_settle_delay
        self.restart_settle_delay = restart_settle_delay
        self._sleep = sleep
        self._lock = threading.Lock()
        self.state = ReloadState.IDLE
        self.last_result: Optional[ReloadResult] = None

    @property
    def mode(self) -> str:
        return self.controller.mode

    def run(self) -> ReloadResult:
        """Run one full cycle; never raises"""
        with self._lock:
            transitions: list[str] = []
            result = self._cycle(transitions)
            result.transitions = transitions
            self.last_result = result
            return result

    def _enter(self, state: ReloadState, transitions: list[str]):
        self.state = state
        transitions.append(state.value)
        logger.debug(f"Reload cycle -> {state.value}")

    def _fail(self, stage: ReloadState, diagnostic: str, transitions: list[str]) -> ReloadResult:
        self._enter(ReloadState.FAILED, transitions)
        logger.error(f"nginx reload cycle failed at {stage.value} ({self.mode} mode): {diagnostic}")
        return ReloadResult(success=False, mode=self.mode, stage=stage.value, diagnostic=diagnostic)

    def _done(self, method: str, transitions: list[str]) -> ReloadResult:
        self._enter(ReloadState.DONE, transitions)
        if method == "restart":
            logger.warning(f"nginx recovered by full restart ({self.mode} mode); graceful reload is degraded")
        else:
            logger.info(f"nginx reloaded successfully ({self.mode} mode)")
        return ReloadResult(success=True, mode=self.mode, method=method)

    def _cycle(self, transitions: list[str]) -> ReloadResult:
        self._enter(ReloadState.TESTING, transitions)
        validation = self.validator.validate()
        if not validation.ok:
            # The caller already rolled back its own file; this is pre-existing breakage
            return self._fail(ReloadState.TESTING, validation.diagnostic, transitions)

        self._enter(ReloadState.RELOADING, transitions)
        reloaded, message = self.controller.reload()
        if reloaded:
            self._sleep(self.reload_settle_delay)
            self._enter(ReloadState.VERIFYING, transitions)
            if self.controller.is_running():
                return self._done("reload", transitions)
            message = "nginx not running after reload"

        logger.warning(f"Graceful reload failed ({message}), trying restart...")

        self._enter(ReloadState.RESTARTING, transitions)
        restarted, message = self.controller.restart()
        if not restarted:
            return self._fail(ReloadState.RESTARTING, message, transitions)

        self._sleep(self.restart_settle_delay)
        self._enter(ReloadState.VERIFYING, transitions)
        if not self.controller.is_running():
            return self._fail(
                ReloadState.VERIFYING,
                f"nginx failed to start after restart ({self.mode} mode)",
                transitions
            )
        return self._done("restart", transitions)

    def auto_reload(self, silent: bool = False) -> bool:
        """Run a cycle for a change path.

        silent: log failures and return False instead of raising, for
        re-publishes that must not fail the parent operation.
        """
        result = self.run()
        if result.success:
            return True
        if silent:
            logger.error(f"Auto reload failed at {result.stage}: {result.diagnostic}")
            return False
        self.raise_for_result(result)
        return False

    @staticmethod
    def raise_for_result(result: ReloadResult):
        """Turn a failed cycle into ValidationError (testing) or ReloadError"""
        if result.success:
            return
        if result.stage == ReloadState.TESTING.value:
            raise ValidationError("nginx configuration test failed", stage=result.stage, output=result.diagnostic)
        raise ReloadError(
            f"nginx {result.stage} failed ({result.mode} mode)",
            stage=result.stage,
            output=result.diagnostic
        )


_orchestrator: Optional[ReloadOrchestrator] = None


def get_reload_orchestrator() -> ReloadOrchestrator:
    """Get or create the process-wide orchestrator"""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = ReloadOrchestrator(
            get_validator(),
            get_process_controller(),
            reload_settle_delay=settings.reload_settle_delay,
            restart_settle_delay=settings.restart_settle_delay
        )
    return _orchestrator
