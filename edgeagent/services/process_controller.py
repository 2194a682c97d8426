"""Reload, restart and liveness checks for the nginx process

Two environments:
- container: nginx runs next to the agent; signal switches (`nginx -s ...`)
  and a process-list probe
- host: nginx is a systemd unit; `systemctl reload|restart|is-active`
"""

import logging
import time
from typing import Callable, Optional, Protocol

import psutil

from edgeagent.config import get_settings
from edgeagent.services.host_executor import HostExecutor, get_host_executor

logger = logging.getLogger(__name__)


class ProcessController(Protocol):
    mode: str

    def reload(self) -> tuple[bool, str]:
        ...

    def restart(self) -> tuple[bool, str]:
        ...

    def is_running(self) -> bool:
        ...


def _error_text(result, fallback: str) -> str:
    return result.stderr or result.stdout or result.error or fallback


class HostProcessController:
    """nginx as a systemd service"""

    mode = "host"

    def __init__(self, executor: HostExecutor, service: str = "nginx", timeout: int = 30):
        self._executor = executor
        self.service = service
        self.timeout = timeout

    def reload(self) -> tuple[bool, str]:
        result = self._executor.execute_sync(f"systemctl reload {self.service}", timeout=self.timeout)
        if result.success:
            return True, "reload issued"
        return False, _error_text(result, "Reload failed")

    def restart(self) -> tuple[bool, str]:
        result = self._executor.execute_sync(f"systemctl restart {self.service}", timeout=self.timeout)
        if result.success:
            return True, "restart issued"
        return False, _error_text(result, "Restart failed")

    def is_running(self) -> bool:
        result = self._executor.execute_sync(f"systemctl is-active {self.service}", timeout=10)
        return result.success and result.stdout.strip() == "active"


class ContainerProcessController:
    """nginx in the same container, controlled through its signal switch"""

    mode = "container"

    def __init__(
        self,
        executor: HostExecutor,
        binary: str = "nginx",
        timeout: int = 30,
        stop_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep
    ):
        self._executor = executor
        self.binary = binary
        self.timeout = timeout
        self.stop_delay = stop_delay
        self._sleep = sleep

    def reload(self) -> tuple[bool, str]:
        result = self._executor.execute_sync(f"{self.binary} -s reload", timeout=self.timeout)
        if result.success:
            return True, "reload signal sent"
        return False, _error_text(result, "Reload failed")

    def restart(self) -> tuple[bool, str]:
        """Stop (when running) then start the master process"""
        if self.is_running():
            stop = self._executor.execute_sync(f"{self.binary} -s stop", timeout=self.timeout)
            if not stop.success:
                logger.warning(f"nginx stop failed, starting anyway: {_error_text(stop, 'stop failed')}")
            self._sleep(self.stop_delay)

        start = self._executor.execute_sync(self.binary, timeout=self.timeout)
        if start.success:
            return True, "nginx started"
        return False, _error_text(start, "Start failed")

    def is_running(self) -> bool:
        for proc in psutil.process_iter(["name"]):
            try:
                if proc.info["name"] == self.binary.rsplit("/", 1)[-1]:
                    return True
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return False


_controller: Optional[ProcessController] = None


def get_process_controller() -> ProcessController:
    """Controller for the environment detected once from settings"""
    global _controller
    if _controller is None:
        settings = get_settings()
        executor = get_host_executor()
        if settings.containerized:
            _controller = ContainerProcessController(executor, settings.nginx_binary, settings.command_timeout)
        else:
            _controller = HostProcessController(executor, settings.nginx_service, settings.command_timeout)
        logger.info(f"nginx process control mode: {_controller.mode}")
    return _controller
