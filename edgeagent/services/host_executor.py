"""Command executor for nginx, systemctl and htpasswd invocations

Runs shell commands locally, or in the host namespaces via nsenter when the
agent lives in a container but nginx runs on the host
(requires privileged: true, pid: host).
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Optional

from edgeagent.config import get_settings

logger = logging.getLogger(__name__)

# Maximum allowed timeout (10 minutes)
MAX_TIMEOUT = 600
DEFAULT_TIMEOUT = 30

# nginx and htpasswd live in sbin on most distros
EXTENDED_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


@dataclass
class ExecuteResult:
    """Result of command execution"""
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    execution_time_ms: int
    error: Optional[str] = None

    @property
    def output(self) -> str:
        """stdout and stderr combined, as a terminal would show them"""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class HostExecutor:
    """Executes shell commands, optionally inside host namespaces"""

    def __init__(self, use_nsenter: bool = False):
        self._use_nsenter = use_nsenter

    def _prepare_command(self, command: str) -> str:
        """Wrap command with extended PATH so sbin binaries resolve"""
        return f'export PATH="{EXTENDED_PATH}:$PATH"; {command}'

    def _build_argv(self, command: str, shell: str) -> list[str]:
        prepared_command = self._prepare_command(command)
        if self._use_nsenter:
            # -t 1: host init; -m mount, -u UTS, -n net, -i IPC, -p PID
            return [
                "nsenter", "-t", "1", "-m", "-u", "-n", "-i", "-p",
                "--", shell, "-c", prepared_command
            ]
        return [shell, "-c", prepared_command]

    def execute_sync(
        self,
        command: str,
        timeout: int = DEFAULT_TIMEOUT,
        shell: str = "sh",
        log_command: Optional[str] = None
    ) -> ExecuteResult:
        """
        Execute a shell command and wait for it.

        Args:
            command: Shell command to execute
            timeout: Timeout in seconds (clamped to 1..600)
            shell: Shell to use (sh or bash)
            log_command: Text to log instead of the command (hides secrets)

        Returns:
            ExecuteResult with stdout, stderr, exit_code and timing
        """
        timeout = min(max(1, timeout), MAX_TIMEOUT)
        cmd = self._build_argv(command, shell)
        shown = log_command if log_command is not None else command

        start_time = time.time()

        try:
            logger.info(f"Executing: {shown[:100]}{'...' if len(shown) > 100 else ''}")

            result = subprocess.run(
                cmd,
                capture_output=True,
                timeout=timeout
            )

            execution_time = int((time.time() - start_time) * 1000)

            logger.debug(
                f"Command completed: exit_code={result.returncode}, time={execution_time}ms"
            )

            return ExecuteResult(
                success=result.returncode == 0,
                exit_code=result.returncode,
                stdout=result.stdout.decode('utf-8', errors='replace').strip(),
                stderr=result.stderr.decode('utf-8', errors='replace').strip(),
                execution_time_ms=execution_time
            )

        except subprocess.TimeoutExpired:
            execution_time = int((time.time() - start_time) * 1000)
            logger.warning(f"Command timed out after {timeout}s: {shown[:50]}")
            return ExecuteResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr="",
                execution_time_ms=execution_time,
                error=f"Command timed out after {timeout} seconds"
            )
        except FileNotFoundError:
            execution_time = int((time.time() - start_time) * 1000)
            error_msg = "nsenter not found" if self._use_nsenter else f"{shell} not found"
            logger.error(f"Command execution failed: {error_msg}")
            return ExecuteResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr="",
                execution_time_ms=execution_time,
                error=error_msg
            )
        except OSError as e:
            execution_time = int((time.time() - start_time) * 1000)
            logger.error(f"Command execution failed: {e}")
            return ExecuteResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr="",
                execution_time_ms=execution_time,
                error=str(e)
            )


# Singleton instance
_executor: Optional[HostExecutor] = None


def get_host_executor() -> HostExecutor:
    """Get or create HostExecutor instance"""
    global _executor
    if _executor is None:
        _executor = HostExecutor(use_nsenter=get_settings().use_nsenter)
    return _executor
