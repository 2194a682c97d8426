"""nginx syntax check over the whole configuration tree"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from edgeagent.config import get_settings
from edgeagent.services.host_executor import HostExecutor, get_host_executor

logger = logging.getLogger(__name__)

SYNTAX_OK_MARKER = "syntax is ok"
TEST_OK_MARKER = "test is successful"


@dataclass
class ValidationResult:
    """Outcome of nginx -t"""
    ok: bool
    diagnostic: str


class Validator(Protocol):
    def validate(self) -> ValidationResult:
        ...


class NginxConfigValidator:
    """Runs `nginx -t`; fragments include each other, so the full tree is always checked"""

    def __init__(self, executor: HostExecutor, binary: str = "nginx", timeout: int = 30):
        self._executor = executor
        self.binary = binary
        self.timeout = timeout

    def validate(self) -> ValidationResult:
        """Valid only when both marker strings appear in stdout+stderr"""
        result = self._executor.execute_sync(f"{self.binary} -t", timeout=self.timeout)

        # nginx -t reports on stderr
        output = result.output
        if result.error:
            output = f"{output}\n{result.error}".strip()

        if result.success and SYNTAX_OK_MARKER in output and TEST_OK_MARKER in output:
            logger.info("nginx configuration test passed")
            return ValidationResult(ok=True, diagnostic=output)

        if not output:
            output = f"Configuration check failed (exit code {result.exit_code})"
        logger.error(f"nginx configuration test failed: {output}")
        return ValidationResult(ok=False, diagnostic=output)


_validator: Optional[NginxConfigValidator] = None


def get_validator() -> NginxConfigValidator:
    """Get or create the nginx validator"""
    global _validator
    if _validator is None:
        settings = get_settings()
        _validator = NginxConfigValidator(get_host_executor(), settings.nginx_binary, settings.validate_timeout)
    return _validator
