"""Error types raised by config generation, publishing, validation and reload"""

from typing import Optional


class ProxyConfigError(Exception):
    """Base error carrying the entity, stage and captured process output"""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        stage: Optional[str] = None,
        output: str = ""
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.stage = stage
        self.output = output

    def __str__(self) -> str:
        parts = [self.message]
        if self.entity:
            parts.append(f"entity={self.entity}")
        if self.stage:
            parts.append(f"stage={self.stage}")
        text = " ".join(parts)
        if self.output:
            text += f"\n{self.output}"
        return text


class InvalidInputError(ProxyConfigError):
    """Bad entity data: unknown enum value, unsafe username, empty required list"""


class PublishError(ProxyConfigError):
    """Filesystem write or symlink failure"""


class ValidationError(ProxyConfigError):
    """nginx -t rejected the configuration tree"""


class ReloadError(ProxyConfigError):
    """Both reload and restart failed; nginx needs operator attention"""


def status_code_for(error: ProxyConfigError) -> int:
    """HTTP status for an error raised by a service call"""
    if isinstance(error, InvalidInputError):
        return 400
    if isinstance(error, ValidationError):
        return 422
    return 500
