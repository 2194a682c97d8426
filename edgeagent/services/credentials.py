"""htpasswd credential files for HTTP basic auth access lists"""

import logging
import shlex
import shutil
from pathlib import Path
from typing import Optional, Protocol

from edgeagent.config import get_settings
from edgeagent.errors import PublishError
from edgeagent.models.entities import AuthUser
from edgeagent.services.config_generator import escape_password, validate_username
from edgeagent.services.config_publisher import BACKUP_SUFFIX
from edgeagent.services.host_executor import HostExecutor, get_host_executor

logger = logging.getLogger(__name__)


class CredentialWriter(Protocol):
    """Writes and removes the credential file of an access list"""

    def write(self, name: str, users: list[AuthUser]) -> Path:
        ...

    def commit(self, name: str) -> None:
        ...

    def rollback(self, name: str) -> bool:
        ...

    def remove(self, name: str) -> None:
        ...


class HtpasswdCredentialWriter:
    """Builds credential files with the htpasswd tool, one invocation per user

    `write` keeps the previous file as a .backup sibling until `commit` or
    `rollback`, mirroring ConfigPublisher.
    """

    def __init__(self, executor: HostExecutor, htpasswd_dir: Path, timeout: int = 30):
        self._executor = executor
        self.htpasswd_dir = Path(htpasswd_dir)
        self.timeout = timeout

    def path_for(self, name: str) -> Path:
        return self.htpasswd_dir / f"{name}.htpasswd"

    def backup_path(self, name: str) -> Path:
        return self.htpasswd_dir / f"{name}.htpasswd{BACKUP_SUFFIX}"

    def write(self, name: str, users: list[AuthUser]) -> Path:
        """Recreate the file: -c for the first user, append for the rest (apr1/MD5)"""
        # Validate everything before the first external call
        prepared = [(validate_username(u.username), escape_password(u.password)) for u in users]

        path = self.path_for(name)
        try:
            self.htpasswd_dir.mkdir(parents=True, exist_ok=True)
            if path.exists():
                shutil.copy2(path, self.backup_path(name))
            else:
                self.backup_path(name).unlink(missing_ok=True)
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PublishError(f"Failed to reset credential file: {e}", entity=name, stage="credentials")

        for index, (username, escaped_password) in enumerate(prepared):
            create_flag = "-c " if index == 0 else ""
            command = (
                f"htpasswd -b -m {create_flag}{shlex.quote(str(path))} "
                f"\"{username}\" '{escaped_password}'"
            )
            result = self._executor.execute_sync(
                command,
                timeout=self.timeout,
                log_command=f"htpasswd -b -m {create_flag}{path} {username} ****"
            )
            if not result.success:
                error_msg = result.stderr or result.stdout or result.error or "htpasswd failed"
                logger.error(f"Failed to add user {username} to {path}: {error_msg}")
                self._restore_after_failure(name)
                raise PublishError(
                    f"Failed to add user {username}",
                    entity=name, stage="credentials", output=error_msg
                )

        try:
            path.chmod(0o644)
        except OSError as e:
            self._restore_after_failure(name)
            raise PublishError(f"Failed to set credential file mode: {e}", entity=name, stage="credentials")

        logger.info(f"Generated htpasswd file with {len(prepared)} users: {path}")
        return path

    def _restore_after_failure(self, name: str):
        try:
            self.rollback(name)
        except PublishError as e:
            # never mask the original failure
            logger.error(f"Restore of credential file {name} failed: {e}")

    def commit(self, name: str) -> None:
        """Drop the backup once the rules using the file were accepted"""
        try:
            self.backup_path(name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove credential backup of {name}: {e}")

    def rollback(self, name: str) -> bool:
        """Put the previous file back; without one the new file is removed"""
        path = self.path_for(name)
        backup = self.backup_path(name)
        try:
            if backup.exists():
                shutil.copy2(backup, path)
                backup.unlink()
                logger.warning(f"Restored previous htpasswd file for {name}")
                return True
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PublishError(f"Credential rollback failed: {e}", entity=name, stage="credentials")
        logger.warning(f"Removed new htpasswd file for {name} (no previous version)")
        return False

    def remove(self, name: str) -> None:
        try:
            self.path_for(name).unlink(missing_ok=True)
            self.backup_path(name).unlink(missing_ok=True)
        except OSError as e:
            raise PublishError(f"Failed to delete credential file: {e}", entity=name, stage="credentials")
        logger.info(f"Deleted htpasswd file for {name}")


_writer: Optional[HtpasswdCredentialWriter] = None


def get_credential_writer() -> HtpasswdCredentialWriter:
    """Get or create the htpasswd writer"""
    global _writer
    if _writer is None:
        settings = get_settings()
        _writer = HtpasswdCredentialWriter(get_host_executor(), settings.htpasswd, settings.command_timeout)
    return _writer
