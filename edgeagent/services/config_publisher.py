"""Publishes generated config into nginx's available/enabled directory pairs

Every filesystem mutation of the live nginx tree goes through a named
operation here: publish, enable, disable, rollback, commit, delete.
"""

import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from edgeagent.config import get_settings
from edgeagent.errors import InvalidInputError, PublishError

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9._-]*$')
BACKUP_SUFFIX = ".backup"

ACME_SNIPPET_TEMPLATE = """# ACME challenge for Let's Encrypt webroot validation

location ^~ /.well-known/acme-challenge/ {{
    default_type "text/plain";
    root {webroot};
    allow all;
}}

location = /.well-known/acme-challenge/ {{
    return 404;
}}
"""

# Comment-only body keeps the include valid until rules are pushed
ACL_RULES_HEADER = "# Node-wide access rules, included by every domain server block\n"


class ConfigPublisher:
    """Manages one definitions directory and its symlink-only activated counterpart"""

    def __init__(self, available_dir: Path, enabled_dir: Path, kind: str = "config", suffix: str = ".conf"):
        self.available_dir = Path(available_dir)
        self.enabled_dir = Path(enabled_dir)
        self.kind = kind
        self.suffix = suffix

    def init(self):
        """Create both directories"""
        try:
            self.available_dir.mkdir(parents=True, exist_ok=True)
            self.enabled_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PublishError(f"Failed to create {self.kind} directories: {e}", stage="init")

    def _file_name(self, name: str) -> str:
        if not NAME_PATTERN.match(name) or len(name) > 253:
            raise InvalidInputError(f"Invalid {self.kind} name: {name!r}", entity=name, stage="publish")
        return f"{name}{self.suffix}"

    def definition_path(self, name: str) -> Path:
        return self.available_dir / self._file_name(name)

    def activation_path(self, name: str) -> Path:
        return self.enabled_dir / self._file_name(name)

    def backup_path(self, name: str) -> Path:
        return self.available_dir / f"{self._file_name(name)}{BACKUP_SUFFIX}"

    def read(self, name: str) -> Optional[str]:
        """Current definition text, or None"""
        path = self.definition_path(name)
        if path.exists():
            return path.read_text(encoding='utf-8', errors='replace')
        return None

    def list_definitions(self) -> list[str]:
        if not self.available_dir.exists():
            return []
        return sorted(
            p.name[:-len(self.suffix)]
            for p in self.available_dir.iterdir()
            if p.is_file() and p.name.endswith(self.suffix)
        )

    def is_enabled(self, name: str) -> bool:
        return self.activation_path(name).is_symlink()

    def publish(self, name: str, text: str) -> Path:
        """Write a definition, keeping the previous version as a .backup sibling"""
        path = self.definition_path(name)
        backup = self.backup_path(name)
        self.init()

        has_backup = False
        try:
            if path.exists():
                shutil.copy2(path, backup)
                has_backup = True
            path.write_bytes(text.encode('utf-8'))
        except OSError as e:
            logger.error(f"Failed to publish {self.kind} {name}: {e}")
            if has_backup:
                try:
                    shutil.copy2(backup, path)
                    logger.info(f"Restored previous {self.kind} {name} after failed write")
                except OSError as restore_error:
                    logger.error(f"Restore of {self.kind} {name} failed: {restore_error}")
            raise PublishError(f"Failed to write {path}: {e}", entity=name, stage="publish")

        logger.info(f"Published {self.kind} config: {path}")
        return path

    def enable(self, name: str):
        """Create the activation symlink (idempotent)"""
        path = self.definition_path(name)
        link = self.activation_path(name)
        if not path.exists():
            raise PublishError(f"Cannot enable {self.kind} without a definition", entity=name, stage="enable")
        try:
            self.enabled_dir.mkdir(parents=True, exist_ok=True)
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(path.resolve())
        except OSError as e:
            raise PublishError(f"Failed to enable {self.kind}: {e}", entity=name, stage="enable")
        logger.info(f"Enabled {self.kind} config: {name}")

    def disable(self, name: str):
        """Remove the activation symlink; absence is not an error"""
        link = self.activation_path(name)
        try:
            link.unlink(missing_ok=True)
        except OSError as e:
            raise PublishError(f"Failed to disable {self.kind}: {e}", entity=name, stage="disable")
        logger.info(f"Disabled {self.kind} config: {name}")

    def rollback(self, name: str) -> bool:
        """Restore the backup over the definition.

        Returns True when a previous version was restored. Without a backup
        the definition was new, so it is removed together with its
        activation and False is returned.
        """
        path = self.definition_path(name)
        backup = self.backup_path(name)
        try:
            if backup.exists():
                shutil.copy2(backup, path)
                backup.unlink()
                logger.warning(f"Rolled back {self.kind} {name} to previous version")
                return True
            self.activation_path(name).unlink(missing_ok=True)
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PublishError(f"Rollback failed: {e}", entity=name, stage="rollback")
        logger.warning(f"Removed new {self.kind} {name} (no previous version)")
        return False

    def commit(self, name: str):
        """Drop the backup once the published version has been accepted"""
        try:
            self.backup_path(name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove backup of {self.kind} {name}: {e}")

    def delete(self, name: str):
        """Remove definition, activation and backup; any may already be gone"""
        try:
            self.activation_path(name).unlink(missing_ok=True)
            self.definition_path(name).unlink(missing_ok=True)
            self.backup_path(name).unlink(missing_ok=True)
        except OSError as e:
            raise PublishError(f"Failed to delete {self.kind}: {e}", entity=name, stage="delete")
        logger.info(f"Deleted {self.kind} config: {name}")


def ensure_acme_snippet(snippet_path: str, webroot: str) -> bool:
    """Write the ACME challenge snippet included by every domain; True if created"""
    path = Path(snippet_path)
    if path.exists():
        return False
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(ACME_SNIPPET_TEMPLATE.format(webroot=webroot), encoding='utf-8')
        Path(webroot, ".well-known", "acme-challenge").mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PublishError(f"Failed to create ACME snippet: {e}", stage="init")
    logger.info(f"Created nginx snippet: {path}")
    return True


def ensure_acl_rules_file(rules_path: str) -> bool:
    """Create the empty node-wide ACL rules file every server block includes; True if created"""
    path = Path(rules_path)
    if path.exists():
        return False
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(ACL_RULES_HEADER, encoding='utf-8')
    except OSError as e:
        raise PublishError(f"Failed to create ACL rules file: {e}", stage="init")
    logger.info(f"Created nginx ACL rules file: {path}")
    return True


_publishers: dict[str, ConfigPublisher] = {}


def get_publisher(kind: str) -> ConfigPublisher:
    """Get or create the publisher for 'site', 'stream' or 'access_list'"""
    if kind not in _publishers:
        settings = get_settings()
        dirs = {
            "site": (settings.sites_available, settings.sites_enabled),
            "stream": (settings.streams_available, settings.streams_enabled),
            "access_list": (settings.access_lists, settings.access_lists_enabled),
        }
        if kind not in dirs:
            raise InvalidInputError(f"Unknown publisher kind: {kind}")
        available, enabled = dirs[kind]
        _publishers[kind] = ConfigPublisher(available, enabled, kind=kind)
    return _publishers[kind]
