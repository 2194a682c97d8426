"""Shared fixtures: nginx layout under tmp_path and fakes for external binaries."""

from pathlib import Path

import pytest

from edgeagent.config import Settings
from edgeagent.models.entities import (
    AccessList,
    AuthUser,
    Domain,
    NetworkLoadBalancer,
    NLBUpstream,
    Upstream,
)
from edgeagent.services.config_generator import NginxConfigGenerator
from edgeagent.services.config_publisher import ConfigPublisher
from edgeagent.services.config_validator import ValidationResult
from edgeagent.services.host_executor import ExecuteResult
from edgeagent.services.locks import NameLocks
from edgeagent.services.pipeline import ConfigPipeline
from edgeagent.services.reload_orchestrator import ReloadOrchestrator

NGINX_OK = (
    "nginx: the configuration file /etc/nginx/nginx.conf syntax is ok\n"
    "nginx: configuration file /etc/nginx/nginx.conf test is successful"
)


class FakeExecutor:
    """Records commands and answers from a queue of results"""

    def __init__(self, results=None, default=None):
        self.commands: list[str] = []
        self.results = list(results or [])
        self.default = default or ExecuteResult(True, 0, "", "", 1)

    def execute_sync(self, command, timeout=30, shell="sh", log_command=None):
        self.commands.append(command)
        if self.results:
            return self.results.pop(0)
        return self.default


class FakeValidator:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [True]
        self.calls = 0

    def validate(self) -> ValidationResult:
        self.calls += 1
        ok = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if ok:
            return ValidationResult(ok=True, diagnostic=NGINX_OK)
        return ValidationResult(ok=False, diagnostic='nginx: [emerg] unknown directive "bogus"')


class FakeController:
    mode = "host"

    def __init__(self, reload_ok=True, restart_ok=True, running=(True,), on_reload=None):
        self.reload_ok = reload_ok
        self.restart_ok = restart_ok
        self.running = list(running)
        self.on_reload = on_reload
        self.calls: list[str] = []

    def reload(self):
        self.calls.append("reload")
        if self.on_reload:
            self.on_reload()
        return self.reload_ok, "reload issued" if self.reload_ok else "reload refused"

    def restart(self):
        self.calls.append("restart")
        return self.restart_ok, "restart issued" if self.restart_ok else "restart refused"

    def is_running(self):
        self.calls.append("is_running")
        return self.running.pop(0) if len(self.running) > 1 else self.running[0]


class FakeCredentialWriter:
    def __init__(self, directory: Path):
        self.directory = directory
        self.written: dict[str, list[str]] = {}
        self.removed: list[str] = []
        self.committed: list[str] = []
        self.rolled_back: list[str] = []
        self._previous: dict[str, str] = {}

    def path_for(self, name) -> Path:
        return self.directory / f"{name}.htpasswd"

    def write(self, name, users):
        self.written[name] = [u.username for u in users]
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            self._previous[name] = path.read_text()
        path.write_text("".join(f"{u.username}:$apr1$hash\n" for u in users))
        return path

    def commit(self, name):
        self.committed.append(name)
        self._previous.pop(name, None)

    def rollback(self, name):
        self.rolled_back.append(name)
        if name in self._previous:
            self.path_for(name).write_text(self._previous.pop(name))
            return True
        self.path_for(name).unlink(missing_ok=True)
        return False

    def remove(self, name):
        self.removed.append(name)
        self.path_for(name).unlink(missing_ok=True)


@pytest.fixture
def settings(tmp_path) -> Settings:
    root = tmp_path / "nginx"
    return Settings(
        api_key="test-key",
        sites_available_dir=str(root / "sites-available"),
        sites_enabled_dir=str(root / "sites-enabled"),
        streams_available_dir=str(root / "streams-available"),
        streams_enabled_dir=str(root / "streams-enabled"),
        access_lists_dir=str(root / "access-lists"),
        access_lists_enabled_dir=str(root / "access-lists-enabled"),
        htpasswd_dir=str(root / "htpasswd"),
        ssl_dir=str(root / "ssl"),
        nginx_log_dir=str(tmp_path / "log"),
        acl_rules_path=str(root / "conf.d" / "acl-rules.conf"),
        acme_snippet_path=str(root / "snippets" / "acme-challenge.conf"),
        acme_webroot=str(tmp_path / "www"),
        health_monitor_enabled=False,
    )


@pytest.fixture
def generator() -> NginxConfigGenerator:
    return NginxConfigGenerator()


@pytest.fixture
def site_publisher(settings) -> ConfigPublisher:
    return ConfigPublisher(settings.sites_available, settings.sites_enabled, kind="site")


@pytest.fixture
def stream_publisher(settings) -> ConfigPublisher:
    return ConfigPublisher(settings.streams_available, settings.streams_enabled, kind="stream")


@pytest.fixture
def acl_publisher(settings) -> ConfigPublisher:
    return ConfigPublisher(settings.access_lists, settings.access_lists_enabled, kind="access_list")


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator(True)


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
def orchestrator(validator, controller) -> ReloadOrchestrator:
    return ReloadOrchestrator(validator, controller, sleep=lambda _: None)


@pytest.fixture
def pipeline(validator, orchestrator) -> ConfigPipeline:
    return ConfigPipeline(validator, orchestrator, NameLocks())


@pytest.fixture
def domain() -> Domain:
    return Domain(name="a.example.com", upstreams=[Upstream(host="10.0.0.5", port=8080)])


@pytest.fixture
def nlb() -> NetworkLoadBalancer:
    return NetworkLoadBalancer(
        name="game-tcp",
        port=20000,
        protocol="tcp",
        upstreams=[NLBUpstream(host="10.0.0.1", port=7000)],
    )


@pytest.fixture
def basic_auth_list() -> AccessList:
    return AccessList(
        name="staff",
        type="http_basic_auth",
        auth_users=[AuthUser(username="alice", password="s3cret")],
    )
