"""Tests for the publish/validate/reload pipeline and domain service."""

from datetime import datetime, timezone

import pytest

from edgeagent.errors import ReloadError, ValidationError
from edgeagent.models.entities import TlsCertificate
from edgeagent.services.cloudflare_ips import FALLBACK_IPV4, CloudflareIPs
from edgeagent.services.domain_config import DomainConfigService
from edgeagent.services.locks import NameLocks
from edgeagent.services.pipeline import ConfigPipeline
from edgeagent.services.reload_orchestrator import ReloadOrchestrator

from conftest import FakeController, FakeValidator


def _service(generator, publisher, validator, controller=None, cloudflare=None):
    controller = controller or FakeController()
    orchestrator = ReloadOrchestrator(validator, controller, sleep=lambda _: None)
    pipeline = ConfigPipeline(validator, orchestrator, NameLocks())
    return DomainConfigService(generator, publisher, pipeline, cloudflare), controller


class TestConfigPipeline:
    def test_publish_checked_commits(self, pipeline, site_publisher):
        pipeline.publish_checked(site_publisher, "site", "A", activate=True)
        assert site_publisher.read("site") == "A"
        assert site_publisher.is_enabled("site")
        assert not site_publisher.backup_path("site").exists()

    def test_rejected_update_restores_previous_and_activation(self, site_publisher, orchestrator):
        validator = FakeValidator(True, False)
        pipeline = ConfigPipeline(validator, orchestrator)
        pipeline.publish_checked(site_publisher, "site", "A", activate=True)

        with pytest.raises(ValidationError) as exc:
            pipeline.publish_checked(site_publisher, "site", "B", activate=False)

        assert exc.value.entity == "site"
        assert exc.value.stage == "validate"
        assert site_publisher.read("site") == "A"
        assert site_publisher.is_enabled("site")
        assert not site_publisher.backup_path("site").exists()

    def test_rejected_first_publish_leaves_nothing(self, site_publisher, orchestrator):
        pipeline = ConfigPipeline(FakeValidator(False), orchestrator)
        with pytest.raises(ValidationError):
            pipeline.publish_checked(site_publisher, "site", "bogus;", activate=True)
        assert site_publisher.read("site") is None
        assert not site_publisher.is_enabled("site")

    def test_silent_reload_does_not_raise(self, site_publisher):
        validator = FakeValidator(False)
        orchestrator = ReloadOrchestrator(validator, FakeController(), sleep=lambda _: None)
        pipeline = ConfigPipeline(validator, orchestrator)

        result = pipeline.reload(silent=True)
        assert not result.success
        with pytest.raises(ValidationError):
            pipeline.reload()


class TestDomainConfigService:
    def test_apply_publishes_enables_and_reloads(self, generator, site_publisher, domain):
        service, controller = _service(generator, site_publisher, FakeValidator(True))

        result = service.apply(domain)

        assert result.status == "active"
        assert result.reloaded
        assert site_publisher.is_enabled("a.example.com")
        assert "a_example_com_backend" in site_publisher.read("a.example.com")
        assert controller.calls == ["reload", "is_running"]

    def test_inactive_domain_is_published_but_disabled(self, generator, site_publisher, domain):
        service, _ = _service(generator, site_publisher, FakeValidator(True))
        domain.status = "inactive"

        result = service.apply(domain)

        assert result.status == "inactive"
        assert site_publisher.read("a.example.com") is not None
        assert not site_publisher.is_enabled("a.example.com")

    def test_validation_failure_rolls_back_without_reload(self, generator, site_publisher, domain):
        # publish check and reload test for the first apply, then a rejection
        service, controller = _service(generator, site_publisher, FakeValidator(True, True, False))
        service.apply(domain)
        previous = site_publisher.read("a.example.com")
        controller.calls.clear()

        domain.upstreams[0].port = 9090
        with pytest.raises(ValidationError):
            service.apply(domain)

        assert site_publisher.read("a.example.com") == previous
        assert controller.calls == []

    def test_reload_failure_raises_unless_silent(self, generator, site_publisher, domain):
        controller = FakeController(reload_ok=False, restart_ok=False)
        service, _ = _service(generator, site_publisher, FakeValidator(True), controller)

        with pytest.raises(ReloadError):
            service.apply(domain)

        result = service.apply(domain, silent=True)
        assert result.status == "error"
        assert result.message == "restart refused"

    def test_apply_without_reload(self, generator, site_publisher, domain):
        service, controller = _service(generator, site_publisher, FakeValidator(True))
        result = service.apply(domain, reload=False)
        assert result.reload is None
        assert controller.calls == []

    def test_remove(self, generator, site_publisher, domain):
        service, _ = _service(generator, site_publisher, FakeValidator(True))
        service.apply(domain)

        result = service.remove("a.example.com")

        assert result.status == "deleted"
        assert site_publisher.read("a.example.com") is None
        assert not site_publisher.is_enabled("a.example.com")

    def test_render_writes_nothing(self, generator, site_publisher, domain):
        service, _ = _service(generator, site_publisher, FakeValidator(True))
        assert "server_name a.example.com;" in service.render(domain).text
        assert site_publisher.list_definitions() == []

    def test_cloudflare_ranges_used_when_enabled(self, generator, site_publisher, domain):
        service, _ = _service(generator, site_publisher, FakeValidator(True), cloudflare=CloudflareIPs())
        domain.real_ip_enabled = True
        domain.real_ip_cloudflare = True
        assert f"set_real_ip_from {FALLBACK_IPV4[0]};" in service.render(domain).text

        domain.real_ip_cloudflare = False
        assert FALLBACK_IPV4[0] not in service.render(domain).text

    def test_expired_certificate_is_logged(self, generator, site_publisher, domain, caplog):
        service, _ = _service(generator, site_publisher, FakeValidator(True))
        domain.tls_enabled = True
        domain.certificate = TlsCertificate(valid_to=datetime(2020, 1, 1, tzinfo=timezone.utc))

        with caplog.at_level("WARNING"):
            service.apply(domain)

        assert "expired" in caplog.text
        assert "listen 443 ssl http2;" in site_publisher.read("a.example.com")


class TestDomainLocking:
    def test_reload_runs_under_domain_lock(self, generator, site_publisher, domain):
        held = []
        controller = FakeController()
        service, _ = _service(generator, site_publisher, FakeValidator(True), controller)
        controller.on_reload = lambda: held.append(service.pipeline.locks.is_held("site:a.example.com"))

        service.apply(domain)
        service.remove("a.example.com")

        assert held == [True, True]
        assert not service.pipeline.locks.is_held("site:a.example.com")
