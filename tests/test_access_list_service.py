"""Tests for access list publishing and bound domain re-publish."""

import pytest

from edgeagent.errors import InvalidInputError, ValidationError
from edgeagent.models.entities import AccessList, AccessListBinding, AccessListRef
from edgeagent.services.access_list_config import AccessListConfigService
from edgeagent.services.config_generator import NginxConfigGenerator
from edgeagent.services.domain_config import DomainConfigService
from edgeagent.services.locks import NameLocks
from edgeagent.services.pipeline import ConfigPipeline
from edgeagent.services.reload_orchestrator import ReloadOrchestrator

from conftest import FakeController, FakeCredentialWriter, FakeValidator


@pytest.fixture
def layout_generator(settings):
    return NginxConfigGenerator(
        ssl_dir=settings.ssl_dir,
        access_lists_dir=settings.access_lists_dir,
        htpasswd_dir=settings.htpasswd_dir,
    )


@pytest.fixture
def credentials(settings):
    return FakeCredentialWriter(settings.htpasswd)


def _service(generator, acl_publisher, site_publisher, credentials, validator=None, controller=None):
    validator = validator or FakeValidator(True)
    controller = controller or FakeController()
    orchestrator = ReloadOrchestrator(validator, controller, sleep=lambda _: None)
    pipeline = ConfigPipeline(validator, orchestrator, NameLocks())
    domains = DomainConfigService(generator, site_publisher, pipeline)
    return AccessListConfigService(generator, acl_publisher, credentials, pipeline, domains), controller


class TestAccessListConfigService:
    def test_basic_auth_writes_credentials(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list, settings
    ):
        service, controller = _service(layout_generator, acl_publisher, site_publisher, credentials)

        result = service.apply(basic_auth_list)

        assert result.status == "active"
        assert credentials.written == {"staff": ["alice"]}
        text = acl_publisher.read("staff")
        assert f"auth_basic_user_file {settings.htpasswd / 'staff.htpasswd'};" in text
        assert acl_publisher.is_enabled("staff")
        assert controller.calls == ["reload", "is_running"]

    def test_ip_whitelist_removes_stale_credentials(
        self, layout_generator, acl_publisher, site_publisher, credentials
    ):
        service, _ = _service(layout_generator, acl_publisher, site_publisher, credentials)
        acl = AccessList(name="office", type="ip_whitelist", allowed_ips=["10.0.0.0/8"])

        service.apply(acl)

        assert credentials.written == {}
        assert credentials.removed == ["office"]

    def test_invalid_list_touches_nothing(self, layout_generator, acl_publisher, site_publisher, credentials):
        service, controller = _service(layout_generator, acl_publisher, site_publisher, credentials)

        with pytest.raises(InvalidInputError):
            service.apply(AccessList(name="office", type="ip_whitelist"))

        assert acl_publisher.list_definitions() == []
        assert credentials.removed == []
        assert controller.calls == []

    def test_bound_domains_republished_with_one_reload(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list, domain, settings
    ):
        service, controller = _service(layout_generator, acl_publisher, site_publisher, credentials)
        domain.access_lists = [AccessListBinding(access_list=AccessListRef(name="staff"))]

        service.apply(basic_auth_list, domains=[domain])

        site = site_publisher.read("a.example.com")
        assert f"include {settings.access_lists / 'staff.conf'};" in site
        assert controller.calls.count("reload") == 1

    def test_disabled_list_is_not_activated(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list
    ):
        service, _ = _service(layout_generator, acl_publisher, site_publisher, credentials)
        basic_auth_list.enabled = False

        result = service.apply(basic_auth_list)

        assert result.status == "inactive"
        assert acl_publisher.read("staff") is not None
        assert not acl_publisher.is_enabled("staff")

    def test_rejected_rules_roll_back(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list
    ):
        controller = FakeController()
        service, _ = _service(
            layout_generator, acl_publisher, site_publisher, credentials, FakeValidator(False), controller
        )

        with pytest.raises(ValidationError):
            service.apply(basic_auth_list)

        assert acl_publisher.read("staff") is None
        assert controller.calls == []

    def test_remove_unbinds_domains_first(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list, domain
    ):
        service, _ = _service(layout_generator, acl_publisher, site_publisher, credentials)
        domain.access_lists = [AccessListBinding(access_list=AccessListRef(name="staff"))]
        service.apply(basic_auth_list, domains=[domain])

        domain.access_lists = []
        result = service.remove("staff", domains=[domain])

        assert result.status == "deleted"
        assert "staff.conf" not in site_publisher.read("a.example.com")
        assert acl_publisher.read("staff") is None
        assert "staff" in credentials.removed

    def test_rejected_update_restores_previous_credentials(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list
    ):
        # publish check and reload test for the first apply, then a rejection
        service, _ = _service(
            layout_generator, acl_publisher, site_publisher, credentials, FakeValidator(True, True, False)
        )
        service.apply(basic_auth_list)
        before = credentials.path_for("staff").read_text()

        basic_auth_list.auth_users[0].username = "mallory"
        with pytest.raises(ValidationError):
            service.apply(basic_auth_list)

        assert credentials.path_for("staff").read_text() == before
        assert credentials.rolled_back == ["staff"]

    def test_rejected_first_publish_removes_new_credentials(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list
    ):
        service, _ = _service(
            layout_generator, acl_publisher, site_publisher, credentials, FakeValidator(False)
        )

        with pytest.raises(ValidationError):
            service.apply(basic_auth_list)

        assert not credentials.path_for("staff").exists()
        assert credentials.committed == []

    def test_accepted_credentials_are_committed(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list
    ):
        service, _ = _service(layout_generator, acl_publisher, site_publisher, credentials)
        service.apply(basic_auth_list)
        assert credentials.committed == ["staff"]
        assert credentials.rolled_back == []


class TestAccessListLocking:
    """The reload of an access list change runs under that list's lock."""

    def _locked_service(self, generator, acl_publisher, site_publisher, credentials, held):
        controller = FakeController()
        service, _ = _service(generator, acl_publisher, site_publisher, credentials, controller=controller)
        controller.on_reload = lambda: held.append(service.pipeline.locks.is_held("access_list:staff"))
        return service

    def test_apply_reloads_under_lock(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list, domain
    ):
        held = []
        service = self._locked_service(layout_generator, acl_publisher, site_publisher, credentials, held)
        domain.access_lists = [AccessListBinding(access_list=AccessListRef(name="staff"))]

        service.apply(basic_auth_list, domains=[domain])

        assert held == [True]
        assert not service.pipeline.locks.is_held("access_list:staff")

    def test_remove_reloads_under_lock(
        self, layout_generator, acl_publisher, site_publisher, credentials, basic_auth_list
    ):
        held = []
        service = self._locked_service(layout_generator, acl_publisher, site_publisher, credentials, held)
        service.apply(basic_auth_list)

        service.remove("staff")

        assert held == [True, True]
