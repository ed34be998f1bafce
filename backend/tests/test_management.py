# tests/test_management.py
from io import StringIO

import pytest
from django.core.management import CommandError, call_command

from tenant.models import School


def _run(*args):
    out = StringIO()
    call_command(*args, stdout=out)
    return out.getvalue()


@pytest.mark.django_db
class TestRegisterSchool:
    def test_registers_shared_school(self):
        output = _run("register_school", "abc", "Alpha School")

        school = School.objects.get(code="ABC")
        assert school.name == "Alpha School"
        assert school.is_shared
        assert "CREATED: ABC" in output

    def test_registers_dedicated_school_and_warns(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL_TENANT_KVS", raising=False)

        output = _run("register_school", "KVS", "Kendriya Vidyalaya", "--dedicated")

        assert School.objects.get(code="KVS").db_alias == "tenant_kvs"
        assert "DATABASE_URL_TENANT_KVS is not set" in output

    def test_fallback_permissions(self):
        _run("register_school", "ABC", "Alpha School", "--fallback-permissions", '{"parent": {"viewFees": true}}')

        assert School.objects.get(code="ABC").fallback_permissions == {"parent": {"viewFees": True}}

    def test_dry_run(self):
        output = _run("register_school", "ABC", "Alpha School", "--dry-run")

        assert "WOULD CREATE" in output
        assert not School.objects.filter(code="ABC").exists()

    def test_duplicate_code(self, school):
        with pytest.raises(CommandError, match="already registered"):
            _run("register_school", "nps", "Another School")

    def test_invalid_code(self):
        with pytest.raises(CommandError):
            _run("register_school", "bad code", "Broken")

    def test_invalid_fallback_json(self):
        with pytest.raises(CommandError):
            _run("register_school", "ABC", "Alpha School", "--fallback-permissions", "{not json")


class TestEvictTenantConnection:
    def test_evicts_named_codes(self, installed_manager):
        installed_manager.get_handle("NPS")

        output = _run("evict_tenant_connection", "nps", "KVS")

        assert "EVICTED: NPS" in output
        assert "SKIP: KVS" in output
        assert installed_manager.cached_codes() == []

    def test_evicts_all(self, installed_manager):
        installed_manager.get_handle("NPS")
        installed_manager.get_handle("KVS")

        output = _run("evict_tenant_connection", "--all")

        assert "Evicted 2" in output
        assert installed_manager.cached_codes() == []

    def test_requires_codes_or_all(self, installed_manager):
        with pytest.raises(CommandError):
            _run("evict_tenant_connection")
