# tests/test_identity.py
"""
Tests for IdentityIssuer.

Most tests run against the in-memory store so the concurrency test can
hammer one school from many threads; one class repeats the basics on the
Django-backed store.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from django.contrib.auth.hashers import check_password

from accounts.identity import (
    DuplicateIdentifier,
    IdentityIssuer,
    UnknownUser,
    format_user_id,
    highest_sequence,
    role_for_user_id,
)
from tenant.connections import ConnectionManager, DjangoTenantConnector
from tenant.exceptions import DuplicateKey, TenantUnreachable
from tenant.registry import TenantRegistry


def _students(memory_manager):
    return memory_manager.get_handle("NPS").students


class TestIdentifierFormat:
    def test_format_user_id(self):
        assert format_user_id("student", 1) == "STU0001"
        assert format_user_id("teacher", 12) == "TCH0012"
        assert format_user_id("admin", 3) == "ADM0003"
        assert format_user_id("parent", 100) == "PAR0100"

    def test_wide_sequences_are_not_truncated(self):
        assert format_user_id("student", 12345) == "STU12345"

    def test_role_for_user_id(self):
        assert role_for_user_id("STU0001") == "student"
        assert role_for_user_id("PAR0100") == "parent"
        assert role_for_user_id("XYZ0001") is None
        assert role_for_user_id("STUDENT") is None

    def test_highest_sequence(self):
        ids = ["STU0002", "STU0010", "TCH0099", "STUX", None, "STU0007"]
        assert highest_sequence(ids, "student") == 10
        assert highest_sequence([], "student") == 0


class TestIssue:
    def test_sequential_per_role(self, issuer):
        assert issuer.issue("NPS", "student").user_id == "STU0001"
        assert issuer.issue("NPS", "student").user_id == "STU0002"
        assert issuer.issue("NPS", "teacher").user_id == "TCH0001"

    def test_sequences_are_per_school(self, issuer):
        issuer.issue("NPS", "student")

        assert issuer.issue("KVS", "student").user_id == "STU0001"

    def test_student_credential_from_date_of_birth(self, issuer, memory_manager):
        identity = issuer.issue("NPS", "student", date_of_birth="15/01/2008", name="Asha")

        assert identity.plaintext_credential == "15012008"
        assert identity.credential_change_required is True
        assert check_password("15012008", identity.hashed_credential)

        row = _students(memory_manager).find_one(user_id=identity.user_id)
        assert row["name"] == "Asha"
        assert row["date_of_birth"] == date(2008, 1, 15)
        assert row["temporary_password"] == "15012008"
        assert row["password"] == identity.hashed_credential
        assert row["password_change_required"] is True
        assert row["is_active"] is True

    def test_unreadable_date_of_birth_gets_random_credential(self, issuer, memory_manager):
        identity = issuer.issue("NPS", "student", date_of_birth="sometime in 2008")

        assert identity.plaintext_credential != "sometime in 2008"
        assert len(identity.plaintext_credential) == 8
        row = _students(memory_manager).find_one(user_id=identity.user_id)
        assert row["date_of_birth"] is None

    def test_teacher_gets_random_credential(self, issuer):
        identity = issuer.issue("NPS", "teacher", date_of_birth="15/01/1980")

        assert identity.plaintext_credential != "15011980"
        assert check_password(identity.plaintext_credential, identity.hashed_credential)

    def test_plaintext_is_not_in_repr(self, issuer):
        identity = issuer.issue("NPS", "student", date_of_birth="15/01/2008")

        assert "15012008" not in repr(identity)

    def test_unknown_role(self, issuer):
        with pytest.raises(ValueError):
            issuer.issue("NPS", "janitor")

    def test_unknown_profile_field(self, issuer):
        with pytest.raises(ValueError):
            issuer.issue("NPS", "student", shoe_size=9)

    def test_unreachable_school(self, issuer):
        with pytest.raises(TenantUnreachable):
            issuer.issue("NOWHERE", "student")


class TestAllocation:
    def test_concurrent_issuance_is_unique(self, issuer, memory_manager):
        with ThreadPoolExecutor(max_workers=16) as pool:
            identities = list(pool.map(lambda _: issuer.issue("NPS", "student"), range(50)))

        user_ids = {identity.user_id for identity in identities}
        assert len(user_ids) == 50
        assert user_ids == {format_user_id("student", n) for n in range(1, 51)}
        assert _students(memory_manager).count() == 50

    def test_new_counter_is_seeded_from_existing_rows(self, issuer, memory_manager):
        _students(memory_manager).insert(user_id="STU0007", password="x")

        assert issuer.issue("NPS", "student").user_id == "STU0008"

    def test_collision_reconciles_counter(self, issuer, memory_manager):
        handle = memory_manager.get_handle("NPS")
        # Counter exists but lags behind rows written by another process
        handle.sequences.counters["student"] = 0
        for n in (1, 2, 3):
            handle.students.insert(user_id=format_user_id("student", n), password="x")

        identity = issuer.issue("NPS", "student")

        assert identity.user_id == "STU0004"
        assert handle.sequences.current("student") == 4

    def test_gives_up_after_max_attempts(self, memory_manager, monkeypatch):
        issuer = IdentityIssuer(connections=memory_manager, max_attempts=3)
        students = _students(memory_manager)
        calls = []

        def always_taken(**fields):
            calls.append(fields["user_id"])
            raise DuplicateKey("students", {"user_id": fields["user_id"]})

        monkeypatch.setattr(students, "insert", always_taken)

        with pytest.raises(DuplicateIdentifier) as exc_info:
            issuer.issue("NPS", "student")

        assert exc_info.value.attempts == 3
        assert exc_info.value.role == "student"
        assert len(calls) == 3

    def test_max_attempts_from_settings(self, memory_manager, settings):
        settings.IDENTITY_MAX_ATTEMPTS = 2
        assert IdentityIssuer(connections=memory_manager).max_attempts == 2

    def test_deactivated_ids_are_never_reused(self, issuer):
        first = issuer.issue("NPS", "student")
        issuer.deactivate("NPS", first.user_id)

        assert issuer.issue("NPS", "student").user_id == "STU0002"


class TestCredentialLifecycle:
    def test_reset_replaces_credential(self, issuer, memory_manager):
        identity = issuer.issue("NPS", "student", date_of_birth="15/01/2008")

        new_plaintext = issuer.reset_credential("NPS", identity.user_id)

        assert new_plaintext != "15012008"
        row = _students(memory_manager).find_one(user_id=identity.user_id)
        assert row["temporary_password"] == new_plaintext
        assert row["password_change_required"] is True
        assert not issuer.verify_credential("NPS", identity.user_id, "15012008")
        assert issuer.verify_credential("NPS", identity.user_id, new_plaintext)

    def test_second_reset_discards_first_plaintext(self, issuer, memory_manager):
        identity = issuer.issue("NPS", "teacher")

        first = issuer.reset_credential("NPS", identity.user_id)
        second = issuer.reset_credential("NPS", identity.user_id)

        assert first != second
        row = memory_manager.get_handle("NPS").teachers.find_one(user_id=identity.user_id)
        assert row["temporary_password"] == second
        assert first not in row.values()
        assert not issuer.verify_credential("NPS", identity.user_id, first)
        assert issuer.verify_credential("NPS", identity.user_id, second)

    def test_reset_unknown_user(self, issuer):
        with pytest.raises(UnknownUser):
            issuer.reset_credential("NPS", "STU0404")

    def test_verify(self, issuer):
        identity = issuer.issue("NPS", "student", date_of_birth="15/01/2008")

        assert issuer.verify_credential("NPS", identity.user_id, "15012008")
        assert not issuer.verify_credential("NPS", identity.user_id, "wrong")
        assert not issuer.verify_credential("NPS", "STU0404", "15012008")

    def test_deactivated_user_does_not_verify(self, issuer):
        identity = issuer.issue("NPS", "student", date_of_birth="15/01/2008")

        assert issuer.deactivate("NPS", identity.user_id) is True
        assert not issuer.verify_credential("NPS", identity.user_id, "15012008")

    def test_deactivate_unknown_user(self, issuer):
        with pytest.raises(UnknownUser):
            issuer.deactivate("NPS", "TCH0404")


@pytest.mark.django_db
class TestIssueOnDatabase:
    @pytest.fixture
    def db_issuer(self, school):
        connector = DjangoTenantConnector(registry=TenantRegistry(legacy_codes=()))
        return IdentityIssuer(connections=ConnectionManager(connector=connector), max_attempts=5)

    def test_issue_and_verify(self, db_issuer):
        first = db_issuer.issue("NPS", "student", date_of_birth="2008-01-15", name="Asha")
        second = db_issuer.issue("NPS", "student")

        assert (first.user_id, second.user_id) == ("STU0001", "STU0002")
        assert db_issuer.verify_credential("NPS", "STU0001", "15012008")

    def test_collision_with_existing_row(self, db_issuer):
        handle = db_issuer.connections.get_handle("NPS")
        handle.sequences.next_value("teacher")
        handle.teachers.insert(user_id="TCH0002", password="x")

        assert db_issuer.issue("NPS", "teacher").user_id == "TCH0003"

    def test_reset_credential(self, db_issuer):
        identity = db_issuer.issue("NPS", "student", date_of_birth="15/01/2008")

        plaintext = db_issuer.reset_credential("NPS", identity.user_id)

        row = db_issuer.connections.get_handle("NPS").students.find_one(user_id=identity.user_id)
        assert row["temporary_password"] == plaintext
        assert db_issuer.verify_credential("NPS", identity.user_id, plaintext)
