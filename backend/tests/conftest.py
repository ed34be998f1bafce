# tests/conftest.py
"""
Pytest fixtures for the school tenant subsystem.

Two kinds of store are used:
- the real Django-backed collections on the "default" test database,
  for anything that must prove ORM behaviour;
- thread-safe in-memory collections behind a fake connector, for the
  concurrency tests (SQLite cannot run concurrent writers).
"""
import threading
import time
from collections import Counter

import pytest

from accounts.authz import ActorContext, PermissionResolver, SchoolPrincipal
from accounts.identity import IdentityIssuer
from tenant.connections import (
    ConnectionManager,
    TenantConnectionHandle,
    set_connection_manager,
)
from tenant.exceptions import DuplicateKey, TenantUnreachable
from tenant.models import School
from tenant.registry import TenantRegistry


# =============================================================================
# In-memory store
# =============================================================================

def _matches(row: dict, lookup: dict) -> bool:
    for key, expected in lookup.items():
        if key.endswith("__startswith"):
            if not str(row.get(key[: -len("__startswith")]) or "").startswith(expected):
                return False
        elif row.get(key) != expected:
            return False
    return True


class MemoryCollection:
    """Same surface as tenant.collections.TenantCollection, kept in a list."""

    def __init__(self, name: str, unique=()):
        self.name = name
        self.unique = tuple(unique)
        self.rows = []
        self.lock = threading.Lock()

    def find_one(self, **lookup):
        with self.lock:
            for row in self.rows:
                if _matches(row, lookup):
                    return dict(row)
        return None

    def find(self, order_by=None, **lookup):
        with self.lock:
            rows = [dict(r) for r in self.rows if _matches(r, lookup)]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by))
        return rows

    def values(self, field, **lookup):
        with self.lock:
            return [r.get(field) for r in self.rows if _matches(r, lookup)]

    def count(self, **lookup):
        with self.lock:
            return sum(1 for r in self.rows if _matches(r, lookup))

    def insert(self, **fields):
        with self.lock:
            if self.unique:
                key = {f: fields.get(f) for f in self.unique}
                if any(_matches(r, key) for r in self.rows):
                    raise DuplicateKey(self.name, key)
            self.rows.append(dict(fields))
            return dict(fields)

    def update(self, lookup, **fields):
        with self.lock:
            changed = 0
            for row in self.rows:
                if _matches(row, lookup):
                    row.update(fields)
                    changed += 1
            return changed

    def upsert(self, lookup, **fields):
        with self.lock:
            for row in self.rows:
                if _matches(row, lookup):
                    row.update(fields)
                    return dict(row)
            row = {**lookup, **fields}
            self.rows.append(row)
            return dict(row)


class MemorySequences:
    def __init__(self):
        self.counters = {}
        self.lock = threading.Lock()

    def current(self, name):
        with self.lock:
            return self.counters.get(name, 0)

    def next_value(self, name, seed=None):
        with self.lock:
            if name not in self.counters:
                self.counters[name] = int(seed()) if seed is not None else 0
            self.counters[name] += 1
            return self.counters[name]

    def reconcile(self, name, floor):
        with self.lock:
            self.counters[name] = max(self.counters.get(name, 0), floor)


def memory_collections() -> dict:
    collections = {
        name: MemoryCollection(name, unique=("user_id",))
        for name in ("admins", "teachers", "students", "parents")
    }
    for name in ("messages", "results", "timetables", "permission_overrides", "tenant_info"):
        collections[name] = MemoryCollection(name)
    collections["sequences"] = MemorySequences()
    return collections


class MemoryConnector:
    """
    Connector double with knobs for the failure modes the manager handles.

    - known: codes that open successfully
    - delay: seconds every open() takes
    - hold: codes whose open() blocks until gate is set
    - healthy: code -> bool result of ping()
    - fail_open: codes whose open() raises TenantUnreachable
    """

    def __init__(self, known=("NPS", "KVS"), delay=0.0):
        self.known = set(known)
        self.delay = delay
        self.hold = set()
        self.gate = threading.Event()
        self.healthy = {}
        self.fail_open = set()
        self.opened = Counter()
        self.closed = []
        self.stores = {}
        self.lock = threading.Lock()

    def store(self, code):
        with self.lock:
            if code not in self.stores:
                self.stores[code] = memory_collections()
            return self.stores[code]

    def open(self, code):
        with self.lock:
            self.opened[code] += 1
        if code in self.hold:
            self.gate.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if code not in self.known:
            raise TenantUnreachable(code, "school is not registered")
        if code in self.fail_open:
            raise TenantUnreachable(code, "connection refused")
        return TenantConnectionHandle(school_code=code, db_alias="default", collections=self.store(code))

    def ping(self, handle):
        return self.healthy.get(handle.school_code, True)

    def close(self, handle):
        with self.lock:
            self.closed.append(handle.school_code)


# =============================================================================
# Process-wide state
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_connection_manager():
    """Never let cached handles leak from one test into the next."""
    previous = set_connection_manager(None)
    yield
    set_connection_manager(previous)


# =============================================================================
# Registry fixtures
# =============================================================================

@pytest.fixture
def registry():
    return TenantRegistry(legacy_codes=())


@pytest.fixture
def school(db):
    """A shared-mode school."""
    return School.objects.create(code="NPS", name="National Public School")


@pytest.fixture
def second_school(db):
    return School.objects.create(code="KVS", name="Kendriya Vidyalaya")


# =============================================================================
# Connection fixtures
# =============================================================================

@pytest.fixture
def connector():
    return MemoryConnector()


@pytest.fixture
def memory_manager(connector):
    return ConnectionManager(connector=connector, timeout=2.0, retries=1)


@pytest.fixture
def installed_manager(memory_manager):
    """memory_manager as the process-wide manager used by middleware and views."""
    set_connection_manager(memory_manager)
    return memory_manager


@pytest.fixture
def resolver(memory_manager):
    return PermissionResolver(registry=TenantRegistry(legacy_codes=()), connections=memory_manager)


@pytest.fixture
def issuer(memory_manager):
    return IdentityIssuer(connections=memory_manager, max_attempts=5)


# =============================================================================
# Actor fixtures
# =============================================================================

def make_actor(role, user_id, resolver, school_code="NPS"):
    principal = SchoolPrincipal(role=role, school_code=school_code, user_id=user_id)
    return ActorContext(
        user=principal,
        school_code=school_code,
        role=role,
        user_id=user_id,
        resolver=resolver,
    )


@pytest.fixture
def admin_actor(school, resolver):
    return make_actor("admin", "ADM0001", resolver)


@pytest.fixture
def teacher_actor(school, resolver):
    return make_actor("teacher", "TCH0001", resolver)


@pytest.fixture
def student_actor(school, resolver):
    return make_actor("student", "STU0001", resolver)


# =============================================================================
# API Client Fixtures
# =============================================================================

@pytest.fixture
def api_client():
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def admin_client(api_client, school, installed_manager):
    api_client.force_authenticate(
        user=SchoolPrincipal(role="admin", school_code="NPS", user_id="ADM0001")
    )
    api_client.credentials(HTTP_X_SCHOOL_CODE="NPS")
    return api_client
