"""
Per-school connection handles with a singleflight cache.

get_handle(code) returns a TenantConnectionHandle for a canonical school
code. Handles are cached per code and shared by every caller in the
process:

- Cache miss: exactly one caller (the leader) builds the handle.
  Concurrent callers for the same code wait on the leader's future;
  callers for other codes never wait on it.
- Cache hit: a cheap liveness probe runs first. A handle that fails the
  probe is evicted and rebuilt (TENANT_CONNECT_RETRIES times) before
  TenantUnreachable is raised.
- Waiters give up after TENANT_CONNECT_TIMEOUT seconds. The timed-out
  waiter releases the in-flight slot so the next caller starts a fresh
  build instead of waiting on a stuck one.

Usage:
    handle = get_connection_manager().get_handle("NPS")
    handle.students.find_one(user_id="STU0001")
"""
import logging
import math
import os
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import dj_database_url
from django.conf import settings
from django.db import DatabaseError, connections

from ops import metrics
from records.models import (
    Message,
    PermissionOverride,
    Result,
    Role,
    SchoolUser,
    TenantInfo,
    Timetable,
)
from tenant.collections import SequenceCollection, TenantCollection
from tenant.exceptions import TenantUnreachable
from tenant.models import School
from tenant.registry import TenantRegistry

logger = logging.getLogger(__name__)


ROLE_COLLECTIONS = {
    Role.ADMIN: "admins",
    Role.TEACHER: "teachers",
    Role.STUDENT: "students",
    Role.PARENT: "parents",
}

POSTGRES_ENGINES = (
    "django.db.backends.postgresql",
    "django.contrib.gis.db.backends.postgis",
)


@dataclass
class TenantConnectionHandle:
    """
    Borrowed access to one school's store.

    Collections are reachable as attributes (handle.students) or by
    name (handle.collection("students")).
    """

    school_code: str
    db_alias: str
    collections: Dict[str, object] = field(default_factory=dict, repr=False)

    def collection(self, name: str):
        try:
            return self.collections[name]
        except KeyError:
            raise KeyError(f"School store has no collection named {name!r}") from None

    def users(self, role: str):
        """Role-scoped user collection, e.g. users("student") -> students."""
        try:
            name = ROLE_COLLECTIONS[Role(role)]
        except ValueError:
            raise KeyError(f"Unknown role {role!r}") from None
        return self.collection(name)

    def __getattr__(self, name):
        collections = self.__dict__.get("collections") or {}
        if name in collections:
            return collections[name]
        raise AttributeError(name)

    @property
    def is_shared(self) -> bool:
        return self.db_alias == "default"


def build_collections(school_code: str, db_alias: str) -> dict:
    """The standard set of collections exposed by a school handle."""
    collections = {
        name: TenantCollection(SchoolUser, db_alias, school_code, scope={"role": role.value}, name=name)
        for role, name in ROLE_COLLECTIONS.items()
    }
    collections.update({
        "messages": TenantCollection(Message, db_alias, school_code, name="messages"),
        "results": TenantCollection(Result, db_alias, school_code, name="results"),
        "timetables": TenantCollection(Timetable, db_alias, school_code, name="timetables"),
        "permission_overrides": TenantCollection(
            PermissionOverride, db_alias, school_code, name="permission_overrides"
        ),
        "tenant_info": TenantCollection(TenantInfo, db_alias, school_code, name="tenant_info"),
        "sequences": SequenceCollection(db_alias, school_code),
    })
    return collections


# =============================================================================
# Dedicated database aliases
# =============================================================================

_alias_lock = threading.Lock()


def dedicated_database_url(school_code: str) -> Optional[str]:
    """DATABASE_URL_TENANT_{CODE} for a school, if set."""
    return os.environ.get(f"DATABASE_URL_TENANT_{school_code.upper()}")


def _with_connection_defaults(config: dict) -> dict:
    """Fill the keys Django's ConnectionHandler normally adds at startup."""
    config.setdefault("ATOMIC_REQUESTS", False)
    config.setdefault("AUTOCOMMIT", True)
    config.setdefault("CONN_MAX_AGE", 0)
    config.setdefault("CONN_HEALTH_CHECKS", False)
    config.setdefault("OPTIONS", {})
    config.setdefault("TIME_ZONE", None)
    for key in ("NAME", "USER", "PASSWORD", "HOST", "PORT"):
        config.setdefault(key, "")
    test = config.setdefault("TEST", {})
    for key in ("CHARSET", "COLLATION", "MIGRATE", "MIRROR", "NAME"):
        test.setdefault(key, True if key == "MIGRATE" else None)
    return config


def apply_connect_timeout(config: dict, connect_timeout: float) -> None:
    """Bound Postgres connection attempts unless the config already sets a timeout."""
    if config.get("ENGINE") in POSTGRES_ENGINES:
        options = config.get("OPTIONS")
        if options is None:
            options = config["OPTIONS"] = {}
        options.setdefault("connect_timeout", max(1, math.ceil(connect_timeout)))


def ensure_database_alias(school_code: str, db_alias: str, connect_timeout: float) -> None:
    """
    Make sure db_alias is a configured Django database.

    Aliases already in settings.DATABASES only gain a connect timeout when
    they lack one. Otherwise the school's DATABASE_URL_TENANT_{CODE} is
    parsed and registered.
    """
    if db_alias in connections.settings:
        apply_connect_timeout(connections.settings[db_alias], connect_timeout)
        return

    with _alias_lock:
        if db_alias in connections.settings:
            apply_connect_timeout(connections.settings[db_alias], connect_timeout)
            return

        url = dedicated_database_url(school_code)
        if not url:
            raise TenantUnreachable(
                school_code,
                f"no database configured for alias {db_alias} "
                f"(set DATABASE_URL_TENANT_{school_code.upper()})",
            )

        config = dj_database_url.parse(url, conn_max_age=600, conn_health_checks=True)
        apply_connect_timeout(config, connect_timeout)
        config = _with_connection_defaults(config)

        connections.settings[db_alias] = config
        settings.DATABASES[db_alias] = config
        logger.info(
            "Registered dedicated school database",
            extra={"school_code": school_code, "db_alias": db_alias},
        )


# =============================================================================
# Connector
# =============================================================================

class DjangoTenantConnector:
    """
    Builds handles backed by Django database aliases.

    SHARED schools use the "default" alias; DEDICATED_DB schools use
    their own alias, registered on first use. Legacy allow-listed codes
    without a registry row use the shared store, or a dedicated one if
    DATABASE_URL_TENANT_{CODE} is set.
    """

    def __init__(self, registry=None, connect_timeout: Optional[float] = None):
        self.registry = registry if registry is not None else TenantRegistry()
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None
            else getattr(settings, "TENANT_CONNECT_TIMEOUT", 8.0)
        )

    def _alias_for(self, school_code: str) -> str:
        school = self.registry.get(school_code)
        if school is not None:
            if not school.is_active:
                raise TenantUnreachable(school_code, "school is deactivated")
            if school.is_dedicated:
                return school.db_alias
            return "default"

        if school_code in self.registry.legacy_codes:
            if dedicated_database_url(school_code):
                return School.dedicated_alias_for(school_code)
            return "default"

        raise TenantUnreachable(school_code, "school is not registered")

    def open(self, school_code: str) -> TenantConnectionHandle:
        db_alias = self._alias_for(school_code)
        if db_alias != "default":
            ensure_database_alias(school_code, db_alias, self.connect_timeout)

        handle = TenantConnectionHandle(
            school_code=school_code,
            db_alias=db_alias,
            collections=build_collections(school_code, db_alias),
        )
        if not self.ping(handle):
            raise TenantUnreachable(school_code, f"database {db_alias} did not answer")
        return handle

    def ping(self, handle: TenantConnectionHandle) -> bool:
        conn = connections[handle.db_alias]
        try:
            conn.ensure_connection()
            return conn.is_usable()
        except DatabaseError as e:
            logger.warning(
                "School database probe failed: %s", e,
                extra={"school_code": handle.school_code, "db_alias": handle.db_alias},
            )
            return False

    def close(self, handle: TenantConnectionHandle) -> None:
        # The shared alias belongs to everyone; only dedicated ones are closed.
        if handle.db_alias == "default":
            return
        try:
            connections[handle.db_alias].close()
        except DatabaseError as e:
            logger.warning(
                "Error closing school database: %s", e,
                extra={"school_code": handle.school_code, "db_alias": handle.db_alias},
            )


# =============================================================================
# Connection manager
# =============================================================================

class ConnectionManager:
    """
    Process-wide cache of school handles keyed by canonical code.

    Thread-safe: the handle dict and the in-flight dict are guarded by one
    short-held lock; building a handle happens outside it.
    """

    def __init__(self, connector=None, timeout: Optional[float] = None, retries: Optional[int] = None):
        self.connector = connector if connector is not None else DjangoTenantConnector()
        self.timeout = (
            timeout if timeout is not None
            else getattr(settings, "TENANT_CONNECT_TIMEOUT", 8.0)
        )
        self.retries = max(1, retries if retries is not None else getattr(settings, "TENANT_CONNECT_RETRIES", 1))
        self._handles: Dict[str, TenantConnectionHandle] = {}
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def get_handle(self, school_code: str) -> TenantConnectionHandle:
        """
        Get the cached handle for a school, building it if needed.

        Raises:
            TenantUnreachable: The store could not be reached in time.
        """
        code = (school_code or "").strip().upper()
        if not code:
            raise TenantUnreachable(school_code or "", "empty school code")

        with self._lock:
            handle = self._handles.get(code)

        if handle is None:
            return self._get_or_build(code)

        if self.connector.ping(handle):
            return handle

        logger.warning("Cached school connection failed liveness probe", extra={"school_code": code})
        self._evict(code, handle)

        error = None
        for attempt in range(self.retries):
            try:
                return self._get_or_build(code)
            except TenantUnreachable as exc:
                error = exc
                logger.warning(
                    "Rebuilding school connection failed (attempt %d/%d)",
                    attempt + 1, self.retries,
                    extra={"school_code": code},
                )
        raise error

    def _get_or_build(self, code: str) -> TenantConnectionHandle:
        with self._lock:
            handle = self._handles.get(code)
            if handle is not None:
                return handle
            future = self._inflight.get(code)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[code] = future

        if leader:
            return self._build(code, future)
        return self._wait(code, future)

    def _build(self, code: str, future: Future) -> TenantConnectionHandle:
        try:
            handle = self.connector.open(code)
        except Exception as exc:
            if isinstance(exc, TenantUnreachable):
                error = exc
            else:
                error = TenantUnreachable(code, f"{type(exc).__name__}: {exc}")
                error.__cause__ = exc
            with self._lock:
                if self._inflight.get(code) is future:
                    del self._inflight[code]
            future.set_exception(error)
            metrics.tenant_unreachable.labels(reason="open").inc()
            logger.warning("Could not open school connection: %s", error.reason, extra={"school_code": code})
            if error is exc:
                raise
            raise error from exc

        with self._lock:
            if self._inflight.get(code) is future:
                del self._inflight[code]
            # A waiter may have timed out and let a newer build win; keep the first.
            handle = self._handles.setdefault(code, handle)
            cached = len(self._handles)

        future.set_result(handle)
        metrics.tenant_connections_opened.labels(mode="shared" if handle.is_shared else "dedicated").inc()
        metrics.tenant_handles_cached.set(cached)
        logger.info(
            "Opened school connection",
            extra={"school_code": code, "db_alias": handle.db_alias},
        )
        return handle

    def _wait(self, code: str, future: Future) -> TenantConnectionHandle:
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            with self._lock:
                if self._inflight.get(code) is future:
                    del self._inflight[code]
            metrics.tenant_unreachable.labels(reason="timeout").inc()
            logger.warning(
                "Timed out waiting for school connection after %.1fs", self.timeout,
                extra={"school_code": code},
            )
            raise TenantUnreachable(code, f"timed out after {self.timeout}s") from None

    def _evict(self, code: str, handle: Optional[TenantConnectionHandle] = None) -> Optional[TenantConnectionHandle]:
        with self._lock:
            current = self._handles.get(code)
            if current is None or (handle is not None and current is not handle):
                return None
            del self._handles[code]
            cached = len(self._handles)
        metrics.tenant_handles_cached.set(cached)
        self.connector.close(current)
        return current

    def invalidate(self, school_code: str) -> bool:
        """Drop a school's cached handle. Returns True if one was cached."""
        code = (school_code or "").strip().upper()
        evicted = self._evict(code) is not None
        if evicted:
            logger.info("Evicted school connection", extra={"school_code": code})
        return evicted

    def close_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        metrics.tenant_handles_cached.set(0)
        for handle in handles:
            self.connector.close(handle)

    def cached_codes(self) -> List[str]:
        with self._lock:
            return sorted(self._handles)


_manager: Optional[ConnectionManager] = None
_manager_lock = threading.Lock()


def get_connection_manager() -> ConnectionManager:
    """The process-wide connection manager, created on first use."""
    global _manager
    if _manager is None:
        with _manager_lock:
            if _manager is None:
                _manager = ConnectionManager()
    return _manager


def set_connection_manager(manager: Optional[ConnectionManager]) -> Optional[ConnectionManager]:
    """Replace the process-wide manager. Returns the previous one."""
    global _manager
    with _manager_lock:
        previous, _manager = _manager, manager
    return previous


def misconfigured_schools() -> List[str]:
    """
    Describe active schools whose store cannot be built:
    shared schools not on "default" and dedicated schools with no
    configured alias or DATABASE_URL_TENANT_{CODE}.
    """
    problems = []
    for school in School.objects.using("default").filter(is_active=True):
        if school.is_shared and school.db_alias != "default":
            problems.append(
                f"{school.code} has mode=SHARED but db_alias='{school.db_alias}' "
                "(should be 'default')"
            )
        elif school.is_dedicated and (
            school.db_alias not in settings.DATABASES
            and not dedicated_database_url(school.code)
        ):
            problems.append(
                f"{school.code} has mode=DEDICATED_DB but neither "
                f"DATABASES['{school.db_alias}'] nor "
                f"DATABASE_URL_TENANT_{school.code} is configured"
            )
    return problems
