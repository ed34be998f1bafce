# accounts/authz.py
"""
Authorization utilities for school tenants.

Provides:
- SchoolPrincipal: The verified (role, school_code, user_id) triple that
  upstream authentication attaches to request.user
- PermissionResolver: The one place that decides role x permission for a
  school
- ActorContext: Immutable context for the current request
- resolve_actor: Extract actor context from request
- require: Check permissions and raise if not granted

Decision order for PermissionResolver.explain():
1. superadmin: implicit allow
2. the school's own override matrix (records.PermissionOverride)
3. the registry fallback matrix (tenant.School.fallback_permissions)
4. DEFAULT_PERMISSION_TABLE, else deny

A student entry whose values are all false (or empty) is treated as
unset; bulk imports used to write such entries and they would otherwise
lock every student out.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from django.core.exceptions import PermissionDenied
from rest_framework.exceptions import NotAuthenticated

from accounts.permission_defaults import DEFAULT_PERMISSION_TABLE
from ops import metrics

logger = logging.getLogger(__name__)

SUPERADMIN = "superadmin"
STUDENT = "student"

# Matrix editors used to store scoped grants as strings.
_DENIED_STRINGS = frozenset({"", "false", "0", "off"})


def is_granted(value) -> bool:
    """
    Interpret one matrix value.

    Strings such as "own", "limited" or "self" are grants; "false",
    "0", "off" and "" are not.
    """
    if isinstance(value, str):
        return value.strip().lower() not in _DENIED_STRINGS
    return bool(value)


@dataclass(frozen=True)
class SchoolPrincipal:
    """
    A verified caller, as attached to request.user by upstream auth.

    The core never authenticates anyone; it trusts this triple.
    """

    role: str
    school_code: Optional[str]
    user_id: str
    is_authenticated: bool = True

    @property
    def is_anonymous(self) -> bool:
        return not self.is_authenticated

    @property
    def is_superadmin(self) -> bool:
        return self.role == SUPERADMIN


@dataclass(frozen=True)
class Decision:
    """Outcome of a permission check and the layer that decided it."""

    allowed: bool
    source: str

    def __bool__(self):
        return self.allowed


class PermissionResolver:
    """
    Layered permission lookup.

    Read-only and deterministic for a given store state. Missing
    matrices never raise; TenantUnreachable from the school store
    propagates unchanged.
    """

    def __init__(self, registry=None, connections=None):
        if registry is None:
            from tenant.registry import TenantRegistry

            registry = TenantRegistry()
        self.registry = registry
        self._connections = connections

    @property
    def connections(self):
        if self._connections is None:
            from tenant.connections import get_connection_manager

            return get_connection_manager()
        return self._connections

    def _override_matrix(self, school_code: str) -> Optional[dict]:
        handle = self.connections.get_handle(school_code)
        row = handle.permission_overrides.find_one()
        return row["matrix"] if row else None

    def explain(self, role: str, school_code: str, key: str) -> Decision:
        if role == SUPERADMIN:
            return self._record(Decision(True, "superadmin"), role, school_code, key)

        sources = (
            ("school_override", self._override_matrix),
            ("registry_fallback", self.registry.fallback_permissions),
        )
        for source, load in sources:
            matrix = load(school_code)
            if not isinstance(matrix, dict):
                continue
            entry = matrix.get(role)
            if not isinstance(entry, dict):
                continue
            if role == STUDENT and not any(is_granted(v) for v in entry.values()):
                logger.info(
                    "Ignoring all-false student permissions from %s", source,
                    extra={"school_code": school_code, "role": role},
                )
                break
            if key in entry:
                return self._record(Decision(is_granted(entry[key]), source), role, school_code, key)

        allowed = bool(DEFAULT_PERMISSION_TABLE.get(role, {}).get(key, False))
        return self._record(Decision(allowed, "default"), role, school_code, key)

    def is_allowed(self, role: str, school_code: str, key: str) -> bool:
        return self.explain(role, school_code, key).allowed

    def _record(self, decision: Decision, role: str, school_code: str, key: str) -> Decision:
        metrics.permission_decisions.labels(
            source=decision.source,
            allowed=str(decision.allowed).lower(),
        ).inc()
        logger.debug(
            "Permission %s for %s: %s (%s)",
            key, role, decision.allowed, decision.source,
            extra={"school_code": school_code, "role": role},
        )
        return decision


_resolver: Optional[PermissionResolver] = None
_resolver_lock = threading.Lock()


def get_permission_resolver() -> PermissionResolver:
    global _resolver
    if _resolver is None:
        with _resolver_lock:
            if _resolver is None:
                _resolver = PermissionResolver()
    return _resolver


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable context for the current actor (principal + school).

    This is passed to commands to say who is performing an action and
    in which school.
    """

    user: object
    school_code: str
    role: str
    user_id: str
    resolver: Optional[PermissionResolver] = field(default=None, compare=False, repr=False)

    def has(self, key: str) -> bool:
        resolver = self.resolver or get_permission_resolver()
        return resolver.is_allowed(self.role, self.school_code, key)

    @property
    def is_authenticated(self) -> bool:
        return bool(getattr(self.user, "is_authenticated", False))

    @property
    def is_superadmin(self) -> bool:
        return self.role == SUPERADMIN


def resolve_actor(request, resolver: Optional[PermissionResolver] = None) -> ActorContext:
    """
    Extract ActorContext from the current request.

    The school comes from SchoolContextMiddleware (request.school_code),
    falling back to the principal's own school.

    Raises:
        NotAuthenticated: If user is not authenticated
        PermissionDenied: If no school is selected or the principal
            belongs to a different school
    """
    user = getattr(request, "user", None)

    if not user or not getattr(user, "is_authenticated", False):
        raise NotAuthenticated("Authentication required.")

    role = getattr(user, "role", None)
    if not role:
        raise PermissionDenied("Principal has no school role.")

    own_school = getattr(user, "school_code", None)
    school_code = getattr(request, "school_code", None) or own_school
    if not school_code:
        raise PermissionDenied("No school selected.")

    if role != SUPERADMIN and own_school and own_school.upper() != school_code.upper():
        raise PermissionDenied("You do not belong to the selected school.")

    return ActorContext(
        user=user,
        school_code=school_code.upper(),
        role=role,
        user_id=str(getattr(user, "user_id", "") or ""),
        resolver=resolver,
    )


def require(actor: ActorContext, key: str) -> None:
    """
    Require that the actor has a specific permission.

    Example:
        require(actor, "manageUsers")
        # If we get here, permission is granted
    """
    if not actor.has(key):
        raise PermissionDenied(f"Permission denied: {key}")


def require_any(actor: ActorContext, *keys: str) -> None:
    """Require that the actor has AT LEAST ONE of the given permissions."""
    for key in keys:
        if actor.has(key):
            return

    raise PermissionDenied(f"Permission denied: requires one of {', '.join(keys)}")


def check_permission(actor: ActorContext, key: str) -> bool:
    """Check if actor has a permission without raising."""
    return actor.has(key)


def resolve_actor_optional(request):
    """Try to resolve ActorContext, return None if not possible."""
    try:
        return resolve_actor(request)
    except (NotAuthenticated, PermissionDenied):
        return None
