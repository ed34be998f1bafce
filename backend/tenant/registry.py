"""
Tenant registry: canonicalize human-supplied school identifiers.

Matching order for resolve():
1. exact code match (case-insensitive)
2. exact display-name match (case-insensitive)
3. legacy literal codes, only when the token is well formed AND listed in
   settings.LEGACY_SCHOOL_CODES

Step 3 exists for old clients that pass a bare code for a school whose
registry row was never created. It is not a security boundary: any
accepted literal selects a tenant without registry verification, so it
is restricted to an explicit allow-list and every use is logged.
"""
import logging
import re
from typing import Optional

from django.conf import settings

from tenant.models import School

logger = logging.getLogger(__name__)

CODE_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{2,20}$")


def looks_like_code(identifier: str) -> bool:
    """Check whether a string is a well-formed school code token."""
    return bool(CODE_TOKEN_RE.match(identifier or ""))


class TenantRegistry:
    """
    Read-side facade over the School table.

    All lookups go to the system database; nothing here touches a
    school's own store.
    """

    def __init__(self, legacy_codes=None):
        self._legacy_codes = legacy_codes

    @property
    def legacy_codes(self) -> frozenset:
        codes = self._legacy_codes
        if codes is None:
            codes = getattr(settings, "LEGACY_SCHOOL_CODES", ())
        return frozenset(code.upper() for code in codes)

    def _active(self):
        return School.objects.using("default").filter(is_active=True)

    def resolve(self, identifier: str) -> Optional[str]:
        """
        Resolve a school code or name to its canonical code.

        Returns None (NotFound) when nothing matches.
        """
        if not identifier or not isinstance(identifier, str):
            return None
        identifier = identifier.strip()
        if not identifier:
            return None

        school = self._active().filter(code__iexact=identifier).first()
        if school is None:
            school = self._active().filter(name__iexact=identifier).first()
        if school is not None:
            return school.code

        candidate = identifier.upper()
        if looks_like_code(identifier) and candidate in self.legacy_codes:
            logger.warning(
                "Accepted legacy school code without registry entry",
                extra={"school_code": candidate},
            )
            return candidate

        logger.info("Unknown school identifier", extra={"identifier": identifier[:64]})
        return None

    def get(self, code: str) -> Optional[School]:
        """Get the registry row for a canonical code (active or not)."""
        if not code:
            return None
        return School.objects.using("default").filter(code=code.upper()).first()

    def fallback_permissions(self, code: str) -> Optional[dict]:
        """Registry-level permission matrix for a school, if configured."""
        matrix = (
            School.objects.using("default")
            .filter(code=code.upper())
            .values_list("fallback_permissions", flat=True)
            .first()
        )
        return matrix or None

    def register(
        self,
        code: str,
        name: str,
        dedicated: bool = False,
        fallback_permissions: Optional[dict] = None,
    ) -> School:
        """Register a new school. Codes are uppercased and must be unique."""
        code = code.strip().upper()
        if not looks_like_code(code):
            raise ValueError(f"Invalid school code: {code!r}")
        mode = School.IsolationMode.DEDICATED_DB if dedicated else School.IsolationMode.SHARED
        school = School.objects.using("default").create(
            code=code,
            name=name,
            mode=mode,
            db_alias=School.dedicated_alias_for(code) if dedicated else "default",
            fallback_permissions=fallback_permissions,
        )
        logger.info("Registered school", extra={"school_code": code, "mode": mode})
        return school

    def deactivate(self, code: str) -> bool:
        """
        Soft-deactivate a school. Returns False if the code is unknown.

        The cached connection is evicted so no new work reaches the store.
        """
        updated = (
            School.objects.using("default")
            .filter(code=code.upper())
            .update(is_active=False, status=School.Status.SUSPENDED)
        )
        if not updated:
            return False

        from tenant.connections import get_connection_manager

        get_connection_manager().invalidate(code.upper())
        logger.info("Deactivated school", extra={"school_code": code.upper()})
        return True
