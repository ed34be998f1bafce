# accounts/identity.py
"""
Sequential user identifiers and initial credentials.

Identifiers are <TAG><sequence>, the sequence zero-padded to four
digits: STU0001, TCH0012, ADM0003, PAR0100. Each (school, role) pair
has its own counter in records.IdentifierSequence.

Allocation:
1. Atomically increment the role's counter. A counter used for the
   first time is seeded from the highest identifier already stored.
2. Insert the user; the (school_code, role, user_id) unique constraint
   is the final arbiter.
3. On a duplicate, move the counter up to the stored maximum and try
   again, at most IDENTITY_MAX_ATTEMPTS times.

Identifiers are never reused: users are deactivated, not deleted, and
counters only move forward.
"""
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Optional

from django.conf import settings

from accounts.credentials import (
    generate_credential,
    hash_credential,
    initial_credential,
    parse_date_of_birth,
    verify_credential_hash,
)
from ops import metrics
from tenant.exceptions import DuplicateKey

logger = logging.getLogger(__name__)

ROLE_TAGS = {
    "student": "STU",
    "teacher": "TCH",
    "admin": "ADM",
    "parent": "PAR",
}

SEQUENCE_WIDTH = 4

PROFILE_FIELDS = frozenset({"name", "email"})


class DuplicateIdentifier(Exception):
    """Every allocation attempt collided with an existing identifier."""

    def __init__(self, school_code: str, role: str, attempts: int):
        self.school_code = school_code
        self.role = role
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique {role} identifier for {school_code} "
            f"after {attempts} attempts"
        )


class UnknownUser(LookupError):
    def __init__(self, school_code: str, user_id: str):
        self.school_code = school_code
        self.user_id = user_id
        super().__init__(f"No user {user_id} in {school_code}")


@dataclass(frozen=True)
class IssuedIdentity:
    user_id: str
    role: str
    school_code: str
    hashed_credential: str = field(repr=False)
    plaintext_credential: str = field(repr=False)
    credential_change_required: bool = True


def format_user_id(role: str, sequence: int) -> str:
    return f"{ROLE_TAGS[role]}{sequence:0{SEQUENCE_WIDTH}d}"


def role_for_user_id(user_id: str) -> Optional[str]:
    for role, tag in ROLE_TAGS.items():
        if user_id.startswith(tag) and user_id[len(tag):].isdigit():
            return role
    return None


def highest_sequence(user_ids, role: str) -> int:
    """Largest numeric suffix among identifiers carrying the role's tag."""
    pattern = re.compile(rf"^{ROLE_TAGS[role]}(\d+)$")
    highest = 0
    for user_id in user_ids:
        match = pattern.match(user_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


class IdentityIssuer:
    """
    Provisions school users: identifier, credential and the stored row.

    Safe to call concurrently from many threads for the same school and
    role; uniqueness holds, issue order does not.
    """

    def __init__(self, connections=None, max_attempts: Optional[int] = None):
        self._connections = connections
        self.max_attempts = (
            max_attempts if max_attempts is not None
            else getattr(settings, "IDENTITY_MAX_ATTEMPTS", 5)
        )

    @property
    def connections(self):
        if self._connections is None:
            from tenant.connections import get_connection_manager

            return get_connection_manager()
        return self._connections

    def _max_in_use(self, users, role: str) -> int:
        return highest_sequence(users.values("user_id", user_id__startswith=ROLE_TAGS[role]), role)

    def issue(self, school_code: str, role: str, date_of_birth=None, **profile) -> IssuedIdentity:
        """
        Provision a new user of the given role.

        Raises:
            ValueError: Unknown role or profile field
            DuplicateIdentifier: Retries exhausted
            TenantUnreachable: The school store could not be reached
        """
        if role not in ROLE_TAGS:
            raise ValueError(f"Unknown role {role!r}. Must be one of: {sorted(ROLE_TAGS)}")
        unknown = set(profile) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)}")

        handle = self.connections.get_handle(school_code)
        users = handle.users(role)
        sequences = handle.sequences

        plaintext, from_dob = initial_credential(role, date_of_birth)
        hashed = hash_credential(plaintext)
        row = {
            "name": profile.get("name") or "",
            "email": profile.get("email") or "",
            "date_of_birth": parse_date_of_birth(date_of_birth) if date_of_birth else None,
            "password": hashed,
            "temporary_password": plaintext,
            "password_change_required": True,
            "is_active": True,
        }

        for attempt in range(1, self.max_attempts + 1):
            sequence = sequences.next_value(role, seed=lambda: self._max_in_use(users, role))
            user_id = format_user_id(role, sequence)
            try:
                users.insert(user_id=user_id, **row)
            except DuplicateKey:
                metrics.identity_collisions.labels(role=role).inc()
                logger.warning(
                    "Identifier %s already taken (attempt %d/%d), reconciling counter",
                    user_id, attempt, self.max_attempts,
                    extra={"school_code": handle.school_code, "role": role},
                )
                sequences.reconcile(role, self._max_in_use(users, role))
                continue

            metrics.identities_issued.labels(role=role).inc()
            logger.info(
                "Issued identifier",
                extra={
                    "school_code": handle.school_code,
                    "role": role,
                    "user_id": user_id,
                    "credential_from_dob": from_dob,
                },
            )
            return IssuedIdentity(
                user_id=user_id,
                role=role,
                school_code=handle.school_code,
                hashed_credential=hashed,
                plaintext_credential=plaintext,
                credential_change_required=True,
            )

        raise DuplicateIdentifier(handle.school_code, role, self.max_attempts)

    def _locate(self, handle, user_id: str):
        """Return (collection, row) for a user, trying the role its tag names first."""
        role = role_for_user_id(user_id)
        roles = [role] if role else list(ROLE_TAGS)
        for candidate in roles:
            users = handle.users(candidate)
            row = users.find_one(user_id=user_id)
            if row is not None:
                return users, row
        raise UnknownUser(handle.school_code, user_id)

    def reset_credential(self, school_code: str, user_id: str) -> str:
        """
        Replace a user's credential with a new random one.

        The stored plaintext echo is overwritten and the user must change
        the credential at next sign-in. Returns the new plaintext.
        """
        handle = self.connections.get_handle(school_code)
        users, _ = self._locate(handle, user_id)

        plaintext = generate_credential()
        users.update(
            {"user_id": user_id},
            password=hash_credential(plaintext),
            temporary_password=plaintext,
            password_change_required=True,
        )
        logger.info(
            "Reset credential",
            extra={"school_code": handle.school_code, "user_id": user_id},
        )
        return plaintext

    def verify_credential(self, school_code: str, user_id: str, plaintext: str) -> bool:
        """Check a credential. Unknown or deactivated users never verify."""
        handle = self.connections.get_handle(school_code)
        try:
            _, row = self._locate(handle, user_id)
        except UnknownUser:
            return False
        if not row.get("is_active", True):
            return False
        return verify_credential_hash(plaintext, row["password"])

    def deactivate(self, school_code: str, user_id: str) -> bool:
        """Deactivate a user. The identifier stays taken."""
        handle = self.connections.get_handle(school_code)
        users, _ = self._locate(handle, user_id)
        changed = users.update({"user_id": user_id}, is_active=False) > 0
        logger.info(
            "Deactivated user",
            extra={"school_code": handle.school_code, "user_id": user_id},
        )
        return changed


_issuer: Optional[IdentityIssuer] = None
_issuer_lock = threading.Lock()


def get_identity_issuer() -> IdentityIssuer:
    global _issuer
    if _issuer is None:
        with _issuer_lock:
            if _issuer is None:
                _issuer = IdentityIssuer()
    return _issuer
