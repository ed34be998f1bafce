# accounts/commands.py
"""
Command layer for school user and permission administration.

ALL security-sensitive mutations go through these commands:
- User provisioning
- Credential resets and deactivation
- Permission matrix changes

Each command checks the actor's permission first (raising
PermissionDenied) and reports business failures as CommandResult.fail.
"""
import logging

from accounts.authz import ActorContext, require
from accounts.identity import (
    DuplicateIdentifier,
    UnknownUser,
    get_identity_issuer,
)
from accounts.permissions import save_permission_matrix

logger = logging.getLogger(__name__)


class CommandResult:
    def __init__(self, success: bool, data=None, error: str = None):
        self.success = success
        self.data = data
        self.error = error

    @classmethod
    def ok(cls, data=None):
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str):
        return cls(success=False, error=error)

    def __repr__(self):
        if self.success:
            return f"CommandResult(ok, data={self.data!r})"
        return f"CommandResult(fail, error={self.error!r})"


def provision_user(
    actor: ActorContext,
    role: str,
    date_of_birth=None,
    issuer=None,
    **profile,
) -> CommandResult:
    """
    Create a user in the actor's school.

    Args:
        actor: The actor context (must have manageUsers)
        role: admin, teacher, student or parent
        date_of_birth: Students only; used for the initial credential
        profile: name, email

    Returns:
        CommandResult with user_id and the one-time plaintext credential
    """
    require(actor, "manageUsers")
    issuer = issuer or get_identity_issuer()

    try:
        identity = issuer.issue(actor.school_code, role, date_of_birth=date_of_birth, **profile)
    except ValueError as e:
        return CommandResult.fail(str(e))
    except DuplicateIdentifier as e:
        logger.error(str(e), extra={"school_code": actor.school_code, "role": role})
        return CommandResult.fail("Could not allocate a user id. Please retry.")

    return CommandResult.ok({
        "user_id": identity.user_id,
        "role": identity.role,
        "school_code": identity.school_code,
        "temporary_password": identity.plaintext_credential,
        "password_change_required": identity.credential_change_required,
    })


def reset_user_credential(actor: ActorContext, user_id: str, issuer=None) -> CommandResult:
    """
    Issue a new random credential for a user of the actor's school.

    Users may reset their own credential; anyone else needs manageUsers.
    """
    if user_id != actor.user_id:
        require(actor, "manageUsers")
    issuer = issuer or get_identity_issuer()

    try:
        plaintext = issuer.reset_credential(actor.school_code, user_id)
    except UnknownUser:
        return CommandResult.fail("User not found.")

    return CommandResult.ok({
        "user_id": user_id,
        "temporary_password": plaintext,
        "password_change_required": True,
    })


def deactivate_user(actor: ActorContext, user_id: str, issuer=None) -> CommandResult:
    require(actor, "manageUsers")
    if user_id == actor.user_id:
        return CommandResult.fail("You cannot deactivate yourself.")
    issuer = issuer or get_identity_issuer()

    try:
        issuer.deactivate(actor.school_code, user_id)
    except UnknownUser:
        return CommandResult.fail("User not found.")

    return CommandResult.ok({"user_id": user_id, "is_active": False})


def update_permission_matrix(actor: ActorContext, matrix: dict, connections=None) -> CommandResult:
    """Replace the school's own permission matrix (needs manageSchoolSettings)."""
    require(actor, "manageSchoolSettings")

    try:
        row = save_permission_matrix(
            actor.school_code,
            matrix,
            updated_by=actor.user_id,
            connections=connections,
        )
    except ValueError as e:
        return CommandResult.fail(str(e))

    return CommandResult.ok({"matrix": row["matrix"], "updated_by": row["updated_by"]})
