"""
Infrastructure errors raised by the tenant data-access layer.

Business outcomes (unknown school, permission denied) are plain
return values elsewhere; only these propagate as exceptions.
"""


class TenantUnreachable(Exception):
    """
    A school's data store could not be reached after bounded retry.

    Transient: callers may retry the whole operation with backoff.
    """

    def __init__(self, school_code: str, reason: str = ""):
        self.school_code = school_code
        self.reason = reason
        message = f"School database for {school_code} is unreachable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DuplicateKey(Exception):
    """An insert collided with an existing row on a unique key."""

    def __init__(self, collection: str, lookup: dict):
        self.collection = collection
        self.lookup = lookup
        super().__init__(f"Duplicate key in {collection}: {lookup}")
