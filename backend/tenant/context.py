"""
School context using contextvars.

Holds the school the current request (or command) is acting for, and
the database alias its records live in.

Usage:
    # In middleware
    set_school_context("NPS", db_alias="tenant_nps", is_shared=False)

    # In application code
    alias = get_current_db_alias()

    # Explicit scoping in commands and tests
    with school_context("NPS", db_alias="default"):
        ...
"""
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Optional, NamedTuple


class SchoolContext(NamedTuple):
    """Immutable school context for a request."""

    school_code: str
    db_alias: str
    is_shared: bool


# None means no school selected (system operations)
_current_school: ContextVar[Optional[SchoolContext]] = ContextVar(
    "current_school",
    default=None,
)


def get_current_school() -> Optional[SchoolContext]:
    return _current_school.get()


def get_current_school_code() -> Optional[str]:
    ctx = _current_school.get()
    return ctx.school_code if ctx else None


def get_current_db_alias() -> str:
    """
    Get the current database alias.

    Returns 'default' if no school context is set.
    """
    ctx = _current_school.get()
    return ctx.db_alias if ctx else "default"


def is_shared_school() -> bool:
    """True when no school is selected or the school uses the shared store."""
    ctx = _current_school.get()
    return ctx.is_shared if ctx else True


def set_school_context(school_code: str, db_alias: str, is_shared: bool = True) -> None:
    """
    Set the current school context.

    Called by middleware once the school identifier has been resolved.
    """
    _current_school.set(
        SchoolContext(school_code=school_code, db_alias=db_alias, is_shared=is_shared)
    )


def clear_school_context() -> None:
    """Called by middleware in a finally block."""
    _current_school.set(None)


@contextmanager
def school_context(school_code: str, db_alias: str, is_shared: bool = True):
    """
    Context manager for setting school context.

    Restores the previous context on exit, even on exception.
    """
    token = _current_school.set(
        SchoolContext(school_code=school_code, db_alias=db_alias, is_shared=is_shared)
    )
    try:
        yield
    finally:
        _current_school.reset(token)


@contextmanager
def system_db_context():
    """
    Temporarily clear the school context so all operations go to 'default'.

    Usage:
        with system_db_context():
            school = School.objects.get(code=code)
    """
    token = _current_school.set(None)
    try:
        yield
    finally:
        _current_school.reset(token)
