# accounts/permission_defaults.py
from types import MappingProxyType

PERMISSION_KEYS = (
    # Administration
    "manageUsers",
    "manageSchoolSettings",

    # Academics
    "viewAttendance",
    "markAttendance",
    "viewResults",
    "updateResults",
    "viewAssignments",
    "addAssignments",
    "viewAcademicDetails",
    "viewTimetable",
    "createTimetable",
    "viewLeaves",

    # Communication
    "messageStudentsParents",

    # Finance & reporting
    "viewFees",
    "viewReports",
)

ROLE_DEFAULTS = {
    "superadmin": set(PERMISSION_KEYS),
    "admin": set(PERMISSION_KEYS),
    "teacher": {
        "viewAttendance",
        "markAttendance",
        "viewResults",
        "updateResults",
        "viewAssignments",
        "addAssignments",
        "viewAcademicDetails",
        "viewTimetable",
        "createTimetable",
        "viewLeaves",

        "messageStudentsParents",
    },
    "student": {
        "viewResults",
        "viewAssignments",
        "viewTimetable",
    },
    "parent": set(),
}

# role -> {permission_key: bool}, every key present for every role
DEFAULT_PERMISSION_TABLE = MappingProxyType({
    role: MappingProxyType({key: key in granted for key in PERMISSION_KEYS})
    for role, granted in ROLE_DEFAULTS.items()
})


def default_permissions(role: str) -> dict:
    """Static defaults for a role; unknown roles get an empty mapping."""
    return dict(DEFAULT_PERMISSION_TABLE.get(role, {}))


def all_permission_codes() -> set[str]:
    return set(PERMISSION_KEYS)
