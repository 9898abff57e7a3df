"""
Role-based permission matrix for the tracer station.
Admins monitor and manage the queue; petugas scan and move files.
"""
from ..models.reference import UserRole

# Permission constants
PERM_SCAN_FILES = "scan_files"
PERM_UPDATE_LOCATION = "update_location"
PERM_VIEW_SYNC_QUEUE = "view_sync_queue"
PERM_RUN_SYNC = "run_sync"
PERM_MANAGE_DEAD_LETTERS = "manage_dead_letters"
PERM_REFRESH_REFERENCE_DATA = "refresh_reference_data"

# Role permission matrix
ROLE_PERMISSIONS: dict = {
    UserRole.PETUGAS: {
        PERM_SCAN_FILES,
        PERM_UPDATE_LOCATION,
        PERM_VIEW_SYNC_QUEUE,
        PERM_RUN_SYNC,
        PERM_REFRESH_REFERENCE_DATA,
    },
    UserRole.ADMIN: {
        PERM_SCAN_FILES,
        PERM_UPDATE_LOCATION,
        PERM_VIEW_SYNC_QUEUE,
        PERM_RUN_SYNC,
        PERM_MANAGE_DEAD_LETTERS,
        PERM_REFRESH_REFERENCE_DATA,
    },
}

# Landing route per role; petugas pages are also open to admins
HOME_PATHS: dict = {
    UserRole.ADMIN: "/admin",
    UserRole.PETUGAS: "/petugas",
}


def has_permission(role: str, permission: str) -> bool:
    """Check if a role has a specific permission."""
    return permission in ROLE_PERMISSIONS.get(role, set())


def home_path_for(role: str) -> str:
    """Where a signed-in user lands; unknown roles go to the petugas area."""
    return HOME_PATHS.get(role, HOME_PATHS[UserRole.PETUGAS])
