"""
IRB PORTAL - Roles & Permissions
================================
Role names, permission names and the default role/permission matrix that
seeds the roles table.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List

logger = logging.getLogger(__name__)


class RoleName(str, Enum):
    """Built-in roles."""
    ADMIN = "admin"                                  # Full system access
    PRINCIPAL_INVESTIGATOR = "principal_investigator"  # Leads studies
    RESEARCHER = "researcher"                        # Creates and runs own studies
    REVIEWER = "reviewer"                            # IRB board member
    COORDINATOR = "coordinator"                      # Day-to-day study operations


class Permission(str, Enum):
    VIEW_STUDIES = "view_studies"
    CREATE_STUDIES = "create_studies"
    EDIT_STUDIES = "edit_studies"
    DELETE_STUDIES = "delete_studies"
    REVIEW_STUDIES = "review_studies"
    APPROVE_STUDIES = "approve_studies"
    MANAGE_PARTICIPANTS = "manage_participants"
    ENROLL_PARTICIPANTS = "enroll_participants"
    VIEW_DOCUMENTS = "view_documents"
    UPLOAD_DOCUMENTS = "upload_documents"
    MANAGE_DOCUMENTS = "manage_documents"
    DELETE_DOCUMENTS = "delete_documents"
    MANAGE_USERS = "manage_users"
    MANAGE_COORDINATORS = "manage_coordinators"
    VIEW_AUDIT_LOGS = "view_audit_logs"


_ALL = list(RoleName)
_STUDY_OWNERS = [RoleName.ADMIN, RoleName.PRINCIPAL_INVESTIGATOR, RoleName.RESEARCHER]
_STUDY_STAFF = _STUDY_OWNERS + [RoleName.COORDINATOR]

# Permission definitions
PERMISSIONS: Dict[Permission, List[RoleName]] = {
    Permission.VIEW_STUDIES: _ALL,
    Permission.CREATE_STUDIES: _STUDY_OWNERS,
    Permission.EDIT_STUDIES: _STUDY_OWNERS,
    Permission.DELETE_STUDIES: [RoleName.ADMIN],
    Permission.REVIEW_STUDIES: [RoleName.ADMIN, RoleName.REVIEWER],
    Permission.APPROVE_STUDIES: [RoleName.ADMIN, RoleName.REVIEWER],
    Permission.MANAGE_PARTICIPANTS: _STUDY_STAFF,
    Permission.ENROLL_PARTICIPANTS: _STUDY_STAFF,
    Permission.VIEW_DOCUMENTS: _ALL,
    Permission.UPLOAD_DOCUMENTS: _STUDY_STAFF,
    Permission.MANAGE_DOCUMENTS: [RoleName.ADMIN, RoleName.PRINCIPAL_INVESTIGATOR],
    Permission.DELETE_DOCUMENTS: [RoleName.ADMIN],
    Permission.MANAGE_USERS: [RoleName.ADMIN],
    Permission.MANAGE_COORDINATORS: [RoleName.ADMIN],
    Permission.VIEW_AUDIT_LOGS: [RoleName.ADMIN, RoleName.REVIEWER],
}

ROLE_DESCRIPTIONS: Dict[RoleName, str] = {
    RoleName.ADMIN: "Full system access",
    RoleName.PRINCIPAL_INVESTIGATOR: "Leads studies and manages their teams",
    RoleName.RESEARCHER: "Creates and runs own studies",
    RoleName.REVIEWER: "Reviews and approves submitted studies",
    RoleName.COORDINATOR: "Enrolls participants and maintains study records",
}


def default_permissions_for(role: RoleName) -> List[str]:
    """Permission names a built-in role is seeded with."""
    return [perm.value for perm, roles in PERMISSIONS.items() if role in roles]


def has_permission(user, permission) -> bool:
    """
    Check if user has a specific permission.

    Uses the permissions stored on the user's role row, so changes made to a
    role take effect without a deploy. Admins hold every permission.
    """
    if user is None or not user.is_active or not user.is_approved:
        return False
    if user.role_name == RoleName.ADMIN.value:
        return True
    name = permission.value if isinstance(permission, Permission) else str(permission)
    return name in user.permissions


def is_locked(user, now: datetime = None) -> bool:
    if user.locked_until is None:
        return False
    return (now or datetime.utcnow()) < user.locked_until
