"""
IRB PORTAL - RBAC Authorization
===============================
Role-based access control plus study-level ownership rules.
"""

import logging
from typing import List, Optional

from sqlalchemy import or_, select, true

from irb_portal.core.errors import AuthorizationError
from irb_portal.database.enums import StudyStatus
from irb_portal.database.models import Document, Study, StudyComment, StudyCoordinator
from .models import Permission, RoleName, has_permission

logger = logging.getLogger(__name__)


class RBACAuthorizer:
    """
    Role-Based Access Control authorizer.

    Provides:
    - Permission checking
    - Study-level access control (PI, reviewer, coordinator assignments)
    - Query scoping for list endpoints
    """

    # -------------------------------------------------------------------------
    # Basic checks
    # -------------------------------------------------------------------------

    @staticmethod
    def is_usable(user) -> bool:
        return user is not None and user.is_active and user.is_approved

    def is_admin(self, user) -> bool:
        return self.is_usable(user) and user.role_name == RoleName.ADMIN.value

    def check_permission(self, user, permission) -> bool:
        return has_permission(user, permission)

    def require_permission(self, user, permission) -> None:
        """Raise AuthorizationError unless the user holds the permission."""
        if not self.check_permission(user, permission):
            name = getattr(permission, "value", permission)
            logger.warning(f"Permission '{name}' denied for {getattr(user, 'email', None)}")
            raise AuthorizationError()

    @staticmethod
    def ensure(allowed: bool, message: str = "Insufficient permissions") -> None:
        if not allowed:
            raise AuthorizationError(message)

    # -------------------------------------------------------------------------
    # Study relationships
    # -------------------------------------------------------------------------

    @staticmethod
    def is_principal_investigator(user, study: Study) -> bool:
        return user is not None and study.principal_investigator_id == user.id

    @staticmethod
    def is_assigned_coordinator(user, study: Study) -> bool:
        return user is not None and any(
            c.coordinator_id == user.id and c.is_active for c in study.coordinators
        )

    def is_study_reviewer(self, user, study: Study) -> bool:
        if user.role_name != RoleName.REVIEWER.value:
            return False
        return study.reviewer_id == user.id or study.status == StudyStatus.SUBMITTED.value

    # -------------------------------------------------------------------------
    # Study rules
    # -------------------------------------------------------------------------

    def can_view_study(self, user, study: Study) -> bool:
        if not self.is_usable(user):
            return False
        if self.is_admin(user):
            return True
        return (
            self.is_principal_investigator(user, study)
            or self.is_study_reviewer(user, study)
            or self.is_assigned_coordinator(user, study)
        )

    def can_edit_study(self, user, study: Study) -> bool:
        if not self.is_usable(user):
            return False
        if self.is_admin(user):
            return True
        if self.is_principal_investigator(user, study):
            return (
                self.check_permission(user, Permission.EDIT_STUDIES)
                and study.status == StudyStatus.DRAFT.value
            )
        if self.is_assigned_coordinator(user, study):
            return study.status != StudyStatus.CLOSED.value
        return False

    def can_delete_study(self, user, study: Study) -> bool:
        if not self.is_usable(user):
            return False
        if self.check_permission(user, Permission.DELETE_STUDIES):
            return True
        return self.is_principal_investigator(user, study) and study.status == StudyStatus.DRAFT.value

    def can_manage_coordinators(self, user, study: Study) -> bool:
        if not self.is_usable(user):
            return False
        if self.check_permission(user, Permission.MANAGE_COORDINATORS):
            return True
        return self.is_principal_investigator(user, study)

    # -------------------------------------------------------------------------
    # Participant rules
    # -------------------------------------------------------------------------

    def can_manage_participants(self, user, study: Study) -> bool:
        return (
            self.check_permission(user, Permission.MANAGE_PARTICIPANTS)
            and self.can_view_study(user, study)
        )

    def can_enroll_participant(self, user, study: Study) -> bool:
        return (
            self.check_permission(user, Permission.ENROLL_PARTICIPANTS)
            and self.can_manage_participants(user, study)
        )

    # -------------------------------------------------------------------------
    # Document rules
    # -------------------------------------------------------------------------

    def can_view_documents(self, user, study: Study) -> bool:
        return (
            self.check_permission(user, Permission.VIEW_DOCUMENTS)
            and self.can_view_study(user, study)
        )

    def can_upload_document(self, user, study: Study) -> bool:
        return (
            self.check_permission(user, Permission.UPLOAD_DOCUMENTS)
            and self.can_view_study(user, study)
        )

    def can_manage_document(self, user, document: Document) -> bool:
        if not self.can_view_study(user, document.study):
            return False
        return (
            self.check_permission(user, Permission.MANAGE_DOCUMENTS)
            or document.uploaded_by_id == user.id
            or self.is_principal_investigator(user, document.study)
        )

    def can_delete_document(self, user, document: Document) -> bool:
        if not self.can_view_study(user, document.study):
            return False
        return (
            self.check_permission(user, Permission.DELETE_DOCUMENTS)
            or document.uploaded_by_id == user.id
            or self.is_principal_investigator(user, document.study)
        )

    # -------------------------------------------------------------------------
    # Collaboration rules
    # -------------------------------------------------------------------------

    def can_comment(self, user, study: Study) -> bool:
        return self.can_view_study(user, study) and study.status != StudyStatus.CLOSED.value

    def can_resolve_comment(self, user, comment: StudyComment) -> bool:
        study = comment.study
        if not self.can_view_study(user, study):
            return False
        return (
            self.is_admin(user)
            or comment.author_id == user.id
            or self.is_principal_investigator(user, study)
            or self.is_study_reviewer(user, study)
        )

    def can_record_version(self, user, study: Study) -> bool:
        """Study team members may record revisions until the study is closed."""
        if not self.is_usable(user) or study.status == StudyStatus.CLOSED.value:
            return False
        return (
            self.is_admin(user)
            or self.is_principal_investigator(user, study)
            or self.is_assigned_coordinator(user, study)
        )

    # -------------------------------------------------------------------------
    # Audit rules
    # -------------------------------------------------------------------------

    def can_view_all_audit_logs(self, user) -> bool:
        return self.check_permission(user, Permission.VIEW_AUDIT_LOGS)

    def can_view_study_audit_logs(self, user, study: Study) -> bool:
        return self.can_view_all_audit_logs(user) or self.can_view_study(user, study)

    # -------------------------------------------------------------------------
    # Query scoping
    # -------------------------------------------------------------------------

    def study_scope(self, user):
        """
        WHERE clause selecting the studies a user may list.

        Mirrors can_view_study so list and detail endpoints agree.
        """
        if self.is_admin(user):
            return true()

        assigned = select(StudyCoordinator.study_id).where(
            StudyCoordinator.coordinator_id == user.id,
            StudyCoordinator.is_active.is_(True),
        )
        clauses: List = [
            Study.principal_investigator_id == user.id,
            Study.id.in_(assigned),
        ]
        if user.role_name == RoleName.REVIEWER.value:
            clauses.append(Study.reviewer_id == user.id)
            clauses.append(Study.status == StudyStatus.SUBMITTED.value)
        return or_(*clauses)

    def visible_study_ids(self, user):
        """Subquery of visible study ids for joins from child tables."""
        return select(Study.id).where(self.study_scope(user))


# Singleton instance
_rbac: Optional[RBACAuthorizer] = None


def get_rbac_authorizer() -> RBACAuthorizer:
    """Get singleton RBAC authorizer."""
    global _rbac
    if _rbac is None:
        _rbac = RBACAuthorizer()
    return _rbac
