"""
IRB PORTAL - Study Review Workflow
==================================
Status transitions for studies, validated against an allowed-transition
table and gated by role permissions.

    DRAFT --submit--> SUBMITTED --approve--> APPROVED --activate--> ACTIVE --close--> CLOSED
                          |
                          +--reject / request_changes--> DRAFT
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.authorization import RBACAuthorizer, get_rbac_authorizer
from irb_portal.auth.models import Permission, RoleName
from irb_portal.config import settings
from irb_portal.core.errors import AuthorizationError, InvalidTransitionError, ValidationError
from irb_portal.database.enums import AuditAction, EntityType, StudyStatus
from irb_portal.database.models import Study, User

logger = logging.getLogger(__name__)


class ReviewAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    ACTIVATE = "activate"
    CLOSE = "close"


# Guard meaning "the study's PI or an admin"
OWNER = "owner"


@dataclass(frozen=True)
class Transition:
    action: ReviewAction
    from_status: StudyStatus
    to_status: StudyStatus
    guard: str
    audit_action: AuditAction


TRANSITIONS: Dict[ReviewAction, Transition] = {
    ReviewAction.SUBMIT: Transition(
        ReviewAction.SUBMIT, StudyStatus.DRAFT, StudyStatus.SUBMITTED,
        OWNER, AuditAction.SUBMIT_FOR_REVIEW,
    ),
    ReviewAction.APPROVE: Transition(
        ReviewAction.APPROVE, StudyStatus.SUBMITTED, StudyStatus.APPROVED,
        Permission.APPROVE_STUDIES.value, AuditAction.APPROVE_STUDY,
    ),
    ReviewAction.REJECT: Transition(
        ReviewAction.REJECT, StudyStatus.SUBMITTED, StudyStatus.DRAFT,
        Permission.APPROVE_STUDIES.value, AuditAction.REJECT_STUDY,
    ),
    ReviewAction.REQUEST_CHANGES: Transition(
        ReviewAction.REQUEST_CHANGES, StudyStatus.SUBMITTED, StudyStatus.DRAFT,
        Permission.REVIEW_STUDIES.value, AuditAction.REQUEST_CHANGES,
    ),
    ReviewAction.ACTIVATE: Transition(
        ReviewAction.ACTIVATE, StudyStatus.APPROVED, StudyStatus.ACTIVE,
        OWNER, AuditAction.ACTIVATE_STUDY,
    ),
    ReviewAction.CLOSE: Transition(
        ReviewAction.CLOSE, StudyStatus.ACTIVE, StudyStatus.CLOSED,
        OWNER, AuditAction.CLOSE_STUDY,
    ),
}

WORKFLOW_AUDIT_ACTIONS: List[str] = [t.audit_action.value for t in TRANSITIONS.values()]


def actions_from(status: str) -> List[str]:
    """Actions the transition table allows from a status, ignoring who asks."""
    return [t.action.value for t in TRANSITIONS.values() if t.from_status.value == status]


class StudyWorkflow:
    """Applies review actions to studies. The caller commits."""

    def __init__(self, session: Session, authorizer: Optional[RBACAuthorizer] = None):
        self.session = session
        self.rbac = authorizer or get_rbac_authorizer()
        self.audit = get_audit_logger()

    def passes_guard(self, user: User, study: Study, transition: Transition) -> bool:
        if transition.guard == OWNER:
            return self.rbac.is_admin(user) or (
                self.rbac.is_usable(user) and self.rbac.is_principal_investigator(user, study)
            )
        return self.rbac.check_permission(user, transition.guard)

    def available_actions(self, user: User, study: Study) -> List[str]:
        return [
            t.action.value for t in TRANSITIONS.values()
            if t.from_status.value == study.status and self.passes_guard(user, study, t)
        ]

    def _resolve_reviewer(self, reviewer_id: str) -> User:
        reviewer = self.session.get(User, reviewer_id)
        if (
            reviewer is None
            or reviewer.role_name != RoleName.REVIEWER.value
            or not self.rbac.is_usable(reviewer)
        ):
            raise ValidationError("reviewer_id must reference an active, approved reviewer")
        return reviewer

    def apply(self, user: User, study: Study, action: ReviewAction,
              comments: Optional[str] = None, reviewer_id: Optional[str] = None,
              request=None) -> Study:
        """
        Move a study through one review action.

        Raises:
            InvalidTransitionError: action not allowed from the current status
            AuthorizationError: caller fails the transition's guard
        """
        action = ReviewAction(action)
        transition = TRANSITIONS[action]
        from_status = study.status

        if from_status != transition.from_status.value:
            raise InvalidTransitionError(
                f"Cannot {action.value} a study with status {from_status}",
                details={
                    "current_status": from_status,
                    "required_status": transition.from_status.value,
                    "allowed_actions": actions_from(from_status),
                },
            )

        if not self.passes_guard(user, study, transition):
            logger.warning(f"{user.email} may not {action.value} study {study.protocol_number}")
            raise AuthorizationError(f"Insufficient permissions to {action.value} this study")

        now = datetime.utcnow()
        if action == ReviewAction.SUBMIT and reviewer_id:
            study.reviewer_id = self._resolve_reviewer(reviewer_id).id
        elif action == ReviewAction.APPROVE:
            study.irb_approval_date = now
            study.irb_expiration_date = now + timedelta(days=settings.IRB_APPROVAL_VALIDITY_DAYS)
            study.reviewer_id = user.id
        elif action in (ReviewAction.REJECT, ReviewAction.REQUEST_CHANGES):
            study.reviewer_id = user.id

        study.status = transition.to_status.value
        study.updated_at = now

        self.audit.log(
            self.session, user, transition.audit_action, EntityType.STUDY, study.id,
            details={"from": from_status, "to": study.status, "comments": comments},
            request=request,
        )
        self.session.flush()

        self._notify(study, transition, user)
        return study

    def history(self, study: Study) -> List[Dict]:
        """Workflow events for a study, newest first."""
        entries = self.audit.history(
            self.session, EntityType.STUDY.value, study.id, actions=WORKFLOW_AUDIT_ACTIONS
        )
        return [
            {
                "id": entry.id,
                "action": entry.action,
                "from_status": (entry.details or {}).get("from"),
                "to_status": (entry.details or {}).get("to"),
                "comments": (entry.details or {}).get("comments"),
                "user_id": entry.user_id,
                "user_email": entry.user_email,
                "timestamp": entry.timestamp,
            }
            for entry in entries
        ]

    def _notify(self, study: Study, transition: Transition, actor: User) -> None:
        # Outbound notifications are log lines until a mail channel exists
        recipient = study.principal_investigator.email if study.principal_investigator else None
        if transition.action == ReviewAction.SUBMIT:
            reviewer = self.session.get(User, study.reviewer_id) if study.reviewer_id else None
            recipient = reviewer.email if reviewer else "irb-reviewers"
        logger.info(
            f"NOTIFY {recipient}: study {study.protocol_number} "
            f"{transition.from_status.value} -> {transition.to_status.value} by {actor.email}"
        )
