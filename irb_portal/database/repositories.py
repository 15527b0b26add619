"""
IRB PORTAL - Data Repositories
==============================
Data access layer with query helpers for all entities.
"""

import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from .models import (
    AuditLog, AutomationLog, Document, Participant, Role, Study, StudyComment, StudyCoordinator,
    StudyVersion, User,
)

logger = logging.getLogger(__name__)


def _like(term: str) -> str:
    return f"%{term.strip()}%"


class BaseRepository:
    """Base repository bound to a request session."""

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def page(query: Query, offset: int, limit: int) -> Tuple[List[Any], int]:
        """Run a query for one page. Returns (items, total)."""
        total = query.order_by(None).count()
        return query.offset(offset).limit(limit).all(), total


class StudyRepository(BaseRepository):
    """Repository for Study operations."""

    def get_by_id(self, study_id: str) -> Optional[Study]:
        return self.session.get(Study, study_id)

    def get_by_protocol(self, protocol_number: str) -> Optional[Study]:
        return self.session.query(Study).filter(Study.protocol_number == protocol_number).first()

    def search(self, scope, status: Optional[str] = None, study_type: Optional[str] = None,
               pi_id: Optional[str] = None, search: Optional[str] = None) -> Query:
        """Studies visible under scope, filtered and newest first."""
        query = self.session.query(Study).filter(scope)
        if status:
            query = query.filter(Study.status == status)
        if study_type:
            query = query.filter(Study.type == study_type)
        if pi_id:
            query = query.filter(Study.principal_investigator_id == pi_id)
        if search:
            pattern = _like(search)
            query = query.filter(or_(
                Study.title.ilike(pattern),
                Study.protocol_number.ilike(pattern),
                Study.description.ilike(pattern),
            ))
        return query.order_by(Study.created_at.desc())

    def count_by_status(self, scope) -> Dict[str, int]:
        """Get study counts by status."""
        results = self.session.query(Study.status, func.count(Study.id)).filter(scope).group_by(Study.status).all()
        return {status: count for status, count in results}

    def participant_count(self, study_id: str) -> int:
        return self.session.query(func.count(Participant.id)).filter(Participant.study_id == study_id).scalar() or 0

    def document_count(self, study_id: str) -> int:
        return self.session.query(func.count(Document.id)).filter(Document.study_id == study_id).scalar() or 0

    def create(self, study: Study) -> Study:
        self.session.add(study)
        self.session.flush()
        return study

    def update(self, study: Study, data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Apply changed fields. Returns {field: {"old", "new"}} for the audit trail."""
        changes: Dict[str, Dict[str, Any]] = {}
        for key, value in data.items():
            value = getattr(value, "value", value)
            old = getattr(study, key)
            if old != value:
                changes[key] = {"old": old, "new": value}
                setattr(study, key, value)
        if changes:
            study.updated_at = datetime.utcnow()
            self.session.flush()
        return changes

    def delete(self, study: Study) -> None:
        self.session.delete(study)
        self.session.flush()


class CoordinatorRepository(BaseRepository):
    """Repository for coordinator assignments."""

    def get_assignment(self, study_id: str, coordinator_id: str) -> Optional[StudyCoordinator]:
        return self.session.query(StudyCoordinator).filter(
            StudyCoordinator.study_id == study_id,
            StudyCoordinator.coordinator_id == coordinator_id,
        ).first()

    def active_for_study(self, study_id: str) -> List[StudyCoordinator]:
        return self.session.query(StudyCoordinator).filter(
            StudyCoordinator.study_id == study_id,
            StudyCoordinator.is_active.is_(True),
        ).order_by(StudyCoordinator.assigned_at).all()


class ParticipantRepository(BaseRepository):
    """Repository for Participant operations."""

    def get_by_id(self, participant_id: str) -> Optional[Participant]:
        return self.session.get(Participant, participant_id)

    def get_in_study(self, study_id: str, participant_id: str) -> Optional[Participant]:
        return self.session.query(Participant).filter(
            Participant.study_id == study_id, Participant.id == participant_id
        ).first()

    def get_by_subject(self, study_id: str, subject_id: str) -> Optional[Participant]:
        return self.session.query(Participant).filter(
            Participant.study_id == study_id, Participant.subject_id == subject_id
        ).first()

    def search(self, study_ids=None, study_id: Optional[str] = None,
               status: Optional[str] = None) -> Query:
        query = self.session.query(Participant)
        if study_ids is not None:
            query = query.filter(Participant.study_id.in_(study_ids))
        if study_id:
            query = query.filter(Participant.study_id == study_id)
        if status:
            query = query.filter(Participant.status == status)
        return query.order_by(Participant.enrollment_date.desc(), Participant.subject_id)

    def count(self, study_ids=None) -> int:
        query = self.session.query(func.count(Participant.id))
        if study_ids is not None:
            query = query.filter(Participant.study_id.in_(study_ids))
        return query.scalar() or 0

    def create(self, participant: Participant) -> Participant:
        self.session.add(participant)
        self.session.flush()
        return participant


class DocumentRepository(BaseRepository):
    """Repository for Document operations."""

    def get_by_id(self, document_id: str) -> Optional[Document]:
        return self.session.get(Document, document_id)

    def get_in_study(self, study_id: str, document_id: str) -> Optional[Document]:
        return self.session.query(Document).filter(
            Document.study_id == study_id, Document.id == document_id
        ).first()

    def search(self, study_ids=None, study_id: Optional[str] = None,
               doc_type: Optional[str] = None) -> Query:
        query = self.session.query(Document)
        if study_ids is not None:
            query = query.filter(Document.study_id.in_(study_ids))
        if study_id:
            query = query.filter(Document.study_id == study_id)
        if doc_type:
            query = query.filter(Document.type == doc_type)
        return query.order_by(Document.created_at.desc())

    def count(self, study_ids=None) -> int:
        query = self.session.query(func.count(Document.id))
        if study_ids is not None:
            query = query.filter(Document.study_id.in_(study_ids))
        return query.scalar() or 0


class CommentRepository(BaseRepository):
    """Repository for protocol comments."""

    def get_in_study(self, study_id: str, comment_id: str) -> Optional[StudyComment]:
        return self.session.query(StudyComment).filter(
            StudyComment.study_id == study_id, StudyComment.id == comment_id
        ).first()

    def search(self, study_id: str, section: Optional[str] = None,
               include_resolved: bool = False) -> Query:
        query = self.session.query(StudyComment).filter(StudyComment.study_id == study_id)
        if section:
            query = query.filter(StudyComment.section == section)
        if not include_resolved:
            query = query.filter(StudyComment.is_resolved.is_(False))
        return query.order_by(StudyComment.created_at.desc())

    def create(self, comment: StudyComment) -> StudyComment:
        self.session.add(comment)
        self.session.flush()
        return comment


class VersionRepository(BaseRepository):
    """Repository for protocol versions."""

    def get_in_study(self, study_id: str, version_id: str) -> Optional[StudyVersion]:
        return self.session.query(StudyVersion).filter(
            StudyVersion.study_id == study_id, StudyVersion.id == version_id
        ).first()

    def latest(self, study_id: str) -> Optional[StudyVersion]:
        return self.session.query(StudyVersion).filter(
            StudyVersion.study_id == study_id
        ).order_by(StudyVersion.version_number.desc()).first()

    def history(self, study_id: str) -> Query:
        """Versions newest first."""
        return self.session.query(StudyVersion).filter(
            StudyVersion.study_id == study_id
        ).order_by(StudyVersion.version_number.desc())

    def create(self, version: StudyVersion) -> StudyVersion:
        self.session.add(version)
        self.session.flush()
        return version


class UserRepository(BaseRepository):
    """Repository for User operations."""

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    def search(self, role: Optional[str] = None, is_approved: Optional[bool] = None,
               is_active: Optional[bool] = None, search: Optional[str] = None) -> Query:
        query = self.session.query(User).join(User.role)
        if role:
            query = query.filter(Role.name == role)
        if is_approved is not None:
            query = query.filter(User.is_approved.is_(is_approved))
        if is_active is not None:
            query = query.filter(User.is_active.is_(is_active))
        if search:
            pattern = _like(search)
            query = query.filter(or_(
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            ))
        return query.order_by(User.created_at.desc())

    def with_role(self, role: str) -> List[User]:
        """Active, approved users holding a role, by name."""
        return self.search(role=role, is_approved=True, is_active=True).order_by(None).order_by(
            User.last_name, User.first_name
        ).all()

    def roles(self) -> List[Role]:
        return self.session.query(Role).order_by(Role.name).all()

    def get_role(self, name: str) -> Optional[Role]:
        return self.session.query(Role).filter(Role.name == name).first()


class AuditLogRepository(BaseRepository):
    """Read access to the audit trail. Writes go through AuditLogger."""

    def search(self, user_id: Optional[str] = None, entity: Optional[str] = None,
               entity_id: Optional[str] = None, action: Optional[str] = None,
               start_date: Optional[date] = None, end_date: Optional[date] = None,
               entity_ids=None) -> Query:
        query = self.session.query(AuditLog)
        if entity_ids is not None:
            query = query.filter(AuditLog.entity_id.in_(entity_ids))
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        if entity:
            query = query.filter(AuditLog.entity == entity)
        if entity_id:
            query = query.filter(AuditLog.entity_id == entity_id)
        if action:
            query = query.filter(AuditLog.action.ilike(_like(action)))
        if start_date:
            query = query.filter(AuditLog.timestamp >= datetime.combine(start_date, time.min))
        if end_date:
            # end_date is inclusive of the whole day
            query = query.filter(AuditLog.timestamp <= datetime.combine(end_date, time.max))
        return query.order_by(AuditLog.id.desc())


class AutomationLogRepository(BaseRepository):
    """Repository for AutomationLog operations."""

    def get_by_id(self, log_id: str) -> Optional[AutomationLog]:
        return self.session.get(AutomationLog, log_id)

    def get_by_chain_run_id(self, chain_run_id: str) -> Optional[AutomationLog]:
        return self.session.query(AutomationLog).filter(AutomationLog.chain_run_id == chain_run_id).first()

    def search(self, study_ids=None, study_id: Optional[str] = None,
               document_id: Optional[str] = None, status: Optional[str] = None) -> Query:
        query = self.session.query(AutomationLog)
        if study_ids is not None:
            query = query.filter(AutomationLog.study_id.in_(study_ids))
        if study_id:
            query = query.filter(AutomationLog.study_id == study_id)
        if document_id:
            query = query.filter(AutomationLog.document_id == document_id)
        if status:
            query = query.filter(AutomationLog.status == status)
        return query.order_by(AutomationLog.created_at.desc())
