"""
IRB PORTAL - Database Models
============================
SQLAlchemy ORM models for the IRB study management schema.

Models:
- Role, User (Authentication)
- Study, StudyCoordinator (Core entities)
- Participant, Document (Study records)
- StudyComment, StudyVersion (Protocol collaboration)
- AuditLog (Compliance - hash chained)
- AutomationLog (Document analysis runs)
"""

from datetime import datetime, date
from typing import List, Optional
import uuid

from sqlalchemy import (
    Integer, String, DateTime, Date, ForeignKey, Text, Boolean, JSON,
    Index, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .enums import (
    StudyStatus, RiskLevel, ParticipantStatus, AutomationStatus,
)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# AUTHENTICATION
# =============================================================================

class Role(Base):
    """User roles for RBAC."""
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    permissions: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    users: Mapped[List["User"]] = relationship(back_populates="role")

    def __repr__(self):
        return f"<Role {self.name}>"


class User(Base):
    """User accounts."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)

    # Credentials
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Profile
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    role_id: Mapped[str] = mapped_column(ForeignKey("roles.id"), nullable=False)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)

    # Security
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Dates
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    role: Mapped[Role] = relationship(back_populates="users", lazy="joined")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def role_name(self) -> str:
        return self.role.name if self.role else ""

    @property
    def permissions(self) -> List[str]:
        return list(self.role.permissions or []) if self.role else []

    def __repr__(self):
        return f"<User {self.email}>"


# =============================================================================
# STUDIES
# =============================================================================

class Study(Base):
    """IRB study protocol."""
    __tablename__ = "studies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    protocol_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=StudyStatus.DRAFT.value, index=True)
    risk_level: Mapped[str] = mapped_column(String(20), default=RiskLevel.MINIMAL.value)

    # Ownership
    principal_investigator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    reviewer_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    # Enrollment
    target_enrollment: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_enrollment: Mapped[int] = mapped_column(Integer, default=0)

    # Dates
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    irb_approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    irb_expiration_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    principal_investigator: Mapped[User] = relationship(foreign_keys=[principal_investigator_id])
    reviewer: Mapped[Optional[User]] = relationship(foreign_keys=[reviewer_id])
    participants: Mapped[List["Participant"]] = relationship(
        back_populates="study", cascade="all, delete-orphan"
    )
    documents: Mapped[List["Document"]] = relationship(
        back_populates="study", cascade="all, delete-orphan"
    )
    coordinators: Mapped[List["StudyCoordinator"]] = relationship(
        back_populates="study", cascade="all, delete-orphan"
    )
    comments: Mapped[List["StudyComment"]] = relationship(
        back_populates="study", cascade="all, delete-orphan"
    )
    versions: Mapped[List["StudyVersion"]] = relationship(
        back_populates="study", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Study {self.protocol_number} [{self.status}]>"


class StudyCoordinator(Base):
    """Coordinator assignment to a study."""
    __tablename__ = "study_coordinators"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    study_id: Mapped[str] = mapped_column(ForeignKey("studies.id", ondelete="CASCADE"), nullable=False)
    coordinator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    assigned_by_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    study: Mapped[Study] = relationship(back_populates="coordinators")
    coordinator: Mapped[User] = relationship(foreign_keys=[coordinator_id])

    __table_args__ = (
        UniqueConstraint("study_id", "coordinator_id", name="uq_study_coordinator"),
    )


# =============================================================================
# STUDY RECORDS
# =============================================================================

class Participant(Base):
    """Enrolled study subject."""
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    study_id: Mapped[str] = mapped_column(ForeignKey("studies.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(20), nullable=False)
    participant_id: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ParticipantStatus.ENROLLED.value, index=True)

    consent_date: Mapped[date] = mapped_column(Date, nullable=False)
    enrollment_date: Mapped[date] = mapped_column(Date, nullable=False)
    group_assignment: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    withdrawal_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    withdrawal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    study: Mapped[Study] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("study_id", "subject_id", name="uq_participant_study_subject"),
    )


class Document(Base):
    """Study document stored on disk."""
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    study_id: Mapped[str] = mapped_column(ForeignKey("studies.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(20), default="1.0")

    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)

    uploaded_by_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    study: Mapped[Study] = relationship(back_populates="documents")
    uploaded_by: Mapped[Optional[User]] = relationship(foreign_keys=[uploaded_by_id])


# =============================================================================
# COLLABORATION
# =============================================================================

class StudyComment(Base):
    """Comment on one section of a study protocol."""
    __tablename__ = "study_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    study_id: Mapped[str] = mapped_column(ForeignKey("studies.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    section: Mapped[str] = mapped_column(String(100), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_by_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    study: Mapped[Study] = relationship(back_populates="comments")
    author: Mapped[User] = relationship(foreign_keys=[author_id])

    __table_args__ = (
        Index("idx_comment_study_section", "study_id", "section"),
    )


class StudyVersion(Base):
    """Numbered protocol revision holding its field-level change set."""
    __tablename__ = "study_versions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    study_id: Mapped[str] = mapped_column(ForeignKey("studies.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String(10), nullable=False)
    changes: Mapped[list] = mapped_column(JSON, default=list)
    change_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    changed_by_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)
    previous_version_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("study_versions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    study: Mapped[Study] = relationship(back_populates="versions")

    __table_args__ = (
        UniqueConstraint("study_id", "version_number", name="uq_study_version_number"),
    )


# =============================================================================
# COMPLIANCE
# =============================================================================

class AuditLog(Base):
    """Append-only audit trail. Rows are chained by checksum in id order."""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    # Actor
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Action
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Request info
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Integrity chain
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_audit_user_time", "user_id", "timestamp"),
        Index("idx_audit_entity", "entity", "entity_id"),
    )


# =============================================================================
# AUTOMATION
# =============================================================================

class AutomationLog(Base):
    """External document analysis run, completed by webhook callback."""
    __tablename__ = "automation_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    chain_name: Mapped[str] = mapped_column(String(100), nullable=False)
    chain_run_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    document_id: Mapped[Optional[str]] = mapped_column(ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    study_id: Mapped[Optional[str]] = mapped_column(ForeignKey("studies.id", ondelete="SET NULL"), nullable=True, index=True)
    requested_by_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True)

    request_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    webhook_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    agent_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=AutomationStatus.PROCESSING.value, index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
