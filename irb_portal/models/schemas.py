"""
Pydantic Models/Schemas for API
===============================
Request and response models for the IRB Portal API.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from irb_portal.auth.models import RoleName
from irb_portal.core.utils import sanitize_text
from irb_portal.database.enums import (
    AutomationStatus, DocumentType, FieldChangeType, ParticipantStatus, RiskLevel, StudyStatus,
    StudyType, VersionChangeType,
)
from irb_portal.services.workflow import ReviewAction

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PROTOCOL_RE = r"^[A-Z0-9]{2,10}-[A-Z0-9]{3,10}$"
SUBJECT_RE = r"^SUBJ-\d{3,6}$"
VERSION_RE = r"^\d+\.\d+$"


def _clean(value):
    return sanitize_text(value) if isinstance(value, str) else value


def _not_null(value):
    if value is None:
        raise ValueError("may be omitted but not null")
    return value


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PaginationMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class MessageResponse(BaseModel):
    message: str


# =============================================================================
# USER / AUTH SCHEMAS
# =============================================================================

class UserSummary(ORMModel):
    id: str
    email: str
    full_name: str


class UserResponse(ORMModel):
    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: str = Field(validation_alias=AliasChoices("role_name", "role"))
    permissions: List[str] = []
    is_active: bool
    is_approved: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=8, max_length=72)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=72)


class TokenResponse(BaseModel):
    user: UserResponse
    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    csrf_token: Optional[str] = None
    message: str = "Login successful"
    password_expired: bool = False


class RegisterResponse(BaseModel):
    user: UserResponse
    message: str


class CSRFTokenResponse(BaseModel):
    csrf_token: str


class UserCreateRequest(RegisterRequest):
    role: RoleName = RoleName.RESEARCHER
    is_approved: bool = True


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    role: Optional[RoleName] = None
    is_active: Optional[bool] = None
    is_approved: Optional[bool] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)


class UserListResponse(BaseModel):
    users: List[UserResponse]
    pagination: PaginationMeta


class RoleResponse(ORMModel):
    id: str
    name: str
    description: Optional[str] = None
    permissions: List[str] = []


# =============================================================================
# STUDY SCHEMAS
# =============================================================================

class StudyCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    protocol_number: str = Field(..., pattern=PROTOCOL_RE)
    description: str = Field(..., min_length=20, max_length=2000)
    type: StudyType
    risk_level: RiskLevel = RiskLevel.MINIMAL
    target_enrollment: Optional[int] = Field(None, ge=1, le=100000)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)

    @field_validator("protocol_number", mode="before")
    @classmethod
    def upper_protocol(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class StudyUpdate(BaseModel):
    """Partial update. Status changes go through the review endpoint."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=5, max_length=200)
    protocol_number: Optional[str] = Field(None, pattern=PROTOCOL_RE)
    description: Optional[str] = Field(None, min_length=20, max_length=2000)
    type: Optional[StudyType] = None
    risk_level: Optional[RiskLevel] = None
    target_enrollment: Optional[int] = Field(None, ge=1, le=100000)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)

    @field_validator("protocol_number", mode="before")
    @classmethod
    def upper_protocol(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("title", "protocol_number", "description", "type", "risk_level")
    @classmethod
    def required_columns(cls, v):
        return _not_null(v)


class StudyResponse(ORMModel):
    id: str
    title: str
    protocol_number: str
    description: str
    type: StudyType
    status: StudyStatus
    risk_level: RiskLevel
    principal_investigator_id: str
    principal_investigator: Optional[UserSummary] = None
    reviewer_id: Optional[str] = None
    reviewer: Optional[UserSummary] = None
    target_enrollment: Optional[int] = None
    current_enrollment: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    irb_approval_date: Optional[datetime] = None
    irb_expiration_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CoordinatorResponse(ORMModel):
    id: str
    coordinator_id: str
    coordinator: UserSummary
    assigned_at: datetime
    is_active: bool


class StudyDetailResponse(StudyResponse):
    participant_count: int = 0
    document_count: int = 0
    coordinators: List[CoordinatorResponse] = []


class StudyListResponse(BaseModel):
    studies: List[StudyResponse]
    pagination: PaginationMeta


class ReviewRequest(BaseModel):
    action: ReviewAction
    comments: Optional[str] = Field(None, max_length=2000)
    reviewer_id: Optional[str] = None

    @field_validator("comments", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)


class ReviewHistoryEntry(BaseModel):
    id: int
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    comments: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    timestamp: datetime


class ReviewResponse(BaseModel):
    study: StudyResponse
    message: str


class ReviewHistoryResponse(BaseModel):
    study_id: str
    status: StudyStatus
    available_actions: List[str]
    history: List[ReviewHistoryEntry]


class CoordinatorAssignRequest(BaseModel):
    coordinator_id: str


# =============================================================================
# PARTICIPANT SCHEMAS
# =============================================================================

class ParticipantCreate(BaseModel):
    subject_id: str = Field(..., pattern=SUBJECT_RE)
    consent_date: date
    enrollment_date: date
    status: ParticipantStatus = ParticipantStatus.ENROLLED
    group_assignment: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("group_assignment", "notes", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)

    @field_validator("subject_id", mode="before")
    @classmethod
    def upper_subject(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_dates(self):
        today = date.today()
        if self.consent_date > today:
            raise ValueError("consent_date cannot be in the future")
        if self.enrollment_date > today:
            raise ValueError("enrollment_date cannot be in the future")
        if self.consent_date > self.enrollment_date:
            raise ValueError("consent_date must be on or before enrollment_date")
        return self


class ParticipantUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[ParticipantStatus] = None
    group_assignment: Optional[str] = Field(None, max_length=100)
    withdrawal_date: Optional[date] = None
    withdrawal_reason: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("group_assignment", "withdrawal_reason", "notes", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)

    @field_validator("status")
    @classmethod
    def status_not_null(cls, v):
        return _not_null(v)

    @field_validator("withdrawal_date")
    @classmethod
    def not_future(cls, v):
        if v is not None and v > date.today():
            raise ValueError("withdrawal_date cannot be in the future")
        return v


class ParticipantResponse(ORMModel):
    id: str
    study_id: str
    subject_id: str
    participant_id: str
    status: ParticipantStatus
    consent_date: date
    enrollment_date: date
    group_assignment: Optional[str] = None
    withdrawal_date: Optional[date] = None
    withdrawal_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ParticipantListResponse(BaseModel):
    participants: List[ParticipantResponse]
    pagination: PaginationMeta


# =============================================================================
# DOCUMENT SCHEMAS
# =============================================================================

class DocumentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=3, max_length=100)
    type: Optional[DocumentType] = None
    description: Optional[str] = Field(None, max_length=2000)
    version: Optional[str] = Field(None, pattern=VERSION_RE)
    is_approved: Optional[bool] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)

    @field_validator("name", "type", "version", "is_approved")
    @classmethod
    def required_columns(cls, v):
        return _not_null(v)


class DocumentResponse(ORMModel):
    id: str
    study_id: str
    name: str
    type: DocumentType
    description: Optional[str] = None
    version: str
    file_name: str
    file_size: int
    mime_type: str
    uploaded_by_id: Optional[str] = None
    is_approved: bool
    created_at: datetime
    updated_at: datetime


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]
    pagination: PaginationMeta


# =============================================================================
# COLLABORATION SCHEMAS
# =============================================================================

class CommentCreate(BaseModel):
    section: str = Field(..., min_length=1, max_length=100)
    content: str = Field(..., min_length=1, max_length=5000)

    @field_validator("section", "content", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)


class CommentResponse(ORMModel):
    id: str
    study_id: str
    author_id: str
    section: str
    content: str
    is_resolved: bool
    resolved_by_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class CommentListResponse(BaseModel):
    comments: List[CommentResponse]
    pagination: PaginationMeta


class FieldChange(BaseModel):
    field: str = Field(..., min_length=1, max_length=100)
    old_value: Any = None
    new_value: Any = None
    change_type: FieldChangeType = FieldChangeType.MODIFIED


class VersionCreate(BaseModel):
    change_type: VersionChangeType
    changes: List[FieldChange] = Field(..., min_length=1)
    change_notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("change_notes", mode="before")
    @classmethod
    def sanitize(cls, v):
        return _clean(v)

    @field_validator("changes")
    @classmethod
    def one_change_per_field(cls, v):
        fields = [c.field for c in v]
        if len(set(fields)) != len(fields):
            raise ValueError("each field may appear only once")
        return v


class VersionResponse(ORMModel):
    id: str
    study_id: str
    version_number: int
    change_type: VersionChangeType
    changes: List[FieldChange]
    change_notes: Optional[str] = None
    changed_by_id: Optional[str] = None
    previous_version_id: Optional[str] = None
    created_at: datetime


class VersionListResponse(BaseModel):
    versions: List[VersionResponse]
    pagination: PaginationMeta


class VersionComparison(BaseModel):
    from_version: VersionResponse
    to_version: VersionResponse
    differences: List[FieldChange]


# =============================================================================
# AUDIT SCHEMAS
# =============================================================================

class AuditLogResponse(ORMModel):
    id: int
    timestamp: datetime
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    action: str
    entity: str
    entity_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    pagination: PaginationMeta


class IntegrityResponse(BaseModel):
    valid: bool
    message: str
    broken_entry_id: Optional[int] = None
    checked_at: datetime


# =============================================================================
# DASHBOARD SCHEMAS
# =============================================================================

class DashboardStats(BaseModel):
    total_studies: int
    active_studies: int
    pending_reviews: int
    total_participants: int
    total_documents: int
    studies_by_status: Dict[str, int]


# =============================================================================
# AUTOMATION SCHEMAS
# =============================================================================

class AutomationRequest(BaseModel):
    document_id: str
    chain_name: Optional[str] = Field(None, max_length=100)
    chain_run_id: Optional[str] = Field(None, max_length=100)
    first_step_input: Optional[str] = Field(None, max_length=10000)


class AutomationLogResponse(ORMModel):
    id: str
    chain_name: str
    chain_run_id: str
    document_id: Optional[str] = None
    study_id: Optional[str] = None
    requested_by_id: Optional[str] = None
    request_data: Optional[Dict[str, Any]] = None
    agent_response: Optional[str] = None
    status: AutomationStatus
    error_message: Optional[str] = None
    is_completed: bool
    created_at: datetime
    completed_at: Optional[datetime] = None


class AutomationLogListResponse(BaseModel):
    logs: List[AutomationLogResponse]
    pagination: PaginationMeta


class WebhookResponse(BaseModel):
    success: bool
    chain_run_id: str
    status: AutomationStatus
