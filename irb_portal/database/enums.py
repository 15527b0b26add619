"""
IRB PORTAL - Database Enums
===========================
Enum values stored in string columns.
"""

from enum import Enum


# =============================================================================
# STUDY ENUMS
# =============================================================================

class StudyStatus(str, Enum):
    """Study lifecycle status. APPROVED is the reviewed state."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class StudyType(str, Enum):
    INTERVENTIONAL = "INTERVENTIONAL"
    OBSERVATIONAL = "OBSERVATIONAL"
    REGISTRY = "REGISTRY"
    SURVEY = "SURVEY"
    OTHER = "OTHER"


class RiskLevel(str, Enum):
    MINIMAL = "MINIMAL"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


# =============================================================================
# PARTICIPANT ENUMS
# =============================================================================

class ParticipantStatus(str, Enum):
    """Participant lifecycle status."""
    SCREENING = "SCREENING"
    ENROLLED = "ENROLLED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    WITHDRAWN = "WITHDRAWN"
    SCREEN_FAILED = "SCREEN_FAILED"


# =============================================================================
# DOCUMENT ENUMS
# =============================================================================

class DocumentType(str, Enum):
    PROTOCOL = "PROTOCOL"
    CONSENT_FORM = "CONSENT_FORM"
    IRB_APPROVAL = "IRB_APPROVAL"
    AMENDMENT = "AMENDMENT"
    SAE_REPORT = "SAE_REPORT"
    PROGRESS_REPORT = "PROGRESS_REPORT"
    OTHER = "OTHER"


# =============================================================================
# COLLABORATION ENUMS
# =============================================================================

class VersionChangeType(str, Enum):
    """Size of a protocol revision."""
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    PATCH = "PATCH"


class FieldChangeType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    REMOVED = "REMOVED"


# =============================================================================
# AUTOMATION ENUMS
# =============================================================================

class AutomationStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# AUDIT ENUMS
# =============================================================================

class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    CHANGE_PASSWORD = "CHANGE_PASSWORD"

    CREATE_STUDY = "CREATE_STUDY"
    UPDATE_STUDY = "UPDATE_STUDY"
    DELETE_STUDY = "DELETE_STUDY"
    SUBMIT_FOR_REVIEW = "SUBMIT_FOR_REVIEW"
    APPROVE_STUDY = "APPROVE_STUDY"
    REJECT_STUDY = "REJECT_STUDY"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    ACTIVATE_STUDY = "ACTIVATE_STUDY"
    CLOSE_STUDY = "CLOSE_STUDY"
    ASSIGN_COORDINATOR = "ASSIGN_COORDINATOR"
    REMOVE_COORDINATOR = "REMOVE_COORDINATOR"

    ENROLL_PARTICIPANT = "ENROLL_PARTICIPANT"
    UPDATE_PARTICIPANT = "UPDATE_PARTICIPANT"
    DELETE_PARTICIPANT = "DELETE_PARTICIPANT"

    UPLOAD_DOCUMENT = "UPLOAD_DOCUMENT"
    UPDATE_DOCUMENT = "UPDATE_DOCUMENT"
    DELETE_DOCUMENT = "DELETE_DOCUMENT"
    DOWNLOAD_DOCUMENT = "DOWNLOAD_DOCUMENT"

    ADD_COMMENT = "ADD_COMMENT"
    RESOLVE_COMMENT = "RESOLVE_COMMENT"
    CREATE_VERSION = "CREATE_VERSION"
    ROLLBACK_VERSION = "ROLLBACK_VERSION"

    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DEACTIVATE_USER = "DEACTIVATE_USER"
    APPROVE_USER = "APPROVE_USER"

    EXPORT_STUDIES = "EXPORT_STUDIES"
    EXPORT_PARTICIPANTS = "EXPORT_PARTICIPANTS"
    EXPORT_AUDIT_LOGS = "EXPORT_AUDIT_LOGS"

    REQUEST_AUTOMATION = "REQUEST_AUTOMATION"
    AUTOMATION_CALLBACK = "AUTOMATION_CALLBACK"


class EntityType(str, Enum):
    STUDY = "Study"
    PARTICIPANT = "Participant"
    DOCUMENT = "Document"
    COMMENT = "StudyComment"
    VERSION = "StudyVersion"
    USER = "User"
    AUTOMATION = "AutomationLog"
    AUDIT_LOG = "AuditLog"
