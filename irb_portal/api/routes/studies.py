"""
Study Routes
============
Study management, review workflow, coordinator assignments, export and the
per-study audit trail.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from irb_portal.api.dependencies import get_study_or_404, get_visible_study
from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.auth.models import Permission, RoleName
from irb_portal.core.cache import get_cache, invalidate_study_caches, study_list_key
from irb_portal.core.errors import ConflictError, NotFoundError, ValidationError
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import get_current_user, require_permission
from irb_portal.core.utils import Pagination, get_pagination
from irb_portal.database.enums import AuditAction, EntityType, StudyStatus, StudyType
from irb_portal.database.models import Document, Participant, Study, StudyCoordinator, User
from irb_portal.database.repositories import (
    AuditLogRepository, CoordinatorRepository, StudyRepository, UserRepository,
)
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    AuditLogListResponse, AuditLogResponse, CoordinatorAssignRequest, CoordinatorResponse,
    MessageResponse, ReviewHistoryResponse, ReviewRequest, ReviewResponse, StudyCreate,
    StudyDetailResponse, StudyListResponse, StudyResponse, StudyUpdate,
)
from irb_portal.services.export import csv_response, export_filename, studies_csv
from irb_portal.services.storage import get_storage
from irb_portal.services.workflow import ReviewAction, StudyWorkflow

logger = logging.getLogger(__name__)

router = APIRouter()

REVIEW_MESSAGES = {
    ReviewAction.SUBMIT: "Study submitted for review",
    ReviewAction.APPROVE: "Study approved",
    ReviewAction.REJECT: "Study rejected",
    ReviewAction.REQUEST_CHANGES: "Changes requested",
    ReviewAction.ACTIVATE: "Study activated",
    ReviewAction.CLOSE: "Study closed",
}


def _detail(db: Session, study: Study) -> StudyDetailResponse:
    repo = StudyRepository(db)
    detail = StudyDetailResponse.model_validate(study)
    detail.participant_count = repo.participant_count(study.id)
    detail.document_count = repo.document_count(study.id)
    detail.coordinators = [
        CoordinatorResponse.model_validate(c) for c in study.coordinators if c.is_active
    ]
    return detail


@router.get("", response_model=StudyListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_studies(
    request: Request,
    status: Optional[StudyStatus] = None,
    study_type: Optional[StudyType] = Query(None, alias="type"),
    pi_id: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=200),
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(require_permission(Permission.VIEW_STUDIES)),
    db: Session = Depends(get_db),
):
    """Get studies visible to the caller with optional filters."""
    cache_key = study_list_key(
        current_user.id, getattr(status, "value", None), getattr(study_type, "value", None),
        pi_id, search, pagination.page, pagination.limit,
    )

    def load() -> StudyListResponse:
        repo = StudyRepository(db)
        query = repo.search(
            get_rbac_authorizer().study_scope(current_user),
            status=status.value if status else None,
            study_type=study_type.value if study_type else None,
            pi_id=pi_id,
            search=search,
        )
        studies, total = repo.page(query, pagination.offset, pagination.limit)
        return StudyListResponse(
            studies=[StudyResponse.model_validate(s) for s in studies],
            pagination=pagination.meta(total),
        )

    return get_cache().get_or_set(cache_key, load)


@router.post("", response_model=StudyResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_study(
    request: Request,
    body: StudyCreate,
    current_user: User = Depends(require_permission(Permission.CREATE_STUDIES)),
    db: Session = Depends(get_db),
):
    """Create a draft study led by the caller."""
    repo = StudyRepository(db)
    if repo.get_by_protocol(body.protocol_number) is not None:
        raise ConflictError("A study with this protocol number already exists", code="DUPLICATE_ENTRY")

    study = repo.create(Study(
        title=body.title,
        protocol_number=body.protocol_number,
        description=body.description,
        type=body.type.value,
        risk_level=body.risk_level.value,
        status=StudyStatus.DRAFT.value,
        principal_investigator_id=current_user.id,
        target_enrollment=body.target_enrollment,
        current_enrollment=0,
        start_date=body.start_date,
        end_date=body.end_date,
    ))
    get_audit_logger().log(
        db, current_user, AuditAction.CREATE_STUDY, EntityType.STUDY, study.id,
        details={"protocol_number": study.protocol_number, "title": study.title},
        request=request,
    )
    db.commit()
    invalidate_study_caches()
    logger.info(f"Study {study.protocol_number} created by {current_user.email}")
    return StudyResponse.model_validate(study)


@router.get("/export")
@limiter.limit(READ_ONLY_LIMIT)
async def export_studies(
    request: Request,
    status: Optional[StudyStatus] = None,
    study_type: Optional[StudyType] = Query(None, alias="type"),
    search: Optional[str] = Query(None, max_length=200),
    current_user: User = Depends(require_permission(Permission.VIEW_STUDIES)),
    db: Session = Depends(get_db),
):
    """Download visible studies as CSV."""
    repo = StudyRepository(db)
    studies = repo.search(
        get_rbac_authorizer().study_scope(current_user),
        status=status.value if status else None,
        study_type=study_type.value if study_type else None,
        search=search,
    ).all()

    ids = [s.id for s in studies]
    counts = {study_id: {"participants": 0, "documents": 0} for study_id in ids}
    if ids:
        for study_id, n in db.query(Participant.study_id, func.count(Participant.id)).filter(
            Participant.study_id.in_(ids)
        ).group_by(Participant.study_id):
            counts[study_id]["participants"] = n
        for study_id, n in db.query(Document.study_id, func.count(Document.id)).filter(
            Document.study_id.in_(ids)
        ).group_by(Document.study_id):
            counts[study_id]["documents"] = n

    content = studies_csv(studies, counts)
    get_audit_logger().log(
        db, current_user, AuditAction.EXPORT_STUDIES, EntityType.STUDY,
        details={"count": len(studies)}, request=request,
    )
    db.commit()
    return csv_response(content, export_filename("studies-export"))


@router.get("/{study_id}", response_model=StudyDetailResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_study(
    request: Request,
    study_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get single study details."""
    study = get_visible_study(db, study_id, current_user)
    return _detail(db, study)


@router.put("/{study_id}", response_model=StudyResponse)
@limiter.limit(WRITE_LIMIT)
async def update_study(
    request: Request,
    study_id: str,
    body: StudyUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Partial update. Status is changed only through the review endpoint."""
    study = get_study_or_404(db, study_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_edit_study(current_user, study), "You cannot edit this study")

    data = body.model_dump(exclude_unset=True)
    repo = StudyRepository(db)
    if "protocol_number" in data and data["protocol_number"] != study.protocol_number:
        if repo.get_by_protocol(data["protocol_number"]) is not None:
            raise ConflictError("A study with this protocol number already exists", code="DUPLICATE_ENTRY")

    start = data.get("start_date", study.start_date)
    end = data.get("end_date", study.end_date)
    if start and end and end < start:
        raise ValidationError("end_date must not be before start_date")

    changes = repo.update(study, data)
    if changes:
        get_audit_logger().log(
            db, current_user, AuditAction.UPDATE_STUDY, EntityType.STUDY, study.id,
            details={"changes": changes}, request=request,
        )
        db.commit()
        invalidate_study_caches()
    return StudyResponse.model_validate(study)


@router.delete("/{study_id}", response_model=MessageResponse)
@limiter.limit(WRITE_LIMIT)
async def delete_study(
    request: Request,
    study_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete a study with its participants, documents and assignments."""
    study = get_study_or_404(db, study_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_delete_study(current_user, study), "You cannot delete this study")

    file_paths = [d.file_path for d in study.documents]
    get_audit_logger().log(
        db, current_user, AuditAction.DELETE_STUDY, EntityType.STUDY, study.id,
        details={
            "protocol_number": study.protocol_number,
            "title": study.title,
            "status": study.status,
            "participants": len(study.participants),
            "documents": len(file_paths),
        },
        request=request,
    )
    StudyRepository(db).delete(study)
    db.commit()
    invalidate_study_caches()

    storage = get_storage()
    for path in file_paths:
        storage.delete(path)
    return MessageResponse(message="Study deleted successfully")


# =============================================================================
# REVIEW WORKFLOW
# =============================================================================

@router.post("/{study_id}/review", response_model=ReviewResponse)
@limiter.limit(WRITE_LIMIT)
async def review_study(
    request: Request,
    study_id: str,
    body: ReviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Apply a workflow action (submit, approve, reject, request_changes, activate, close)."""
    study = get_visible_study(db, study_id, current_user)
    StudyWorkflow(db).apply(
        current_user, study, body.action,
        comments=body.comments, reviewer_id=body.reviewer_id, request=request,
    )
    db.commit()
    invalidate_study_caches()
    return ReviewResponse(study=StudyResponse.model_validate(study), message=REVIEW_MESSAGES[body.action])


@router.get("/{study_id}/review", response_model=ReviewHistoryResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_review_history(
    request: Request,
    study_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    workflow = StudyWorkflow(db)
    return ReviewHistoryResponse(
        study_id=study.id,
        status=study.status,
        available_actions=workflow.available_actions(current_user, study),
        history=workflow.history(study),
    )


# =============================================================================
# COORDINATORS
# =============================================================================

@router.get("/{study_id}/coordinators", response_model=List[CoordinatorResponse])
@limiter.limit(READ_ONLY_LIMIT)
async def list_coordinators(
    request: Request,
    study_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    return [CoordinatorResponse.model_validate(c) for c in CoordinatorRepository(db).active_for_study(study.id)]


@router.post("/{study_id}/coordinators", response_model=CoordinatorResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def assign_coordinator(
    request: Request,
    study_id: str,
    body: CoordinatorAssignRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Assign an active, approved coordinator to a study."""
    study = get_study_or_404(db, study_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_manage_coordinators(current_user, study), "You cannot manage coordinators for this study")

    coordinator = UserRepository(db).get_by_id(body.coordinator_id)
    if coordinator is None:
        raise NotFoundError("Coordinator")
    if coordinator.role_name != RoleName.COORDINATOR.value or not rbac.is_usable(coordinator):
        raise ValidationError("User must be an active, approved coordinator", code="INVALID_COORDINATOR")

    repo = CoordinatorRepository(db)
    assignment = repo.get_assignment(study.id, coordinator.id)
    if assignment is not None and assignment.is_active:
        raise ConflictError("Coordinator is already assigned to this study", code="DUPLICATE_ENTRY")

    if assignment is None:
        assignment = StudyCoordinator(study_id=study.id, coordinator_id=coordinator.id)
        db.add(assignment)
    assignment.is_active = True
    assignment.assigned_by_id = current_user.id
    db.flush()

    get_audit_logger().log(
        db, current_user, AuditAction.ASSIGN_COORDINATOR, EntityType.STUDY, study.id,
        details={"coordinator_id": coordinator.id, "coordinator_email": coordinator.email},
        request=request,
    )
    db.commit()
    invalidate_study_caches()
    return CoordinatorResponse.model_validate(assignment)


@router.delete("/{study_id}/coordinators/{coordinator_id}", response_model=MessageResponse)
@limiter.limit(WRITE_LIMIT)
async def remove_coordinator(
    request: Request,
    study_id: str,
    coordinator_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_study_or_404(db, study_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_manage_coordinators(current_user, study), "You cannot manage coordinators for this study")

    assignment = CoordinatorRepository(db).get_assignment(study.id, coordinator_id)
    if assignment is None or not assignment.is_active:
        raise NotFoundError("Coordinator assignment")

    assignment.is_active = False
    get_audit_logger().log(
        db, current_user, AuditAction.REMOVE_COORDINATOR, EntityType.STUDY, study.id,
        details={"coordinator_id": coordinator_id}, request=request,
    )
    db.commit()
    invalidate_study_caches()
    return MessageResponse(message="Coordinator removed")


# =============================================================================
# AUDIT TRAIL
# =============================================================================

@router.get("/{study_id}/audit-logs", response_model=AuditLogListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_study_audit_logs(
    request: Request,
    study_id: str,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Audit entries for the study and its records, comments and versions."""
    study = get_study_or_404(db, study_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_view_study_audit_logs(current_user, study), "You cannot view this study's audit trail")

    entity_ids = [study.id] + [p.id for p in study.participants] + [d.id for d in study.documents]
    entity_ids += [c.id for c in study.comments] + [v.id for v in study.versions]
    repo = AuditLogRepository(db)
    logs, total = repo.page(repo.search(entity_ids=entity_ids), pagination.offset, pagination.limit)
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(entry) for entry in logs],
        pagination=pagination.meta(total),
    )
