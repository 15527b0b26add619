"""
Participant Routes
==================
Enrollment and participant records, nested under studies, plus a
cross-study listing.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from irb_portal.api.dependencies import get_visible_study, scoped_study_ids
from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.core.cache import invalidate_study_caches
from irb_portal.core.errors import ConflictError, NotFoundError, ValidationError
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import get_current_user
from irb_portal.core.utils import Pagination, get_pagination
from irb_portal.database.enums import AuditAction, EntityType, ParticipantStatus, StudyStatus
from irb_portal.database.models import Participant, User
from irb_portal.database.repositories import ParticipantRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    MessageResponse, ParticipantCreate, ParticipantListResponse, ParticipantResponse,
    ParticipantUpdate,
)
from irb_portal.services.export import csv_response, export_filename, participants_csv

logger = logging.getLogger(__name__)

router = APIRouter()
global_router = APIRouter()


def _get_participant(db: Session, study_id: str, participant_id: str) -> Participant:
    participant = ParticipantRepository(db).get_in_study(study_id, participant_id)
    if participant is None:
        raise NotFoundError("Participant")
    return participant


@router.get("/{study_id}/participants", response_model=ParticipantListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_participants(
    request: Request,
    study_id: str,
    status: Optional[ParticipantStatus] = None,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get participants enrolled in a study."""
    study = get_visible_study(db, study_id, current_user)
    repo = ParticipantRepository(db)
    participants, total = repo.page(
        repo.search(study_id=study.id, status=status.value if status else None),
        pagination.offset, pagination.limit,
    )
    return ParticipantListResponse(
        participants=[ParticipantResponse.model_validate(p) for p in participants],
        pagination=pagination.meta(total),
    )


@router.post("/{study_id}/participants", response_model=ParticipantResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def enroll_participant(
    request: Request,
    study_id: str,
    body: ParticipantCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Enroll a subject in an active study."""
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_enroll_participant(current_user, study), "You cannot enroll participants in this study")

    if study.status != StudyStatus.ACTIVE.value:
        raise ValidationError(
            "Participants can only be enrolled in active studies",
            code="STUDY_NOT_ACTIVE",
            details={"current_status": study.status, "required_status": StudyStatus.ACTIVE.value},
        )

    repo = ParticipantRepository(db)
    if repo.get_by_subject(study.id, body.subject_id) is not None:
        raise ConflictError(
            f"Subject {body.subject_id} is already enrolled in this study", code="DUPLICATE_ENTRY"
        )

    participant = repo.create(Participant(
        study_id=study.id,
        subject_id=body.subject_id,
        participant_id=f"{study.id}-{body.subject_id}",
        status=body.status.value,
        consent_date=body.consent_date,
        enrollment_date=body.enrollment_date,
        group_assignment=body.group_assignment,
        notes=body.notes,
    ))
    study.current_enrollment = (study.current_enrollment or 0) + 1

    get_audit_logger().log(
        db, current_user, AuditAction.ENROLL_PARTICIPANT, EntityType.PARTICIPANT, participant.id,
        details={"study_id": study.id, "subject_id": participant.subject_id, "status": participant.status},
        request=request,
    )
    db.commit()
    invalidate_study_caches()
    logger.info(f"Enrolled {participant.subject_id} in {study.protocol_number}")
    return ParticipantResponse.model_validate(participant)


@router.get("/{study_id}/participants/export")
@limiter.limit(READ_ONLY_LIMIT)
async def export_participants(
    request: Request,
    study_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Download a study's participants as CSV."""
    study = get_visible_study(db, study_id, current_user)
    participants = ParticipantRepository(db).search(study_id=study.id).all()

    content = participants_csv(participants)
    get_audit_logger().log(
        db, current_user, AuditAction.EXPORT_PARTICIPANTS, EntityType.STUDY, study.id,
        details={"count": len(participants)}, request=request,
    )
    db.commit()
    return csv_response(content, export_filename(f"participants-{study.protocol_number}"))


@router.get("/{study_id}/participants/{participant_id}", response_model=ParticipantResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_participant(
    request: Request,
    study_id: str,
    participant_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    return ParticipantResponse.model_validate(_get_participant(db, study.id, participant_id))


@router.put("/{study_id}/participants/{participant_id}", response_model=ParticipantResponse)
@limiter.limit(WRITE_LIMIT)
async def update_participant(
    request: Request,
    study_id: str,
    participant_id: str,
    body: ParticipantUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update status, group, withdrawal details or notes."""
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_manage_participants(current_user, study), "You cannot manage participants in this study")
    participant = _get_participant(db, study.id, participant_id)

    data = body.model_dump(exclude_unset=True)
    if data.get("status") == ParticipantStatus.WITHDRAWN and not data.get("withdrawal_date"):
        data["withdrawal_date"] = participant.withdrawal_date or date.today()

    withdrawal_date = data.get("withdrawal_date", participant.withdrawal_date)
    if withdrawal_date and withdrawal_date < participant.enrollment_date:
        raise ValidationError("withdrawal_date cannot be before enrollment_date")

    changes = {}
    for key, value in data.items():
        value = getattr(value, "value", value)
        old = getattr(participant, key)
        if old != value:
            changes[key] = {"old": old, "new": value}
            setattr(participant, key, value)

    if changes:
        get_audit_logger().log(
            db, current_user, AuditAction.UPDATE_PARTICIPANT, EntityType.PARTICIPANT, participant.id,
            details={"study_id": study.id, "subject_id": participant.subject_id, "changes": changes},
            request=request,
        )
        db.commit()
        invalidate_study_caches()
    return ParticipantResponse.model_validate(participant)


@router.delete("/{study_id}/participants/{participant_id}", response_model=MessageResponse)
@limiter.limit(WRITE_LIMIT)
async def delete_participant(
    request: Request,
    study_id: str,
    participant_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_manage_participants(current_user, study), "You cannot manage participants in this study")
    participant = _get_participant(db, study.id, participant_id)

    get_audit_logger().log(
        db, current_user, AuditAction.DELETE_PARTICIPANT, EntityType.PARTICIPANT, participant.id,
        details={"study_id": study.id, "subject_id": participant.subject_id},
        request=request,
    )
    db.delete(participant)
    study.current_enrollment = max(0, (study.current_enrollment or 0) - 1)
    db.commit()
    invalidate_study_caches()
    return MessageResponse(message="Participant deleted successfully")


@global_router.get("", response_model=ParticipantListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_all_participants(
    request: Request,
    study_id: Optional[str] = None,
    status: Optional[ParticipantStatus] = None,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Participants across every study the caller can view."""
    repo = ParticipantRepository(db)
    participants, total = repo.page(
        repo.search(
            study_ids=scoped_study_ids(current_user),
            study_id=study_id,
            status=status.value if status else None,
        ),
        pagination.offset, pagination.limit,
    )
    return ParticipantListResponse(
        participants=[ParticipantResponse.model_validate(p) for p in participants],
        pagination=pagination.meta(total),
    )
