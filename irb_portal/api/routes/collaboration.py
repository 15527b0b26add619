"""
Collaboration Routes
====================
Section comments and protocol version history, nested under studies.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from irb_portal.api.dependencies import get_visible_study
from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.core.errors import NotFoundError
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import get_current_user
from irb_portal.core.utils import Pagination, get_pagination
from irb_portal.database.enums import AuditAction, EntityType
from irb_portal.database.models import StudyComment, StudyVersion, User
from irb_portal.database.repositories import CommentRepository, VersionRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    CommentCreate, CommentListResponse, CommentResponse, VersionComparison, VersionCreate,
    VersionListResponse, VersionResponse,
)
from irb_portal.services.collaboration import ProtocolVersioning

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_comment(db: Session, study_id: str, comment_id: str) -> StudyComment:
    comment = CommentRepository(db).get_in_study(study_id, comment_id)
    if comment is None:
        raise NotFoundError("Comment")
    return comment


def _get_version(db: Session, study_id: str, version_id: str) -> StudyVersion:
    version = VersionRepository(db).get_in_study(study_id, version_id)
    if version is None:
        raise NotFoundError("Version")
    return version


# =============================================================================
# COMMENTS
# =============================================================================

@router.get("/{study_id}/comments", response_model=CommentListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_comments(
    request: Request,
    study_id: str,
    section: Optional[str] = Query(None, max_length=100),
    include_resolved: bool = False,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open comments on a study, newest first. Resolved ones on request."""
    study = get_visible_study(db, study_id, current_user)
    repo = CommentRepository(db)
    comments, total = repo.page(
        repo.search(study.id, section=section, include_resolved=include_resolved),
        pagination.offset, pagination.limit,
    )
    return CommentListResponse(
        comments=[CommentResponse.model_validate(c) for c in comments],
        pagination=pagination.meta(total),
    )


@router.post("/{study_id}/comments", response_model=CommentResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def add_comment(
    request: Request,
    study_id: str,
    body: CommentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_comment(current_user, study), "Comments are closed for this study")

    comment = CommentRepository(db).create(StudyComment(
        study_id=study.id,
        author_id=current_user.id,
        section=body.section,
        content=body.content,
    ))
    get_audit_logger().log(
        db, current_user, AuditAction.ADD_COMMENT, EntityType.COMMENT, comment.id,
        details={"study_id": study.id, "section": comment.section},
        request=request,
    )
    db.commit()
    return CommentResponse.model_validate(comment)


@router.post("/{study_id}/comments/{comment_id}/resolve", response_model=CommentResponse)
@limiter.limit(WRITE_LIMIT)
async def resolve_comment(
    request: Request,
    study_id: str,
    comment_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark a comment resolved. Resolving twice is a no-op."""
    study = get_visible_study(db, study_id, current_user)
    comment = _get_comment(db, study.id, comment_id)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_resolve_comment(current_user, comment), "You cannot resolve this comment")

    if not comment.is_resolved:
        comment.is_resolved = True
        comment.resolved_by_id = current_user.id
        comment.resolved_at = datetime.utcnow()
        get_audit_logger().log(
            db, current_user, AuditAction.RESOLVE_COMMENT, EntityType.COMMENT, comment.id,
            details={"study_id": study.id, "section": comment.section},
            request=request,
        )
        db.commit()
    return CommentResponse.model_validate(comment)


# =============================================================================
# VERSIONS
# =============================================================================

@router.get("/{study_id}/versions", response_model=VersionListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_versions(
    request: Request,
    study_id: str,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Protocol version history, newest first."""
    study = get_visible_study(db, study_id, current_user)
    repo = VersionRepository(db)
    versions, total = repo.page(repo.history(study.id), pagination.offset, pagination.limit)
    return VersionListResponse(
        versions=[VersionResponse.model_validate(v) for v in versions],
        pagination=pagination.meta(total),
    )


@router.post("/{study_id}/versions", response_model=VersionResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_version(
    request: Request,
    study_id: str,
    body: VersionCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_record_version(current_user, study), "You cannot record versions for this study")

    version = ProtocolVersioning(db).record(
        current_user, study, body.change_type,
        [c.model_dump(mode="json") for c in body.changes],
        change_notes=body.change_notes,
        request=request,
    )
    db.commit()
    return VersionResponse.model_validate(version)


@router.get("/{study_id}/versions/compare", response_model=VersionComparison)
@limiter.limit(READ_ONLY_LIMIT)
async def compare_versions(
    request: Request,
    study_id: str,
    from_version: str = Query(...),
    to_version: str = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Field-level differences between two versions of the same study."""
    study = get_visible_study(db, study_id, current_user)
    first = _get_version(db, study.id, from_version)
    second = _get_version(db, study.id, to_version)
    return VersionComparison(
        from_version=VersionResponse.model_validate(first),
        to_version=VersionResponse.model_validate(second),
        differences=ProtocolVersioning.compare(first, second),
    )


@router.get("/{study_id}/versions/{version_id}", response_model=VersionResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_version(
    request: Request,
    study_id: str,
    version_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    study = get_visible_study(db, study_id, current_user)
    return VersionResponse.model_validate(_get_version(db, study.id, version_id))


@router.post("/{study_id}/versions/{version_id}/rollback", response_model=VersionResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def rollback_version(
    request: Request,
    study_id: str,
    version_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Record a MAJOR version that undoes the given version's changes."""
    study = get_visible_study(db, study_id, current_user)
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_record_version(current_user, study), "You cannot record versions for this study")
    target = _get_version(db, study.id, version_id)

    version = ProtocolVersioning(db).rollback(current_user, study, target, request=request)
    db.commit()
    return VersionResponse.model_validate(version)
