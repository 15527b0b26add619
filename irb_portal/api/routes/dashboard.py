"""
Dashboard Routes
================
Summary counts for the caller's visible studies.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from irb_portal.api.dependencies import scoped_study_ids
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.auth.models import Permission
from irb_portal.core.cache import DASHBOARD_PREFIX, get_cache
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, limiter
from irb_portal.core.security import require_permission
from irb_portal.database.enums import StudyStatus
from irb_portal.database.models import User
from irb_portal.database.repositories import DocumentRepository, ParticipantRepository, StudyRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import DashboardStats

router = APIRouter()


@router.get("/stats", response_model=DashboardStats)
@limiter.limit(READ_ONLY_LIMIT)
async def get_dashboard_stats(
    request: Request,
    current_user: User = Depends(require_permission(Permission.VIEW_STUDIES)),
    db: Session = Depends(get_db),
):
    """Study, participant and document counts, cached per user."""

    def load() -> DashboardStats:
        by_status = StudyRepository(db).count_by_status(get_rbac_authorizer().study_scope(current_user))
        study_ids = scoped_study_ids(current_user)
        return DashboardStats(
            total_studies=sum(by_status.values()),
            active_studies=by_status.get(StudyStatus.ACTIVE.value, 0),
            pending_reviews=by_status.get(StudyStatus.SUBMITTED.value, 0),
            total_participants=ParticipantRepository(db).count(study_ids),
            total_documents=DocumentRepository(db).count(study_ids),
            studies_by_status={s.value: by_status.get(s.value, 0) for s in StudyStatus},
        )

    return get_cache().get_or_set(f"{DASHBOARD_PREFIX}{current_user.id}", load)
