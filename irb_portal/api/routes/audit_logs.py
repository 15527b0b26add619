"""
Audit Log Routes
================
Search, integrity verification and export of the audit trail.
"""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.models import Permission
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, limiter
from irb_portal.core.security import require_permission
from irb_portal.core.utils import Pagination, get_pagination
from irb_portal.database.enums import AuditAction, EntityType
from irb_portal.database.models import User
from irb_portal.database.repositories import AuditLogRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import AuditLogListResponse, AuditLogResponse, IntegrityResponse
from irb_portal.services.export import audit_logs_csv, csv_response, export_filename

router = APIRouter()

view_audit_logs = require_permission(Permission.VIEW_AUDIT_LOGS)


class AuditFilters:
    """Query-string filters shared by the list and export endpoints."""

    def __init__(
        self,
        user_id: Optional[str] = None,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[str] = Query(None, max_length=50),
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ):
        self.user_id = user_id
        self.entity = entity
        self.entity_id = entity_id
        self.action = action
        self.start_date = start_date
        self.end_date = end_date

    def apply(self, repo: AuditLogRepository):
        return repo.search(
            user_id=self.user_id,
            entity=self.entity,
            entity_id=self.entity_id,
            action=self.action,
            start_date=self.start_date,
            end_date=self.end_date,
        )

    def as_dict(self):
        return {k: v for k, v in vars(self).items() if v is not None}


@router.get("", response_model=AuditLogListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_audit_logs(
    request: Request,
    filters: AuditFilters = Depends(),
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(view_audit_logs),
    db: Session = Depends(get_db),
):
    """Search the audit trail, newest first."""
    repo = AuditLogRepository(db)
    logs, total = repo.page(filters.apply(repo), pagination.offset, pagination.limit)
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(entry) for entry in logs],
        pagination=pagination.meta(total),
    )


@router.get("/verify", response_model=IntegrityResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def verify_audit_chain(
    request: Request,
    current_user: User = Depends(view_audit_logs),
    db: Session = Depends(get_db),
):
    """Recompute the hash chain and report the first broken entry."""
    valid, message, broken_id = get_audit_logger().verify_integrity(db)
    return IntegrityResponse(
        valid=valid, message=message, broken_entry_id=broken_id, checked_at=datetime.utcnow()
    )


@router.get("/export")
@limiter.limit(READ_ONLY_LIMIT)
async def export_audit_logs(
    request: Request,
    filters: AuditFilters = Depends(),
    current_user: User = Depends(view_audit_logs),
    db: Session = Depends(get_db),
):
    """Download matching audit entries as CSV."""
    entries = filters.apply(AuditLogRepository(db)).all()
    content = audit_logs_csv(entries)

    get_audit_logger().log(
        db, current_user, AuditAction.EXPORT_AUDIT_LOGS, EntityType.AUDIT_LOG,
        details={"count": len(entries), "filters": filters.as_dict()}, request=request,
    )
    db.commit()
    return csv_response(content, export_filename("audit-logs"))
