"""
Automation Routes
=================
Document-analysis run records and the inbound completion webhook.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Request
from sqlalchemy.orm import Session

from irb_portal.api.dependencies import scoped_study_ids
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.core.errors import NotFoundError
from irb_portal.core.rate_limit import API_LIMIT, READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import get_current_user
from irb_portal.core.utils import Pagination, get_pagination
from irb_portal.database.enums import AutomationStatus
from irb_portal.database.models import Study, User
from irb_portal.database.repositories import AutomationLogRepository, DocumentRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    AutomationLogListResponse, AutomationLogResponse, AutomationRequest, WebhookResponse,
)
from irb_portal.services.automation import AutomationService, verify_webhook_secret

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


@router.post("", response_model=AutomationLogResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def request_automation(
    request: Request,
    body: AutomationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Record a requested analysis run for a document."""
    document = DocumentRepository(db).get_by_id(body.document_id)
    if document is None:
        raise NotFoundError("Document")
    rbac = get_rbac_authorizer()
    rbac.ensure(rbac.can_view_documents(current_user, document.study), "You cannot analyze this document")

    log = AutomationService(db).request_run(
        document, current_user,
        chain_name=body.chain_name,
        chain_run_id=body.chain_run_id,
        first_step_input=body.first_step_input,
        request=request,
    )
    db.commit()
    return AutomationLogResponse.model_validate(log)


@router.get("", response_model=AutomationLogListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_automation_logs(
    request: Request,
    study_id: Optional[str] = None,
    document_id: Optional[str] = None,
    status: Optional[AutomationStatus] = None,
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    repo = AutomationLogRepository(db)
    logs, total = repo.page(
        repo.search(
            study_ids=scoped_study_ids(current_user),
            study_id=study_id,
            document_id=document_id,
            status=status.value if status else None,
        ),
        pagination.offset, pagination.limit,
    )
    return AutomationLogListResponse(
        logs=[AutomationLogResponse.model_validate(log) for log in logs],
        pagination=pagination.meta(total),
    )


@router.get("/{log_id}", response_model=AutomationLogResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_automation_log(
    request: Request,
    log_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    log = AutomationLogRepository(db).get_by_id(log_id)
    if log is None:
        raise NotFoundError("Automation log")

    rbac = get_rbac_authorizer()
    study = db.get(Study, log.study_id) if log.study_id else None
    allowed = (
        rbac.is_admin(current_user)
        or log.requested_by_id == current_user.id
        or (study is not None and rbac.can_view_study(current_user, study))
    )
    rbac.ensure(allowed, "You cannot view this automation run")
    return AutomationLogResponse.model_validate(log)


@webhook_router.post("/automation", response_model=WebhookResponse)
@limiter.limit(API_LIMIT)
async def automation_webhook(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    x_webhook_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Completion callback from the analysis service. Not session authenticated."""
    verify_webhook_secret(x_webhook_secret)
    log = AutomationService(db).handle_webhook(payload, request=request)
    db.commit()
    return WebhookResponse(success=True, chain_run_id=log.chain_run_id, status=log.status)
