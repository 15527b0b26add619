"""
Document Automation Runs
========================
Bookkeeping for external document-analysis chain runs.

A run is recorded as `processing` when requested and completed by a webhook
callback that carries the same chain run id.
"""

import hmac
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from irb_portal.auth.audit import get_audit_logger
from irb_portal.config import settings
from irb_portal.core.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from irb_portal.database.enums import AuditAction, AutomationStatus, DocumentType, EntityType
from irb_portal.database.models import AutomationLog, Document, User
from irb_portal.database.repositories import AutomationLogRepository

logger = logging.getLogger(__name__)

DEFAULT_CHAIN = "Document Analyzer"

CHAIN_BY_DOCUMENT_TYPE: Dict[str, str] = {
    DocumentType.PROTOCOL.value: "Protocol analyzer",
    DocumentType.CONSENT_FORM.value: "Consent Form Reviewer",
}

# Callers are inconsistent about key names; checked in order
CHAIN_RUN_ID_KEYS = ("chainRunId", "chain_run_id", "ChainRun_ID", "runId", "run_id")
AGENT_RESPONSE_KEYS = ("agentResponse", "summary", "response", "content", "result", "output")

NO_RESPONSE = "Webhook received (no response content found)"


def chain_for_document_type(document_type: str) -> str:
    return CHAIN_BY_DOCUMENT_TYPE.get(document_type, DEFAULT_CHAIN)


def extract_chain_run_id(payload: Dict[str, Any]) -> Optional[str]:
    for key in CHAIN_RUN_ID_KEYS:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def extract_agent_response(payload: Dict[str, Any]) -> str:
    for key in AGENT_RESPONSE_KEYS:
        value = payload.get(key)
        if value is None:
            continue
        text = value if isinstance(value, str) else str(value)
        if text.strip():
            return text
    return NO_RESPONSE


def verify_webhook_secret(provided: Optional[str]) -> None:
    """No-op unless WEBHOOK_SECRET is configured."""
    expected = settings.WEBHOOK_SECRET
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Rejected automation webhook with a bad secret")
        raise AuthenticationError("Invalid webhook secret", code="INVALID_WEBHOOK_SECRET")


class AutomationService:
    """Creates automation runs and applies webhook results. The caller commits."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = AutomationLogRepository(session)
        self.audit = get_audit_logger()

    def request_run(self, document: Document, user: User, chain_name: Optional[str] = None,
                    chain_run_id: Optional[str] = None, first_step_input: Optional[str] = None,
                    request=None) -> AutomationLog:
        chain_name = chain_name or chain_for_document_type(document.type)
        chain_run_id = chain_run_id or f"run-{uuid.uuid4().hex}"
        if self.repo.get_by_chain_run_id(chain_run_id) is not None:
            raise ConflictError("An automation run with this chain_run_id already exists",
                                code="DUPLICATE_ENTRY")

        log = AutomationLog(
            chain_name=chain_name,
            chain_run_id=chain_run_id,
            document_id=document.id,
            study_id=document.study_id,
            requested_by_id=user.id,
            request_data={
                "document_name": document.name,
                "document_type": document.type,
                "first_step_input": first_step_input or f"Analyze document: {document.name}",
            },
            status=AutomationStatus.PROCESSING.value,
            is_completed=False,
        )
        self.session.add(log)
        self.session.flush()

        self.audit.log(self.session, user, AuditAction.REQUEST_AUTOMATION, EntityType.AUTOMATION, log.id,
                       details={"chain_name": chain_name, "chain_run_id": chain_run_id,
                                "document_id": document.id},
                       request=request)
        logger.info(f"Automation run {chain_run_id} ({chain_name}) requested for document {document.id}")
        return log

    def handle_webhook(self, payload: Dict[str, Any], request=None) -> AutomationLog:
        """
        Complete a run from a webhook payload.

        Raises:
            ValidationError: no chain run id in the payload
            NotFoundError: no run with that id
        """
        chain_run_id = extract_chain_run_id(payload)
        if chain_run_id is None:
            raise ValidationError(
                "No chain run id found in webhook payload",
                code="MISSING_CHAIN_RUN_ID",
                details={"received_fields": sorted(payload.keys())},
            )

        log = self.repo.get_by_chain_run_id(chain_run_id)
        if log is None:
            raise NotFoundError(f"Automation run '{chain_run_id}'")

        failed = str(payload.get("status") or "").lower() == AutomationStatus.FAILED.value
        log.status = AutomationStatus.FAILED.value if failed else AutomationStatus.COMPLETED.value
        log.error_message = (str(payload.get("error") or "Chain run failed")) if failed else None
        log.agent_response = extract_agent_response(payload)
        log.webhook_payload = payload
        log.is_completed = True
        log.completed_at = datetime.utcnow()
        self.session.flush()

        requester = self.session.get(User, log.requested_by_id) if log.requested_by_id else None
        self.audit.log(self.session, requester, AuditAction.AUTOMATION_CALLBACK, EntityType.AUTOMATION, log.id,
                       details={"chain_run_id": chain_run_id, "status": log.status,
                                "response_length": len(log.agent_response)},
                       request=request)
        logger.info(f"Automation run {chain_run_id} finished with status {log.status}")
        return log
