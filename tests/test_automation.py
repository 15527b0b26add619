"""
Tests for document automation runs and the completion webhook.
"""

import pytest

from irb_portal.config import settings
from irb_portal.core.errors import AuthenticationError
from irb_portal.database.enums import DocumentType
from irb_portal.database.models import AuditLog, AutomationLog, Document
from irb_portal.services.automation import (
    NO_RESPONSE, chain_for_document_type, extract_agent_response, extract_chain_run_id,
    verify_webhook_secret,
)

from conftest import auth_headers


@pytest.fixture
def document(db, active_study, coordinator):
    doc = Document(
        study_id=active_study.id, name="Protocol v1", type=DocumentType.PROTOCOL.value,
        file_path="studies/x/protocol.pdf", file_name="protocol.pdf", file_size=100,
        mime_type="application/pdf", uploaded_by_id=coordinator.id,
    )
    db.add(doc)
    db.commit()
    return doc


class TestPayloadParsing:
    """Webhook payload helpers."""

    def test_chain_by_document_type(self):
        assert chain_for_document_type("PROTOCOL") == "Protocol analyzer"
        assert chain_for_document_type("CONSENT_FORM") == "Consent Form Reviewer"
        assert chain_for_document_type("AMENDMENT") == "Document Analyzer"

    def test_chain_run_id_key_variants(self):
        assert extract_chain_run_id({"chainRunId": "a"}) == "a"
        assert extract_chain_run_id({"ChainRun_ID": "b"}) == "b"
        assert extract_chain_run_id({"run_id": 7}) == "7"
        assert extract_chain_run_id({"chainRunId": "", "runId": "c"}) == "c"
        assert extract_chain_run_id({"other": "x"}) is None

    def test_agent_response_key_variants(self):
        assert extract_agent_response({"summary": "Looks fine"}) == "Looks fine"
        assert extract_agent_response({"response": "  ", "output": "Out"}) == "Out"
        assert extract_agent_response({}) == NO_RESPONSE


class TestWebhookSecret:
    def test_no_secret_configured(self, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_SECRET", None)
        verify_webhook_secret(None)

    def test_wrong_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_SECRET", "s3cret")
        with pytest.raises(AuthenticationError):
            verify_webhook_secret("guess")
        verify_webhook_secret("s3cret")


class TestAutomationApi:
    """Run requests, listing and webhook completion."""

    def test_request_run(self, client, db, coordinator, document):
        response = client.post(
            "/api/automation-logs", json={"document_id": document.id}, headers=auth_headers(coordinator)
        )
        assert response.status_code == 201
        body = response.json()
        assert body["chain_name"] == "Protocol analyzer"
        assert body["chain_run_id"].startswith("run-")
        assert body["status"] == "processing"
        assert body["is_completed"] is False
        assert body["study_id"] == document.study_id

    def test_duplicate_chain_run_id(self, client, coordinator, document):
        headers = auth_headers(coordinator)
        payload = {"document_id": document.id, "chain_run_id": "run-fixed"}
        assert client.post("/api/automation-logs", json=payload, headers=headers).status_code == 201
        assert client.post("/api/automation-logs", json=payload, headers=headers).status_code == 409

    def test_outsider_cannot_request(self, client, researcher, document):
        response = client.post(
            "/api/automation-logs", json={"document_id": document.id}, headers=auth_headers(researcher)
        )
        assert response.status_code == 403

    def test_webhook_completes_run(self, client, db, coordinator, document):
        headers = auth_headers(coordinator)
        client.post("/api/automation-logs", json={"document_id": document.id, "chain_run_id": "run-42"},
                    headers=headers)

        response = client.post("/api/webhooks/automation",
                               json={"chainRunId": "run-42", "agentResponse": "No issues found"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "chain_run_id": "run-42", "status": "completed"}

        db.expire_all()
        log = db.query(AutomationLog).filter_by(chain_run_id="run-42").one()
        assert log.is_completed
        assert log.agent_response == "No issues found"
        assert log.completed_at is not None
        callback = db.query(AuditLog).filter_by(action="AUTOMATION_CALLBACK").one()
        assert callback.user_id == coordinator.id

    def test_webhook_failure_status(self, client, db, coordinator, document):
        client.post("/api/automation-logs", json={"document_id": document.id, "chain_run_id": "run-7"},
                    headers=auth_headers(coordinator))
        response = client.post("/api/webhooks/automation",
                               json={"chain_run_id": "run-7", "status": "FAILED", "error": "timeout"})
        assert response.json()["status"] == "failed"

        db.expire_all()
        log = db.query(AutomationLog).filter_by(chain_run_id="run-7").one()
        assert log.error_message == "timeout"
        assert log.agent_response == NO_RESPONSE

    def test_webhook_without_run_id(self, client, db):
        response = client.post("/api/webhooks/automation", json={"summary": "orphan"})
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_CHAIN_RUN_ID"

    def test_webhook_unknown_run(self, client, db):
        response = client.post("/api/webhooks/automation", json={"chainRunId": "run-missing"})
        assert response.status_code == 404

    def test_webhook_checks_secret(self, client, db, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_SECRET", "s3cret")
        response = client.post("/api/webhooks/automation", json={"chainRunId": "run-1"})
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_WEBHOOK_SECRET"

    def test_list_is_scoped(self, client, coordinator, researcher, document):
        client.post("/api/automation-logs", json={"document_id": document.id}, headers=auth_headers(coordinator))

        mine = client.get("/api/automation-logs", headers=auth_headers(coordinator)).json()
        theirs = client.get("/api/automation-logs", headers=auth_headers(researcher)).json()
        assert mine["pagination"]["total"] == 1
        assert theirs["pagination"]["total"] == 0

    def test_get_log_access(self, client, coordinator, researcher, document):
        created = client.post(
            "/api/automation-logs", json={"document_id": document.id}, headers=auth_headers(coordinator)
        ).json()

        assert client.get(f"/api/automation-logs/{created['id']}", headers=auth_headers(coordinator)).status_code == 200
        assert client.get(f"/api/automation-logs/{created['id']}", headers=auth_headers(researcher)).status_code == 403
        assert client.get("/api/automation-logs/nope", headers=auth_headers(coordinator)).status_code == 404
