"""
Tests for study endpoints: CRUD, review workflow and coordinators.
"""

from datetime import date

import pytest

from irb_portal.auth.models import RoleName
from irb_portal.database.enums import StudyStatus
from irb_portal.database.models import AuditLog, Study

from conftest import auth_headers, create_study, create_user


@pytest.fixture
def study_payload():
    return {
        "title": "Mindfulness for Exam Stress",
        "protocol_number": "psy-2024",
        "description": "Randomized study of a four week mindfulness program for students.",
        "type": "INTERVENTIONAL",
        "risk_level": "MINIMAL",
        "target_enrollment": 120,
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
    }


class TestCreateAndRead:
    """Creating, listing and reading studies."""

    def test_create_study(self, client, db, pi, study_payload):
        response = client.post("/api/studies", json=study_payload, headers=auth_headers(pi))
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "DRAFT"
        assert body["protocol_number"] == "PSY-2024"
        assert body["principal_investigator_id"] == pi.id
        assert body["current_enrollment"] == 0

        db.expire_all()
        entry = db.query(AuditLog).filter_by(action="CREATE_STUDY").one()
        assert entry.entity_id == body["id"]

    def test_duplicate_protocol_number(self, client, pi, study_payload):
        headers = auth_headers(pi)
        client.post("/api/studies", json=study_payload, headers=headers)
        response = client.post("/api/studies", json=study_payload, headers=headers)
        assert response.status_code == 409

    def test_reviewer_cannot_create(self, client, reviewer, study_payload):
        response = client.post("/api/studies", json=study_payload, headers=auth_headers(reviewer))
        assert response.status_code == 403

    def test_end_before_start_is_rejected(self, client, pi, study_payload):
        study_payload["end_date"] = "2024-06-01"
        response = client.post("/api/studies", json=study_payload, headers=auth_headers(pi))
        assert response.status_code == 400

    def test_bad_protocol_format(self, client, pi, study_payload):
        study_payload["protocol_number"] = "no dashes here"
        response = client.post("/api/studies", json=study_payload, headers=auth_headers(pi))
        assert response.status_code == 400

    def test_html_is_stripped(self, client, pi, study_payload):
        study_payload["title"] = "<b>Mindfulness</b> for Exams"
        response = client.post("/api/studies", json=study_payload, headers=auth_headers(pi))
        assert response.json()["title"] == "Mindfulness for Exams"

    def test_list_is_scoped_to_visible_studies(self, client, db, pi, researcher):
        create_study(db, pi)
        create_study(db, researcher)

        body = client.get("/api/studies", headers=auth_headers(pi)).json()
        assert body["pagination"]["total"] == 1
        assert body["studies"][0]["principal_investigator_id"] == pi.id

    def test_list_filters(self, client, db, admin, pi):
        create_study(db, pi, title="Alpha sleep study")
        create_study(db, pi, status=StudyStatus.ACTIVE, title="Beta cardio study")

        headers = auth_headers(admin)
        assert client.get("/api/studies?status=ACTIVE", headers=headers).json()["pagination"]["total"] == 1
        assert client.get("/api/studies?search=sleep", headers=headers).json()["pagination"]["total"] == 1

    def test_pagination(self, client, db, admin, pi):
        for _ in range(3):
            create_study(db, pi)
        body = client.get("/api/studies?page=2&limit=2", headers=auth_headers(admin)).json()
        assert len(body["studies"]) == 1
        assert body["pagination"] == {"total": 3, "page": 2, "page_size": 2, "total_pages": 2}

    def test_list_cache_is_invalidated_by_writes(self, client, pi, study_payload):
        headers = auth_headers(pi)
        assert client.get("/api/studies", headers=headers).json()["pagination"]["total"] == 0
        client.post("/api/studies", json=study_payload, headers=headers)
        assert client.get("/api/studies", headers=headers).json()["pagination"]["total"] == 1

    def test_get_study_detail(self, client, pi, active_study, coordinator):
        response = client.get(f"/api/studies/{active_study.id}", headers=auth_headers(pi))
        assert response.status_code == 200
        body = response.json()
        assert body["participant_count"] == 0
        assert [c["coordinator_id"] for c in body["coordinators"]] == [coordinator.id]

    def test_hidden_study_is_forbidden(self, client, researcher, study):
        assert client.get(f"/api/studies/{study.id}", headers=auth_headers(researcher)).status_code == 403

    def test_missing_study(self, client, pi):
        assert client.get("/api/studies/does-not-exist", headers=auth_headers(pi)).status_code == 404


class TestUpdateAndDelete:
    """Editing and deleting."""

    def test_pi_updates_draft(self, client, db, pi, study):
        response = client.put(f"/api/studies/{study.id}", json={"title": "Updated sleep study"},
                              headers=auth_headers(pi))
        assert response.status_code == 200
        assert response.json()["title"] == "Updated sleep study"

        db.expire_all()
        entry = db.query(AuditLog).filter_by(action="UPDATE_STUDY").one()
        assert entry.details["changes"]["title"]["new"] == "Updated sleep study"

    def test_status_cannot_be_set_directly(self, client, pi, study):
        response = client.put(f"/api/studies/{study.id}", json={"status": "APPROVED"},
                              headers=auth_headers(pi))
        assert response.status_code == 400

    def test_pi_cannot_edit_submitted(self, client, db, pi):
        submitted = create_study(db, pi, status=StudyStatus.SUBMITTED)
        response = client.put(f"/api/studies/{submitted.id}", json={"title": "Too late to edit"},
                              headers=auth_headers(pi))
        assert response.status_code == 403

    def test_null_for_required_field_is_rejected(self, client, db, pi, study):
        for field in ("title", "description", "type", "risk_level", "protocol_number"):
            response = client.put(f"/api/studies/{study.id}", json={field: None}, headers=auth_headers(pi))
            assert response.status_code == 400, field
            assert response.json()["code"] == "VALIDATION_ERROR"

        db.expire_all()
        assert db.get(Study, study.id).title == "Sleep Quality in Shift Workers"

    def test_null_for_optional_field_clears_it(self, client, db, pi):
        dated = create_study(db, pi, target_enrollment=40)
        response = client.put(f"/api/studies/{dated.id}", json={"target_enrollment": None},
                              headers=auth_headers(pi))
        assert response.status_code == 200
        assert response.json()["target_enrollment"] is None

    def test_update_rejects_taken_protocol(self, client, db, pi, study):
        create_study(db, pi, protocol_number="TAKEN-001")
        response = client.put(f"/api/studies/{study.id}", json={"protocol_number": "TAKEN-001"},
                              headers=auth_headers(pi))
        assert response.status_code == 409

    def test_update_checks_merged_dates(self, client, db, pi):
        dated = create_study(db, pi, start_date=date(2025, 6, 1))
        response = client.put(f"/api/studies/{dated.id}", json={"end_date": "2025-01-01"},
                              headers=auth_headers(pi))
        assert response.status_code == 400

    def test_pi_deletes_draft(self, client, db, pi, study):
        response = client.delete(f"/api/studies/{study.id}", headers=auth_headers(pi))
        assert response.status_code == 200
        db.expire_all()
        assert db.query(Study).filter_by(id=study.id).count() == 0
        assert db.query(AuditLog).filter_by(action="DELETE_STUDY").count() == 1

    def test_pi_cannot_delete_active(self, client, pi, active_study):
        assert client.delete(f"/api/studies/{active_study.id}", headers=auth_headers(pi)).status_code == 403

    def test_admin_deletes_active(self, client, admin, active_study):
        assert client.delete(f"/api/studies/{active_study.id}", headers=auth_headers(admin)).status_code == 200


class TestReviewEndpoints:
    """Workflow through the API."""

    def review(self, client, study_id, user, action, **extra):
        return client.post(f"/api/studies/{study_id}/review", json={"action": action, **extra},
                           headers=auth_headers(user))

    def test_submit_then_approve(self, client, pi, reviewer, study):
        response = self.review(client, study.id, pi, "submit", comments="Please review")
        assert response.status_code == 200
        assert response.json()["study"]["status"] == "SUBMITTED"
        assert response.json()["message"] == "Study submitted for review"

        response = self.review(client, study.id, reviewer, "approve")
        assert response.status_code == 200
        study_body = response.json()["study"]
        assert study_body["status"] == "APPROVED"
        assert study_body["irb_approval_date"] is not None
        assert study_body["reviewer_id"] == reviewer.id

    def test_invalid_transition(self, client, pi, study):
        response = self.review(client, study.id, pi, "activate")
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["details"]["allowed_actions"] == ["submit"]

    def test_unknown_action(self, client, pi, study):
        assert self.review(client, study.id, pi, "teleport").status_code == 400

    def test_reviewer_cannot_see_draft(self, client, reviewer, study):
        assert self.review(client, study.id, reviewer, "approve").status_code == 403

    def test_review_history(self, client, pi, reviewer, study):
        self.review(client, study.id, pi, "submit")
        self.review(client, study.id, reviewer, "request_changes", comments="Add risk section")

        body = client.get(f"/api/studies/{study.id}/review", headers=auth_headers(pi)).json()
        assert body["status"] == "DRAFT"
        assert body["available_actions"] == ["submit"]
        assert [h["action"] for h in body["history"]] == ["REQUEST_CHANGES", "SUBMIT_FOR_REVIEW"]
        assert body["history"][0]["comments"] == "Add risk section"


class TestCoordinators:
    """Coordinator assignment."""

    def test_pi_assigns_coordinator(self, client, db, pi, coordinator, study):
        response = client.post(f"/api/studies/{study.id}/coordinators",
                               json={"coordinator_id": coordinator.id}, headers=auth_headers(pi))
        assert response.status_code == 201
        assert response.json()["coordinator"]["email"] == coordinator.email

        listed = client.get(f"/api/studies/{study.id}/coordinators", headers=auth_headers(pi)).json()
        assert [c["coordinator_id"] for c in listed] == [coordinator.id]

    def test_duplicate_assignment(self, client, pi, coordinator, active_study):
        response = client.post(f"/api/studies/{active_study.id}/coordinators",
                               json={"coordinator_id": coordinator.id}, headers=auth_headers(pi))
        assert response.status_code == 409

    def test_assignee_must_be_coordinator(self, client, pi, researcher, study):
        response = client.post(f"/api/studies/{study.id}/coordinators",
                               json={"coordinator_id": researcher.id}, headers=auth_headers(pi))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_COORDINATOR"

    def test_remove_and_reassign(self, client, pi, coordinator, active_study):
        headers = auth_headers(pi)
        url = f"/api/studies/{active_study.id}/coordinators"
        assert client.delete(f"{url}/{coordinator.id}", headers=headers).status_code == 200
        assert client.get(f"/api/studies/{active_study.id}", headers=auth_headers(coordinator)).status_code == 403

        assert client.post(url, json={"coordinator_id": coordinator.id}, headers=headers).status_code == 201
        assert client.get(f"/api/studies/{active_study.id}", headers=auth_headers(coordinator)).status_code == 200

    def test_other_user_cannot_assign(self, client, db, researcher, study):
        other_coordinator = create_user(db, RoleName.COORDINATOR)
        response = client.post(f"/api/studies/{study.id}/coordinators",
                               json={"coordinator_id": other_coordinator.id}, headers=auth_headers(researcher))
        assert response.status_code == 403


class TestStudyAuditTrail:
    def test_includes_child_records(self, client, pi, active_study, participant_payload):
        headers = auth_headers(pi)
        client.post(f"/api/studies/{active_study.id}/participants", json=participant_payload, headers=headers)

        body = client.get(f"/api/studies/{active_study.id}/audit-logs", headers=headers).json()
        assert "ENROLL_PARTICIPANT" in [entry["action"] for entry in body["logs"]]

    def test_outsider_is_forbidden(self, client, researcher, study):
        response = client.get(f"/api/studies/{study.id}/audit-logs", headers=auth_headers(researcher))
        assert response.status_code == 403
