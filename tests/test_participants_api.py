"""
Tests for participant enrollment and records.
"""

from datetime import date, timedelta

import pytest

from irb_portal.database.enums import StudyStatus
from irb_portal.database.models import AuditLog, Participant, Study

from conftest import auth_headers, create_study


def enroll(client, study_id, user, payload):
    return client.post(f"/api/studies/{study_id}/participants", json=payload, headers=auth_headers(user))


@pytest.fixture
def enrolled(client, coordinator, active_study, participant_payload):
    return enroll(client, active_study.id, coordinator, participant_payload).json()


class TestEnrollment:
    """Enrolling subjects."""

    def test_enroll_in_active_study(self, client, db, coordinator, active_study, participant_payload):
        response = enroll(client, active_study.id, coordinator, participant_payload)
        assert response.status_code == 201
        body = response.json()
        assert body["participant_id"] == f"{active_study.id}-SUBJ-001"
        assert body["status"] == "ENROLLED"

        db.expire_all()
        assert db.get(Study, active_study.id).current_enrollment == 1
        entry = db.query(AuditLog).filter_by(action="ENROLL_PARTICIPANT").one()
        assert entry.details["subject_id"] == "SUBJ-001"

    def test_subject_id_is_uppercased(self, client, coordinator, active_study, participant_payload):
        participant_payload["subject_id"] = "subj-009"
        assert enroll(client, active_study.id, coordinator, participant_payload).json()["subject_id"] == "SUBJ-009"

    def test_study_must_be_active(self, client, pi, study, participant_payload):
        response = enroll(client, study.id, pi, participant_payload)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "STUDY_NOT_ACTIVE"
        assert body["details"] == {"current_status": "DRAFT", "required_status": "ACTIVE"}

    def test_duplicate_subject(self, client, coordinator, active_study, participant_payload):
        enroll(client, active_study.id, coordinator, participant_payload)
        response = enroll(client, active_study.id, coordinator, participant_payload)
        assert response.status_code == 409

    def test_same_subject_in_another_study(self, client, db, pi, active_study, participant_payload):
        other = create_study(db, pi, status=StudyStatus.ACTIVE)
        assert enroll(client, active_study.id, pi, participant_payload).status_code == 201
        assert enroll(client, other.id, pi, participant_payload).status_code == 201

    def test_future_consent_is_rejected(self, client, coordinator, active_study, participant_payload):
        participant_payload["consent_date"] = (date.today() + timedelta(days=3)).isoformat()
        assert enroll(client, active_study.id, coordinator, participant_payload).status_code == 400

    def test_consent_after_enrollment_is_rejected(self, client, coordinator, active_study, participant_payload):
        participant_payload["enrollment_date"] = (date.today() - timedelta(days=2)).isoformat()
        response = enroll(client, active_study.id, coordinator, participant_payload)
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_outsider_is_forbidden(self, client, researcher, active_study, participant_payload):
        assert enroll(client, active_study.id, researcher, participant_payload).status_code == 403

    def test_reviewer_cannot_enroll(self, client, db, reviewer, active_study, participant_payload):
        active_study.reviewer_id = reviewer.id
        db.commit()
        assert enroll(client, active_study.id, reviewer, participant_payload).status_code == 403


class TestParticipantRecords:
    """Reading, updating and deleting enrolled subjects."""

    def test_list_and_get(self, client, pi, active_study, enrolled):
        headers = auth_headers(pi)
        body = client.get(f"/api/studies/{active_study.id}/participants", headers=headers).json()
        assert body["pagination"]["total"] == 1

        response = client.get(f"/api/studies/{active_study.id}/participants/{enrolled['id']}", headers=headers)
        assert response.json()["subject_id"] == "SUBJ-001"

    def test_list_filters_by_status(self, client, pi, active_study, enrolled):
        url = f"/api/studies/{active_study.id}/participants?status=COMPLETED"
        assert client.get(url, headers=auth_headers(pi)).json()["pagination"]["total"] == 0

    def test_participant_from_other_study_is_missing(self, client, db, pi, enrolled):
        other = create_study(db, pi, status=StudyStatus.ACTIVE)
        response = client.get(f"/api/studies/{other.id}/participants/{enrolled['id']}", headers=auth_headers(pi))
        assert response.status_code == 404

    def test_withdrawal_defaults_date(self, client, db, coordinator, active_study, enrolled):
        response = client.put(
            f"/api/studies/{active_study.id}/participants/{enrolled['id']}",
            json={"status": "WITHDRAWN", "withdrawal_reason": "Moved away"},
            headers=auth_headers(coordinator),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "WITHDRAWN"
        assert body["withdrawal_date"] == date.today().isoformat()

        db.expire_all()
        entry = db.query(AuditLog).filter_by(action="UPDATE_PARTICIPANT").one()
        assert entry.details["changes"]["status"] == {"old": "ENROLLED", "new": "WITHDRAWN"}

    def test_withdrawal_before_enrollment(self, client, coordinator, active_study, enrolled):
        yesterday = (date.today() - timedelta(days=1)).isoformat()
        response = client.put(
            f"/api/studies/{active_study.id}/participants/{enrolled['id']}",
            json={"status": "WITHDRAWN", "withdrawal_date": yesterday},
            headers=auth_headers(coordinator),
        )
        assert response.status_code == 400

    def test_unknown_fields_are_rejected(self, client, coordinator, active_study, enrolled):
        response = client.put(
            f"/api/studies/{active_study.id}/participants/{enrolled['id']}",
            json={"subject_id": "SUBJ-999"},
            headers=auth_headers(coordinator),
        )
        assert response.status_code == 400

    def test_delete_decrements_enrollment(self, client, db, pi, active_study, enrolled):
        response = client.delete(
            f"/api/studies/{active_study.id}/participants/{enrolled['id']}", headers=auth_headers(pi)
        )
        assert response.status_code == 200

        db.expire_all()
        assert db.get(Study, active_study.id).current_enrollment == 0
        assert db.query(Participant).count() == 0


class TestGlobalParticipantList:
    def test_scoped_to_visible_studies(self, client, db, researcher, coordinator, active_study, enrolled):
        assert client.get("/api/participants", headers=auth_headers(coordinator)).json()["pagination"]["total"] == 1
        assert client.get("/api/participants", headers=auth_headers(researcher)).json()["pagination"]["total"] == 0

    def test_admin_sees_everything(self, client, admin, enrolled):
        assert client.get("/api/participants", headers=auth_headers(admin)).json()["pagination"]["total"] == 1


class TestParticipantNulls:
    def test_null_status_is_rejected(self, client, coordinator, active_study, enrolled):
        response = client.put(
            f"/api/studies/{active_study.id}/participants/{enrolled['id']}",
            json={"status": None},
            headers=auth_headers(coordinator),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_null_notes_clear_them(self, client, coordinator, active_study, participant_payload):
        participant_payload["notes"] = "Prefers morning visits"
        created = enroll(client, active_study.id, coordinator, participant_payload).json()
        response = client.put(
            f"/api/studies/{active_study.id}/participants/{created['id']}",
            json={"notes": None},
            headers=auth_headers(coordinator),
        )
        assert response.status_code == 200
        assert response.json()["notes"] is None
