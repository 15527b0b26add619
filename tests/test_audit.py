"""
Tests for the hash-chained audit trail.
"""

from unittest.mock import MagicMock

import pytest

from irb_portal.auth.audit import AuditLogger, client_ip
from irb_portal.database.enums import AuditAction, EntityType
from irb_portal.database.models import AuditLog


@pytest.fixture
def audit():
    return AuditLogger()


def fake_request(headers=None, host="10.0.0.9"):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = host
    return request


class TestAuditLogger:
    """Writing and chaining entries."""

    def test_first_entry_has_no_previous(self, db, audit, admin):
        entry = audit.log(db, admin, AuditAction.CREATE_USER, EntityType.USER, admin.id)
        assert entry.previous_checksum is None
        assert len(entry.checksum) == 64
        assert entry.user_email == admin.email

    def test_entries_chain(self, db, audit, admin):
        first = audit.log(db, admin, AuditAction.CREATE_STUDY, EntityType.STUDY, "s-1")
        second = audit.log(db, admin, AuditAction.UPDATE_STUDY, EntityType.STUDY, "s-1",
                           details={"changes": {"title": {"old": "A", "new": "B"}}})
        assert second.previous_checksum == first.checksum

    def test_anonymous_entry(self, db, audit):
        entry = audit.log(db, None, AuditAction.LOGIN_FAILED, EntityType.USER,
                          details={"email": "nobody@example.org"})
        assert entry.user_id is None
        assert entry.user_email is None

    def test_records_request_origin(self, db, audit, admin):
        request = fake_request({"user-agent": "pytest", "x-forwarded-for": "203.0.113.5, 10.0.0.1"})
        entry = audit.log(db, admin, AuditAction.LOGIN, EntityType.USER, admin.id, request=request)
        assert entry.ip_address == "203.0.113.5"
        assert entry.user_agent == "pytest"

    def test_details_are_json_normalized(self, db, audit, admin, study):
        entry = audit.log(db, admin, AuditAction.UPDATE_STUDY, EntityType.STUDY, study.id,
                          details={"start_date": study.created_at.date()})
        assert isinstance(entry.details["start_date"], str)


class TestIntegrity:
    """Chain verification."""

    def test_empty_chain_is_valid(self, db, audit):
        assert audit.verify_integrity(db) == (True, "No entries to verify", None)

    def test_untouched_chain_verifies(self, db, audit, admin):
        for _ in range(3):
            audit.log(db, admin, AuditAction.LOGIN, EntityType.USER, admin.id)
        db.commit()

        valid, message, broken_id = audit.verify_integrity(db)
        assert valid
        assert message == "All 3 entries verified"
        assert broken_id is None

    def test_detects_tampered_entry(self, db, audit, admin):
        audit.log(db, admin, AuditAction.LOGIN, EntityType.USER, admin.id)
        target = audit.log(db, admin, AuditAction.DELETE_STUDY, EntityType.STUDY, "s-9",
                           details={"title": "Original"})
        audit.log(db, admin, AuditAction.LOGOUT, EntityType.USER, admin.id)
        db.commit()

        target.details = {"title": "Rewritten"}
        db.commit()

        valid, _, broken_id = audit.verify_integrity(db)
        assert not valid
        assert broken_id == target.id

    def test_detects_deleted_entry(self, db, audit, admin):
        audit.log(db, admin, AuditAction.LOGIN, EntityType.USER, admin.id)
        middle = audit.log(db, admin, AuditAction.CREATE_STUDY, EntityType.STUDY, "s-1")
        last = audit.log(db, admin, AuditAction.LOGOUT, EntityType.USER, admin.id)
        db.commit()

        db.delete(middle)
        db.commit()

        valid, message, broken_id = audit.verify_integrity(db)
        assert not valid
        assert broken_id == last.id
        assert "Chain broken" in message

    def test_history_filters_by_action(self, db, audit, admin):
        audit.log(db, admin, AuditAction.CREATE_STUDY, EntityType.STUDY, "s-1")
        audit.log(db, admin, AuditAction.SUBMIT_FOR_REVIEW, EntityType.STUDY, "s-1")
        audit.log(db, admin, AuditAction.SUBMIT_FOR_REVIEW, EntityType.STUDY, "s-2")
        db.commit()

        history = audit.history(db, EntityType.STUDY.value, "s-1", actions=["SUBMIT_FOR_REVIEW"])
        assert [e.action for e in history] == ["SUBMIT_FOR_REVIEW"]
        assert db.query(AuditLog).count() == 3


class TestClientIp:
    def test_prefers_real_ip_over_peer(self):
        assert client_ip(fake_request({"x-real-ip": "198.51.100.7"})) == "198.51.100.7"

    def test_falls_back_to_peer(self):
        assert client_ip(fake_request()) == "10.0.0.9"
