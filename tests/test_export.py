"""
Tests for CSV export helpers and the export endpoints.
"""

import csv
import io
from datetime import date

from irb_portal.database.enums import StudyStatus
from irb_portal.database.models import AuditLog
from irb_portal.services.export import (
    STUDY_HEADERS, csv_cell, csv_response, export_filename, render_csv,
)

from conftest import auth_headers, create_study


def read_csv(text):
    return list(csv.reader(io.StringIO(text)))


class TestCsvCell:
    """Cell rendering."""

    def test_none_is_empty(self):
        assert csv_cell(None) == ""

    def test_dates_are_iso(self):
        assert csv_cell(date(2024, 3, 1)) == "2024-03-01"

    def test_formula_prefixes_are_neutralized(self):
        for value in ("=SUM(A1:A9)", "+1", "-2", "@cmd"):
            assert csv_cell(value) == "'" + value

    def test_enum_values(self):
        assert csv_cell(StudyStatus.ACTIVE) == "ACTIVE"

    def test_dicts_are_json(self):
        assert csv_cell({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'

    def test_render_quotes_commas(self):
        rows = read_csv(render_csv(["Name"], [["Smith, J."]]))
        assert rows == [["Name"], ["Smith, J."]]


class TestHelpers:
    def test_export_filename(self):
        assert export_filename("studies-export", date(2024, 5, 6)) == "studies-export-2024-05-06.csv"

    def test_csv_response_headers(self):
        response = csv_response("a\n", "x.csv")
        assert response.media_type.startswith("text/csv")
        assert response.headers["content-disposition"] == 'attachment; filename="x.csv"'


class TestExportEndpoints:
    """Export through the API."""

    def test_study_export_is_scoped_and_audited(self, client, db, pi, researcher):
        create_study(db, pi, protocol_number="IRB-0001", title="=HYPERLINK(bad)")
        create_study(db, researcher, protocol_number="IRB-0002")

        response = client.get("/api/studies/export", headers=auth_headers(pi))
        assert response.status_code == 200
        assert "attachment" in response.headers["content-disposition"]

        rows = read_csv(response.text)
        assert rows[0] == STUDY_HEADERS
        assert len(rows) == 2
        assert rows[1][0] == "IRB-0001"
        assert rows[1][1] == "'=HYPERLINK(bad)"

        db.expire_all()
        assert db.query(AuditLog).filter_by(action="EXPORT_STUDIES").count() == 1

    def test_participant_export(self, client, db, pi, active_study, participant_payload):
        headers = auth_headers(pi)
        client.post(f"/api/studies/{active_study.id}/participants", json=participant_payload, headers=headers)

        response = client.get(f"/api/studies/{active_study.id}/participants/export", headers=headers)
        assert response.status_code == 200
        rows = read_csv(response.text)
        assert rows[1][0] == "SUBJ-001"
        assert rows[1][2] == "Arm A"

    def test_audit_export_requires_permission(self, client, researcher):
        response = client.get("/api/audit-logs/export", headers=auth_headers(researcher))
        assert response.status_code == 403

    def test_audit_export(self, client, admin):
        response = client.get("/api/audit-logs/export", headers=auth_headers(admin))
        assert response.status_code == 200
        assert read_csv(response.text)[0][0] == "ID"
