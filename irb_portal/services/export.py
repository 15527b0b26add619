"""
CSV Export
==========
Spreadsheet-safe CSV renderings of studies, participants and the audit trail.
"""

import csv
import io
import json
from datetime import date, datetime
from typing import Any, Dict, Iterable, List

from fastapi import Response

from irb_portal.database.models import AuditLog, Participant, Study

STUDY_HEADERS = [
    'Protocol Number', 'Title', 'Type', 'Status', 'PI Name', 'Target Enrollment',
    'Participants', 'Documents', 'Start Date', 'End Date', 'Risk Level', 'Created At',
]

PARTICIPANT_HEADERS = [
    'Subject ID', 'Status', 'Group Assignment', 'Enrolled At', 'Consent Date',
    'Withdrawal Date', 'Withdrawal Reason', 'Notes',
]

AUDIT_HEADERS = [
    'ID', 'Timestamp', 'User', 'Action', 'Entity', 'Entity ID', 'IP Address', 'Details',
]

# Leading characters a spreadsheet would evaluate as a formula
FORMULA_PREFIXES = ('=', '+', '-', '@')


def csv_cell(value: Any) -> str:
    """Render one value as text, neutralising formula injection."""
    if value is None:
        return ''
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        value = json.dumps(value, sort_keys=True, default=str)
    text = str(getattr(value, "value", value))
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def render_csv(headers: List[str], rows: Iterable[List[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([csv_cell(value) for value in row])
    return output.getvalue()


def studies_csv(studies: Iterable[Study], counts: Dict[str, Dict[str, int]]) -> str:
    """counts maps study id to {"participants": n, "documents": n}."""
    rows = []
    for study in studies:
        study_counts = counts.get(study.id, {})
        pi = study.principal_investigator
        rows.append([
            study.protocol_number,
            study.title,
            study.type,
            study.status,
            pi.full_name if pi else '',
            study.target_enrollment,
            study_counts.get("participants", 0),
            study_counts.get("documents", 0),
            study.start_date,
            study.end_date,
            study.risk_level,
            study.created_at,
        ])
    return render_csv(STUDY_HEADERS, rows)


def participants_csv(participants: Iterable[Participant]) -> str:
    rows = [
        [
            p.subject_id,
            p.status,
            p.group_assignment,
            p.enrollment_date,
            p.consent_date,
            p.withdrawal_date,
            p.withdrawal_reason,
            p.notes,
        ]
        for p in participants
    ]
    return render_csv(PARTICIPANT_HEADERS, rows)


def audit_logs_csv(entries: Iterable[AuditLog]) -> str:
    rows = [
        [
            entry.id,
            entry.timestamp,
            entry.user_email or entry.user_id or 'anonymous',
            entry.action,
            entry.entity,
            entry.entity_id,
            entry.ip_address,
            entry.details,
        ]
        for entry in entries
    ]
    return render_csv(AUDIT_HEADERS, rows)


def export_filename(prefix: str, today: date = None) -> str:
    return f"{prefix}-{(today or date.today()).isoformat()}.csv"


def csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
