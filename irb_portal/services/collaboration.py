"""
IRB PORTAL - Protocol Version History
=====================================
Numbered protocol revisions per study. Each version stores the field-level
change set that produced it; versions can be compared and rolled back, a
rollback being recorded as a new MAJOR version with the changes inverted.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from irb_portal.auth.audit import get_audit_logger
from irb_portal.database.enums import AuditAction, EntityType, FieldChangeType, VersionChangeType
from irb_portal.database.models import Study, StudyVersion, User
from irb_portal.database.repositories import VersionRepository

logger = logging.getLogger(__name__)

INVERSE_CHANGE = {
    FieldChangeType.ADDED.value: FieldChangeType.REMOVED.value,
    FieldChangeType.REMOVED.value: FieldChangeType.ADDED.value,
    FieldChangeType.MODIFIED.value: FieldChangeType.MODIFIED.value,
}


def diff_change_sets(first: List[Dict[str, Any]], second: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Field-level differences between two change sets.

    A field touched by only one version is reported as that version recorded
    it. A field touched by both is reported as MODIFIED from the first
    version's new value to the second's, and only when those differ.
    """
    pairs: Dict[str, Dict[str, Dict]] = {}
    for change in first:
        pairs[change["field"]] = {"first": change}
    for change in second:
        pairs.setdefault(change["field"], {})["second"] = change

    differences = []
    for field, pair in pairs.items():
        left, right = pair.get("first"), pair.get("second")
        if right is None:
            differences.append(left)
        elif left is None:
            differences.append(right)
        elif left.get("new_value") != right.get("new_value"):
            differences.append({
                "field": field,
                "old_value": left.get("new_value"),
                "new_value": right.get("new_value"),
                "change_type": FieldChangeType.MODIFIED.value,
            })
    return differences


def invert_changes(changes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Change set that undoes the given one."""
    return [
        {
            "field": change["field"],
            "old_value": change.get("new_value"),
            "new_value": change.get("old_value"),
            "change_type": INVERSE_CHANGE.get(change.get("change_type"), FieldChangeType.MODIFIED.value),
        }
        for change in changes
    ]


class ProtocolVersioning:
    """Records protocol versions for a study. The caller commits."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = VersionRepository(session)
        self.audit = get_audit_logger()

    def record(self, user: User, study: Study, change_type: VersionChangeType,
               changes: List[Dict[str, Any]], change_notes: Optional[str] = None,
               request=None, action: AuditAction = AuditAction.CREATE_VERSION) -> StudyVersion:
        """Append the next version number for the study."""
        previous = self.repo.latest(study.id)
        version = self.repo.create(StudyVersion(
            study_id=study.id,
            version_number=previous.version_number + 1 if previous else 1,
            change_type=VersionChangeType(change_type).value,
            changes=changes,
            change_notes=change_notes,
            changed_by_id=user.id,
            previous_version_id=previous.id if previous else None,
        ))

        self.audit.log(
            self.session, user, action, EntityType.VERSION, version.id,
            details={
                "study_id": study.id,
                "version_number": version.version_number,
                "change_type": version.change_type,
                "fields": [c["field"] for c in changes],
            },
            request=request,
        )
        logger.info(f"{study.protocol_number} version {version.version_number} recorded by {user.email}")
        return version

    def rollback(self, user: User, study: Study, target: StudyVersion, request=None) -> StudyVersion:
        """Record a new version that undoes the target version's changes."""
        return self.record(
            user, study, VersionChangeType.MAJOR,
            invert_changes(target.changes or []),
            change_notes=f"Reverted version {target.version_number}",
            request=request,
            action=AuditAction.ROLLBACK_VERSION,
        )

    @staticmethod
    def compare(first: StudyVersion, second: StudyVersion) -> List[Dict[str, Any]]:
        return diff_change_sets(first.changes or [], second.changes or [])
