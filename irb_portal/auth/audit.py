"""
IRB PORTAL - Audit Logger
=========================
Append-only audit trail with a SHA-256 hash chain for tamper detection.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from irb_portal.database.models import AuditLog

logger = logging.getLogger(__name__)


def _normalize(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make details JSON-stable so the stored value hashes the same after a round trip."""
    if details is None:
        return None
    return json.loads(json.dumps(details, default=str))


class AuditLogger:
    """
    Audit logger backed by the audit_logs table.

    Features:
    - Entries are written in the caller's transaction
    - Each entry's checksum covers its content and the previous checksum
    - verify_integrity() walks the chain in id order
    """

    def compute_checksum(self, entry: AuditLog, previous_checksum: Optional[str]) -> str:
        data = {
            "timestamp": entry.timestamp.isoformat(),
            "user_id": entry.user_id or "",
            "user_email": entry.user_email or "",
            "action": entry.action,
            "entity": entry.entity,
            "entity_id": entry.entity_id or "",
            "details": json.dumps(entry.details, sort_keys=True) if entry.details is not None else "",
            "ip_address": entry.ip_address or "",
            "previous_checksum": previous_checksum or "",
        }
        data_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(data_str.encode()).hexdigest()

    def _last_checksum(self, session: Session) -> Optional[str]:
        return session.execute(
            select(AuditLog.checksum).order_by(AuditLog.id.desc()).limit(1)
        ).scalar_one_or_none()

    def log(self, session: Session, user, action: str, entity: str,
            entity_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None,
            request=None) -> AuditLog:
        """
        Log an auditable action.

        Args:
            session: Active session; the entry commits with the caller's changes
            user: Acting user, or None for anonymous events
            action: Action name (e.g. 'CREATE_STUDY')
            entity: Entity type (e.g. 'Study')
            entity_id: Identifier of the affected record
            details: JSON-serializable extra data
            request: Incoming request, for IP address and user agent

        Returns:
            Created audit log row (flushed)
        """
        action = getattr(action, "value", action)
        entity = getattr(entity, "value", entity)

        ip_address = None
        user_agent = None
        if request is not None:
            ip_address = client_ip(request)
            user_agent = request.headers.get("user-agent")

        previous = self._last_checksum(session)
        entry = AuditLog(
            timestamp=datetime.utcnow(),
            user_id=user.id if user is not None else None,
            user_email=user.email if user is not None else None,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=_normalize(details),
            ip_address=ip_address,
            user_agent=user_agent,
            previous_checksum=previous,
        )
        entry.checksum = self.compute_checksum(entry, previous)

        session.add(entry)
        session.flush()

        logger.info(
            f"AUDIT: [{action}] User={entry.user_email or 'anonymous'} "
            f"Entity={entity}:{entry.entity_id or '-'}"
        )
        return entry

    def verify_integrity(self, session: Session) -> Tuple[bool, str, Optional[int]]:
        """
        Verify integrity of the audit log using the hash chain.

        Returns:
            Tuple of (is_valid, message, first_broken_entry_id)
        """
        previous_checksum = None
        count = 0

        for entry in session.execute(select(AuditLog).order_by(AuditLog.id)).scalars():
            if entry.previous_checksum != previous_checksum:
                return False, f"Chain broken before entry {entry.id}", entry.id

            expected = self.compute_checksum(entry, previous_checksum)
            if entry.checksum != expected:
                return False, f"Integrity violation at entry {entry.id}", entry.id

            previous_checksum = entry.checksum
            count += 1

        if count == 0:
            return True, "No entries to verify", None
        return True, f"All {count} entries verified", None

    def history(self, session: Session, entity: str, entity_id: str,
                actions: Optional[List[str]] = None) -> List[AuditLog]:
        """Entries for one record, newest first."""
        query = select(AuditLog).where(AuditLog.entity == entity, AuditLog.entity_id == entity_id)
        if actions:
            query = query.where(AuditLog.action.in_(actions))
        return list(session.execute(query.order_by(AuditLog.id.desc())).scalars())


def client_ip(request) -> Optional[str]:
    """Best-effort client address: proxy headers first, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


# Singleton instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get singleton audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
