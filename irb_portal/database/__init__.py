"""
IRB PORTAL - Database Module
============================
SQLAlchemy models, session management and seed data.
"""

from .models import (
    Base, Role, User, Study, StudyCoordinator, Participant, Document, AuditLog, AutomationLog,
)
from .session import engine, SessionLocal, get_db, init_db, session_scope, health_check

__all__ = [
    'Base',
    'Role',
    'User',
    'Study',
    'StudyCoordinator',
    'Participant',
    'Document',
    'AuditLog',
    'AutomationLog',
    'engine',
    'SessionLocal',
    'get_db',
    'init_db',
    'session_scope',
    'health_check',
]
