"""
IRB PORTAL - Seed Data
======================
Built-in roles and the bootstrap admin account.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from irb_portal.auth.models import ROLE_DESCRIPTIONS, RoleName, default_permissions_for
from irb_portal.auth.password import get_password_handler
from irb_portal.config import settings
from .models import Role, User

logger = logging.getLogger(__name__)


def seed_roles(session: Session) -> int:
    """Create missing built-in roles and refresh their permission lists. Returns roles created."""
    created = 0
    for role_name in RoleName:
        role = session.query(Role).filter_by(name=role_name.value).first()
        permissions = default_permissions_for(role_name)
        if role is None:
            session.add(Role(
                name=role_name.value,
                description=ROLE_DESCRIPTIONS[role_name],
                permissions=permissions,
            ))
            created += 1
        else:
            role.permissions = permissions
    session.flush()
    logger.info(f"Seeded roles: {created} created, {len(RoleName) - created} refreshed")
    return created


def seed_admin(session: Session, email: str = None, password: str = None) -> User:
    """Create the bootstrap admin if no user holds that email yet."""
    email = (email or settings.DEFAULT_ADMIN_EMAIL).strip().lower()
    existing = session.query(User).filter_by(email=email).first()
    if existing is not None:
        return existing

    role = session.query(Role).filter_by(name=RoleName.ADMIN.value).one()
    admin = User(
        email=email,
        password_hash=get_password_handler().hash_password(password or settings.DEFAULT_ADMIN_PASSWORD),
        first_name="System",
        last_name="Administrator",
        role=role,
        is_active=True,
        is_approved=True,
        password_changed_at=datetime.utcnow(),
    )
    session.add(admin)
    session.flush()
    logger.warning(f"Created bootstrap admin {email}; change its password after first login")
    return admin


def seed_all(session: Session) -> None:
    seed_roles(session)
    seed_admin(session)
    session.commit()
