"""
User Management Routes
======================
Administration of user accounts and roles.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from irb_portal.auth.audit import get_audit_logger
from irb_portal.auth.authentication import AuthService
from irb_portal.auth.authorization import get_rbac_authorizer
from irb_portal.auth.models import Permission, RoleName
from irb_portal.core.cache import invalidate_user_caches
from irb_portal.core.errors import NotFoundError, ValidationError
from irb_portal.core.rate_limit import READ_ONLY_LIMIT, WRITE_LIMIT, limiter
from irb_portal.core.security import get_current_user, require_permission
from irb_portal.core.utils import Pagination, get_pagination
from irb_portal.database.enums import AuditAction, EntityType
from irb_portal.database.models import User
from irb_portal.database.repositories import UserRepository
from irb_portal.database.session import get_db
from irb_portal.models.schemas import (
    MessageResponse, RoleResponse, UserCreateRequest, UserListResponse, UserResponse,
    UserSummary, UserUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()
roles_router = APIRouter()

manage_users = require_permission(Permission.MANAGE_USERS)

# Fields that change which studies a user can see
ACCESS_FIELDS = {"role", "is_active", "is_approved"}


def _get_user(db: Session, user_id: str) -> User:
    user = UserRepository(db).get_by_id(user_id)
    if user is None:
        raise NotFoundError("User")
    return user


@router.get("", response_model=UserListResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def list_users(
    request: Request,
    role: Optional[RoleName] = None,
    is_approved: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=200),
    pagination: Pagination = Depends(get_pagination),
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    repo = UserRepository(db)
    users, total = repo.page(
        repo.search(role=role.value if role else None, is_approved=is_approved, search=search),
        pagination.offset, pagination.limit,
    )
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        pagination=pagination.meta(total),
    )


@router.post("", response_model=UserResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_user(
    request: Request,
    body: UserCreateRequest,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    """Create an account with any role. Approved by default."""
    user = AuthService(db).create_account(
        body.email, body.password, body.first_name, body.last_name,
        role_name=body.role.value,
        is_approved=body.is_approved,
        actor=current_user,
        request=request,
    )
    db.commit()
    return UserResponse.model_validate(user)


@router.get("/coordinators", response_model=List[UserSummary])
@limiter.limit(READ_ONLY_LIMIT)
async def list_available_coordinators(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active, approved coordinators, for users who assign them to studies."""
    rbac = get_rbac_authorizer()
    rbac.ensure(
        rbac.check_permission(current_user, Permission.MANAGE_COORDINATORS)
        or rbac.check_permission(current_user, Permission.CREATE_STUDIES),
    )
    return [UserSummary.model_validate(u) for u in UserRepository(db).with_role(RoleName.COORDINATOR.value)]


@router.get("/{user_id}", response_model=UserResponse)
@limiter.limit(READ_ONLY_LIMIT)
async def get_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    return UserResponse.model_validate(_get_user(db, user_id))


@router.put("/{user_id}", response_model=UserResponse)
@limiter.limit(WRITE_LIMIT)
async def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateRequest,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    """Update profile, role or status."""
    user = _get_user(db, user_id)
    data = body.model_dump(exclude_unset=True)

    if user.id == current_user.id and data.get("is_active") is False:
        raise ValidationError("You cannot deactivate your own account")

    repo = UserRepository(db)
    changes = {}
    if "role" in data:
        role_name = data.pop("role")
        role_name = getattr(role_name, "value", role_name)
        if role_name and role_name != user.role_name:
            role = repo.get_role(role_name)
            if role is None:
                raise NotFoundError(f"Role '{role_name}'")
            changes["role"] = {"old": user.role_name, "new": role.name}
            user.role = role

    for key, value in data.items():
        if value is None:
            continue
        old = getattr(user, key)
        if old != value:
            changes[key] = {"old": old, "new": value}
            setattr(user, key, value)

    if changes:
        get_audit_logger().log(
            db, current_user, AuditAction.UPDATE_USER, EntityType.USER, user.id,
            details={"email": user.email, "changes": changes}, request=request,
        )
        db.commit()
        if changes.keys() & ACCESS_FIELDS:
            invalidate_user_caches(user.id)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=MessageResponse)
@limiter.limit(WRITE_LIMIT)
async def deactivate_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    """Deactivate an account. Records are kept for the audit trail."""
    user = _get_user(db, user_id)
    if user.id == current_user.id:
        raise ValidationError("You cannot deactivate your own account")

    user.is_active = False
    get_audit_logger().log(
        db, current_user, AuditAction.DEACTIVATE_USER, EntityType.USER, user.id,
        details={"email": user.email}, request=request,
    )
    db.commit()
    invalidate_user_caches(user.id)
    logger.info(f"User {user.email} deactivated by {current_user.email}")
    return MessageResponse(message="User deactivated successfully")


@router.post("/{user_id}/approve", response_model=UserResponse)
@limiter.limit(WRITE_LIMIT)
async def approve_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    user = _get_user(db, user_id)
    if not user.is_approved:
        user.is_approved = True
        get_audit_logger().log(
            db, current_user, AuditAction.APPROVE_USER, EntityType.USER, user.id,
            details={"email": user.email}, request=request,
        )
        db.commit()
        invalidate_user_caches(user.id)
        logger.info(f"User {user.email} approved by {current_user.email}")
    return UserResponse.model_validate(user)


@roles_router.get("", response_model=List[RoleResponse])
@limiter.limit(READ_ONLY_LIMIT)
async def list_roles(
    request: Request,
    current_user: User = Depends(manage_users),
    db: Session = Depends(get_db),
):
    """Roles with their permission lists."""
    return [RoleResponse.model_validate(r) for r in UserRepository(db).roles()]
