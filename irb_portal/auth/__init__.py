"""
IRB PORTAL - Authentication Module
==================================
JWT authentication, account lockout, RBAC and the hash-chained audit trail.
"""

from .authentication import AuthService
from .jwt_handler import JWTHandler, get_jwt_handler
from .models import Permission, RoleName, has_permission
from .authorization import RBACAuthorizer, get_rbac_authorizer
from .audit import AuditLogger, get_audit_logger
from .password import PasswordHandler, PasswordPolicy, get_password_handler

__all__ = [
    'AuthService',
    'JWTHandler',
    'get_jwt_handler',
    'Permission',
    'RoleName',
    'has_permission',
    'RBACAuthorizer',
    'get_rbac_authorizer',
    'AuditLogger',
    'get_audit_logger',
    'PasswordHandler',
    'PasswordPolicy',
    'get_password_handler',
]
