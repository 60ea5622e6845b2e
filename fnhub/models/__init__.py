"""SQLAlchemy ORM models for FnHub."""

from fnhub.models.audit import FunctionAuditLog
from fnhub.models.base import Base
from fnhub.models.function import CloudFunction
from fnhub.models.git_config import GitConfig
from fnhub.models.user import User

__all__ = [
    "Base",
    "CloudFunction",
    "FunctionAuditLog",
    "GitConfig",
    "User",
]
