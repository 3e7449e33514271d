"""Storage layer: models, session management and repositories."""

from bondly_api.storage.database import DatabaseManager
from bondly_api.storage.models import (
    AirdropKind,
    AirdropRecordModel,
    AirdropStatus,
    Base,
    UserModel,
    UserRole,
)
from bondly_api.storage.repos import (
    AirdropRecordDTO,
    AirdropRepository,
    UserDTO,
    UserRepository,
)

__all__ = [
    "AirdropKind",
    "AirdropRecordDTO",
    "AirdropRecordModel",
    "AirdropRepository",
    "AirdropStatus",
    "Base",
    "DatabaseManager",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "UserRole",
]
