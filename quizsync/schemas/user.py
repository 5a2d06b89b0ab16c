"""User & identity schemas."""

import enum

from pydantic import BaseModel

from quizsync.config import SyncMode


class RegistrationStatus(str, enum.Enum):
    SUCCESS = "success"
    ALREADY_EXISTS = "already_exists"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


class UserCreate(BaseModel):
    """POST /api/users/"""

    name: str


class UserSelect(BaseModel):
    """POST /api/users/select"""

    name: str


class RegistrationResult(BaseModel):
    status: RegistrationStatus
    message: str
    user_name: str | None = None

    @property
    def success(self) -> bool:
        return self.status == RegistrationStatus.SUCCESS


class CurrentUserRead(BaseModel):
    user_name: str | None = None
    mode: SyncMode


class UserList(BaseModel):
    users: list[str] = []
    current_user: str | None = None
