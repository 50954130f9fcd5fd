from pydantic import BaseModel
from enum import Enum
from uuid import UUID


class UserRole(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"


class Actor(BaseModel):
    """
    The authenticated caller of a request.
    Users themselves are managed by the auth service; orders only keep the id.
    """
    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
