from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    REP = "rep"
    ADMIN = "admin"


POSTING_ROLES = frozenset({Role.FACULTY, Role.REP})


@dataclass(slots=True)
class Principal:
    user_id: str
    role: Role
    is_active: bool
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def owns(self, created_by: str | None) -> bool:
        return created_by is not None and created_by == self.user_id


def parse_role(value: object) -> Role | None:
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None
