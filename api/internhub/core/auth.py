from dataclasses import dataclass
from enum import Enum


class UserRole(str, Enum):
    STUDENT = "student"
    EMPLOYER = "employer"
    ADMIN = "admin"


ROLE_SCOPES: dict[str, set[str]] = {
    UserRole.STUDENT.value: set(),
    UserRole.EMPLOYER.value: set(),
    UserRole.ADMIN.value: {"moderation:read", "moderation:write"},
}


@dataclass(slots=True)
class Principal:
    subject: str
    role: str
    scopes: set[str]

    def require_scopes(self, required: set[str]) -> None:
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def scopes_for_role(role: str) -> set[str]:
    return set(ROLE_SCOPES.get(role, set()))
