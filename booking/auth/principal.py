from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class Principal:
    """The authenticated actor passed into every lifecycle operation."""

    id: int
    roles: frozenset[Role] = field(default_factory=lambda: frozenset({Role.USER}))

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @classmethod
    def from_role_name(cls, user_id: int, role_name: str | None) -> "Principal":
        normalized = (role_name or "").strip().lower()
        if normalized == Role.ADMIN.value:
            return cls(id=user_id, roles=frozenset({Role.ADMIN, Role.USER}))
        return cls(id=user_id, roles=frozenset({Role.USER}))
