from __future__ import annotations

from dataclasses import dataclass

from flask import g

from app.crm.constants import ANONYMOUS_USERNAME, PRIVILEGED_ROLES, ROLE_ADMIN, ROLE_GUEST
from app.crm.errors import NotAuthenticated


@dataclass(frozen=True)
class Identity:
    """
    Request-scoped caller identity. Passed explicitly into every scoping/guard call.
    """

    username: str
    role: str
    user_id: int | None = None

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls(username=ANONYMOUS_USERNAME, role=ROLE_GUEST, user_id=None)

    @classmethod
    def from_user(cls, user) -> "Identity":
        return cls(username=user.username, role=user.role, user_id=user.id)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def current_identity() -> Identity:
    ident = getattr(g, "identity", None)
    return ident if ident is not None else Identity.anonymous()


def require_authenticated(identity: Identity, message: str = "未登录，无法执行操作") -> None:
    if not identity.is_authenticated:
        raise NotAuthenticated(message)
