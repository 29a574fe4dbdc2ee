from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.crm.errors import NotAuthenticated, PermissionDenied
from app.crm.identity import current_identity


def user_has_role(user, *roles: str) -> bool:
    if not user:
        return False
    return user.role in roles


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not current_identity().is_authenticated:
            raise NotAuthenticated("未登录，请先登录")
        return fn(*args, **kwargs)

    return wrapped


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = getattr(g, "current_user", None)
            # Unauthenticated → 401, authenticated but wrong role → 403
            if not user:
                raise NotAuthenticated("未登录，请先登录")
            if not user_has_role(user, *roles):
                g.missing_role = ",".join(roles)
                raise PermissionDenied("无权限访问，仅限" + "/".join(roles) + "操作")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
