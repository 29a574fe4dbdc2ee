from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.crm.audit import record_event
from app.crm.constants import ROLE_ADMIN, ROLE_STAFF
from app.crm.errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from app.crm.identity import Identity, require_authenticated
from app.crm.models import User
from app.crm.utils import normalize_text, total_pages

logger = logging.getLogger(__name__)

_EMAIL_RX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return normalize_text(value).lower() in ("1", "true", "yes", "on")


def _require_admin(identity: Identity, message: str) -> None:
    require_authenticated(identity)
    if not identity.is_admin:
        raise PermissionDenied(message)


def get_user_by_id(s, user_id: int) -> User | None:
    return s.get(User, user_id)


def register_user(s, payload: dict[str, Any]) -> User:
    email = normalize_text(payload.get("email")).lower()
    username = normalize_text(payload.get("username") or payload.get("name"))
    password = payload.get("password") or ""

    if not email or not username or not password:
        raise ValidationFailed("邮箱、姓名和密码是必填项")
    if not _EMAIL_RX.match(email):
        raise ValidationFailed("邮箱格式不正确")
    if s.query(User).filter(User.email == email).one_or_none():
        raise Conflict("该邮箱已被注册")
    if s.query(User).filter(User.username == username).one_or_none():
        raise Conflict("该用户名已被使用")

    user = User(
        email=email,
        username=username,
        password_hash=generate_password_hash(password),
        role=ROLE_ADMIN if _truthy(payload.get("is_admin")) else ROLE_STAFF,
    )
    s.add(user)
    try:
        s.flush()
    except IntegrityError:
        s.rollback()
        raise Conflict("该邮箱或用户名已被使用")

    actor = Identity.from_user(user)
    record_event(s, actor=actor, action="user.register", entity_type="User", entity_id=str(user.id), metadata={"role": user.role})
    logger.info("Registered user %s (role=%s)", user.username, user.role)
    return user


def authenticate(s, login: str, password: str) -> User | None:
    """
    Look up by email first, then by username. Returns None on bad credentials.
    """
    login = normalize_text(login)
    if not login or not password:
        return None
    user = s.query(User).filter(User.email == login.lower()).one_or_none()
    if user is None:
        user = s.query(User).filter(User.username == login).one_or_none()
    if user is None or not check_password_hash(user.password_hash, password):
        return None
    user.last_login = datetime.now()
    return user


def change_own_password(s, identity: Identity, current_password: str, new_password: str) -> None:
    require_authenticated(identity, "未登录，无法更新密码")
    if not current_password or not new_password:
        raise ValidationFailed("当前密码和新密码是必填项")
    user = get_user_by_id(s, identity.user_id)
    if user is None:
        raise NotFound("用户不存在")
    if not check_password_hash(user.password_hash, current_password):
        raise ValidationFailed("当前密码不正确")
    user.password_hash = generate_password_hash(new_password)
    record_event(s, actor=identity, action="user.password_change", entity_type="User", entity_id=str(user.id))


def list_users(s, identity: Identity, search: str | None = None, page: int = 1, per_page: int = 10) -> dict[str, Any]:
    _require_admin(identity, "无权限访问，仅限管理员操作")

    q = s.query(User)
    term = normalize_text(search)
    if term:
        q = q.filter(or_(User.username.contains(term, autoescape=True), User.email.contains(term, autoescape=True)))

    total_count = q.count()
    users = (
        q.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "users": [u.to_dict() for u in users],
        "total_count": total_count,
        "total_pages": total_pages(total_count, per_page),
        "current_page": page,
    }


def admin_reset_password(s, identity: Identity, user_id: int, new_password: str) -> User:
    _require_admin(identity, "无权限执行此操作，仅限管理员操作")
    if not user_id or not new_password:
        raise ValidationFailed("用户ID和新密码是必填项")
    user = get_user_by_id(s, user_id)
    if user is None:
        raise NotFound("用户不存在")
    user.password_hash = generate_password_hash(new_password)
    record_event(
        s,
        actor=identity,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"target_username": user.username},
    )
    return user


def delete_user(s, identity: Identity, user_id: int) -> User:
    _require_admin(identity, "无权限执行此操作，仅限管理员操作")
    if identity.user_id == user_id:
        raise ValidationFailed("不能删除自己的账户")
    user = get_user_by_id(s, user_id)
    if user is None:
        raise NotFound("用户不存在")
    record_event(
        s,
        actor=identity,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"username": user.username, "email": user.email},
    )
    s.delete(user)
    logger.info("User %s deleted by %s", user.username, identity.username)
    return user
