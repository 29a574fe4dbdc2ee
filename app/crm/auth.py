from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session

from app.crm.audit import record_event
from app.crm.db import db_session
from app.crm.errors import NotAuthenticated
from app.crm.identity import Identity, current_identity
from app.crm.models import User
from app.crm.modules.accounts.service import authenticate, change_own_password, register_user
from app.crm.rbac import require_login
from app.crm.security import ensure_csrf_token
from app.crm.utils import request_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.now()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.now())


def load_current_user() -> None:
    """
    Loads g.current_user / g.identity from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.identity = Identity.anonymous()
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user:
            session.pop("user_id", None)
            return
        g.current_user = user
        g.identity = Identity.from_user(user)
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)


@bp.post("/login")
def login_post():
    payload = request_payload()
    login = (payload.get("login") or payload.get("email") or "").strip()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "rate_limited", "message": "登录尝试次数过多，请5分钟后再试"}), 429

    _record_attempt(ip)

    try:
        s = db_session()
        user = authenticate(s, login, password)
        if user is None:
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=login,
                reason="Invalid credentials",
            )
            s.commit()
            raise NotAuthenticated("用户名或密码错误")

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        _login_attempts[ip].clear()
        record_event(s, actor=Identity.from_user(user), action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify({"user": user.to_dict(), "csrf_token": ensure_csrf_token()})
    except NotAuthenticated:
        raise
    except Exception:
        current_app.logger.exception("Login POST crashed (login=%s request_id=%s)", login, getattr(g, "request_id", None))
        raise


@bp.get("/logout")
def logout():
    s = db_session()
    identity = current_identity()
    if identity.is_authenticated:
        record_event(s, actor=identity, action="auth.logout", entity_type="User", entity_id=str(identity.user_id))
        s.commit()
    session.clear()
    return jsonify({"ok": True})


@bp.post("/register")
def register_post():
    s = db_session()
    user = register_user(s, request_payload())
    s.commit()
    return jsonify({"success": True, "user": user.to_dict()}), 201


@bp.post("/password")
@require_login
def password_post():
    s = db_session()
    payload = request_payload()
    change_own_password(
        s,
        current_identity(),
        payload.get("current_password") or "",
        payload.get("new_password") or "",
    )
    s.commit()
    return jsonify({"success": True})


@bp.get("/me")
@require_login
def me():
    user: User = g.current_user
    return jsonify({"user": user.to_dict(), "csrf_token": ensure_csrf_token()})
