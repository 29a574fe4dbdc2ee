from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.crm.constants import ROLE_ADMIN
from app.crm.db import db_session
from app.crm.identity import current_identity
from app.crm.modules.accounts.service import admin_reset_password, delete_user, list_users
from app.crm.rbac import require_role
from app.crm.utils import parse_page_args, request_payload

bp = Blueprint("accounts", __name__)


@bp.get("/users")
@require_role(ROLE_ADMIN)
def users_list():
    page, per_page = parse_page_args()
    search = (request.args.get("q") or request.args.get("search") or "").strip()
    return jsonify(list_users(db_session(), current_identity(), search=search, page=page, per_page=per_page))


@bp.post("/users/<int:user_id>/reset-password")
@require_role(ROLE_ADMIN)
def users_reset_password(user_id: int):
    s = db_session()
    user = admin_reset_password(s, current_identity(), user_id, request_payload().get("new_password") or "")
    s.commit()
    return jsonify({"success": True, "user": user.to_dict()})


@bp.post("/users/<int:user_id>/delete")
@require_role(ROLE_ADMIN)
def users_delete(user_id: int):
    s = db_session()
    delete_user(s, current_identity(), user_id)
    s.commit()
    return jsonify({"success": True})
