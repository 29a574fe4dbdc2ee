from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.crm.constants import DEFAULT_DASHBOARD_PERIOD
from app.crm.db import db_session
from app.crm.identity import current_identity
from app.crm.modules.analytics.service import (
    get_customer_stats_by_affiliation,
    get_dashboard_stats,
    get_users_analysis_data,
)
from app.crm.rbac import require_login

bp = Blueprint("analytics", __name__)


@bp.get("/dashboard-stats")
@require_login
def dashboard_stats():
    period = (request.args.get("period") or DEFAULT_DASHBOARD_PERIOD).strip()
    return jsonify(get_dashboard_stats(db_session(), current_identity(), period))


@bp.get("/affiliation-stats")
@require_login
def affiliation_stats():
    return jsonify({"affiliations": get_customer_stats_by_affiliation(db_session(), current_identity())})


@bp.get("/users-analysis")
@require_login
def users_analysis():
    return jsonify({"users": get_users_analysis_data(db_session(), current_identity())})
