from __future__ import annotations

from datetime import datetime
from io import BytesIO

from flask import Blueprint, send_file

from app.crm.db import db_session
from app.crm.identity import current_identity
from app.crm.modules.exports.service import (
    XLSX_MIMETYPE,
    export_affiliation_stats_xlsx,
    export_customers_xlsx,
    export_users_analysis_xlsx,
)
from app.crm.rbac import require_login

bp = Blueprint("exports", __name__)


def _send_xlsx(data: bytes, stem: str):
    filename = f"{stem}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return send_file(BytesIO(data), mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


@bp.get("/customers.xlsx")
@require_login
def customers_xlsx():
    return _send_xlsx(export_customers_xlsx(db_session(), current_identity()), "customers")


@bp.get("/affiliation-stats.xlsx")
@require_login
def affiliation_stats_xlsx():
    return _send_xlsx(export_affiliation_stats_xlsx(db_session(), current_identity()), "affiliation_stats")


@bp.get("/users-analysis.xlsx")
@require_login
def users_analysis_xlsx():
    return _send_xlsx(export_users_analysis_xlsx(db_session(), current_identity()), "users_analysis")
