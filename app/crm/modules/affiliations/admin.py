from __future__ import annotations

from flask import Blueprint, jsonify

from app.crm.db import db_session
from app.crm.identity import current_identity
from app.crm.modules.affiliations.service import (
    create_affiliation,
    delete_affiliation,
    list_affiliations,
    update_affiliation,
)
from app.crm.rbac import require_login
from app.crm.utils import request_payload

bp = Blueprint("affiliations", __name__)


@bp.get("/affiliations")
@require_login
def affiliations_list():
    s = db_session()
    return jsonify({"affiliations": [a.to_dict() for a in list_affiliations(s, current_identity())]})


@bp.post("/affiliations")
@require_login
def affiliations_create():
    s = db_session()
    aff = create_affiliation(s, current_identity(), request_payload())
    s.commit()
    return jsonify({"success": True, "affiliation": aff.to_dict()}), 201


@bp.post("/affiliations/<int:affiliation_id>")
@require_login
def affiliations_update(affiliation_id: int):
    s = db_session()
    aff = update_affiliation(s, current_identity(), affiliation_id, request_payload())
    s.commit()
    return jsonify({"success": True, "affiliation": aff.to_dict()})


@bp.post("/affiliations/<int:affiliation_id>/delete")
@require_login
def affiliations_delete(affiliation_id: int):
    s = db_session()
    cleared = delete_affiliation(s, current_identity(), affiliation_id)
    s.commit()
    return jsonify({"success": True, "customers_cleared": cleared})
