from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.crm.db import db_session
from app.crm.identity import current_identity
from app.crm.modules.customers.service import (
    create_customer,
    create_transaction_detail,
    customer_amount_totals,
    delete_customer,
    get_customer_transaction_details,
    get_customers,
    update_customer_affiliation,
    update_customer_notes,
    update_customer_status,
    update_transaction_status,
)
from app.crm.rbac import require_login
from app.crm.utils import parse_page_args, request_payload

bp = Blueprint("customers", __name__)


def _customer_json(c, amount: float | None = None) -> dict:
    d = c.to_dict()
    d["total_amount"] = round(amount or 0.0, 2)
    return d


# ---------- List / create ----------
@bp.get("/customers")
@require_login
def customers_list():
    s = db_session()
    page, per_page = parse_page_args()
    search = (request.args.get("q") or request.args.get("search") or "").strip()

    result = get_customers(s, current_identity(), search=search, page=page, per_page=per_page)
    amounts = customer_amount_totals(s, [c.id for c in result["customers"]])
    result["customers"] = [_customer_json(c, amounts.get(c.id)) for c in result["customers"]]
    return jsonify(result)


@bp.post("/customers")
@require_login
def customers_create():
    s = db_session()
    c = create_customer(s, current_identity(), request_payload())
    s.commit()
    return jsonify({"success": True, "customer": _customer_json(c)}), 201


# ---------- Field updates ----------
@bp.post("/customers/<int:customer_id>/status")
@require_login
def customers_status(customer_id: int):
    s = db_session()
    payload = request_payload()
    c = update_customer_status(s, current_identity(), customer_id, payload.get("status") or payload.get("customer_status"))
    s.commit()
    return jsonify({"success": True, "customer": c.to_dict()})


@bp.post("/customers/<int:customer_id>/transaction-status")
@require_login
def customers_transaction_status(customer_id: int):
    s = db_session()
    payload = request_payload()
    c = update_transaction_status(
        s, current_identity(), customer_id, payload.get("status") or payload.get("transaction_status")
    )
    s.commit()
    return jsonify({"success": True, "customer": c.to_dict()})


@bp.post("/customers/<int:customer_id>/notes")
@require_login
def customers_notes(customer_id: int):
    s = db_session()
    c = update_customer_notes(s, current_identity(), customer_id, request_payload().get("notes"))
    s.commit()
    return jsonify({"success": True, "customer": c.to_dict()})


@bp.post("/customers/<int:customer_id>/affiliation")
@require_login
def customers_affiliation(customer_id: int):
    s = db_session()
    c = update_customer_affiliation(s, current_identity(), customer_id, request_payload().get("affiliation"))
    s.commit()
    return jsonify({"success": True, "customer": c.to_dict()})


@bp.post("/customers/<int:customer_id>/delete")
@require_login
def customers_delete(customer_id: int):
    s = db_session()
    delete_customer(s, current_identity(), customer_id)
    s.commit()
    return jsonify({"success": True})


# ---------- Transaction details ----------
@bp.get("/customers/<int:customer_id>/details")
@require_login
def customer_details_get(customer_id: int):
    s = db_session()
    return jsonify(get_customer_transaction_details(s, current_identity(), customer_id))


@bp.post("/customers/<int:customer_id>/details")
@require_login
def customer_details_create(customer_id: int):
    s = db_session()
    d = create_transaction_detail(s, current_identity(), customer_id, request_payload())
    s.commit()
    return jsonify({"success": True, "detail": d.to_dict()}), 201
