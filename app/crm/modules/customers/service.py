"""
Customer records and their transaction details.

Every mutation resolves the caller's permission through
`app.crm.access.require_customer_permission` before touching a row.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.crm.access import customer_search_filter, ensure_affiliation_assignable, require_customer_permission
from app.crm.audit import record_event
from app.crm.constants import (
    ALLOWED_CUSTOMER_STATUSES,
    DEFAULT_CUSTOMER_STATUS,
    DEFAULT_TRANSACTION_STATUS,
    TRANSACTION_DONE,
    TRANSACTION_STATUSES,
)
from app.crm.errors import Conflict, ValidationFailed
from app.crm.identity import Identity, require_authenticated
from app.crm.models import Customer, TransactionDetail
from app.crm.utils import normalize_text, total_pages

logger = logging.getLogger(__name__)


def _validate_customer_status(status: str) -> str:
    status = normalize_text(status)
    if status not in ALLOWED_CUSTOMER_STATUSES:
        raise ValidationFailed(f"客户情况必须是: {', '.join(sorted(ALLOWED_CUSTOMER_STATUSES))}")
    return status


def _validate_transaction_status(status: str) -> str:
    status = normalize_text(status)
    if status not in TRANSACTION_STATUSES:
        raise ValidationFailed(f"成交情况必须是: {', '.join(TRANSACTION_STATUSES)}")
    return status


def get_customers(
    s,
    identity: Identity,
    search: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict[str, Any]:
    q = s.query(Customer).filter(customer_search_filter(search, identity))
    total_count = q.count()
    customers = (
        q.order_by(Customer.submit_time.desc(), Customer.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "customers": customers,
        "total_count": total_count,
        "total_pages": total_pages(total_count, per_page),
        "current_page": page,
    }


def customer_amount_totals(s, customer_ids: list[int]) -> dict[int, float]:
    if not customer_ids:
        return {}
    rows = (
        s.query(TransactionDetail.customer_id, func.coalesce(func.sum(TransactionDetail.total_amount), 0.0))
        .filter(TransactionDetail.customer_id.in_(customer_ids))
        .group_by(TransactionDetail.customer_id)
        .all()
    )
    return {int(cid): float(total or 0) for cid, total in rows}


def create_customer(s, identity: Identity, payload: dict[str, Any]) -> Customer:
    require_authenticated(identity)

    customer_name = normalize_text(payload.get("customer_name"))
    phone_number = normalize_text(payload.get("phone_number"))
    if not customer_name or not phone_number:
        raise ValidationFailed("客户名称和手机号是必填项")

    customer_status = _validate_customer_status(payload.get("customer_status") or DEFAULT_CUSTOMER_STATUS)
    transaction_status = _validate_transaction_status(payload.get("transaction_status") or DEFAULT_TRANSACTION_STATUS)
    affiliation = ensure_affiliation_assignable(s, identity, payload.get("affiliation"))

    if s.query(Customer.id).filter(Customer.phone_number == phone_number).first():
        raise Conflict("该客户信息已存在，请检查手机号是否重复")

    now = datetime.now()
    c = Customer(
        customer_name=customer_name,
        phone_number=phone_number,
        affiliation=affiliation,
        customer_status=customer_status,
        transaction_status=transaction_status,
        notes=normalize_text(payload.get("notes")),
        submit_user=identity.username,
        submit_time=now,
        created_at=now,
    )
    s.add(c)
    try:
        s.flush()
    except IntegrityError:
        s.rollback()
        raise Conflict("该客户信息已存在，请检查手机号是否重复")

    record_event(
        s,
        actor=identity,
        action="customer.create",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"customer_name": c.customer_name, "affiliation": c.affiliation},
    )
    logger.info("Customer %s created by %s", c.id, identity.username)
    return c


def update_customer_status(s, identity: Identity, customer_id: int, status: str) -> Customer:
    c = require_customer_permission(s, identity, customer_id, "更新此客户的状态")
    before = c.customer_status
    c.customer_status = _validate_customer_status(status)
    c.submit_time = datetime.now()
    record_event(
        s,
        actor=identity,
        action="customer.status_update",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"before": before, "after": c.customer_status},
    )
    return c


def update_transaction_status(s, identity: Identity, customer_id: int, status: str) -> Customer:
    c = require_customer_permission(s, identity, customer_id, "更新此客户的成交状态")
    before = c.transaction_status
    c.transaction_status = _validate_transaction_status(status)
    record_event(
        s,
        actor=identity,
        action="customer.transaction_status_update",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"before": before, "after": c.transaction_status},
    )
    return c


def update_customer_notes(s, identity: Identity, customer_id: int, notes: str | None) -> Customer:
    c = require_customer_permission(s, identity, customer_id, "更新此客户的备注")
    c.notes = normalize_text(notes)
    record_event(s, actor=identity, action="customer.notes_update", entity_type="Customer", entity_id=str(c.id))
    return c


def update_customer_affiliation(s, identity: Identity, customer_id: int, affiliation: str | None) -> Customer:
    c = require_customer_permission(s, identity, customer_id, "更新此客户的归属")
    before = c.affiliation
    c.affiliation = ensure_affiliation_assignable(s, identity, affiliation)
    c.submit_time = datetime.now()
    record_event(
        s,
        actor=identity,
        action="customer.affiliation_update",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"before": before, "after": c.affiliation},
    )
    return c


def delete_customer(s, identity: Identity, customer_id: int) -> Customer:
    c = require_customer_permission(s, identity, customer_id, "删除此客户")
    record_event(
        s,
        actor=identity,
        action="customer.delete",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"customer_name": c.customer_name, "detail_count": len(c.details)},
    )
    # Transaction details go with it (ORM cascade + ON DELETE CASCADE).
    s.delete(c)
    logger.info("Customer %s deleted by %s", customer_id, identity.username)
    return c


def _parse_detail_payload(payload: dict[str, Any]) -> tuple[str, int, float, float]:
    product_name = normalize_text(payload.get("product_name"))
    if not product_name:
        raise ValidationFailed("商品名称是必填项")
    try:
        quantity = int(normalize_text(payload.get("quantity")))
        unit_price = float(normalize_text(payload.get("unit_price")))
    except ValueError:
        raise ValidationFailed("数量必须是整数，单价必须是数字")
    if not math.isfinite(unit_price):
        raise ValidationFailed("数量必须是整数，单价必须是数字")
    if quantity <= 0 or unit_price < 0:
        raise ValidationFailed("数量必须大于0，单价不能为负数")

    raw_total = normalize_text(payload.get("total_amount"))
    if not raw_total:
        total_amount = quantity * unit_price
    else:
        try:
            total_amount = float(raw_total)
        except ValueError:
            raise ValidationFailed("成交金额必须是数字")
        if not math.isfinite(total_amount):
            raise ValidationFailed("成交金额必须是数字")
    return product_name, quantity, unit_price, total_amount


def create_transaction_detail(s, identity: Identity, customer_id: int, payload: dict[str, Any]) -> TransactionDetail:
    c = require_customer_permission(s, identity, customer_id, "为此客户添加成交记录")
    product_name, quantity, unit_price, total_amount = _parse_detail_payload(payload)

    now = datetime.now()
    d = TransactionDetail(
        customer_id=c.id,
        product_name=product_name,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=total_amount,
        transaction_time=now,
    )
    s.add(d)
    # A recorded sale always closes the deal, whatever the prior status.
    c.transaction_status = TRANSACTION_DONE
    c.submit_time = now
    s.flush()

    record_event(
        s,
        actor=identity,
        action="transaction_detail.create",
        entity_type="TransactionDetail",
        entity_id=str(d.id),
        metadata={"customer_id": c.id, "total_amount": total_amount},
    )
    return d


def get_customer_transaction_details(s, identity: Identity, customer_id: int) -> dict[str, Any]:
    require_customer_permission(s, identity, customer_id, "查看此客户的成交明细")
    details = (
        s.query(TransactionDetail)
        .filter(TransactionDetail.customer_id == customer_id)
        .order_by(TransactionDetail.transaction_time.desc(), TransactionDetail.id.desc())
        .all()
    )
    return {
        "details": [d.to_dict() for d in details],
        "total_quantity": sum(d.quantity for d in details),
        "total_unit_price": sum(d.unit_price for d in details),
        "total_amount": sum(d.total_amount for d in details),
        "products": [d.product_name for d in details],
        "has_details": bool(details),
    }
