"""
Dashboard and rollup aggregates.

All three rollups share one shape: scope the records, bucket them by a
dimension, report count + percentage-of-total per bucket and sum amounts.
Aggregation runs in Python over the scoped rows, the same way the sales
dashboard computes its figures on demand.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func

from app.crm.access import affiliation_scope, customer_scope
from app.crm.constants import (
    CUSTOMER_STATUSES,
    DEFAULT_DASHBOARD_PERIOD,
    TRANSACTION_DONE,
    TRANSACTION_STATUSES,
    UNASSIGNED_AFFILIATION,
)
from app.crm.errors import PermissionDenied
from app.crm.identity import Identity, require_authenticated
from app.crm.models import Customer, CustomerAffiliation, TransactionDetail, User
from app.crm.modules.analytics.windows import Window, period_window, trailing_days
from app.crm.modules.customers.service import customer_amount_totals


def percentage(value: float, total: float) -> float:
    if not total:
        return 0
    return round(value / total * 100, 2)


def percent_change(current: float, previous: float) -> float:
    if not previous:
        return 100.0
    return (current - previous) / previous * 100


def _format_change(current: float, previous: float) -> str:
    return f"{percent_change(current, previous):.1f}"


def _window_totals(s, identity: Identity, window: Window) -> dict[str, float]:
    amount, count = (
        s.query(func.coalesce(func.sum(TransactionDetail.total_amount), 0.0), func.count(TransactionDetail.id))
        .join(Customer, Customer.id == TransactionDetail.customer_id)
        .filter(customer_scope(identity))
        .filter(TransactionDetail.transaction_time >= window.start, TransactionDetail.transaction_time < window.end)
        .one()
    )
    customers = (
        s.query(func.count(Customer.id))
        .filter(customer_scope(identity))
        .filter(Customer.created_at >= window.start, Customer.created_at < window.end)
        .scalar()
    )
    amount = float(amount or 0)
    count = int(count or 0)
    return {
        "amount": amount,
        "count": count,
        "avg": amount / count if count else 0,
        "customers": int(customers or 0),
    }


def get_dashboard_stats(s, identity: Identity, period: str | None = None, now: datetime | None = None) -> dict[str, Any]:
    period = period or DEFAULT_DASHBOARD_PERIOD
    now = now or datetime.now()
    current_window, previous_window = period_window(period, now)

    cur = _window_totals(s, identity, current_window)
    prev = _window_totals(s, identity, previous_window)

    return {
        "transaction_amount": {"value": round(cur["amount"], 2), "change": _format_change(cur["amount"], prev["amount"])},
        "avg_order_value": {"value": round(cur["avg"], 2), "change": _format_change(cur["avg"], prev["avg"])},
        "transaction_count": {"value": cur["count"], "change": _format_change(cur["count"], prev["count"])},
        "customer_count": {"value": cur["customers"], "change": _format_change(cur["customers"], prev["customers"])},
        "period_info": {
            "start_date": current_window.start.isoformat(),
            "end_date": current_window.end.isoformat(),
            "period": period,
        },
    }


def _status_breakdown(customers: list[Customer], amounts: dict[int, float]) -> dict[str, Any]:
    total = len(customers)
    by_status = Counter(c.customer_status for c in customers)
    by_transaction = Counter(c.transaction_status for c in customers)

    customer_part: dict[str, Any] = {"count": total}
    for label in CUSTOMER_STATUSES:
        customer_part[label] = {"count": by_status[label], "percentage": percentage(by_status[label], total)}

    transaction_part: dict[str, Any] = {}
    for label in TRANSACTION_STATUSES:
        transaction_part[label] = {"count": by_transaction[label], "percentage": percentage(by_transaction[label], total)}
    transaction_part["total_amount"] = round(sum(amounts.get(c.id, 0.0) for c in customers), 2)

    return {"customers": customer_part, "transactions": transaction_part}


def get_customer_stats_by_affiliation(s, identity: Identity) -> list[dict[str, Any]]:
    affiliations = (
        s.query(CustomerAffiliation)
        .filter(affiliation_scope(identity))
        .order_by(CustomerAffiliation.name.asc())
        .all()
    )
    customers = s.query(Customer).filter(customer_scope(identity)).all()
    amounts = customer_amount_totals(s, [c.id for c in customers])

    by_affiliation: dict[str | None, list[Customer]] = defaultdict(list)
    for c in customers:
        by_affiliation[(c.affiliation or "").strip() or None].append(c)

    out: list[dict[str, Any]] = []
    for aff in affiliations:
        row = {"name": aff.name, "avatar": aff.avatar, "link": aff.link, "submit_user": aff.submit_user}
        row.update(_status_breakdown(by_affiliation.get(aff.name, []), amounts))
        out.append(row)

    unassigned = by_affiliation.get(None, [])
    if unassigned:
        row = {"name": UNASSIGNED_AFFILIATION, "avatar": None, "link": None, "submit_user": None}
        row.update(_status_breakdown(unassigned, amounts))
        out.append(row)
    return out


def _sum_in(window: Window, rows: Iterable[tuple[datetime, float]]) -> float:
    return round(sum(amount for ts, amount in rows if window.contains(ts)), 2)


def get_users_analysis_data(s, identity: Identity, now: datetime | None = None) -> list[dict[str, Any]]:
    require_authenticated(identity)
    if not identity.is_privileged:
        raise PermissionDenied("无权限访问，仅限管理员和经理查看")
    now = now or datetime.now()
    recent = trailing_days(7, now)
    monthly = trailing_days(30, now)

    users = s.query(User).order_by(User.username.asc()).all()

    customers_by_user: dict[str, list[Customer]] = defaultdict(list)
    for c in s.query(Customer).all():
        customers_by_user[c.submit_user].append(c)

    amounts_by_customer = customer_amount_totals(s, [c.id for cs in customers_by_user.values() for c in cs])

    details_by_user: dict[str, list[tuple[datetime, float]]] = defaultdict(list)
    detail_rows = (
        s.query(Customer.submit_user, TransactionDetail.transaction_time, TransactionDetail.total_amount)
        .join(Customer, Customer.id == TransactionDetail.customer_id)
        .all()
    )
    for submit_user, ts, amount in detail_rows:
        details_by_user[submit_user].append((ts, float(amount or 0)))

    out: list[dict[str, Any]] = []
    for u in users:
        customers = customers_by_user.get(u.username, [])
        details = details_by_user.get(u.username, [])
        breakdown = _status_breakdown(customers, amounts_by_customer)
        total_amount = breakdown["transactions"]["total_amount"]
        count = len(customers)
        done = breakdown["transactions"][TRANSACTION_DONE]["count"]

        out.append(
            {
                "id": u.id,
                "username": u.username,
                "email": u.email,
                "role": u.role,
                "last_login": u.last_login.isoformat() if u.last_login else None,
                **breakdown,
                "performance": {
                    "avg_customer_value": round(total_amount / count, 2) if count else 0,
                    "conversion_rate": percentage(done, count),
                    "recent_customers": sum(1 for c in customers if recent.contains(c.created_at)),
                    "recent_revenue": _sum_in(recent, details),
                    "monthly_customers": sum(1 for c in customers if monthly.contains(c.created_at)),
                    "monthly_revenue": _sum_in(monthly, details),
                },
            }
        )

    out.sort(key=lambda r: r["transactions"]["total_amount"], reverse=True)
    return out
