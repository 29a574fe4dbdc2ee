"""Dashboard windows and rollups, computed against a fixed clock."""
from datetime import datetime

import pytest

from app.crm.constants import CUSTOMER_STATUSES, TRANSACTION_STATUSES
from app.crm.db import session_scope
from app.crm.errors import NotAuthenticated, PermissionDenied, ValidationFailed
from app.crm.identity import Identity
from app.crm.models import Customer, CustomerAffiliation, TransactionDetail
from app.crm.modules.analytics.service import (
    get_customer_stats_by_affiliation,
    get_dashboard_stats,
    get_users_analysis_data,
    percent_change,
    percentage,
)
from app.crm.modules.analytics.windows import Window, period_window, trailing_days

# Wednesday; the week started Monday 2026-10-12.
NOW = datetime(2026, 10, 14, 12, 0)


def _detail(amount, ts):
    return TransactionDetail(product_name="精华液", quantity=1, unit_price=amount, total_amount=amount, transaction_time=ts)


@pytest.fixture()
def sales(app):
    with session_scope(app) as s:
        s.add(CustomerAffiliation(name="小红书", submit_user="alice"))
        s.add(CustomerAffiliation(name="抖音", submit_user="admin"))
        s.add(
            Customer(
                customer_name="王芳",
                phone_number="1",
                affiliation="小红书",
                customer_status="进群",
                transaction_status="已成交",
                submit_user="alice",
                created_at=datetime(2026, 9, 20, 10, 0),
                details=[_detail(200, datetime(2026, 10, 6, 9, 0)), _detail(500, datetime(2026, 10, 8, 9, 0))],
            )
        )
        s.add(
            Customer(
                customer_name="李雷",
                phone_number="2",
                customer_status="进群",
                transaction_status="已成交",
                submit_user="alice",
                created_at=datetime(2026, 10, 13, 10, 0),
                details=[_detail(300, datetime(2026, 10, 13, 10, 0))],
            )
        )
        s.add(
            Customer(
                customer_name="韩梅梅",
                phone_number="3",
                customer_status="返回",
                transaction_status="未成交",
                submit_user="alice",
                created_at=datetime(2026, 10, 13, 11, 0),
            )
        )
        s.add(
            Customer(
                customer_name="赵强",
                phone_number="4",
                affiliation="抖音",
                submit_user="bob",
                created_at=datetime(2026, 8, 1, 10, 0),
                details=[_detail(1000, datetime(2026, 10, 13, 15, 0))],
            )
        )


def test_percentage_and_change_helpers():
    assert percentage(1, 3) == 33.33
    assert percentage(5, 0) == 0
    assert percent_change(500, 0) == 100
    assert percent_change(0, 0) == 100
    assert percent_change(150, 100) == 50
    assert percent_change(50, 100) == -50


def test_period_windows():
    cur, prev = period_window("current_week", NOW)
    assert cur == Window(datetime(2026, 10, 12), NOW)
    assert prev == Window(datetime(2026, 10, 5), datetime(2026, 10, 7, 12, 0))

    cur, prev = period_window("last_week", NOW)
    assert cur == Window(datetime(2026, 10, 5), datetime(2026, 10, 12))
    assert prev == Window(datetime(2026, 9, 28), datetime(2026, 10, 5))

    cur, prev = period_window("last_two", NOW)
    assert cur == Window(datetime(2026, 9, 28), datetime(2026, 10, 12))
    assert prev == Window(datetime(2026, 9, 14), datetime(2026, 9, 28))

    cur, prev = period_window("last_month", NOW)
    assert cur == Window(datetime(2026, 9, 1), datetime(2026, 10, 1))
    assert prev == Window(datetime(2026, 8, 1), datetime(2026, 9, 1))

    cur, prev = period_window("last_quarter", NOW)
    assert cur == Window(datetime(2026, 7, 1), datetime(2026, 10, 1))
    assert prev == Window(datetime(2026, 4, 1), datetime(2026, 7, 1))


def test_period_windows_wrap_year_boundary():
    jan = datetime(2026, 1, 15, 9, 0)
    cur, prev = period_window("last_month", jan)
    assert cur == Window(datetime(2025, 12, 1), datetime(2026, 1, 1))
    assert prev == Window(datetime(2025, 11, 1), datetime(2025, 12, 1))

    cur, prev = period_window("last_quarter", jan)
    assert cur == Window(datetime(2025, 10, 1), datetime(2026, 1, 1))
    assert prev == Window(datetime(2025, 7, 1), datetime(2025, 10, 1))


def test_unknown_period_rejected():
    with pytest.raises(ValidationFailed):
        period_window("yesterday", NOW)


def test_trailing_days_includes_today():
    w = trailing_days(7, NOW)
    assert w.start == datetime(2026, 10, 8)
    assert w.contains(datetime(2026, 10, 14, 8, 0))
    assert not w.contains(datetime(2026, 10, 7, 23, 59))


def test_dashboard_current_week_scoped(app, ident, sales):
    with session_scope(app) as s:
        stats = get_dashboard_stats(s, ident("alice"), "current_week", now=NOW)
    assert stats["transaction_amount"] == {"value": 300, "change": "50.0"}
    assert stats["transaction_count"] == {"value": 1, "change": "0.0"}
    assert stats["avg_order_value"] == {"value": 300, "change": "50.0"}
    assert stats["customer_count"] == {"value": 2, "change": "100.0"}
    assert stats["period_info"]["period"] == "current_week"
    assert stats["period_info"]["start_date"] == "2026-10-12T00:00:00"


def test_dashboard_privileged_sees_all(app, ident, sales):
    with session_scope(app) as s:
        stats = get_dashboard_stats(s, ident("mgr"), "current_week", now=NOW)
    assert stats["transaction_amount"]["value"] == 1300
    assert stats["transaction_count"]["value"] == 2


def test_dashboard_previous_zero_reports_hundred(app, ident, sales):
    with session_scope(app) as s:
        stats = get_dashboard_stats(s, ident("alice"), "last_week", now=NOW)
    assert stats["transaction_amount"] == {"value": 700, "change": "100.0"}
    assert stats["avg_order_value"]["value"] == 350


def test_dashboard_empty_window(app, ident, sales):
    with session_scope(app) as s:
        stats = get_dashboard_stats(s, ident("bob"), "last_quarter", now=NOW)
    assert stats["transaction_amount"]["value"] == 0
    assert stats["avg_order_value"]["value"] == 0


def test_affiliation_stats_for_staff(app, ident, sales):
    with session_scope(app) as s:
        rows = get_customer_stats_by_affiliation(s, ident("alice"))
    assert [r["name"] for r in rows] == ["小红书", "无归属"]

    xhs, unassigned = rows
    assert xhs["customers"]["count"] == 1
    assert xhs["transactions"]["total_amount"] == 700
    assert unassigned["customers"]["count"] == 2
    assert unassigned["customers"]["进群"] == {"count": 1, "percentage": 50.0}
    assert unassigned["customers"]["返回"] == {"count": 1, "percentage": 50.0}
    assert unassigned["transactions"]["total_amount"] == 300


def test_affiliation_stats_for_admin(app, ident, sales):
    with session_scope(app) as s:
        rows = {r["name"]: r for r in get_customer_stats_by_affiliation(s, ident("admin"))}
    assert set(rows) == {"小红书", "抖音", "无归属"}
    assert rows["抖音"]["transactions"]["total_amount"] == 1000
    assert rows["抖音"]["submit_user"] == "admin"


def test_status_percentages_sum_to_hundred(app, ident, sales):
    with session_scope(app) as s:
        rows = get_customer_stats_by_affiliation(s, ident("alice"))
    for row in rows:
        assert sum(row["customers"][k]["percentage"] for k in CUSTOMER_STATUSES) == pytest.approx(100, abs=0.05)
        assert sum(row["transactions"][k]["percentage"] for k in TRANSACTION_STATUSES) == pytest.approx(100, abs=0.05)


def test_users_analysis(app, ident, sales):
    with session_scope(app) as s:
        rows = {r["username"]: r for r in get_users_analysis_data(s, ident("mgr"), now=NOW)}

    alice = rows["alice"]
    assert alice["customers"]["count"] == 3
    assert alice["transactions"]["total_amount"] == 1000
    perf = alice["performance"]
    assert perf["avg_customer_value"] == 333.33
    assert perf["conversion_rate"] == 66.67
    assert perf["recent_customers"] == 2
    assert perf["recent_revenue"] == 800
    assert perf["monthly_customers"] == 3
    assert perf["monthly_revenue"] == 1000

    assert rows["bob"]["performance"]["monthly_customers"] == 0
    assert rows["bob"]["performance"]["recent_revenue"] == 1000
    assert rows["admin"]["customers"]["count"] == 0
    assert rows["admin"]["performance"]["conversion_rate"] == 0


def test_users_analysis_ordered_by_revenue(app, ident, sales):
    with session_scope(app) as s:
        rows = get_users_analysis_data(s, ident("admin"), now=NOW)
    assert [r["username"] for r in rows][:2] in (["alice", "bob"], ["bob", "alice"])
    assert rows[0]["transactions"]["total_amount"] >= rows[1]["transactions"]["total_amount"]


def test_users_analysis_requires_privilege(app, ident, sales):
    with session_scope(app) as s:
        with pytest.raises(PermissionDenied):
            get_users_analysis_data(s, ident("alice"), now=NOW)
        with pytest.raises(NotAuthenticated):
            get_users_analysis_data(s, Identity.anonymous(), now=NOW)


def test_http_analytics_endpoints(client, login, sales):
    login(client, "alice")
    r = client.get("/api/dashboard-stats")
    assert r.status_code == 200
    assert r.json["period_info"]["period"] == "current_week"

    assert client.get("/api/dashboard-stats?period=bogus").status_code == 400
    assert client.get("/api/affiliation-stats").status_code == 200
    assert client.get("/api/users-analysis").status_code == 403

    client.get("/auth/logout")
    login(client, "mgr")
    r = client.get("/api/users-analysis")
    assert r.status_code == 200
    assert {u["username"] for u in r.json["users"]} == {"admin", "mgr", "alice", "bob"}
