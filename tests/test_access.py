"""Ownership scoping, search and the customer mutation guard."""
from datetime import datetime, timedelta

import pytest

from app.crm.access import has_permission_for_customer, require_customer_permission
from app.crm.db import session_scope
from app.crm.errors import NotAuthenticated, NotFound, PermissionDenied
from app.crm.identity import Identity
from app.crm.models import Customer
from app.crm.modules.customers.service import get_customers, update_customer_notes


@pytest.fixture()
def seeded(app):
    base = datetime(2026, 10, 1, 9, 0)
    rows = [
        ("王芳", "13900000001", "alice", base),
        ("李雷", "13900000002", "alice", base + timedelta(hours=1)),
        ("韩梅梅", "13900000003", "alice", base + timedelta(hours=2)),
        ("赵强", "13900000004", "bob", base + timedelta(hours=3)),
    ]
    ids = {}
    with session_scope(app) as s:
        for name, phone, owner, ts in rows:
            c = Customer(customer_name=name, phone_number=phone, submit_user=owner, submit_time=ts, created_at=ts)
            s.add(c)
            s.flush()
            ids[name] = c.id
    return ids


def _names(result):
    return [c.customer_name for c in result["customers"]]


def test_staff_only_sees_own_customers(app, ident, seeded):
    with session_scope(app) as s:
        result = get_customers(s, ident("alice"))
    assert result["total_count"] == 3
    assert _names(result) == ["韩梅梅", "李雷", "王芳"]  # newest submit_time first


def test_privileged_roles_see_everything(app, ident, seeded):
    with session_scope(app) as s:
        assert get_customers(s, ident("mgr"))["total_count"] == 4
        assert get_customers(s, ident("admin"))["total_count"] == 4


def test_staff_search_cannot_reach_other_users_rows(app, ident, seeded):
    with session_scope(app) as s:
        # Bob's customer matches by name, but the ownership predicate is ANDed.
        assert get_customers(s, ident("alice"), search="赵强")["total_count"] == 0
        assert get_customers(s, ident("bob"), search="赵强")["total_count"] == 1


def test_submit_user_is_searchable_only_for_privileged(app, ident, seeded):
    with session_scope(app) as s:
        assert get_customers(s, ident("mgr"), search="bob")["total_count"] == 1
        assert get_customers(s, ident("alice"), search="alice")["total_count"] == 0


def test_search_matches_phone_substring(app, ident, seeded):
    with session_scope(app) as s:
        assert _names(get_customers(s, ident("alice"), search="0002")) == ["李雷"]


def test_pagination(app, ident, seeded):
    with session_scope(app) as s:
        page1 = get_customers(s, ident("alice"), page=1, per_page=2)
        page2 = get_customers(s, ident("alice"), page=2, per_page=2)
    assert page1["total_pages"] == 2
    assert page1["current_page"] == 1
    assert _names(page1) == ["韩梅梅", "李雷"]
    assert _names(page2) == ["王芳"]


def test_guard_denies_non_owner(app, ident, seeded):
    bobs = seeded["赵强"]
    with session_scope(app) as s:
        assert has_permission_for_customer(s, ident("alice"), bobs) is False
        assert has_permission_for_customer(s, ident("bob"), bobs) is True
        assert has_permission_for_customer(s, ident("mgr"), bobs) is True
        with pytest.raises(PermissionDenied) as exc:
            update_customer_notes(s, ident("alice"), bobs, "改一下")
    assert "没有权限" in exc.value.message

    with session_scope(app) as s:
        assert s.get(Customer, bobs).notes == ""


def test_guard_requires_authentication(app, seeded):
    with session_scope(app) as s:
        with pytest.raises(NotAuthenticated):
            has_permission_for_customer(s, Identity.anonymous(), seeded["王芳"])


def test_guard_missing_customer(app, ident, seeded):
    with session_scope(app) as s:
        with pytest.raises(NotFound):
            has_permission_for_customer(s, ident("alice"), 9999)
        with pytest.raises(NotFound):
            require_customer_permission(s, ident("mgr"), 9999, "删除此客户")


def test_http_guard_returns_403(client, login, seeded):
    login(client, "alice")
    r = client.post(f"/customers/{seeded['赵强']}/notes", json={"notes": "x"})
    assert r.status_code == 403
    assert r.json["error"] == "permission_denied"

    r = client.get("/customers")
    assert r.status_code == 200
    assert r.json["total_count"] == 3
    assert {c["submit_user"] for c in r.json["customers"]} == {"alice"}
