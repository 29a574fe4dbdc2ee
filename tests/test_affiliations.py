"""Tests for customer affiliations (referral sources)."""
import pytest

from app.crm.db import session_scope
from app.crm.errors import Conflict, PermissionDenied, ValidationFailed
from app.crm.models import Customer, CustomerAffiliation
from app.crm.modules.affiliations.service import (
    create_affiliation,
    delete_affiliation,
    list_affiliations,
    update_affiliation,
)


def test_create_and_list_scoped(app, ident):
    with session_scope(app) as s:
        create_affiliation(s, ident("alice"), {"name": "小红书", "link": "https://example.com/a"})
        create_affiliation(s, ident("bob"), {"name": "抖音"})

    with session_scope(app) as s:
        assert [a.name for a in list_affiliations(s, ident("alice"))] == ["小红书"]
        assert [a.name for a in list_affiliations(s, ident("mgr"))] == []
        assert {a.name for a in list_affiliations(s, ident("admin"))} == {"小红书", "抖音"}


def test_name_required_and_unique(app, ident):
    with session_scope(app) as s:
        with pytest.raises(ValidationFailed):
            create_affiliation(s, ident("alice"), {"name": "  "})
        create_affiliation(s, ident("alice"), {"name": "小红书"})
    with session_scope(app) as s:
        with pytest.raises(Conflict):
            create_affiliation(s, ident("bob"), {"name": "小红书"})


def test_only_owner_or_privileged_may_edit(app, ident):
    with session_scope(app) as s:
        aff_id = create_affiliation(s, ident("alice"), {"name": "小红书"}).id
    with session_scope(app) as s:
        with pytest.raises(PermissionDenied):
            update_affiliation(s, ident("bob"), aff_id, {"link": "https://evil.example"})
        with pytest.raises(PermissionDenied):
            delete_affiliation(s, ident("bob"), aff_id)
    with session_scope(app) as s:
        update_affiliation(s, ident("mgr"), aff_id, {"avatar": "https://example.com/a.png"})
    with session_scope(app) as s:
        assert s.get(CustomerAffiliation, aff_id).avatar == "https://example.com/a.png"


def test_rename_follows_through_to_customers(app, ident):
    with session_scope(app) as s:
        aff_id = create_affiliation(s, ident("alice"), {"name": "小红书"}).id
        s.add(Customer(customer_name="王芳", phone_number="1", affiliation="小红书", submit_user="alice"))
    with session_scope(app) as s:
        update_affiliation(s, ident("alice"), aff_id, {"name": "小红书官方"})
    with session_scope(app) as s:
        assert s.query(Customer).one().affiliation == "小红书官方"


def test_delete_clears_customer_affiliation(app, ident):
    with session_scope(app) as s:
        aff_id = create_affiliation(s, ident("alice"), {"name": "小红书"}).id
        s.add(Customer(customer_name="王芳", phone_number="1", affiliation="小红书", submit_user="alice"))
        s.add(Customer(customer_name="李雷", phone_number="2", affiliation="小红书", submit_user="alice"))
    with session_scope(app) as s:
        assert delete_affiliation(s, ident("alice"), aff_id) == 2
    with session_scope(app) as s:
        assert s.get(CustomerAffiliation, aff_id) is None
        assert {c.affiliation for c in s.query(Customer).all()} == {None}


def test_http_affiliation_flow(client, login):
    login(client, "alice")
    r = client.post("/affiliations", json={"name": "小红书"})
    assert r.status_code == 201
    aff_id = r.json["affiliation"]["id"]

    assert client.post("/affiliations", json={"name": "小红书"}).status_code == 409

    r = client.get("/affiliations")
    assert [a["name"] for a in r.json["affiliations"]] == ["小红书"]

    r = client.post(f"/affiliations/{aff_id}", json={"link": "https://example.com"})
    assert r.status_code == 200
    assert r.json["affiliation"]["link"] == "https://example.com"

    client.get("/auth/logout")
    login(client, "bob")
    r = client.post("/customers", json={"customer_name": "赵强", "phone_number": "3", "affiliation": "小红书"})
    assert r.status_code == 403
    assert r.json["message"] == "只能使用自己创建的客户归属"
    assert client.post(f"/affiliations/{aff_id}/delete").status_code == 403
