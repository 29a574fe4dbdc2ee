"""
Access scoping and the ownership guard.

Reads are narrowed with `customer_scope` / `affiliation_scope`; every write goes
through `require_customer_permission` (or `require_affiliation_owner`) first.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from app.crm.constants import PRIVILEGED_ROLES
from app.crm.errors import NotFound, PermissionDenied
from app.crm.identity import Identity, require_authenticated
from app.crm.models import Customer, CustomerAffiliation

logger = logging.getLogger(__name__)


def is_privileged(role: str | None) -> bool:
    return role in PRIVILEGED_ROLES


def customer_scope(identity: Identity) -> ColumnElement[bool]:
    """Row filter for Customer (and, via join, TransactionDetail) reads."""
    if is_privileged(identity.role):
        return true()
    return Customer.submit_user == identity.username


def customer_search_filter(term: str | None, identity: Identity) -> ColumnElement[bool]:
    """
    Ownership predicate ANDed with the free-text search; never ORed, so a
    non-privileged search cannot reach another user's rows.
    """
    scope = customer_scope(identity)
    term = (term or "").strip()
    if not term:
        return scope

    fields = [
        Customer.customer_name,
        Customer.phone_number,
        Customer.affiliation,
        Customer.customer_status,
        Customer.transaction_status,
        Customer.notes,
    ]
    if is_privileged(identity.role):
        fields.append(Customer.submit_user)
    return and_(scope, or_(*[f.contains(term, autoescape=True) for f in fields]))


def affiliation_scope(identity: Identity) -> ColumnElement[bool]:
    if identity.is_admin:
        return true()
    return CustomerAffiliation.submit_user == identity.username


def has_permission_for_customer(s, identity: Identity, customer_id: int) -> bool:
    require_authenticated(identity)
    if identity.is_privileged:
        return True

    submit_user = s.query(Customer.submit_user).filter(Customer.id == customer_id).scalar()
    if submit_user is None:
        raise NotFound("客户不存在")
    return submit_user == identity.username


def require_customer_permission(s, identity: Identity, customer_id: int, action: str) -> Customer:
    """
    Guard for every customer/detail mutation. Returns the customer on success.
    `action` completes the message "没有权限{action}".
    """
    if not has_permission_for_customer(s, identity, customer_id):
        logger.warning("Permission denied: user=%s customer_id=%s action=%s", identity.username, customer_id, action)
        raise PermissionDenied(f"没有权限{action}")
    customer = s.get(Customer, customer_id)
    if customer is None:
        raise NotFound("客户不存在")
    return customer


def require_affiliation_owner(identity: Identity, affiliation: CustomerAffiliation, action: str) -> None:
    require_authenticated(identity)
    if identity.is_privileged or affiliation.submit_user == identity.username:
        return
    logger.warning("Permission denied: user=%s affiliation=%s action=%s", identity.username, affiliation.name, action)
    raise PermissionDenied(f"没有权限{action}")


def ensure_affiliation_assignable(s, identity: Identity, name: str | None) -> str | None:
    """
    Resolve an affiliation name for assignment to a customer.
    Blank clears it. Non-admins may only use affiliations they created.
    """
    name = (name or "").strip()
    if not name:
        return None
    aff = s.query(CustomerAffiliation).filter(CustomerAffiliation.name == name).one_or_none()
    if aff is None:
        raise NotFound(f"客户归属不存在: {name}")
    if not identity.is_admin and aff.submit_user != identity.username:
        logger.warning("Affiliation %s owned by %s refused for %s", name, aff.submit_user, identity.username)
        raise PermissionDenied("只能使用自己创建的客户归属")
    return aff.name
