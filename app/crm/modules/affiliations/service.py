from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from app.crm.access import affiliation_scope, require_affiliation_owner
from app.crm.audit import record_event
from app.crm.errors import Conflict, NotFound, ValidationFailed
from app.crm.identity import Identity, require_authenticated
from app.crm.models import Customer, CustomerAffiliation
from app.crm.utils import normalize_text

logger = logging.getLogger(__name__)


def list_affiliations(s, identity: Identity) -> list[CustomerAffiliation]:
    return (
        s.query(CustomerAffiliation)
        .filter(affiliation_scope(identity))
        .order_by(CustomerAffiliation.name.asc())
        .all()
    )


def _get_affiliation(s, affiliation_id: int) -> CustomerAffiliation:
    aff = s.get(CustomerAffiliation, affiliation_id)
    if aff is None:
        raise NotFound("客户归属不存在")
    return aff


def _name_taken(s, name: str, exclude_id: int | None = None) -> bool:
    q = s.query(CustomerAffiliation.id).filter(CustomerAffiliation.name == name)
    if exclude_id is not None:
        q = q.filter(CustomerAffiliation.id != exclude_id)
    return q.first() is not None


def create_affiliation(s, identity: Identity, payload: dict[str, Any]) -> CustomerAffiliation:
    require_authenticated(identity)
    name = normalize_text(payload.get("name"))
    if not name:
        raise ValidationFailed("归属名称是必填项")
    if _name_taken(s, name):
        raise Conflict("该归属名称已存在")

    aff = CustomerAffiliation(
        name=name,
        avatar=normalize_text(payload.get("avatar")) or None,
        link=normalize_text(payload.get("link")) or None,
        submit_user=identity.username,
    )
    s.add(aff)
    try:
        s.flush()
    except IntegrityError:
        s.rollback()
        raise Conflict("该归属名称已存在")

    record_event(s, actor=identity, action="affiliation.create", entity_type="CustomerAffiliation", entity_id=str(aff.id), metadata={"name": name})
    return aff


def update_affiliation(s, identity: Identity, affiliation_id: int, payload: dict[str, Any]) -> CustomerAffiliation:
    aff = _get_affiliation(s, affiliation_id)
    require_affiliation_owner(identity, aff, "修改此客户归属")

    before = aff.to_dict()
    if "name" in payload:
        name = normalize_text(payload.get("name"))
        if not name:
            raise ValidationFailed("归属名称是必填项")
        if name != aff.name:
            if _name_taken(s, name, exclude_id=aff.id):
                raise Conflict("该归属名称已存在")
            # Customers reference affiliations by name.
            s.query(Customer).filter(Customer.affiliation == aff.name).update(
                {Customer.affiliation: name}, synchronize_session=False
            )
            aff.name = name
    if "avatar" in payload:
        aff.avatar = normalize_text(payload.get("avatar")) or None
    if "link" in payload:
        aff.link = normalize_text(payload.get("link")) or None

    record_event(
        s,
        actor=identity,
        action="affiliation.update",
        entity_type="CustomerAffiliation",
        entity_id=str(aff.id),
        metadata={"before": before, "after": aff.to_dict()},
    )
    return aff


def delete_affiliation(s, identity: Identity, affiliation_id: int) -> int:
    """Delete an affiliation and clear it on its customers. Returns the number of customers cleared."""
    aff = _get_affiliation(s, affiliation_id)
    require_affiliation_owner(identity, aff, "删除此客户归属")

    cleared = (
        s.query(Customer)
        .filter(Customer.affiliation == aff.name)
        .update({Customer.affiliation: None}, synchronize_session=False)
    )
    record_event(
        s,
        actor=identity,
        action="affiliation.delete",
        entity_type="CustomerAffiliation",
        entity_id=str(aff.id),
        metadata={"name": aff.name, "customers_cleared": cleared},
    )
    s.delete(aff)
    logger.info("Affiliation %s deleted by %s (%s customers cleared)", aff.name, identity.username, cleared)
    return cleared
