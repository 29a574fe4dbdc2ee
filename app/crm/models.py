from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.crm.constants import DEFAULT_CUSTOMER_STATUS, DEFAULT_TRANSACTION_STATUS, ROLE_STAFF


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_STAFF)  # admin/manager/staff/guest
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.now)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_login": self.last_login.isoformat() if self.last_login else None,
        }


class CustomerAffiliation(Base):
    """
    A named referral source. Owned by the user who created it.
    """

    __tablename__ = "customer_affiliations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    submit_user: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "link": self.link,
            "submit_user": self.submit_user,
        }


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_submit_user", "submit_user"),
        Index("idx_customers_affiliation", "affiliation"),
        Index("idx_customers_submit_time", "submit_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # Plain name, not a foreign key: survives affiliation renames as a snapshot.
    affiliation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_status: Mapped[str] = mapped_column(String(32), nullable=False, default=DEFAULT_CUSTOMER_STATUS)
    transaction_status: Mapped[str] = mapped_column(String(32), nullable=False, default=DEFAULT_TRANSACTION_STATUS)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Denormalized creator username; not kept in sync with later renames.
    submit_user: Mapped[str] = mapped_column(String(128), nullable=False)
    submit_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.now)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.now)

    details: Mapped[list["TransactionDetail"]] = relationship(
        "TransactionDetail",
        back_populates="customer",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "phone_number": self.phone_number,
            "affiliation": self.affiliation,
            "customer_status": self.customer_status,
            "transaction_status": self.transaction_status,
            "notes": self.notes,
            "submit_user": self.submit_user,
            "submit_time": self.submit_time.isoformat() if self.submit_time else None,
        }


class TransactionDetail(Base):
    __tablename__ = "transaction_details"
    __table_args__ = (
        Index("idx_transaction_details_customer_id", "customer_id"),
        Index("idx_transaction_details_time", "transaction_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    transaction_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.now)

    customer: Mapped[Customer] = relationship("Customer", back_populates="details")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_amount": self.total_amount,
            "transaction_time": self.transaction_time.isoformat() if self.transaction_time else None,
        }


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.now)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_username: Mapped[str | None] = mapped_column(String(128), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "customer.create"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Customer"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
