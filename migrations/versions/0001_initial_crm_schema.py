"""initial crm schema: users, affiliations, customers, transaction details, audit events

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in inspect(op.get_bind()).get_indexes(table))
        except Exception:
            return False

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("username", sa.String(length=128), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="staff"),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("last_login", sa.DateTime(timezone=False), nullable=True),
            sa.UniqueConstraint("username", name="uq_users_username"),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )

    if "customer_affiliations" not in existing_tables:
        op.create_table(
            "customer_affiliations",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("avatar", sa.Text(), nullable=True),
            sa.Column("link", sa.Text(), nullable=True),
            sa.Column("submit_user", sa.String(length=128), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.UniqueConstraint("name", name="uq_customer_affiliations_name"),
        )

    if "customers" not in existing_tables:
        op.create_table(
            "customers",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("customer_name", sa.String(length=255), nullable=False),
            sa.Column("phone_number", sa.String(length=64), nullable=False),
            sa.Column("affiliation", sa.String(length=255), nullable=True),
            sa.Column("customer_status", sa.String(length=32), nullable=False, server_default="新客户"),
            sa.Column("transaction_status", sa.String(length=32), nullable=False, server_default="未成交"),
            sa.Column("notes", sa.Text(), nullable=False, server_default=""),
            sa.Column("submit_user", sa.String(length=128), nullable=False),
            sa.Column("submit_time", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.UniqueConstraint("phone_number", name="uq_customers_phone_number"),
        )
    for idx_name, cols in (
        ("idx_customers_submit_user", ["submit_user"]),
        ("idx_customers_affiliation", ["affiliation"]),
        ("idx_customers_submit_time", ["submit_time"]),
    ):
        if not _has_index("customers", idx_name):
            op.create_index(idx_name, "customers", cols)

    if "transaction_details" not in existing_tables:
        op.create_table(
            "transaction_details",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("customer_id", sa.Integer(), nullable=False),
            sa.Column("product_name", sa.String(length=255), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_price", sa.Float(), nullable=False),
            sa.Column("total_amount", sa.Float(), nullable=False),
            sa.Column("transaction_time", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="CASCADE"),
        )
    for idx_name, cols in (
        ("idx_transaction_details_customer_id", ["customer_id"]),
        ("idx_transaction_details_time", ["transaction_time"]),
    ):
        if not _has_index("transaction_details", idx_name):
            op.create_index(idx_name, "transaction_details", cols)

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_username", sa.String(length=128), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
        )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_index("idx_transaction_details_time", table_name="transaction_details")
    op.drop_index("idx_transaction_details_customer_id", table_name="transaction_details")
    op.drop_table("transaction_details")
    op.drop_index("idx_customers_submit_time", table_name="customers")
    op.drop_index("idx_customers_affiliation", table_name="customers")
    op.drop_index("idx_customers_submit_user", table_name="customers")
    op.drop_table("customers")
    op.drop_table("customer_affiliations")
    op.drop_table("users")
