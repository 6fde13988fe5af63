"""Create users table

Revision ID: 001
Revises:
Create Date: 2026-01-12 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users table with role-scoped uniqueness."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("profile_picture", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("reset_token_hash", sa.Text(), nullable=True),
        sa.Column("reset_token_expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'active'")),
        sa.Column("role", sa.Text(), nullable=False, server_default=sa.text("'client'")),
        sa.Column("domain", sa.String(120), nullable=True),
        sa.Column(
            "owning_tenant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("external_identity_id", sa.Text(), nullable=True),
        sa.Column(
            "external_identity_provider",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'local'"),
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("last_login_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "role IN ('administrator', 'customeradmin', 'client')",
            name="users_role_check",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'disabled')",
            name="users_status_check",
        ),
        sa.CheckConstraint(
            "external_identity_provider IN ('local', 'external')",
            name="users_external_identity_provider_check",
        ),
        sa.UniqueConstraint("external_identity_id", name="uq_users_external_identity_id"),
    )

    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_owning_tenant_id", "users", ["owning_tenant_id"])
    op.create_index("ix_users_reset_token_hash", "users", ["reset_token_hash"])

    # Role-scoped uniqueness
    op.create_index(
        "unique_domain_for_customer_admin",
        "users",
        ["domain"],
        unique=True,
        postgresql_where=sa.text("role = 'customeradmin'"),
    )
    op.create_index(
        "unique_admin_email_per_domain",
        "users",
        ["email", "domain"],
        unique=True,
        postgresql_where=sa.text("role = 'customeradmin'"),
    )
    op.create_index(
        "unique_client_email_per_tenant",
        "users",
        ["email", "owning_tenant_id"],
        unique=True,
        postgresql_where=sa.text("role = 'client'"),
    )
    op.create_index(
        "unique_administrator_email",
        "users",
        ["email"],
        unique=True,
        postgresql_where=sa.text("role = 'administrator'"),
    )


def downgrade() -> None:
    """Drop users table."""
    op.drop_index("unique_administrator_email", table_name="users")
    op.drop_index("unique_client_email_per_tenant", table_name="users")
    op.drop_index("unique_admin_email_per_domain", table_name="users")
    op.drop_index("unique_domain_for_customer_admin", table_name="users")
    op.drop_index("ix_users_reset_token_hash", table_name="users")
    op.drop_index("ix_users_owning_tenant_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
