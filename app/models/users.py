"""User model definition using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Profile
    Column("full_name", String(120), nullable=False),
    Column("email", Text, nullable=False, index=True),
    Column("phone", String(32)),
    Column("birthday", Date),
    Column("profile_picture", Text),
    # Local credentials (absent for externally-authenticated accounts)
    Column("password_hash", Text),
    Column("reset_token_hash", Text, index=True),
    Column("reset_token_expires_at", DateTime(timezone=True)),
    # Account state
    Column("status", Text, nullable=False, server_default=text("'active'")),
    Column("role", Text, nullable=False, server_default=text("'client'")),
    # Tenancy: customeradmins own a domain, clients point at their customeradmin
    Column("domain", String(120)),
    Column(
        "owning_tenant_id",
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    ),
    # External identity provider binding
    Column("external_identity_id", Text),
    Column(
        "external_identity_provider",
        Text,
        nullable=False,
        server_default=text("'local'"),
    ),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("last_login_at", DateTime(timezone=True)),
    # Constraints
    CheckConstraint(
        "role IN ('administrator', 'customeradmin', 'client')",
        name="users_role_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'active', 'disabled')",
        name="users_status_check",
    ),
    CheckConstraint(
        "external_identity_provider IN ('local', 'external')",
        name="users_external_identity_provider_check",
    ),
    UniqueConstraint("external_identity_id", name="uq_users_external_identity_id"),
)

# Role-scoped uniqueness (partial unique indexes)
Index(
    "unique_domain_for_customer_admin",
    users.c.domain,
    unique=True,
    postgresql_where=text("role = 'customeradmin'"),
    sqlite_where=text("role = 'customeradmin'"),
)
Index(
    "unique_admin_email_per_domain",
    users.c.email,
    users.c.domain,
    unique=True,
    postgresql_where=text("role = 'customeradmin'"),
    sqlite_where=text("role = 'customeradmin'"),
)
Index(
    "unique_client_email_per_tenant",
    users.c.email,
    users.c.owning_tenant_id,
    unique=True,
    postgresql_where=text("role = 'client'"),
    sqlite_where=text("role = 'client'"),
)
Index(
    "unique_administrator_email",
    users.c.email,
    unique=True,
    postgresql_where=text("role = 'administrator'"),
    sqlite_where=text("role = 'administrator'"),
)
