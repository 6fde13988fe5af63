"""Identity and tenant directory.

Creates, finds and authenticates users while keeping every client inside the
tenant (customer admin) whose subdomain it was registered under.

Per-role rules are dispatch tables keyed by ``UserRole``; a role without an
entry fails at import time rather than falling through at runtime.
"""

import re
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    DuplicateDomainException,
    NotFoundException,
    TenantNotFoundException,
    ValidationException,
    classify_user_integrity_error,
)
from app.core.security import PasswordHasher
from app.models.users import users
from app.schemas.users import (
    IdentityProvider,
    UserCreate,
    UserRole,
    UserStatus,
    UserUpdate,
    normalize_email,
)
from app.services.credential_service import CredentialService

logger = structlog.get_logger(__name__)

DOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize_domain(value: str | None) -> str | None:
    """Lower-case and trim a tenant subdomain; blank becomes None."""
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


class DirectoryService:
    """Service for tenant-scoped user identity operations."""

    def __init__(self, db: AsyncSession, hasher: PasswordHasher | None = None):
        """Initialize service with database session."""
        self.db = db
        self.credentials = CredentialService(db, hasher=hasher)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _fetch_one(self, *conditions: Any) -> dict | None:
        result = await self.db.execute(select(users).where(and_(*conditions)))
        user = result.mappings().first()
        return dict(user) if user else None

    async def _fetch_all(self, *conditions: Any) -> list[dict]:
        stmt = select(users).where(and_(*conditions)).order_by(users.c.created_at, users.c.id)
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def get_by_id(self, user_id: UUID) -> dict | None:
        """Get user by ID."""
        return await self._fetch_one(users.c.id == user_id)

    async def find_tenant_by_domain(self, domain: str | None) -> dict | None:
        """Find the customer admin owning a subdomain."""
        domain = normalize_domain(domain)
        if domain is None:
            return None
        return await self._fetch_one(
            users.c.domain == domain,
            users.c.role == UserRole.CUSTOMER_ADMIN.value,
        )

    async def require_tenant(self, domain: str | None) -> dict:
        """Resolve a tenant or raise TenantNotFoundException."""
        tenant = await self.find_tenant_by_domain(domain)
        if tenant is None:
            raise TenantNotFoundException(normalize_domain(domain))
        return tenant

    async def find_client_under_tenant(self, email: str, tenant_id: UUID) -> dict | None:
        """Find a client of a specific tenant by email."""
        return await self._fetch_one(
            users.c.email == normalize_email(email),
            users.c.owning_tenant_id == tenant_id,
            users.c.role == UserRole.CLIENT.value,
        )

    async def find_admin_by_email_and_domain(self, email: str, domain: str) -> dict | None:
        """Find a customer admin by email and domain."""
        return await self._fetch_one(
            users.c.email == normalize_email(email),
            users.c.domain == normalize_domain(domain),
            users.c.role == UserRole.CUSTOMER_ADMIN.value,
        )

    async def find_by_email_and_role(self, email: str, role: UserRole) -> dict | None:
        """Find the oldest user with an email and role."""
        matches = await self._fetch_all(
            users.c.email == normalize_email(email),
            users.c.role == role.value,
        )
        return matches[0] if matches else None

    async def find_by_email(self, email: str) -> list[dict]:
        """All users sharing an email, across roles and tenants."""
        return await self._fetch_all(users.c.email == normalize_email(email))

    async def find_by_external_identity(self, external_identity_id: str) -> dict | None:
        """Find the user an external identity is linked to."""
        return await self._fetch_one(users.c.external_identity_id == external_identity_id)

    async def list_users(
        self,
        role: UserRole | None = None,
        tenant_id: UUID | None = None,
    ) -> list[dict]:
        """List users, optionally by role and owning tenant."""
        conditions = []
        if role is not None:
            conditions.append(users.c.role == role.value)
        if tenant_id is not None:
            conditions.append(users.c.owning_tenant_id == tenant_id)
        return await self._fetch_all(*conditions)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def _scope_administrator(
        self, candidate: UserCreate, tenant_header: str | None
    ) -> dict[str, Any]:
        return {"domain": None, "owning_tenant_id": None}

    async def _scope_customer_admin(
        self, candidate: UserCreate, tenant_header: str | None
    ) -> dict[str, Any]:
        domain = normalize_domain(candidate.domain)
        if not domain:
            raise ValidationException("Domain is required for customer admins")
        if not DOMAIN_PATTERN.match(domain):
            raise ValidationException(
                "Domain may only contain lowercase letters, digits and hyphens"
            )
        # The partial unique index remains the authoritative guard
        if await self.find_tenant_by_domain(domain) is not None:
            raise DuplicateDomainException()
        return {"domain": domain, "owning_tenant_id": None}

    async def _scope_client(
        self, candidate: UserCreate, tenant_header: str | None
    ) -> dict[str, Any]:
        tenant = await self.require_tenant(tenant_header)
        return {"domain": None, "owning_tenant_id": tenant["id"]}

    _REGISTRATION_SCOPES: dict[
        UserRole,
        Callable[["DirectoryService", UserCreate, str | None], Awaitable[dict[str, Any]]],
    ] = {
        UserRole.ADMINISTRATOR: _scope_administrator,
        UserRole.CUSTOMER_ADMIN: _scope_customer_admin,
        UserRole.CLIENT: _scope_client,
    }

    async def _insert_user(self, values: dict[str, Any]) -> dict:
        stmt = users.insert().values(**values).returning(users)
        try:
            result = await self.db.execute(stmt)
            user = result.mappings().first()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise classify_user_integrity_error(e) from e

        if not user:
            raise ValueError("Failed to create user")
        return dict(user)

    async def create_user(
        self,
        candidate: UserCreate,
        tenant_header: str | None = None,
    ) -> dict:
        """
        Register a local user.

        Args:
            candidate: Registration data
            tenant_header: Tenant subdomain from the request (clients only)

        Returns:
            Created user

        Raises:
            ValidationException: Missing password or customer admin domain
            TenantNotFoundException: Client registration without a known tenant
            DuplicateDomainException: Domain already owned by a customer admin
            DuplicateEmailException: Email already used within its scope
        """
        if not candidate.password:
            raise ValidationException("Password is required for local authentication")

        scope = self._REGISTRATION_SCOPES[candidate.role]
        scoped = await scope(self, candidate, normalize_domain(tenant_header))

        values = {
            "full_name": candidate.full_name,
            "email": normalize_email(candidate.email),
            "phone": candidate.phone,
            "birthday": candidate.birthday,
            "role": candidate.role.value,
            "status": UserStatus.ACTIVE.value,
            "password_hash": self.credentials.hash_password(candidate.password),
            "external_identity_provider": IdentityProvider.LOCAL.value,
            **scoped,
        }
        user = await self._insert_user(values)

        logger.info(
            "user_registered",
            user_id=str(user["id"]),
            role=user["role"],
            tenant_id=str(user["owning_tenant_id"]) if user["owning_tenant_id"] else None,
        )
        return user

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def _login_candidates_administrator(
        self, email: str, tenant_header: str | None
    ) -> list[dict]:
        user = await self.find_by_email_and_role(email, UserRole.ADMINISTRATOR)
        return [user] if user else []

    async def _login_candidates_customer_admin(
        self, email: str, tenant_header: str | None
    ) -> list[dict]:
        if tenant_header:
            user = await self.find_admin_by_email_and_domain(email, tenant_header)
            return [user] if user else []
        # One person may own several tenants with the same email
        return await self._fetch_all(
            users.c.email == normalize_email(email),
            users.c.role == UserRole.CUSTOMER_ADMIN.value,
        )

    async def _login_candidates_client(self, email: str, tenant_header: str | None) -> list[dict]:
        tenant = await self.require_tenant(tenant_header)
        user = await self.find_client_under_tenant(email, tenant["id"])
        return [user] if user else []

    _LOGIN_CANDIDATES: dict[
        UserRole,
        Callable[["DirectoryService", str, str | None], Awaitable[list[dict]]],
    ] = {
        UserRole.ADMINISTRATOR: _login_candidates_administrator,
        UserRole.CUSTOMER_ADMIN: _login_candidates_customer_admin,
        UserRole.CLIENT: _login_candidates_client,
    }

    async def authenticate(
        self,
        email: str,
        password: str,
        role: UserRole,
        tenant_header: str | None = None,
    ) -> dict | None:
        """
        Verify credentials within a role (and tenant, for clients).

        Args:
            email: Login email
            password: Plaintext password
            role: Role the user is logging in as
            tenant_header: Tenant subdomain from the request

        Returns:
            The authenticated user, or None for any credential failure

        Raises:
            TenantNotFoundException: Client login against an unknown tenant
        """
        lookup = self._LOGIN_CANDIDATES[role]
        candidates = await lookup(self, email, normalize_domain(tenant_header))

        for user in candidates:
            if user["status"] == UserStatus.DISABLED.value:
                continue
            if self.credentials.verify_password(password, user["password_hash"]):
                await self.update_last_login(user["id"])
                logger.info("user_authenticated", user_id=str(user["id"]), role=role.value)
                return user

        logger.info("authentication_failed", role=role.value)
        return None

    async def update_last_login(self, user_id: UUID) -> None:
        """Update user's last login timestamp."""
        stmt = update(users).where(users.c.id == user_id).values(last_login_at=datetime.now(UTC))
        await self.db.execute(stmt)
        await self.db.commit()

    # ------------------------------------------------------------------
    # External identity
    # ------------------------------------------------------------------

    async def link_external_identity(
        self,
        user_id: UUID,
        external_identity_id: str,
        profile_picture: str | None = None,
    ) -> dict:
        """Attach an external identity to an existing account."""
        values: dict[str, Any] = {
            "external_identity_id": external_identity_id,
            "external_identity_provider": IdentityProvider.EXTERNAL.value,
            "updated_at": datetime.now(UTC),
        }
        if profile_picture:
            values["profile_picture"] = profile_picture

        stmt = update(users).where(users.c.id == user_id).values(**values).returning(users)
        try:
            result = await self.db.execute(stmt)
            user = result.mappings().first()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise classify_user_integrity_error(e) from e

        if not user:
            raise NotFoundException("User not found")

        logger.info("external_identity_linked", user_id=str(user_id))
        return dict(user)

    async def resolve_external_identity(
        self,
        external_identity_id: str,
        email: str,
        full_name: str | None = None,
        profile_picture: str | None = None,
        tenant_header: str | None = None,
    ) -> dict:
        """
        Find, link or create the account for an external identity.

        1. An account already linked to ``external_identity_id`` is returned.
        2. Otherwise an account with the same email is linked. With a tenant
           header only that tenant's clients are considered; without one the
           email must identify exactly one account.
        3. Otherwise a new client is created, owned by the tenant when a
           tenant header is given and tenant-less otherwise.

        Raises:
            TenantNotFoundException: Tenant header names an unknown tenant
            ValidationException: Email is ambiguous without a tenant header
        """
        linked = await self.find_by_external_identity(external_identity_id)
        if linked:
            await self.update_last_login(linked["id"])
            return linked

        email = normalize_email(email)
        tenant_header = normalize_domain(tenant_header)
        tenant = await self.require_tenant(tenant_header) if tenant_header else None

        if tenant is not None:
            existing = await self.find_client_under_tenant(email, tenant["id"])
        else:
            matches = await self.find_by_email(email)
            if len(matches) > 1:
                raise ValidationException(
                    "Several accounts use this email; a tenant subdomain is required"
                )
            existing = matches[0] if matches else None

        if existing:
            return await self.link_external_identity(
                existing["id"], external_identity_id, profile_picture
            )

        user = await self._insert_user(
            {
                "full_name": (full_name or email)[:120],
                "email": email,
                "role": UserRole.CLIENT.value,
                "status": UserStatus.ACTIVE.value,
                "password_hash": None,
                "profile_picture": profile_picture,
                "external_identity_id": external_identity_id,
                "external_identity_provider": IdentityProvider.EXTERNAL.value,
                "owning_tenant_id": tenant["id"] if tenant else None,
                "domain": None,
            }
        )
        logger.info(
            "external_user_created",
            user_id=str(user["id"]),
            tenant_id=str(tenant["id"]) if tenant else None,
        )
        return user

    # ------------------------------------------------------------------
    # Profile management
    # ------------------------------------------------------------------

    async def update_profile(self, user_id: UUID, user_data: UserUpdate) -> dict:
        """Update profile fields (and optionally the password)."""
        update_data = user_data.model_dump(exclude_unset=True)
        if update_data.get("full_name") is None:
            update_data.pop("full_name", None)

        password = update_data.pop("password", None)
        if password:
            update_data["password_hash"] = self.credentials.hash_password(password)

        if not update_data:
            user = await self.get_by_id(user_id)
            if not user:
                raise NotFoundException("User not found")
            return user

        update_data["updated_at"] = datetime.now(UTC)

        stmt = update(users).where(users.c.id == user_id).values(**update_data).returning(users)
        result = await self.db.execute(stmt)
        user = result.mappings().first()
        await self.db.commit()

        if not user:
            raise NotFoundException("User not found")
        return dict(user)

    async def set_status(self, user_id: UUID, status: UserStatus) -> dict:
        """Activate or disable an account."""
        stmt = (
            update(users)
            .where(users.c.id == user_id)
            .values(status=status.value, updated_at=datetime.now(UTC))
            .returning(users)
        )
        result = await self.db.execute(stmt)
        user = result.mappings().first()
        await self.db.commit()

        if not user:
            raise NotFoundException("User not found")
        return dict(user)

    async def delete_user(self, user_id: UUID) -> None:
        """
        Hard delete a user.

        Clients of a deleted customer admin keep their accounts (and
        bookings); their ``owning_tenant_id`` becomes NULL.
        """
        result = await self.db.execute(delete(users).where(users.c.id == user_id))
        await self.db.commit()

        if result.rowcount == 0:
            raise NotFoundException("User not found")
        logger.info("user_deleted", user_id=str(user_id))

    async def count_users(self, role: UserRole | None = None) -> int:
        """Number of user accounts, optionally with one role."""
        stmt = select(func.count()).select_from(users)
        if role is not None:
            stmt = stmt.where(users.c.role == role.value)
        result = await self.db.execute(stmt)
        return int(result.scalar() or 0)


_missing_rules = {
    role.value
    for role in UserRole
    if role not in DirectoryService._REGISTRATION_SCOPES
    or role not in DirectoryService._LOGIN_CANDIDATES
}
if _missing_rules:
    raise RuntimeError(f"Directory rules missing for roles: {sorted(_missing_rules)}")
