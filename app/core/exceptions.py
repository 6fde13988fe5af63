"""Custom application exceptions."""

from sqlalchemy.exc import IntegrityError


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class TenantNotFoundException(NotFoundException):
    """Referenced tenant subdomain does not exist (or was not supplied)."""

    def __init__(self, domain: str | None = None):
        """Initialize with the unresolved tenant domain."""
        self.domain = domain
        if domain:
            message = f"Tenant '{domain}' not found"
        else:
            message = "Tenant subdomain is required"
        super().__init__(message)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class DuplicateEmailException(ConflictException):
    """Email already registered within its uniqueness scope."""

    def __init__(self, message: str = "Email already exists"):
        """Initialize with 409 status code."""
        super().__init__(message)


class DuplicateDomainException(ConflictException):
    """Tenant domain already owned by another customer admin."""

    def __init__(self, message: str = "Domain already exists for another customer admin"):
        """Initialize with 409 status code."""
        super().__init__(message)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class EmailDeliveryException(AppException):
    """Outgoing email could not be delivered."""

    def __init__(self, message: str = "Failed to send email"):
        """Initialize with 502 status code."""
        super().__init__(message, status_code=502)


# Unique index name -> SQLite "UNIQUE constraint failed" column list.
USER_UNIQUE_CONSTRAINTS: dict[str, str] = {
    "unique_client_email_per_tenant": "users.email, users.owning_tenant_id",
    "unique_admin_email_per_domain": "users.email, users.domain",
    "unique_administrator_email": "users.email",
    "unique_domain_for_customer_admin": "users.domain",
    "uq_users_external_identity_id": "users.external_identity_id",
}

BOOKING_OVERLAP_CONSTRAINT = "bookings_no_overlap"


def integrity_constraint_name(exc: IntegrityError) -> str | None:
    """
    Find which known constraint an IntegrityError was raised by.

    PostgreSQL reports the constraint name; SQLite reports the offending
    columns for unique indexes and the RAISE() message for triggers.

    Args:
        exc: Error raised by the database driver

    Returns:
        Constraint name or None if unrecognised
    """
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name

    message = str(orig)
    if BOOKING_OVERLAP_CONSTRAINT in message:
        return BOOKING_OVERLAP_CONSTRAINT
    for name in USER_UNIQUE_CONSTRAINTS:
        if name in message:
            return name

    if "UNIQUE constraint failed:" in message:
        columns = message.split("UNIQUE constraint failed:", 1)[1].strip()
        for name, signature in USER_UNIQUE_CONSTRAINTS.items():
            if columns == signature:
                return name
    return None


def classify_user_integrity_error(exc: IntegrityError) -> AppException:
    """Map a unique violation on the users table to a domain error."""
    name = integrity_constraint_name(exc)
    if name == "unique_domain_for_customer_admin":
        return DuplicateDomainException()
    if name == "unique_client_email_per_tenant":
        return DuplicateEmailException("Email already exists under this tenant")
    if name == "unique_admin_email_per_domain":
        return DuplicateEmailException("Email already exists under this domain")
    if name == "unique_administrator_email":
        return DuplicateEmailException("Email already exists")
    if name == "uq_users_external_identity_id":
        return ConflictException("External identity already linked to another account")
    return ConflictException("User violates a uniqueness constraint")
