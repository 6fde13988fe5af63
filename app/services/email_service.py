"""Outgoing email over SMTP: welcome and password reset messages."""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

import structlog

from app.config import Settings, settings
from app.core.exceptions import EmailDeliveryException
from app.schemas.users import UserRole

logger = structlog.get_logger(__name__)

WELCOME_PATHS = {
    UserRole.ADMINISTRATOR: "/admin/welcome",
    UserRole.CUSTOMER_ADMIN: "/admin/dashboard",
    UserRole.CLIENT: "/customer",
}

RESET_PATHS = {
    UserRole.ADMINISTRATOR: "/admin/new-password",
    UserRole.CUSTOMER_ADMIN: "/customeradmin/new-password",
    UserRole.CLIENT: "/customer/new-password",
}


def tenant_frontend_url(
    app_settings: Settings,
    path: str,
    role: UserRole,
    subdomain: str | None = None,
) -> str:
    """
    Build a frontend link for a user.

    Clients with a tenant get a link on ``{subdomain}.{frontend host}``;
    everyone else uses the main frontend URL.

    Args:
        app_settings: Settings providing ``frontend_url``
        path: Path (and query) to append
        role: Role of the recipient
        subdomain: Tenant subdomain from the request

    Returns:
        Absolute URL
    """
    frontend = app_settings.frontend_url.rstrip("/")
    if role == UserRole.CLIENT and subdomain:
        host = frontend.split("://", 1)[-1]
        protocol = "http" if "localhost" in host else "https"
        return f"{protocol}://{subdomain}.{host}{path}"
    return f"{frontend}{path}"


class EmailService:
    """Service for sending transactional emails."""

    def __init__(self, app_settings: Settings | None = None):
        """Initialize service with SMTP settings."""
        self.settings = app_settings or settings

    @property
    def sender(self) -> str:
        """Formatted From header."""
        return f"{self.settings.email_from_name} <{self.settings.email_from}>"

    def _send_sync(self, to: str, subject: str, text: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        host = self.settings.smtp_host
        port = self.settings.smtp_port
        context = ssl.create_default_context()

        if port == 465:
            server = smtplib.SMTP_SSL(host, port, context=context, timeout=30)
        else:
            server = smtplib.SMTP(host, port, timeout=30)
            if self.settings.smtp_use_tls:
                server.starttls(context=context)

        try:
            if self.settings.smtp_username:
                server.login(self.settings.smtp_username, self.settings.smtp_password or "")
            server.sendmail(self.settings.email_from, [to], msg.as_string())
        finally:
            server.quit()

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        """
        Send one email.

        Raises:
            EmailDeliveryException: If SMTP is not configured or sending fails
        """
        if not self.settings.smtp_configured:
            logger.warning("email_not_configured", subject=subject)
            raise EmailDeliveryException("Email delivery is not configured")

        try:
            await asyncio.to_thread(self._send_sync, to, subject, text, html)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", subject=subject, error=str(e))
            raise EmailDeliveryException() from e

        logger.info("email_sent", subject=subject)

    async def send_welcome(self, user: dict, url: str) -> None:
        """Send the welcome email after registration."""
        first_name = escape(user["full_name"].split(" ")[0])
        subject = "Welcome aboard!"
        text = f"Hello {first_name}, welcome! Visit your dashboard: {url}"
        html = f"""
        <div style="font-family:Arial,sans-serif;">
            <h2>Welcome, {first_name}!</h2>
            <p>We're thrilled to have you on board.</p>
            <p><a href="{escape(url)}" style="color:#007bff;">Visit your dashboard</a></p>
        </div>
        """
        await self.send(user["email"], subject, text, html)

    async def send_password_reset(self, user: dict, url: str) -> None:
        """Send the password reset link."""
        first_name = escape(user["full_name"].split(" ")[0])
        minutes = self.settings.password_reset_token_expire_minutes
        subject = f"Your password reset link (valid for {minutes} min)"
        text = f"Forgot your password? Reset it here: {url}"
        html = f"""
        <div style="font-family:Arial,sans-serif;line-height:1.6;">
            <h2>Password Reset Request</h2>
            <p>Hello {first_name},</p>
            <p>You requested a password reset. Click the link below to reset your password:</p>
            <a href="{escape(url)}"
               style="display:inline-block;background:#007bff;color:#fff;
                      padding:10px 16px;border-radius:6px;text-decoration:none;">
                Reset Password
            </a>
            <p>This link will expire in {minutes} minutes.</p>
            <p>If you did not request this, you can safely ignore this email.</p>
        </div>
        """
        await self.send(user["email"], subject, text, html)
