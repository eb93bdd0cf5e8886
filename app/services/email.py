import smtplib
from email.message import EmailMessage
from typing import Optional

import structlog

from ..config import settings


logger = structlog.get_logger(__name__)


def send_email(to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
    """Best effort SMTP delivery. Returns False (and logs) instead of raising."""
    if not settings.enable_email or not settings.smtp_host or not settings.mail_from:
        logger.info("email_skipped", to=to, subject=subject, reason="smtp not configured")
        return False
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
    except Exception as e:
        logger.warning("email_send_failed", to=to, subject=subject, error=str(e))
        return False
    return True


def send_password_reset_email(email: str, token: str) -> bool:
    reset_url = f"{settings.client_url}/reset-password?token={token}"
    html = (
        "<h2>Reset Your Password</h2>"
        "<p>You requested a password reset for your TaskNest account.</p>"
        f'<p><a href="{reset_url}">Reset Password</a></p>'
        "<p>If you didn't request this, please ignore this email. This link will expire in 1 hour.</p>"
    )
    return send_email(email, "Reset Your TaskNest Password", f"Reset your password: {reset_url}", html)


def send_invite_email(email: str, token: str, inviter_name: str) -> bool:
    invite_url = f"{settings.client_url}/accept-invite?token={token}"
    html = (
        "<h2>You're Invited to TaskNest!</h2>"
        f"<p>{inviter_name} has invited you to join their team on TaskNest.</p>"
        f'<p><a href="{invite_url}">Accept Invitation</a></p>'
        "<p>This invitation will expire in 7 days.</p>"
    )
    return send_email(email, "Invitation to Join TaskNest", f"Accept invitation: {invite_url}", html)
