"""Email notifications for shared folders (aiosmtplib)."""

import logging
from email.message import EmailMessage

import aiosmtplib

from gitfolder.config import get_settings

log = logging.getLogger(__name__)


def smtp_configured() -> bool:
    settings = get_settings()
    return bool(settings.smtp_host and settings.smtp_from and settings.email_notifications)


async def send_share_email(
    to_email: str,
    recipient_name: str,
    folder_name: str,
    permission_level: str,
    granted_by: str,
) -> None:
    """Tell a user they were given access to a shared folder. Raises on SMTP failure."""
    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_from:
        raise RuntimeError("SMTP not configured (GITFOLDER_SMTP_HOST / SMTP_FROM)")
    msg = EmailMessage()
    msg["From"] = settings.smtp_from
    msg["To"] = to_email
    msg["Subject"] = f"{granted_by} shared \"{folder_name}\" with you"
    msg.set_content(f"""Hello {recipient_name},

{granted_by} gave you {permission_level} access to the shared folder "{folder_name}".

Open git-folder to see it: {settings.app_url}

git-folder
""")
    await aiosmtplib.send(
        msg,
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user or None,
        password=settings.smtp_password or None,
        use_tls=settings.smtp_port == 465,
        start_tls=settings.smtp_port == 587,
    )
    log.info("Share notification sent to %s for folder %s", to_email, folder_name)


async def notify_share(
    to_email: str,
    recipient_name: str,
    folder_name: str,
    permission_level: str,
    granted_by: str,
) -> bool:
    """Send the share email if SMTP is set up. Failures are logged; returns True if sent."""
    if not smtp_configured():
        log.debug("Share notification skipped for %s: SMTP not configured", to_email)
        return False
    try:
        await send_share_email(to_email, recipient_name, folder_name, permission_level, granted_by)
    except (aiosmtplib.SMTPException, OSError) as e:
        log.warning("Failed to send share notification to %s: %s", to_email, e)
        return False
    return True
