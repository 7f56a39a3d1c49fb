"""Email Service — outbound mail through Gmail SMTP.

Uses an app password (``GMAIL_USER`` / ``GMAIL_APP_PASSWORD``). smtplib is
blocking, so the send runs in a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import html
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from practice_os.config import settings
from practice_os.utils.logger import logger


def _send_blocking(to: str, subject: str, html_body: str) -> None:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.GMAIL_USER
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
        server.starttls()
        server.login(settings.GMAIL_USER, settings.GMAIL_APP_PASSWORD)
        server.sendmail(settings.GMAIL_USER, [to], msg.as_string())


async def send_email(to: str, subject: str, html_body: str) -> None:
    """Send one HTML email. Raises if mail is not configured or SMTP fails."""
    if not settings.EMAIL_CONFIGURED:
        msg = "Email not configured. Set GMAIL_USER and GMAIL_APP_PASSWORD."
        raise RuntimeError(msg)

    await asyncio.to_thread(_send_blocking, to, subject, html_body)
    logger.info("[Email] Sent '%s' to %s", subject, to)


def render_alert_email(services: list[str], details: str) -> tuple[str, str]:
    """Build (subject, html_body) for a health alert."""
    verb = "is" if len(services) == 1 else "are"
    subject = f"PracticeOS Alert: {', '.join(services)} {verb} down"
    items = "".join(f"<li><strong>{html.escape(s)}</strong></li>" for s in services)
    stamp = datetime.now().strftime("%A, %B %d, %Y %I:%M:%S %p")
    body = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #dc2626;">System Health Alert</h2>
        <p style="color: #374151;">The following services are experiencing issues:</p>
        <ul style="color: #374151;">{items}</ul>
        <div style="background: #fef2f2; border: 1px solid #fecaca; border-radius: 8px; padding: 15px; margin: 20px 0;">
          <h3 style="color: #dc2626; margin-top: 0;">Details:</h3>
          <pre style="color: #7f1d1d; white-space: pre-wrap; font-size: 12px;">{html.escape(details)}</pre>
        </div>
        <p style="color: #6b7280; font-size: 12px;">
          Auto-recovery is being attempted. You will receive another alert if the issue persists.
        </p>
        <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 20px 0;">
        <p style="color: #9ca3af; font-size: 11px;">PracticeOS Health Monitor • {stamp}</p>
      </div>
    """
    return subject, body
