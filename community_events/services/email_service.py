"""
Email composition and SMTP delivery for notification tasks.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Dict, Tuple

from ..config import Settings

logger = logging.getLogger(__name__)

# template name -> (subject, plain text body)
TEMPLATES: Dict[str, Tuple[str, str]] = {
    "registration_confirmation": (
        "You're registered: {event_title}",
        "Hi {display_name},\n\n"
        "You are registered for {event_title} at {location}.\n"
        "It starts at {start_time}.\n\n"
        "Registration status: {status}\n",
    ),
    "registration_cancelled": (
        "Registration cancelled: {event_title}",
        "Hi {display_name},\n\n"
        "Your registration for {event_title} has been cancelled.\n",
    ),
    "attendance_confirmed": (
        "Your place is confirmed: {event_title}",
        "Hi {display_name},\n\n"
        "Your place at {event_title} ({start_time}, {location}) is confirmed.\n",
    ),
    "attendance_cancelled": (
        "Attendance declined: {event_title}",
        "Hi {display_name},\n\n"
        "Your attendance for {event_title} is now marked as declined.\n",
    ),
    "event_reminder": (
        "Reminder: {event_title} starts {when}",
        "Hi {display_name},\n\n"
        "{event_title} starts {when}, at {start_time}.\n"
        "Location: {location}\n",
    ),
}


def render_email(template: str, context: Dict[str, Any]) -> Tuple[str, str, str]:
    """
    Render a template.

    Returns:
        Tuple of (subject, plain text body, html body)

    Raises:
        KeyError: If the template or one of its placeholders is unknown
    """
    subject, body = TEMPLATES[template]
    text = body.format(**context)
    html = "".join(f"<p>{escape(paragraph)}</p>" for paragraph in text.split("\n\n") if paragraph)
    return subject.format(**context), text, html


def send_email(settings: Settings, to_email: str, subject: str, text_content: str, html_content: str) -> bool:
    """
    Send email using SMTP.

    Returns:
        True if sent, False if SMTP is not configured

    Raises:
        smtplib.SMTPException, OSError: On delivery failure, so the caller can retry
    """
    if not settings.smtp_server:
        logger.warning("Email configuration not available, skipping email send")
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.email_from
    msg["To"] = to_email

    msg.attach(MIMEText(text_content, "plain"))
    msg.attach(MIMEText(html_content, "html"))

    with smtplib.SMTP(settings.smtp_server, settings.smtp_port) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_username:
            server.login(settings.smtp_username, settings.smtp_password or "")
        server.send_message(msg)

    logger.info(f"Email sent successfully to {to_email}")
    return True
