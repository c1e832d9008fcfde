import logging
import os
import smtplib
from typing import Dict, Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings
from tasks.email_tasks import send_email_task, deliver_message

logger = logging.getLogger(__name__)

# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def send_email(to_email: str, subject: str, body: str) -> None:
    """
    Queue the email on Celery; if the broker is unreachable send it inline.
    Returns immediately in the normal case and never blocks on SMTP.
    """
    try:
        send_email_task.delay(to_email, subject, body)
        logger.debug("Email task queued for %s", to_email)
        return
    except Exception as exc:  # kombu raises transport-specific errors
        logger.warning("Celery unavailable, sending email inline: %s", exc)

    _send_email_direct(to_email, subject, body)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def send_templated_email(to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    """Render a template and send email via existing send_email path."""
    body = render_template(template_path, context)
    send_email(to_email, subject, body)


def _send_email_direct(to_email: str, subject: str, body: str) -> None:
    if not settings.SMTP_PASSWORD:
        logger.info("Email to %s not sent, SMTP is not configured: %s", to_email, subject)
        return
    try:
        deliver_message(to_email, subject, body)
        logger.info("Email sent inline to %s", to_email)
    except (smtplib.SMTPException, OSError):
        logger.exception("Inline email to %s failed", to_email)
