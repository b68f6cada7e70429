"""
Email channel sender.
Sends picks newsletters over SMTP with aiosmtplib, wrapped in a Jinja2 layout.
"""

import re
from pathlib import Path
from typing import Optional
from datetime import datetime
import logging

import aiosmtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from jinja2 import Environment, FileSystemLoader, select_autoescape

from quantumbets.core.config import settings
from quantumbets.core.channels import SendResult

logger = logging.getLogger(__name__)

# Get the templates directory
TEMPLATES_DIR = Path(__file__).parent.parent / "templates" / "email"

# Initialize Jinja2 environment
jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(['html', 'xml'])
)


def html_to_text(html_content: str) -> str:
    """Simple HTML stripping for the plain text alternative."""
    return re.sub(r'\s+', ' ', re.sub('<[^<]+?>', ' ', html_content)).strip()


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: Optional[str] = None
) -> SendResult:
    """
    Send an email using aiosmtplib.

    Args:
        to_email: Recipient email address
        subject: Email subject
        html_content: HTML content of the email
        text_content: Plain text content (optional, falls back to stripped HTML)

    Returns:
        SendResult; failures carry the SMTP error message
    """
    if not settings.SMTP_HOST or not settings.EMAIL_FROM:
        logger.error("SMTP settings not configured. Cannot send email.")
        logger.info(f"Would have sent email to {to_email} with subject: {subject}")
        return SendResult.failed("SMTP settings not configured")

    message = MIMEMultipart("alternative")
    message["From"] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"
    message["To"] = to_email
    message["Subject"] = subject

    message.attach(MIMEText(text_content or html_to_text(html_content), "plain"))
    message.attach(MIMEText(html_content, "html"))

    try:
        # Port 587: STARTTLS, port 465: implicit TLS
        response = await aiosmtplib.send(
            message,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=True if settings.SMTP_PORT == 465 else False,
            start_tls=True if settings.SMTP_PORT == 587 else False,
        )
    except aiosmtplib.SMTPException as e:
        logger.error(f"Failed to send email to {to_email}: {str(e)}")
        return SendResult.failed(str(e))

    logger.info(f"Email sent successfully to {to_email}")
    message_id = response[1] if isinstance(response, tuple) and len(response) > 1 else None
    return SendResult.ok(message_id=message_id)


async def send_picks_email(
    to_email: str,
    html_content: str,
    subject: str = "Your Daily QuantumBets Picks",
    text_content: Optional[str] = None
) -> SendResult:
    """
    Send a picks newsletter.

    The body is expected to already carry tracking instrumentation; the
    layout adds no links of its own that would bypass click tracking
    except the account settings footer.
    """
    template = jinja_env.get_template("newsletter/picks.html")
    full_html = template.render(
        title=subject,
        content=html_content,
        account_url=f"{settings.SITE_URL}/account",
        current_year=datetime.now().year
    )

    return await send_email(
        to_email=to_email,
        subject=subject,
        html_content=full_html,
        text_content=text_content
    )
