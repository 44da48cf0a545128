"""
Email Service using Resend

Transport for application notifications. Bodies are small HTML documents
built by ``render_email``; the callers decide recipients and wording.
"""

import asyncio
import logging
from collections.abc import Sequence
from html import escape

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

# Initialize Resend with API key
resend.api_key = settings.resend_api_key


async def send_email(
    to_emails: Sequence[str],
    subject: str,
    html_content: str,
    bcc_emails: Sequence[str] = (),
) -> bool:
    """
    Send an email using Resend.

    Args:
        to_emails: Recipient email addresses (blank and duplicate entries are dropped)
        subject: Email subject line
        html_content: HTML content of the email
        bcc_emails: Blind copy recipients

    Returns:
        True if email was sent successfully
    """
    recipients = [email for email in dict.fromkeys(to_emails) if email]
    if not recipients:
        logger.warning(f"No recipients for email '{subject}' - skipping")
        return False

    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {', '.join(recipients)} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": recipients,
            "subject": subject,
            "html": html_content,
        }
        bcc = [email for email in dict.fromkeys(bcc_emails) if email]
        if bcc:
            params["bcc"] = bcc

        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {', '.join(recipients)}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {', '.join(recipients)}: {e}")
        return False


def render_email(
    heading: str,
    paragraphs: Sequence[str],
    action_label: str | None = None,
    action_url: str | None = None,
) -> str:
    """
    Render a minimal HTML email.

    All text is escaped; paragraphs must be plain text.
    """
    body = "\n".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    action = ""
    if action_label and action_url:
        action = f'<a href="{escape(action_url)}" class="button">{escape(action_label)}</a>'
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
            .header {{ color: #1a365d; margin-bottom: 24px; }}
            .button {{ display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }}
            .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{escape(heading)}</h1>
            {body}
            {action}
            <div class="footer">
                <p>Data Access Compliance Office</p>
            </div>
        </div>
    </body>
    </html>
    """
