"""
Transactional email through Resend, plus the HTML bodies the API sends.
"""
from datetime import datetime
from typing import Dict, List, Optional, Union

import resend
import structlog

from config import MAIL_FROM, RESEND_API_KEY

logger = structlog.get_logger(__name__)


class MailError(Exception):
    pass


def send_mail(to: Union[str, List[str]], subject: str, html: str, text: Optional[str] = None,
              sender: Optional[str] = None) -> str:
    """Send one message and return the provider's id; raises MailError so the job retries."""
    if not RESEND_API_KEY:
        raise MailError("Resend API key is not configured.")
    resend.api_key = RESEND_API_KEY

    payload: Dict[str, object] = {
        "from": sender or MAIL_FROM,
        "to": [to] if isinstance(to, str) else list(to),
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text

    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        logger.error("email_send_failed", subject=subject, error=str(exc))
        raise MailError(str(exc)) from exc

    message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
    if not message_id:
        raise MailError(f"Unexpected response from Resend: {response}")
    logger.info("email_sent", subject=subject, message_id=message_id)
    return message_id


def reset_password_html(reset_url: str, firstname: str = "dear") -> str:
    year = datetime.now().year
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <title>Password Reset</title>
</head>
<body style="margin:0; padding:0; font-family:Arial, sans-serif; background-color:#f9fafb;">
  <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="background-color:#f9fafb; padding:20px 0;">
    <tr>
      <td align="center">
        <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="max-width:600px; background:white; border-radius:8px; padding:30px;">
          <tr>
            <td style="text-align:center; padding-bottom:20px;">
              <h2 style="font-size:24px; font-weight:700; color:#111827; margin:0;">Reset Your Password</h2>
            </td>
          </tr>
          <tr>
            <td style="font-size:16px; color:#4b5563; padding-bottom:20px;">
              <p style="margin:0;">Hi {firstname},</p>
              <p style="margin:8px 0 0;">You recently requested to reset your password. Click the button below to proceed. This link is valid for 5 minutes.</p>
            </td>
          </tr>
          <tr>
            <td style="text-align:center; padding:24px 0;">
              <a href="{reset_url}" style="display:inline-block; background-color:#2563eb; color:#ffffff; padding:12px 24px; font-size:16px; font-weight:600; border-radius:6px; text-decoration:none;">Reset Password</a>
            </td>
          </tr>
          <tr>
            <td style="font-size:14px; color:#6b7280; text-align:center;">
              If you didn't request a password reset, you can safely ignore this email.
            </td>
          </tr>
          <tr>
            <td style="text-align:center; padding-top:30px; font-size:12px; color:#9ca3af;">
              &copy; {year} Smart Commerce. All rights reserved.
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""


def reset_password_text(reset_url: str, firstname: str = "dear") -> str:
    return (
        f"Hi {firstname}, use this link to reset your password: {reset_url} "
        "The link is valid for 5 minutes."
    )
