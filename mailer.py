"""SMTP delivery for verification and password-reset emails."""

import logging
import os
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM", "Do App <no-reply@example.com>")

CODE_EMAIL_TEMPLATE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #0891b2;">{heading}</h2>
  <p>{intro}</p>
  <div style="background-color: #f3f4f6; padding: 16px; border-radius: 4px; text-align: center;
              font-size: 24px; font-weight: bold; letter-spacing: 5px;">{code}</div>
  <p style="margin-top: 16px;">This code will expire in {minutes} minutes.</p>
  <p style="color: #6b7280; font-size: 14px; margin-top: 32px;">
    If you didn't request this code, you can safely ignore this email.
  </p>
</div>
"""


def send_email(to: str, subject: str, html: str) -> bool:
    """Send an HTML email. Returns False (and logs) when delivery fails."""
    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content("This message requires an HTML-capable mail client.")
    msg.add_alternative(html, subtype="html")
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Error sending email to {to}: {e}")
        return False
    logger.info(f"Email '{subject}' sent to {to}")
    return True


def send_otp_email(to: str, otp: str, minutes: int) -> bool:
    html = CODE_EMAIL_TEMPLATE.format(
        heading="Your Verification Code",
        intro="Please use the following code to verify your email address:",
        code=otp,
        minutes=minutes,
    )
    return send_email(to, "Your Verification Code for Do", html)


def send_password_reset_email(to: str, code: str, minutes: int) -> bool:
    html = CODE_EMAIL_TEMPLATE.format(
        heading="Reset Your Password",
        intro="Use the following code to choose a new password:",
        code=code,
        minutes=minutes,
    )
    return send_email(to, "Your Password Reset Code for Do", html)
