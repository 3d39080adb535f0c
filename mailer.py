"""
Outgoing email for OTP verification and password resets.

Delivery problems are logged and reported as False; callers never fail a
request because an email could not be sent.
"""
import html
import logging
import os
import secrets
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)

EMAIL_USER = os.getenv("EMAIL_USER")
EMAIL_PASSWORD = os.getenv("EMAIL_PASSWORD")
EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", 465))

OTP_EXPIRY_MINUTES = 5

_OTP_BLOCK = """
<div style="background-color: #f4f4f4; padding: 20px; text-align: center; margin: 20px 0;">
    <h1 style="color: #007bff; font-size: 32px; margin: 0;">{otp}</h1>
</div>
<p>This OTP will expire in {minutes} minutes.</p>
"""

VERIFICATION_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2 style="color: #333;">Welcome to ExecInnov!</h2>
    <p>Hi,</p>
    <p>Thank you for signing up! Please verify your email address by entering the following OTP:</p>
    {block}
    <p>If you didn't create an account, please ignore this email.</p>
    <p>Best regards,<br>The ExecInnov Team</p>
</div>
"""

PASSWORD_RESET_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2 style="color: #333;">Password Reset Request</h2>
    <p>Hi {name},</p>
    <p>We received a request to reset your password. Please enter the following OTP to proceed:</p>
    {block}
    <p>If you didn't request a password reset, please ignore this email.</p>
    <p>Best regards,<br>The ExecInnov Team</p>
</div>
"""


def generate_otp() -> str:
    """Six digits, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


def send_email(to: str, subject: str, body: str) -> bool:
    if not EMAIL_USER or not EMAIL_PASSWORD:
        logger.warning("Email credentials not configured, skipping mail to %s", to)
        return False

    message = EmailMessage()
    message["From"] = EMAIL_USER
    message["To"] = to
    message["Subject"] = subject
    message.set_content("Please view this message in an HTML capable mail client.")
    message.add_alternative(body, subtype="html")

    try:
        with smtplib.SMTP_SSL(EMAIL_HOST, EMAIL_PORT, timeout=10) as smtp:
            smtp.login(EMAIL_USER, EMAIL_PASSWORD)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError):
        logger.exception("Email sending error for %s", to)
        return False
    return True


def send_verification_email(email: str, otp: str) -> bool:
    block = _OTP_BLOCK.format(otp=otp, minutes=OTP_EXPIRY_MINUTES)
    return send_email(email, "Verify Your Email - ExecInnov", VERIFICATION_TEMPLATE.format(block=block))


def send_password_reset_email(email: str, otp: str, name: str) -> bool:
    block = _OTP_BLOCK.format(otp=otp, minutes=OTP_EXPIRY_MINUTES)
    return send_email(email, "Password Reset Request - ExecInnov",
                      PASSWORD_RESET_TEMPLATE.format(name=html.escape(name), block=block))
