import os
import logging
import requests

MAILGUN_API_KEY = os.getenv("MAILGUN_API_KEY")
MAILGUN_DOMAIN = os.getenv("MAILGUN_DOMAIN")
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "FarmHub")
EMAIL_FROM_ADDRESS = os.getenv(
    "EMAIL_FROM_ADDRESS",
    f"postmaster@{MAILGUN_DOMAIN}" if MAILGUN_DOMAIN else None,
)

logger = logging.getLogger(__name__)


def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: str | None = None,
) -> bool:
    """
    Send email via Mailgun HTTP API.

    Never raises: returns True on success, False on any failure
    (including missing configuration).
    """

    if not MAILGUN_API_KEY or not MAILGUN_DOMAIN or not EMAIL_FROM_ADDRESS:
        logger.error(
            "Mailgun not configured | domain=%s from=%s",
            MAILGUN_DOMAIN,
            EMAIL_FROM_ADDRESS,
        )
        return False

    data = {
        "from": f"{EMAIL_FROM_NAME} <{EMAIL_FROM_ADDRESS}>",
        "to": to_email,
        "subject": subject,
        "html": html_content,
    }

    if text_content:
        data["text"] = text_content

    try:
        response = requests.post(
            f"https://api.mailgun.net/v3/{MAILGUN_DOMAIN}/messages",
            auth=("api", MAILGUN_API_KEY),
            data=data,
            timeout=10,
        )
    except requests.RequestException as e:
        logger.exception(
            "Mailgun email exception | to=%s | error=%s",
            to_email,
            str(e),
        )
        return False

    if response.status_code != 200:
        logger.error(
            "Mailgun email failed | to=%s | status=%s | response=%s",
            to_email,
            response.status_code,
            response.text,
        )
        return False

    return True


def send_password_reset_otp(to_email: str, name: str, otp: str, expires_minutes: int) -> bool:
    return send_email(
        to_email=to_email,
        subject="Password Reset OTP",
        html_content=f"""
        <h2>Password Reset Request</h2>
        <p>Hello {name},</p>
        <p>We received a request to reset your password. Use the following code to continue:</p>
        <p style="font-size:24px;font-weight:bold;letter-spacing:2px">{otp}</p>
        <p>This code expires in {expires_minutes} minutes.</p>
        <p>If you didn't request a password reset, you can ignore this email.</p>
        """,
        text_content=(
            f"Hello {name}, your password reset code is {otp}. "
            f"It expires in {expires_minutes} minutes."
        ),
    )
