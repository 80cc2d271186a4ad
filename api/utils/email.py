import os
import smtplib
import socket
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional
import logging
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content, HtmlContent

# Set up logging
logger = logging.getLogger(__name__)


class EmailConfigurationError(RuntimeError):
    """Raised when the selected mail provider is missing required settings."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"configuration missing: {', '.join(self.missing)}")


def get_mail_settings() -> Dict[str, Optional[str]]:
    """Read mail settings from the environment at send time."""
    return {
        "MAIL_PROVIDER": os.getenv("MAIL_PROVIDER", "smtp").lower(),
        "MAIL_SERVER": os.getenv("MAIL_SERVER"),
        "MAIL_PORT": os.getenv("MAIL_PORT", "587"),
        "MAIL_USERNAME": os.getenv("MAIL_USERNAME"),
        "MAIL_PASSWORD": os.getenv("MAIL_PASSWORD"),
        "MAIL_FROM_ADDRESS": os.getenv("MAIL_FROM_ADDRESS"),
        "MAIL_FROM_NAME": os.getenv("MAIL_FROM_NAME", ""),
        "SENDGRID_API_KEY": os.getenv("SENDGRID_API_KEY"),
    }


def _require(settings: Dict[str, Optional[str]], *keys: str) -> None:
    missing = [key for key in keys if not settings.get(key)]
    if missing:
        raise EmailConfigurationError(missing)


async def send_email(
    to_email: str,
    subject: str,
    plain_text: str,
    html_content: Optional[str] = None,
) -> bool:
    """
    Sends a multipart email (text + optional HTML) via SMTP or SendGrid.
    Returns True on success, False when the transport fails.
    Raises EmailConfigurationError when the provider is not configured.
    """
    settings = get_mail_settings()
    provider = settings["MAIL_PROVIDER"]
    logger.info(f"Email provider setting: '{provider}'")

    if provider == "mock":
        logger.info(f"[MOCK EMAIL] To: {to_email} Subject: {subject} Body: {plain_text[:100]}...")
        return True

    if provider == "sendgrid":
        _require(settings, "SENDGRID_API_KEY", "MAIL_FROM_ADDRESS")
        try:
            from_email = Email(str(settings["MAIL_FROM_ADDRESS"]), str(settings["MAIL_FROM_NAME"]))
            mail = Mail(from_email, To(to_email), subject, Content("text/plain", plain_text))
            if html_content:
                mail.add_content(HtmlContent(html_content))

            sg = SendGridAPIClient(str(settings["SENDGRID_API_KEY"]))
            response = sg.send(mail)
            if 200 <= response.status_code < 300:
                logger.info(f"Email sent successfully to {to_email} via SendGrid")
                return True
            logger.error(f"SendGrid API returned status code {response.status_code}")
            return False
        except Exception as e:
            logger.error(f"Error sending email via SendGrid: {e}")
            return False

    _require(settings, "MAIL_SERVER", "MAIL_USERNAME", "MAIL_PASSWORD", "MAIL_FROM_ADDRESS")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = (
        f"{settings['MAIL_FROM_NAME']} <{settings['MAIL_FROM_ADDRESS']}>"
        if settings["MAIL_FROM_NAME"]
        else str(settings["MAIL_FROM_ADDRESS"])
    )
    msg["To"] = to_email
    msg.attach(MIMEText(plain_text, "plain"))
    if html_content:
        msg.attach(MIMEText(html_content, "html"))

    try:
        with smtplib.SMTP(str(settings["MAIL_SERVER"]), int(settings["MAIL_PORT"]), timeout=10) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(str(settings["MAIL_USERNAME"]), str(settings["MAIL_PASSWORD"]))
            server.sendmail(str(settings["MAIL_FROM_ADDRESS"]), to_email, msg.as_string())
        logger.info(f"Email sent successfully to {to_email} via SMTP")
        return True
    except socket.gaierror as e:
        logger.error(f"DNS lookup failed for email server {settings['MAIL_SERVER']}: {e}")
        return False
    except socket.timeout as e:
        logger.error(f"Connection to email server {settings['MAIL_SERVER']} timed out: {e}")
        return False
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed: {e}")
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Error sending email to {to_email}: {e}")
        return False


async def send_credentials_email(email_to: str, name: str, temp_password: str) -> bool:
    """
    Send the login and temporary password of a newly created account.
    """
    login_url = os.getenv("APP_LOGIN_URL", "https://crm.example.com/login")
    subject = "Your CRM account credentials"

    body = f"""Hello {name},

An account has been created for you. Here are your login credentials:

Login: {email_to}
Temporary password: {temp_password}

Please change your password after your first login.

Login URL: {login_url}
"""

    html_content = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: #2297db; color: white; padding: 15px; text-align: center;">
        <h2>Your CRM account</h2>
    </div>
    <div style="padding: 20px; border: 1px solid #ddd;">
        <p>Hello {name},</p>
        <p>An account has been created for you. Here are your login credentials:</p>
        <div style="background-color: #f5f5f5; padding: 15px; margin: 15px 0; border-left: 4px solid #2297db;">
            <p><strong>Login:</strong> {email_to}</p>
            <p><strong>Temporary password:</strong> <code>{temp_password}</code></p>
        </div>
        <p>Please change your password after your first login.</p>
        <p><a href="{login_url}">{login_url}</a></p>
    </div>
</body>
</html>
"""
    return await send_email(email_to, subject, body, html_content)


async def send_operation_failure_email(email_to: str, operation: str, reason: str) -> bool:
    """
    Notify staff that a background operation (e.g. an import) did not go through.
    """
    subject = f"Operation failed: {operation}"
    body = f"""The operation "{operation}" could not be completed.

Reason: {reason}
"""
    html_content = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: #dc3545; color: white; padding: 15px; text-align: center;">
        <h2>Operation failed</h2>
    </div>
    <div style="padding: 20px; border: 1px solid #ddd;">
        <p>The operation <strong>{operation}</strong> could not be completed.</p>
        <p><strong>Reason:</strong> {reason}</p>
    </div>
</body>
</html>
"""
    return await send_email(email_to, subject, body, html_content)
