"""
Email Utilities

SMTP delivery for invitations and reminders. Outside production an
unconfigured SMTP server only logs the message.
"""

import os
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

BRAND = "Beacon Practice"


def get_email_config():
    """Get email configuration from environment variables."""
    return {
        "smtp_host": os.environ.get("SMTP_HOST", ""),
        "smtp_port": int(os.environ.get("SMTP_PORT", "587")),
        "smtp_user": os.environ.get("SMTP_USER", ""),
        "smtp_password": os.environ.get("SMTP_PASSWORD", ""),
        "smtp_from": os.environ.get("SMTP_FROM", "noreply@beaconpractice.app"),
        "smtp_use_tls": os.environ.get("SMTP_USE_TLS", "true").lower() == "true",
        "app_url": os.environ.get("APP_URL", "http://localhost:5173"),
    }


def is_email_configured() -> bool:
    config = get_email_config()
    return bool(config["smtp_host"] and config["smtp_user"] and config["smtp_password"])


def _is_production() -> bool:
    return os.environ.get("ENVIRONMENT", "development").lower() == "production"


def send_email(
    to_email: str,
    subject: str,
    html_body: str,
    text_body: Optional[str] = None
) -> bool:
    """
    Send an email.

    Returns True if sent successfully, False otherwise.
    """
    config = get_email_config()

    if not is_email_configured():
        if _is_production():
            logger.error(f"SMTP not configured; cannot send '{subject}' to {to_email}")
            return False
        logger.info(f"[DEV MODE] Email would be sent to {to_email}: {subject}")
        logger.debug(f"[DEV MODE] Email body: {text_body or html_body[:200]}")
        return True

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = config["smtp_from"]
        msg["To"] = to_email

        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(config["smtp_host"], config["smtp_port"]) as server:
            if config["smtp_use_tls"]:
                server.starttls()
            server.login(config["smtp_user"], config["smtp_password"])
            server.sendmail(config["smtp_from"], to_email, msg.as_string())

        logger.info(f"Email sent successfully to {to_email}")
        return True

    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def _layout(title: str, body_html: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <style>
            body {{ font-family: Arial, sans-serif; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #1e3a8a; padding: 24px; border-radius: 10px 10px 0 0; }}
            .header h1 {{ color: white; margin: 0; font-size: 22px; }}
            .content {{ background: #f8f9fa; padding: 24px; border-radius: 0 0 10px 10px; }}
            .button {{ display: inline-block; background: #1e40af; color: white; padding: 12px 24px;
                       text-decoration: none; border-radius: 6px; font-weight: bold; margin: 16px 0; }}
            table.details td {{ padding: 4px 12px 4px 0; }}
            .footer {{ text-align: center; color: #6b7280; font-size: 12px; margin-top: 20px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header"><h1>{escape(title)}</h1></div>
            <div class="content">{body_html}</div>
            <div class="footer"><p>This message was sent automatically by {BRAND}. Please do not reply.</p></div>
        </div>
    </body>
    </html>
    """


def _details_table(rows: List[Tuple[str, str]]) -> str:
    cells = "".join(f"<tr><td><strong>{escape(k)}</strong></td><td>{escape(str(v))}</td></tr>" for k, v in rows)
    return f'<table class="details">{cells}</table>'


def render_welcome_email(full_name: str, email: str, password: Optional[str], role: str) -> Dict[str, str]:
    app_url = get_email_config()["app_url"].rstrip("/")
    rows = [("Login email", email), ("Role", role)]
    if password:
        rows.append(("Temporary password", password))
    html = _layout(
        f"Welcome to {BRAND}",
        f"<p>Hello {escape(full_name)},</p>"
        f"<p>An account has been created for you.</p>{_details_table(rows)}"
        f'<p><a class="button" href="{app_url}/auth/login">Sign in</a></p>'
        "<p>Please change your password after your first sign-in.</p>",
    )
    text = f"Hello {full_name},\n\nAn account has been created for you.\nLogin email: {email}\nRole: {role}\n"
    if password:
        text += f"Temporary password: {password}\n"
    text += f"\nSign in: {app_url}/auth/login\n"
    return {"subject": f"Welcome to {BRAND}", "html": html, "text": text}


def render_portal_invite_email(client_name: str, email: str, password: Optional[str]) -> Dict[str, str]:
    app_url = get_email_config()["app_url"].rstrip("/")
    rows = [("Client", client_name), ("Login email", email)]
    if password:
        rows.append(("Temporary password", password))
    html = _layout(
        "Client Portal Invitation",
        f"<p>You have been invited to the client portal for <strong>{escape(client_name)}</strong>.</p>"
        f"{_details_table(rows)}"
        f'<p><a class="button" href="{app_url}/portal/login">Open the portal</a></p>',
    )
    text = f"You have been invited to the client portal for {client_name}.\nLogin email: {email}\n"
    if password:
        text += f"Temporary password: {password}\n"
    text += f"\nPortal: {app_url}/portal/login\n"
    return {"subject": f"Client portal access - {client_name}", "html": html, "text": text}


def render_reminder_email(heading: str, intro: str, rows: List[Tuple[str, str]], case_id: Optional[str] = None) -> Dict[str, str]:
    app_url = get_email_config()["app_url"].rstrip("/")
    link = f'<p><a class="button" href="{app_url}/cases/{case_id}">View case</a></p>' if case_id else ""
    html = _layout(heading, f"<p>{escape(intro)}</p>{_details_table(rows)}{link}")
    text = intro + "\n\n" + "\n".join(f"{k}: {v}" for k, v in rows)
    if case_id:
        text += f"\n\nView case: {app_url}/cases/{case_id}"
    return {"html": html, "text": text}
