from __future__ import annotations

import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import quote

from govlink.logging import get_logger

logger = get_logger(__name__)

_PARTITION_PATH_PREFIX = {
    "user": "",
    "agent": "/agent",
    "admin": "/admin",
    "department": "/department",
}

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: Arial, Helvetica, sans-serif; line-height: 1.6; color: #1a202c; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 32px 20px; }}
        .header {{ background: #7f1d1d; color: #fff; padding: 16px 20px; border-radius: 8px 8px 0 0; }}
        .button {{ display: inline-block; background: #b45309; color: #fff; padding: 12px 24px; border-radius: 6px; text-decoration: none; font-weight: 600; }}
        .footer {{ margin-top: 32px; font-size: 12px; color: #4a5568; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><strong>{service}</strong></div>
        <h2>{title}</h2>
        <p>{greeting}</p>
        <p>{intro}</p>
        <p style="margin: 28px 0;"><a href="{url}" class="button">{button}</a></p>
        <p>{expiry}</p>
        <p>{ignore}</p>
        <div class="footer">
            <p>{service} - Government of Sri Lanka digital services</p>
            <p>If the button does not work, copy and paste this link: {url}</p>
        </div>
    </div>
</body>
</html>
"""

_TEXT_TEMPLATE = """{title}

{greeting}

{intro}

{url}

{expiry}

{ignore}

---
{service}
"""


class EmailService:
    """Transactional mail for password reset and email verification.

    Sends over SMTP with STARTTLS or implicit SSL. Without an SMTP host the
    message is logged instead of sent, so local setups work unchanged.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "GovLink",
        base_url: Optional[str] = None,
        service_name: str = "GovLink",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:3000").rstrip("/")
        self.service_name = service_name

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _link(self, partition: str, page: str, token: str) -> str:
        prefix = _PARTITION_PATH_PREFIX.get(partition, f"/{partition}")
        return f"{self.base_url}{prefix}/{page}?token={quote(token)}"

    def _render(
        self,
        *,
        title: str,
        name: Optional[str],
        intro: str,
        button: str,
        url: str,
        expiry: str,
        ignore: str,
    ) -> tuple[str, str]:
        greeting = f"Dear {name}," if name else "Hello,"
        text_body = _TEXT_TEMPLATE.format(
            title=title,
            greeting=greeting,
            intro=intro,
            url=url,
            expiry=expiry,
            ignore=ignore,
            service=self.service_name,
        )
        html_body = _HTML_TEMPLATE.format(
            title=html.escape(title),
            greeting=html.escape(greeting),
            intro=html.escape(intro),
            button=html.escape(button),
            url=html.escape(url, quote=True),
            expiry=html.escape(expiry),
            ignore=html.escape(ignore),
            service=html.escape(self.service_name),
        )
        return html_body, text_body

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send one message. Returns True on success, False after logging any failure."""
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
                body_preview=(text_body or html_body)[:200],
            )
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=self._redact_email(to_email), subject=subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
                smtp_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=self._redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_connection_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def send_password_reset(
        self, to_email: str, token: str, *, partition: str = "user", name: Optional[str] = None
    ) -> bool:
        url = self._link(partition, "reset-password", token)
        html_body, text_body = self._render(
            title="Reset your password",
            name=name,
            intro=f"We received a request to reset the password for your {self.service_name} account. Use the link below to choose a new password.",
            button="Reset Password",
            url=url,
            expiry="This link will expire in 1 hour.",
            ignore="If you did not request a password reset, you can safely ignore this email.",
        )
        return self._send_email(
            to_email, f"{self.service_name} - Password Reset Request", html_body, text_body
        )

    def send_email_verification(
        self, to_email: str, token: str, *, partition: str = "user", name: Optional[str] = None
    ) -> bool:
        url = self._link(partition, "verify-email", token)
        html_body, text_body = self._render(
            title="Verify your email address",
            name=name,
            intro=f"Please confirm the email address for your {self.service_name} account by opening the link below.",
            button="Verify Email",
            url=url,
            expiry="This link will expire in 24 hours.",
            ignore="If you did not create an account, no further action is required.",
        )
        return self._send_email(
            to_email, f"{self.service_name} - Verify Your Email", html_body, text_body
        )
