"""Notification dispatcher (Mailgun/SendGrid email).

Every send is best-effort: failures are logged and returned as a SendResult,
never raised, so the caller's state transition always completes.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field

import httpx

from app.config import Settings, get_settings
from app.models.otp_code import OtpPurpose

log = logging.getLogger("uvicorn.error")

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"
SENDGRID_API_BASE = "https://api.sendgrid.com"

NOT_CONFIGURED = "Email transport not configured"

PURPOSE_LABELS = {
    OtpPurpose.signup: "Account Verification",
    OtpPurpose.password_reset: "Password Reset",
    OtpPurpose.email_verification: "Email Verification",
}


@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class HealthResult:
    healthy: bool
    config: dict = field(default_factory=dict)
    error: str | None = None


class NotificationDispatcher:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @property
    def transport(self) -> str | None:
        s = self.settings
        if s.mailgun_api_key and s.mailgun_domain:
            return "mailgun"
        if s.sendgrid_api_key:
            return "sendgrid"
        return None

    def send_email(self, to_email: str, subject: str, html_content: str, text_content: str | None = None) -> SendResult:
        """Send via Mailgun (preferred) or SendGrid."""
        transport = self.transport
        if transport == "mailgun":
            return self._send_email_mailgun(to_email, subject, html_content, text_content)
        if transport == "sendgrid":
            return self._send_email_sendgrid(to_email, subject, html_content, text_content)
        log.warning(
            "[Email] NOT SENT: to=%s subject=%s. Set MAILGUN_API_KEY and MAILGUN_DOMAIN (or SENDGRID_API_KEY) in .env.",
            to_email,
            subject,
        )
        return SendResult(success=False, error=NOT_CONFIGURED)

    def _mailgun_from(self) -> str:
        s = self.settings
        domain = s.mailgun_domain.lower()
        from_addr = s.mailgun_from_email
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        if domain and from_domain != domain:
            # Mailgun drops mail whose sender domain does not match the sending domain
            from_addr = f"noreply@{domain}"
        return f"{s.mailgun_from_name} <{from_addr}>"

    def _send_email_mailgun(self, to_email: str, subject: str, html_content: str, text_content: str | None) -> SendResult:
        s = self.settings
        base = (s.mailgun_base_url or MAILGUN_US_BASE).rstrip("/")
        domain = s.mailgun_domain.lower()
        data = {
            "from": self._mailgun_from(),
            "to": to_email,
            "subject": subject,
            "text": text_content or "",
            "html": html_content or "",
        }
        try:
            with httpx.Client(timeout=s.email_timeout_seconds) as client:
                r = client.post(f"{base}/v3/{domain}/messages", auth=("api", s.mailgun_api_key), data=data)
                if r.status_code == 401 and base == MAILGUN_US_BASE:
                    log.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                    r = client.post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", s.mailgun_api_key), data=data)
        except httpx.HTTPError as e:
            log.warning("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
            return SendResult(success=False, error=f"{type(e).__name__}: {e}")
        if 200 <= r.status_code < 300:
            try:
                msg_id = (r.json() or {}).get("id") or None
            except ValueError:
                msg_id = None
            log.info("[Mailgun] API success: to=%s status=%s id=%s", to_email, r.status_code, msg_id)
            return SendResult(success=True, message_id=msg_id)
        log.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
        return SendResult(success=False, error=f"Mailgun responded {r.status_code}")

    def _send_email_sendgrid(self, to_email: str, subject: str, html_content: str, text_content: str | None) -> SendResult:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail

        s = self.settings
        message = Mail(
            from_email=(s.sendgrid_from_email, s.sendgrid_from_name),
            to_emails=to_email,
            subject=subject,
            html_content=html_content,
            plain_text_content=text_content or "",
        )
        try:
            response = SendGridAPIClient(s.sendgrid_api_key).send(message)
        except Exception as e:
            # python-http-client raises its own HTTPError hierarchy plus transport errors
            log.warning("[SendGrid] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
            return SendResult(success=False, error=f"{type(e).__name__}: {e}")
        msg_id = None
        headers = getattr(response, "headers", None)
        if headers is not None:
            msg_id = headers.get("X-Message-Id")
        log.info("[SendGrid] API success: to=%s status=%s id=%s", to_email, response.status_code, msg_id)
        return SendResult(success=True, message_id=msg_id)

    def send_otp(self, email: str, name: str | None, code: str, purpose: OtpPurpose = OtpPurpose.signup) -> SendResult:
        """Send the 6-digit code. The code itself is never logged."""
        label = PURPOSE_LABELS.get(purpose, "Verification")
        who = html.escape((name or "").strip() or "there")
        minutes = self.settings.otp_expire_minutes
        subject = f"[{self.settings.app_name}] Your verification code"
        text = (
            f"Hi {(name or '').strip() or 'there'}, your {self.settings.app_name} code for {label} is: {code}. "
            f"It expires in {minutes} minutes."
        )
        body = f"""
        <p>Hi {who},</p>
        <p>Your {html.escape(self.settings.app_name)} code for {label} is:
        <strong style="font-size:1.2em;letter-spacing:0.2em;">{code}</strong></p>
        <p>This code expires in {minutes} minutes. If you did not request this, you can ignore this email.</p>
        """
        log.info("[Verification] Sending %s code to %s via %s", purpose.value, email, self.transport or "(none)")
        return self.send_email(email, subject, body, text_content=text)

    def send_approval_request(self, approver_email: str, account_email: str, account_name: str, approval_link: str) -> SendResult:
        subject = f"[{self.settings.app_name}] New user approval required"
        text = (
            f"A new user has requested access to {self.settings.app_name}.\n"
            f"Name: {account_name}\nEmail: {account_email}\n"
            f"Approve: {approval_link}"
        )
        body = f"""
        <p>A new user has requested access to <strong>{html.escape(self.settings.app_name)}</strong>.</p>
        <p>Name: {html.escape(account_name)}<br>Email: {html.escape(account_email)}</p>
        <p><a href="{html.escape(approval_link, quote=True)}">Approve this account</a></p>
        <p>If you do not recognise this request you can ignore this email; it expires automatically.</p>
        """
        return self.send_email(approver_email, subject, body, text_content=text)

    def send_welcome(self, email: str, name: str | None) -> SendResult:
        plain_name = (name or "").strip() or "there"
        subject = f"[{self.settings.app_name}] Welcome - your account is active"
        text = f"Hello {plain_name}, your {self.settings.app_name} account has been approved and is now active. You can sign in now."
        body = f"""
        <p>Hello {html.escape(plain_name)},</p>
        <p>Your <strong>{html.escape(self.settings.app_name)}</strong> account has been approved and is now active.</p>
        <p>You can now sign in and start using the application.</p>
        """
        return self.send_email(email, subject, body, text_content=text)

    def send_test(self, to_email: str) -> SendResult:
        subject = f"[{self.settings.app_name}] Test email"
        text = f"This is a test email from {self.settings.app_name}. If you received this, email delivery is configured correctly."
        body = f"<p>This is a test email from <strong>{html.escape(self.settings.app_name)}</strong>.</p><p>Email delivery is configured correctly.</p>"
        return self.send_email(to_email, subject, body, text_content=text)

    def check_health(self) -> HealthResult:
        """Probe the configured transport with an authenticated read-only call."""
        s = self.settings
        transport = self.transport
        if transport is None:
            return HealthResult(healthy=False, config={"transport": None}, error=NOT_CONFIGURED)
        try:
            with httpx.Client(timeout=s.email_timeout_seconds) as client:
                if transport == "mailgun":
                    config = {"transport": "mailgun", "domain": s.mailgun_domain, "from": self._mailgun_from()}
                    base = (s.mailgun_base_url or MAILGUN_US_BASE).rstrip("/")
                    r = client.get(f"{base}/v3/domains/{s.mailgun_domain}", auth=("api", s.mailgun_api_key))
                else:
                    config = {"transport": "sendgrid", "from": s.sendgrid_from_email}
                    r = client.get(
                        f"{SENDGRID_API_BASE}/v3/scopes",
                        headers={"Authorization": f"Bearer {s.sendgrid_api_key}"},
                    )
        except httpx.HTTPError as e:
            return HealthResult(healthy=False, config={"transport": transport}, error=f"{type(e).__name__}: {e}")
        if 200 <= r.status_code < 300:
            return HealthResult(healthy=True, config=config)
        return HealthResult(healthy=False, config=config, error=f"{transport} responded {r.status_code}")


def get_notifier() -> NotificationDispatcher:
    """FastAPI dependency; tests override it with a recording fake."""
    return NotificationDispatcher(get_settings())
