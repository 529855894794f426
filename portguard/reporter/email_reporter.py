# portguard - Email reporter: SMTP, Resend.com, msmtp or mail(1)
from __future__ import annotations

import asyncio
import logging
import platform
import time
from typing import Any

from portguard.shell import Runner, have_command, run_command

logger = logging.getLogger("portguard.email_reporter")

PROVIDERS = ("auto", "smtp", "resend", "msmtp", "mail", "none")


class EmailReporter:
    """Best-effort delivery of port reports. ``send`` never raises; it returns
    True when a transport accepted the message."""

    def __init__(self, config: dict[str, Any], runner: Runner = run_command, hostname: str | None = None) -> None:
        self.config = config
        self._run = runner
        self._hostname = hostname or platform.node() or "localhost"
        self._admin_emails = config.get("admin_emails", []) or []
        self._smtp = config.get("smtp", {})
        self._resend = config.get("resend", {})
        self._msmtp_account = config.get("msmtp_account") or "default"
        self._from = self._smtp.get("from", "portguard <noreply@localhost>")
        self._provider = self._resolve_provider((config.get("provider") or "auto").strip().lower())
        if self._provider == "resend":
            self._from = self._resend.get("from", self._from)

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def hostname(self) -> str:
        return self._hostname

    def _resolve_provider(self, provider: str) -> str:
        if provider not in PROVIDERS:
            logger.warning("Unknown notification provider %r; notifications disabled", provider)
            return "none"
        if provider != "auto":
            return provider
        if self._smtp.get("host"):
            return "smtp"
        if self._resend.get("api_key") and self._resend.get("from"):
            return "resend"
        if have_command("msmtp"):
            return "msmtp"
        if have_command("mail"):
            return "mail"
        return "none"

    def _can_send(self) -> bool:
        if not self._admin_emails:
            return False
        if self._provider == "resend":
            return bool(self._resend.get("api_key")) and bool(self._resend.get("from"))
        if self._provider == "smtp":
            return bool(self._smtp.get("host"))
        return self._provider in ("msmtp", "mail")

    def full_subject(self, subject: str) -> str:
        return f"{self._hostname} - {subject}"

    def format_body(self, body: str) -> str:
        return (
            f"Port monitoring report from {self._hostname}\n\n"
            f"Generated on: {time.strftime('%a %b %d %H:%M:%S %Z %Y')}\n\n"
            f"{body}\n"
        )

    async def send(self, subject: str, body: str) -> bool:
        if not self._can_send():
            if not self._admin_emails:
                logger.warning("No admin_emails configured, email notification skipped")
            else:
                logger.warning("No mail system available (provider=%s), email notification skipped", self._provider)
            return False
        full_subject = self.full_subject(subject)
        full_body = self.format_body(body)
        try:
            if self._provider == "smtp":
                return await self._send_smtp(full_subject, full_body)
            if self._provider == "resend":
                return await self._send_resend(full_subject, full_body)
            loop = asyncio.get_event_loop()
            if self._provider == "msmtp":
                return await loop.run_in_executor(None, self._send_msmtp, full_subject, full_body)
            return await loop.run_in_executor(None, self._send_mailx, full_subject, full_body)
        except Exception as e:
            logger.warning("Failed to send email via %s: %s", self._provider, e)
            return False

    async def _send_smtp(self, subject: str, body: str) -> bool:
        try:
            from email.message import EmailMessage
            import aiosmtplib
            msg = EmailMessage()
            msg["From"] = self._from
            msg["To"] = ", ".join(self._admin_emails)
            msg["Subject"] = subject
            msg.set_content(body)
            await aiosmtplib.send(
                msg,
                hostname=self._smtp.get("host", ""),
                port=self._smtp.get("port", 587),
                use_tls=self._smtp.get("use_tls", False),
                start_tls=self._smtp.get("start_tls", True),
                username=self._smtp.get("user") or None,
                password=self._smtp.get("password") or None,
            )
            return True
        except Exception as e:
            logger.warning("Failed to send email (SMTP): %s", e)
            return False

    async def _send_resend(self, subject: str, body: str) -> bool:
        try:
            import httpx
            api_key = self._resend.get("api_key", "")
            payload: dict[str, Any] = {
                "from": self._from,
                "to": list(self._admin_emails),
                "subject": subject,
                "text": body,
            }
            async with httpx.AsyncClient(timeout=30.0) as client:
                r = await client.post(
                    "https://api.resend.com/emails",
                    headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                    json=payload,
                )
            if r.status_code >= 400:
                logger.warning("Resend API error %s: %s", r.status_code, r.text[:200])
                return False
            return True
        except Exception as e:
            logger.warning("Failed to send email (Resend): %s", e)
            return False

    def _send_msmtp(self, subject: str, body: str) -> bool:
        message = f"Subject: {subject}\nTo: {', '.join(self._admin_emails)}\n\n{body}"
        r = self._run(["msmtp", "-a", self._msmtp_account, *self._admin_emails], input=message)
        if not r.ok:
            logger.warning("Failed to send email via msmtp: %s", r.reason())
        return r.ok

    def _send_mailx(self, subject: str, body: str) -> bool:
        r = self._run(["mail", "-s", subject, *self._admin_emails], input=body)
        if not r.ok:
            logger.warning("Failed to send email via mail: %s", r.reason())
        return r.ok
