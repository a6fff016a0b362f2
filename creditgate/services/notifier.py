"""
Notifier - Delivers activation codes to buyers.

Transports:
- SendGridNotifier: SendGrid v3 mail API over HTTPS
- SmtpNotifier: SMTP with STARTTLS (Gmail app passwords)
- LogNotifier: no transport configured; the code is logged for manual delivery

Delivery is best-effort. NotificationDispatcher runs each send as a
background task so a slow or failing transport never holds up the webhook
response or undoes a credit grant.
"""

import asyncio
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Protocol

import httpx
from structlog import get_logger

from creditgate.config import Settings
from creditgate.exceptions import UpstreamError
from creditgate.observability import metrics

logger = get_logger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class Notifier(Protocol):
    """Sends the activation email for a credited payment."""

    transport: str

    async def send_activation(
        self,
        email: str,
        credits: int,
        activation_code: str | None,
        expires_at: datetime | None,
    ) -> None:
        """
        Deliver the activation message.

        Raises:
            UpstreamError: the transport rejected or failed the send
        """
        ...

    async def close(self) -> None: ...


def render_activation_email(
    credits: int, activation_code: str | None, expires_at: datetime | None
) -> tuple[str, str, str]:
    """(subject, plain text, html) for an activation email."""
    subject = f"Your activation code - {credits} credits"
    lines = [
        "Thank you for your purchase!",
        "",
        f"{credits} credits have been added to your account.",
    ]
    if activation_code:
        lines += ["", "Your activation code:", activation_code]
    if expires_at:
        lines += ["", f"Valid until {expires_at.date().isoformat()}."]
    text = "\n".join(lines)

    html = [
        "<p>Thank you for your purchase!</p>",
        f"<p><strong>{credits} credits</strong> have been added to your account.</p>",
    ]
    if activation_code:
        html.append(f"<p>Your activation code:</p><pre>{activation_code}</pre>")
    if expires_at:
        html.append(f"<p>Valid until {expires_at.date().isoformat()}.</p>")
    return subject, text, "".join(html)


class SendGridNotifier:
    """SendGrid v3 API transport."""

    transport = "sendgrid"

    def __init__(
        self,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def send_activation(
        self,
        email: str,
        credits: int,
        activation_code: str | None,
        expires_at: datetime | None,
    ) -> None:
        subject, text, html = render_activation_email(credits, activation_code, expires_at)
        payload = {
            "personalizations": [{"to": [{"email": email}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
        }
        try:
            response = await self.http_client.post(
                SENDGRID_SEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                "sendgrid", f"send returned {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError("sendgrid", str(e) or type(e).__name__) from e

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


class SmtpNotifier:
    """SMTP transport; the blocking smtplib session runs in a worker thread."""

    transport = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    async def send_activation(
        self,
        email: str,
        credits: int,
        activation_code: str | None,
        expires_at: datetime | None,
    ) -> None:
        subject, text, html = render_activation_email(credits, activation_code, expires_at)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = email
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamError("smtp", str(e) or type(e).__name__) from e

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(message)

    async def close(self) -> None:
        return None


class LogNotifier:
    """Logs the activation code so an operator can deliver it by hand."""

    transport = "log"

    async def send_activation(
        self,
        email: str,
        credits: int,
        activation_code: str | None,
        expires_at: datetime | None,
    ) -> None:
        logger.warning(
            "activation_email_not_configured",
            email=email,
            credits=credits,
            activation_code=activation_code,
            expires_at=expires_at.isoformat() if expires_at else None,
        )

    async def close(self) -> None:
        return None


def build_notifier(config: Settings) -> Notifier:
    """Pick the transport the configured credentials allow."""
    transport = config.email_transport
    if transport == "sendgrid":
        return SendGridNotifier(api_key=config.sendgrid_api_key, sender=config.email_from)
    if transport == "smtp":
        return SmtpNotifier(
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
            password=config.smtp_password,
            sender=config.email_from or config.smtp_user,
            use_tls=config.smtp_use_tls,
        )
    return LogNotifier()


class NotificationDispatcher:
    """Runs notifier sends as tracked background tasks."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(
        self,
        email: str,
        credits: int,
        activation_code: str | None,
        expires_at: datetime | None,
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(
            self.notifier.send_activation(email, credits, activation_code, expires_at),
            name=f"activation-email:{email}",
        )
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, email))
        return task

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for in-flight sends at shutdown; stragglers are cancelled."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("notifications_cancelled_at_shutdown", count=len(pending))

    def _on_done(self, task: asyncio.Task[None], email: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            metrics.record_notification(self.notifier.transport, success=False)
            return
        error = task.exception()
        if error is None:
            metrics.record_notification(self.notifier.transport, success=True)
            logger.info("activation_email_sent", email=email, transport=self.notifier.transport)
            return
        metrics.record_notification(self.notifier.transport, success=False)
        metrics.record_error(type(error).__name__, "send_activation")
        logger.error(
            "activation_email_failed",
            email=email,
            transport=self.notifier.transport,
            error=str(error),
        )
