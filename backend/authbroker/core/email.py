"""Sign-in email delivery.

Two notifiers share one interface:

- ``ResendNotifier``: plain-text email through a simple HTTP POST to the
  Resend API.
- ``ConsoleNotifier``: logs the link and code instead of sending; the
  development default when no API key is configured.

The orchestrator owns the delivery policy (timeout, failures are logged and
never fail Start); notifiers only raise.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from authbroker.core.config import Settings

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"


class EmailDeliveryError(Exception):
    """The email provider accepted the request but returned no usable receipt."""


@dataclass(frozen=True)
class ClientBranding:
    """Per-client presentation of the sign-in email.

    Attributes:
        client_id: Fallback label when no app name is known.
        app_name: Display name ("Sign in to <app_name>").
        email_subject: Subject override; blank means the default subject.
        button_color: Accent color (unused by the plain-text body).
    """

    client_id: str
    app_name: str | None = None
    email_subject: str | None = None
    button_color: str | None = None

    @property
    def app_label(self) -> str:
        return (self.app_name or "").strip() or self.client_id.strip()


@dataclass(frozen=True)
class LoginEmail:
    """Everything needed to render one sign-in email.

    Attributes:
        to_email: Normalized recipient address.
        magic_link_url: Single-use sign-in URL.
        code: Plain 6-digit code.
        code_entry_url: Page where the code can be typed in.
        expires_minutes: Lifetime of the link and code.
        branding: Client presentation settings.
    """

    to_email: str
    magic_link_url: str
    code: str
    code_entry_url: str
    expires_minutes: int
    branding: ClientBranding


@dataclass(frozen=True)
class DeliveryReceipt:
    """Provider acknowledgement of a send."""

    message_id: str
    provider: str


def render_subject(email: LoginEmail, default_name: str) -> str:
    """Subject line: the client override, else ``Sign in to <name>``."""
    override = (email.branding.email_subject or "").strip()
    if override:
        return override
    return f"Sign in to {email.branding.app_label or default_name}"


def render_text(email: LoginEmail, default_name: str) -> str:
    """Plain-text body with the link, the code and the code-entry URL."""
    display_name = email.branding.app_label or default_name
    return (
        f"Sign in to {display_name}\n\n"
        f"Click this link to sign in:\n\n{email.magic_link_url}\n\n"
        f"Or use this one-time code:\n\nCode: {email.code}\n\n"
        f"Enter it here: {email.code_entry_url}\n\n"
        f"This link expires in {email.expires_minutes} minutes.\n\n"
        "Didn't request this? You can ignore this email."
    )


class Notifier(ABC):
    """Delivers sign-in emails."""

    provider_name: str

    @abstractmethod
    async def send(self, email: LoginEmail) -> DeliveryReceipt:
        """Deliver one sign-in email.

        Args:
            email: Rendered-ready email content.

        Returns:
            DeliveryReceipt from the provider.

        Raises:
            httpx.HTTPError: Transport failure or non-2xx provider response.
            EmailDeliveryError: Provider response could not be interpreted.
        """


class ResendNotifier(Notifier):
    """Send through the Resend HTTP API."""

    provider_name = "resend"

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str,
        from_name: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_address = from_address
        self._from_name = from_name
        self._timeout = timeout
        self._transport = transport

    async def send(self, email: LoginEmail) -> DeliveryReceipt:
        display_name = email.branding.app_label or self._from_name
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": f"{display_name} <{self._from_address}>",
                    "to": email.to_email,
                    "subject": render_subject(email, self._from_name),
                    "text": render_text(email, self._from_name),
                },
                timeout=self._timeout,
            )
            resp.raise_for_status()

        try:
            message_id = str(resp.json()["id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise EmailDeliveryError("Resend response carried no message id") from exc
        return DeliveryReceipt(message_id=message_id, provider=self.provider_name)


class ConsoleNotifier(Notifier):
    """Log sign-in emails instead of sending them (development only)."""

    provider_name = "console"

    def __init__(self, *, from_name: str = "Authbroker") -> None:
        self._from_name = from_name
        self._sent = 0

    async def send(self, email: LoginEmail) -> DeliveryReceipt:
        self._sent += 1
        logger.info(
            "Sign-in email (not sent)\nTo: %s\nSubject: %s\n\n%s",
            email.to_email,
            render_subject(email, self._from_name),
            render_text(email, self._from_name),
        )
        return DeliveryReceipt(
            message_id=f"console-{self._sent}", provider=self.provider_name
        )


def build_notifier(source: Settings) -> Notifier:
    """Select the notifier configured by EMAIL_BACKEND."""
    if source.resolved_email_backend == "resend":
        return ResendNotifier(
            api_key=source.resend_api_key.get_secret_value(),
            from_address=source.email_from,
            from_name=source.email_from_name,
            timeout=source.notification_timeout_seconds,
        )
    return ConsoleNotifier(from_name=source.email_from_name)
