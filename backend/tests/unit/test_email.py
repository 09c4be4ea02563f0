"""Tests for sign-in email rendering and delivery."""

import json
import logging

import httpx
import pytest
from pydantic import SecretStr

from authbroker.core.config import Settings
from authbroker.core.email import (
    ClientBranding,
    ConsoleNotifier,
    EmailDeliveryError,
    LoginEmail,
    ResendNotifier,
    build_notifier,
    render_subject,
    render_text,
)

_TEST_API_KEY = "re_test_key"  # nosec B105


def _email(**branding) -> LoginEmail:
    return LoginEmail(
        to_email="alice@example.com",
        magic_link_url="https://auth.example/magic?t=tok",
        code="012345",
        code_entry_url="https://auth.example/code?email=alice%40example.com&c=012345",
        expires_minutes=10,
        branding=ClientBranding(client_id="demo", **branding),
    )


def _resend(handler) -> ResendNotifier:
    return ResendNotifier(
        api_key=_TEST_API_KEY,
        from_address="noreply@auth.example",
        from_name="Authbroker",
        transport=httpx.MockTransport(handler),
    )


class TestRendering:
    """Subject and plain-text body."""

    def test_default_subject_uses_app_name(self):
        assert render_subject(_email(app_name="Demo App"), "Authbroker") == (
            "Sign in to Demo App"
        )

    def test_subject_falls_back_to_client_id(self):
        assert render_subject(_email(), "Authbroker") == "Sign in to demo"

    def test_subject_override(self):
        email = _email(app_name="Demo App", email_subject="Your Demo login")
        assert render_subject(email, "Authbroker") == "Your Demo login"

    def test_blank_override_is_ignored(self):
        email = _email(app_name="Demo App", email_subject="   ")
        assert render_subject(email, "Authbroker") == "Sign in to Demo App"

    def test_body_carries_link_code_and_entry_url(self):
        body = render_text(_email(app_name="Demo App"), "Authbroker")

        assert "https://auth.example/magic?t=tok" in body
        assert "Code: 012345" in body
        assert "Enter it here: https://auth.example/code?email=" in body
        assert "This link expires in 10 minutes." in body


class TestResendNotifier:
    """Delivery through the Resend HTTP API."""

    async def test_posts_message(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"id": "msg_123"})

        receipt = await _resend(handler).send(_email(app_name="Demo App"))

        assert receipt.message_id == "msg_123"
        assert receipt.provider == "resend"
        request = captured[0]
        assert str(request.url) == "https://api.resend.com/emails"
        assert request.headers["authorization"] == f"Bearer {_TEST_API_KEY}"
        payload = json.loads(request.content)
        assert payload["to"] == "alice@example.com"
        assert payload["from"] == "Demo App <noreply@auth.example>"
        assert payload["subject"] == "Sign in to Demo App"
        assert "Code: 012345" in payload["text"]

    async def test_non_2xx_raises(self):
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "invalid from"})

        with pytest.raises(httpx.HTTPStatusError):
            await _resend(handler).send(_email())

    async def test_missing_id_raises(self):
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        with pytest.raises(EmailDeliveryError):
            await _resend(handler).send(_email())

    async def test_non_json_body_raises(self):
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="accepted")

        with pytest.raises(EmailDeliveryError):
            await _resend(handler).send(_email())

    async def test_transport_error_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(httpx.ConnectError):
            await _resend(handler).send(_email())


class TestConsoleNotifier:
    """Development notifier that only logs."""

    async def test_logs_link_and_code(self, caplog):
        notifier = ConsoleNotifier(from_name="Authbroker")

        with caplog.at_level(logging.INFO, logger="authbroker.core.email"):
            receipt = await notifier.send(_email())

        assert receipt.provider == "console"
        assert receipt.message_id == "console-1"
        assert "https://auth.example/magic?t=tok" in caplog.text
        assert "Code: 012345" in caplog.text

    async def test_message_ids_increase(self):
        notifier = ConsoleNotifier()
        first = await notifier.send(_email())
        second = await notifier.send(_email())
        assert (first.message_id, second.message_id) == ("console-1", "console-2")


class TestBuildNotifier:
    """EMAIL_BACKEND selection."""

    def test_console_without_key(self):
        notifier = build_notifier(Settings(resend_api_key=SecretStr("")))
        assert isinstance(notifier, ConsoleNotifier)

    def test_resend_with_key(self):
        notifier = build_notifier(Settings(resend_api_key=SecretStr(_TEST_API_KEY)))
        assert isinstance(notifier, ResendNotifier)

    def test_explicit_console(self):
        notifier = build_notifier(
            Settings(email_backend="console", resend_api_key=SecretStr(_TEST_API_KEY))
        )
        assert isinstance(notifier, ConsoleNotifier)
