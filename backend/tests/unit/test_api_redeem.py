"""Tests for the browser redemption pages.

GET /magic, GET /code and POST /code answer with a 302 to the client's
callback on success and with plain text on failure.
"""

from dataclasses import replace
from urllib.parse import parse_qs, urlsplit

import pytest

from authbroker.core.config import RateLimitRule
from authbroker.main import app

_DEMO_REDIRECT = "https://app.example/callback"


@pytest.fixture
async def started(client, notifier):
    """Run Start for alice and return the email that was sent."""
    await client.post(
        "/v1/auth/start",
        json={
            "client_id": "demo",
            "email": "alice@example.com",
            "redirect_uri": _DEMO_REDIRECT,
            "state": "st@te 1",
        },
    )
    return notifier.last


def _token(email) -> str:
    return parse_qs(urlsplit(email.magic_link_url).query)["t"][0]


class TestMagicLink:
    """GET /magic."""

    async def test_redirects_with_code_and_state(self, client, started):
        response = await client.get("/magic", params={"t": _token(started)})

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(_DEMO_REDIRECT + "?code=")
        params = parse_qs(urlsplit(location).query)
        assert params["state"] == ["st@te 1"]
        assert params["code"][0]

    async def test_missing_token_is_plain_text(self, client):
        response = await client.get("/magic")

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Missing token"

    async def test_unknown_token(self, client):
        response = await client.get("/magic", params={"t": "nope"})
        assert response.status_code == 400
        assert response.text == "Invalid or expired token"

    async def test_overlong_token_is_plain_text(self, client):
        response = await client.get("/magic", params={"t": "x" * 600})

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Invalid or expired token"

    async def test_second_visit_is_rejected(self, client, started):
        await client.get("/magic", params={"t": _token(started)})

        response = await client.get("/magic", params={"t": _token(started)})

        assert response.status_code == 400
        assert response.text == "Token already used"

    async def test_expired_link(self, client, started, clock):
        clock.advance(minutes=10)

        response = await client.get("/magic", params={"t": _token(started)})

        assert response.status_code == 400
        assert response.text == "Token expired"

    async def test_redirect_is_not_cacheable(self, client, started):
        response = await client.get("/magic", params={"t": _token(started)})
        assert response.headers["cache-control"].startswith("no-store")
        assert response.headers["referrer-policy"] == "no-referrer"


class TestCodeForm:
    """GET /code."""

    async def test_renders_form(self, client):
        response = await client.get("/code")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert '<form method="post" action="/code">' in response.text

    async def test_prefills_from_query(self, client):
        response = await client.get(
            "/code", params={"email": "alice@example.com", "c": "123456"}
        )
        assert 'value="alice@example.com"' in response.text
        assert 'value="123456"' in response.text

    async def test_prefill_is_escaped(self, client):
        response = await client.get(
            "/code", params={"email": '"><script>alert(1)</script>', "c": "1"}
        )
        assert "<script>" not in response.text
        assert "&quot;&gt;&lt;script&gt;" in response.text


class TestCodeSubmit:
    """POST /code."""

    async def test_redirects_on_valid_code(self, client, started):
        response = await client.post(
            "/code", data={"email": " Alice@Example.com", "code": f" {started.code} "}
        )

        assert response.status_code == 302
        assert response.headers["location"].startswith(_DEMO_REDIRECT + "?code=")

    async def test_missing_fields(self, client):
        response = await client.post("/code", data={})

        assert response.status_code == 400
        assert response.text == "Missing email or code"

    async def test_wrong_code(self, client, started):
        wrong = "000000" if started.code != "000000" else "111111"

        response = await client.post(
            "/code", data={"email": "alice@example.com", "code": wrong}
        )

        assert response.status_code == 400
        assert response.text == "Invalid or expired code"

    @pytest.mark.parametrize(
        ("email", "code"),
        [("alice@example.com", "1" * 65), ("a" * 400 + "@example.com", "123456")],
    )
    async def test_overlong_input_is_plain_text(self, client, email, code):
        response = await client.post("/code", data={"email": email, "code": code})

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Invalid or expired code"

    async def test_code_after_link_is_used(self, client, started):
        await client.get("/magic", params={"t": _token(started)})

        response = await client.post(
            "/code", data={"email": "alice@example.com", "code": started.code}
        )

        assert response.status_code == 400
        assert response.text == "Code already used"

    async def test_rate_limited_is_plain_text(self, client, broker_config):
        app.state.broker_config = replace(
            broker_config, code_rules=(RateLimitRule("ip", 60, 1),)
        )
        await client.post("/code", data={"email": "a@example.com", "code": "1"})

        response = await client.post("/code", data={"email": "a@example.com", "code": "1"})

        assert response.status_code == 429
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Rate limited. Try again soon."
        assert int(response.headers["retry-after"]) >= 1
