"""One-time secret generation and hashing.

Issues the three kinds of secret the sign-in protocol hands out and stores
only digests of:

- magic-link tokens (emailed URL)
- 6-digit login codes (emailed, typed back by the user)
- authorization codes (returned to the client's redirect_uri)

Digests are SHA-256 encoded as unpadded base64url, the same alphabet the
tokens themselves use. Client application secrets are bcrypt hashes and are
verified here as well.
"""

import base64
import hashlib
import re
import secrets
from collections.abc import Awaitable, Callable

import bcrypt

# 32 random bytes = 256 bits of entropy
_TOKEN_BYTES = 32

_LOGIN_CODE_SPACE = 1_000_000
_LOGIN_CODE_DIGITS = 6

# bcrypt ignores (or rejects) input beyond 72 bytes
_BCRYPT_MAX_INPUT_BYTES = 72
_BCRYPT_ROUNDS = 12

_SMART_SINGLE_QUOTES = re.compile("[‘’]")
_WHITESPACE_RUN = re.compile(r"\s+")


def random_token(nbytes: int = _TOKEN_BYTES) -> str:
    """Generate a URL-safe random token (base64url, no padding)."""
    return secrets.token_urlsafe(nbytes)


def random_login_code() -> str:
    """Generate a 6-digit code drawn uniformly from [0, 1_000_000)."""
    return str(secrets.randbelow(_LOGIN_CODE_SPACE)).zfill(_LOGIN_CODE_DIGITS)


def normalize_login_code(raw: str) -> str:
    """Normalize a human-entered code before hashing.

    Trims, lowercases, maps curly single quotes to ``'`` and collapses
    whitespace runs to one space, so copy/paste noise does not cause a
    false reject.
    """
    value = raw.strip().lower()
    value = _SMART_SINGLE_QUOTES.sub("'", value)
    return _WHITESPACE_RUN.sub(" ", value)


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return email.strip().lower()


def hash_secret(value: str) -> str:
    """Deterministic one-way digest of a secret (SHA-256, base64url)."""
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def hash_login_code(raw: str) -> str:
    """Digest of a 6-digit code after normalization."""
    return hash_secret(normalize_login_code(raw))


async def issue_login_code(
    is_active: Callable[[str], Awaitable[bool]],
    *,
    attempts: int,
) -> tuple[str, str]:
    """Generate a 6-digit code, avoiding codes held by active requests.

    Best effort only: the probe runs up to ``attempts`` times and the last
    candidate is accepted even if it still collides. Uniqueness is not a
    database constraint.

    Args:
        is_active: Async predicate telling whether a code hash is held by an
            unused, unexpired login request.
        attempts: Number of probes before giving up.

    Returns:
        (plain_code, code_hash): plain for the email, hash for storage.
    """
    code = random_login_code()
    for _ in range(attempts):
        if not await is_active(hash_login_code(code)):
            break
        code = random_login_code()
    return code, hash_login_code(code)


def issue_token() -> tuple[str, str]:
    """Generate an opaque token and its digest.

    Returns:
        (plain_token, token_hash): plain for the user agent, hash for storage.
    """
    plain = random_token()
    return plain, hash_secret(plain)


def hash_client_secret(secret: str) -> str:
    """bcrypt hash of a client application secret."""
    return bcrypt.hashpw(
        secret.encode(), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    ).decode()


def verify_client_secret(secret: str, secret_hash: str) -> bool:
    """Check a client secret against its stored bcrypt hash.

    Secrets longer than bcrypt's input limit never match.
    """
    encoded = secret.encode()
    if not encoded or len(encoded) > _BCRYPT_MAX_INPUT_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, secret_hash.encode())
    except ValueError:
        # Malformed stored hash
        return False


def redact_email(email_normalized: str) -> str:
    """Redact an email for logs: ``alice@example.com`` -> ``a***e@example.com``."""
    local, _, domain = email_normalized.partition("@")
    if not local or not domain:
        return "[invalid-email]"
    if len(local) <= 2:
        return f"{local[0]}*@{domain}"
    return f"{local[0]}***{local[-1]}@{domain}"
