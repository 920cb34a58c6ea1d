"""
Credential and token primitives.

- Password hashing (bcrypt)
- Opaque session and password reset tokens, stored only as SHA-256 digests
- CSRF double-submit tokens
"""

from __future__ import annotations

import hashlib
import secrets

import bcrypt

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


# Compared against when the email is unknown, so both failure paths cost a bcrypt round.
DUMMY_PASSWORD_HASH = hash_password(secrets.token_urlsafe(16))


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

def generate_session_token() -> str:
    """Generate an opaque, URL-safe session token."""
    return f"gs_{secrets.token_urlsafe(32)}"


def hash_session_token(token: str) -> str:
    """Digest used as the session's storage key; the raw token is never persisted."""
    return hashlib.sha256(token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------

def generate_reset_token() -> str:
    return f"gr_{secrets.token_urlsafe(32)}"


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# CSRF Token
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)
