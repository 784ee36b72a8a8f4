"""
auth/tokens.py -- Password hashing, session tokens, and input normalization.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt is the right choice
       for low-entropy secrets because its cost factor makes brute-force
       expensive. The _DUMMY_HASH constant enables timing equalization in
       AuthEngine.login() so response time does not reveal whether an email
       is registered [C1].

  Session tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 hex digest is stored. A plain (unkeyed) digest is enough here:
       the token is already high-entropy, so the digest cannot be reversed,
       and lookups stay O(1) via the UNIQUE index.

  Emails: trimmed and lowercased before every lookup or insert. Syntax is
       checked with email-validator (no DNS / deliverability lookups).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import ipaddress
import secrets

import bcrypt
from email_validator import EmailNotValidError, validate_email

MIN_PASSWORD_BYTES = 8
USER_AGENT_MAX_BYTES = 255

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; longer inputs are truncated here
    explicitly because bcrypt 4.x raises instead of truncating silently.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a non-match.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("rolegate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


def is_strong_enough(plain: str) -> bool:
    return len(plain.encode("utf-8")) >= MIN_PASSWORD_BYTES


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Return 32 random bytes as 64 hex characters (256 bits of entropy)."""
    return secrets.token_hex(32)


def hash_session_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest stored in user_sessions.session_token_hash."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    """Syntax-only email check. Expects an already normalized address."""
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def normalize_name(name: str | None) -> str | None:
    """Trim a display name; blank names are stored as NULL."""
    if name is None:
        return None
    name = name.strip()
    return name or None


def pack_ip(ip: str | None) -> bytes | None:
    """Pack a textual IPv4/IPv6 address into 4 or 16 bytes. None if unparseable."""
    if not ip:
        return None
    try:
        return ipaddress.ip_address(ip).packed
    except ValueError:
        return None


def truncate_user_agent(user_agent: str | None) -> str:
    """Cut the user agent to 255 bytes without splitting a UTF-8 sequence."""
    if not user_agent:
        return ""
    return user_agent.encode("utf-8")[:USER_AGENT_MAX_BYTES].decode("utf-8", errors="ignore")
