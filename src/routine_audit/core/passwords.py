# src/routine_audit/core/passwords.py

"""
Password hashing.

New hashes are bcrypt. Accounts created by the first version of the tracker carry an
unsalted SHA-256 hex digest; those still verify (constant-time compare) and are flagged
for an upgrade to bcrypt on the next successful login.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re

import bcrypt

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes; refuse longer input instead of truncating silently.
MAX_PASSWORD_BYTES = 72

_LEGACY_SHA256 = re.compile(r"^[0-9a-f]{64}$")


def validate_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")


def hash_password(password: str, *, rounds: int = DEFAULT_ROUNDS) -> str:
    validate_password(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def is_legacy_hash(stored: str) -> bool:
    return bool(_LEGACY_SHA256.match(stored or ""))


def verify_password(password: str, stored: str) -> bool:
    if not password or not stored:
        return False

    if is_legacy_hash(stored):
        digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, stored)

    pw = password.encode("utf-8")
    if len(pw) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(pw, stored.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def needs_rehash(stored: str) -> bool:
    return is_legacy_hash(stored)
