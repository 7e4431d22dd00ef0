from __future__ import annotations

import hashlib
import hmac
import os
import secrets
from typing import Optional

from passlib.context import CryptContext

PBKDF2_PREFIX = "pbkdf2$"
PBKDF2_ITERATIONS = 120_000
PBKDF2_SALT_BYTES = 16
MIN_PASSWORD_LENGTH = 6

_pwd_context: Optional[CryptContext]

try:
    _pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
except Exception:
    _pwd_context = None


def _pbkdf2_digest(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def _pbkdf2_encode(password: str) -> str:
    salt = os.urandom(PBKDF2_SALT_BYTES)
    digest = _pbkdf2_digest(password, salt, PBKDF2_ITERATIONS)
    return f"{PBKDF2_PREFIX}{PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def _pbkdf2_verify(password: str, encoded: str) -> bool:
    try:
        _, iterations, salt_hex, digest_hex = encoded.split("$", 3)
        expected = bytes.fromhex(digest_hex)
        computed = _pbkdf2_digest(password, bytes.fromhex(salt_hex), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(computed, expected)


def validate_password_strength(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres")


def hash_password(password: str) -> str:
    # bcrypt quando disponível; pbkdf2 se o backend do passlib falhar
    if _pwd_context is not None:
        try:
            return _pwd_context.hash(password)
        except (ValueError, RuntimeError):
            pass
    return _pbkdf2_encode(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    if password_hash.startswith(PBKDF2_PREFIX):
        return _pbkdf2_verify(password, password_hash)
    if _pwd_context is None:
        return False
    try:
        return _pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def generate_invite_token() -> str:
    return f"invite_{secrets.token_urlsafe(24)}"
