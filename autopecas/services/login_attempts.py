from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from autopecas.core.config import LOGIN_LOCK_MINUTES, LOGIN_MAX_ATTEMPTS
from autopecas.models.login_attempt import LoginAttempt

ATTEMPT_WINDOW = timedelta(minutes=LOGIN_LOCK_MINUTES)
LOCK_DURATION = timedelta(minutes=LOGIN_LOCK_MINUTES)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_login_attempt(db: Session, email: str) -> Optional[LoginAttempt]:
    return db.query(LoginAttempt).filter(LoginAttempt.email == email).first()


def is_locked(attempt: LoginAttempt, now: Optional[datetime] = None) -> bool:
    if attempt.locked_until is None:
        return False
    return attempt.locked_until > (now or _now())


def check_login_lock(db: Session, email: str) -> Tuple[bool, Optional[datetime]]:
    attempt = get_login_attempt(db, email)
    if attempt is not None and is_locked(attempt):
        return True, attempt.locked_until
    return False, None


def register_failed_login(db: Session, email: str) -> Tuple[LoginAttempt, bool]:
    """Conta a falha na janela atual; retorna (tentativa, bloqueou_agora)."""
    now = _now()
    attempt = get_login_attempt(db, email)
    if attempt is None:
        attempt = LoginAttempt(email=email, failed_count=0, first_failed_at=now)
        db.add(attempt)
    elif attempt.first_failed_at is None or (now - attempt.first_failed_at) > ATTEMPT_WINDOW:
        attempt.failed_count = 0
        attempt.first_failed_at = now
        attempt.locked_until = None

    attempt.failed_count = (attempt.failed_count or 0) + 1
    attempt.last_failed_at = now

    locked = attempt.failed_count >= LOGIN_MAX_ATTEMPTS
    if locked:
        attempt.locked_until = now + LOCK_DURATION
    return attempt, locked


def clear_login_attempts(db: Session, email: str) -> None:
    attempt = get_login_attempt(db, email)
    if attempt is not None:
        db.delete(attempt)
