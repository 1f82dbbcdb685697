# Overview: Service-layer operations for auth; password hashing, login and reset tokens.

"""
Authentication Service

WHY: Every ledger record names the utorid that created it, so every request
must be tied to a real account. Passwords are hashed with bcrypt and checked
for strength whenever they are set.

PASSWORD RULES:
- 8 to 20 characters
- at least one uppercase letter, one lowercase letter, one digit
- at least one special character

RESET TOKENS:
- uuid4, stored on the user row with an expiry
- registration issues one valid ACTIVATION_TOKEN_TTL_DAYS (account activation)
- /auth/resets issues one valid RESET_TOKEN_TTL_MINUTES
- consuming a token sets the password and expires the token immediately
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import timedelta

import bcrypt
from flask import current_app

from ..errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    InvalidRequestError,
    NotFoundError,
    UnauthorizedError,
)
from ..extensions import db
from ..models import User
from ..permissions.roles import ROLE_SUPERUSER
from ..time_utils import utcnow
from ..validation import EMAIL_RE, UTORID_RE
from . import throttle_service
from .concurrency import run_atomic


logger = logging.getLogger(__name__)


class PasswordValidationError(InvalidRequestError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password) -> None:
    if not isinstance(password, str):
        raise PasswordValidationError("Password must be a string")
    if len(password) < 8 or len(password) > 20:
        raise PasswordValidationError("Password must be 8 to 20 characters long")
    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[^\w\s]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Cost factor comes from BCRYPT_ROUNDS (12 by default; tests use 4).
    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Timing-safe check; accounts that were never activated have no hash."""
    if not password_hash or not isinstance(password, str):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def authenticate(utorid: str, password: str, ip_address: str | None = None) -> User:
    """
    Verify credentials and stamp last_login.

    Raises UnauthorizedError on unknown utorid, unactivated account or wrong
    password; the three cases are indistinguishable to the caller.
    Raises TooManyRequestsError while the utorid is locked out.
    """
    throttle_service.check_login_allowed(utorid)
    user = db.session.query(User).filter_by(utorid=utorid).first()
    if not user or not verify_password(password, user.password_hash):
        throttle_service.record_event(
            throttle_service.LOGIN_FAILED,
            identifier=utorid,
            user_id=user.id if user else None,
            ip_address=ip_address,
            success=False,
            reason="Invalid credentials",
        )
        db.session.commit()
        logger.info("login failed for %s from %s", utorid, ip_address)
        raise UnauthorizedError("Invalid utorid or password")

    user.last_login = utcnow()
    throttle_service.record_event(
        throttle_service.LOGIN_SUCCESS,
        identifier=utorid,
        user_id=user.id,
        ip_address=ip_address,
        success=True,
    )
    db.session.commit()
    return user


def issue_reset_token(user: User, ttl: timedelta) -> User:
    """Attach a fresh reset token to `user` (flushed, not committed)."""
    user.reset_token = str(uuid.uuid4())
    user.reset_expires_at = utcnow() + ttl
    db.session.flush()
    return user


def request_password_reset(utorid: str, ip_address: str | None) -> User:
    """
    Issue a reset token for `utorid`.

    Throttled to one request per client IP per RESET_REQUEST_WINDOW_SECONDS.
    """
    if not utorid or not isinstance(utorid, str):
        raise InvalidRequestError("utorid is required")

    def _op():
        user = db.session.query(User).filter_by(utorid=utorid).first()
        if user is None:
            raise NotFoundError(f"User {utorid} not found")

        throttle_service.check_reset_allowed(ip_address)
        ttl = timedelta(minutes=current_app.config.get("RESET_TOKEN_TTL_MINUTES", 60))
        issue_reset_token(user, ttl)
        throttle_service.record_event(
            throttle_service.RESET_REQUESTED,
            identifier=utorid,
            user_id=user.id,
            ip_address=ip_address,
            success=True,
        )
        return user

    return run_atomic(_op)


def complete_password_reset(reset_token: str, utorid: str, password: str) -> User:
    """
    Consume a reset token.

    - unknown token: NotFoundError
    - token belongs to someone else: UnauthorizedError
    - token expired: GoneError
    - weak password: PasswordValidationError (400)
    """
    if not utorid or not isinstance(utorid, str):
        raise InvalidRequestError("utorid is required")

    def _op():
        owner = db.session.query(User).filter_by(reset_token=reset_token).first()
        if owner is None:
            raise NotFoundError("Reset token not found")
        if owner.utorid != utorid:
            raise UnauthorizedError("Reset token does not belong to this user")
        if owner.reset_expires_at is None or owner.reset_expires_at < utcnow():
            raise GoneError("Reset token has expired")

        owner.password_hash = hash_password(password)
        owner.reset_expires_at = utcnow()
        db.session.flush()
        return owner

    user = run_atomic(_op)
    logger.info("password reset completed for %s", user.utorid)
    return user


def change_password(user: User, old_password, new_password) -> None:
    if old_password is None or new_password is None:
        raise InvalidRequestError("old and new passwords are required")
    if not verify_password(old_password, user.password_hash):
        raise ForbiddenError("Current password is incorrect")

    def _op():
        user.password_hash = hash_password(new_password)
        db.session.flush()

    run_atomic(_op)


def create_superuser(utorid: str, email: str, password: str, name: str | None = None) -> User:
    """Bootstrap a verified superuser (CLI only)."""
    if not UTORID_RE.fullmatch(utorid or ""):
        raise InvalidRequestError("utorid must be 7-8 lowercase letters or digits")
    if not EMAIL_RE.fullmatch(email or ""):
        raise InvalidRequestError("email must be a @mail.utoronto.ca address")

    def _op():
        existing = db.session.query(User).filter(
            db.or_(User.utorid == utorid, User.email == email)
        ).first()
        if existing:
            raise ConflictError("A user with this utorid or email already exists")
        user = User(
            utorid=utorid,
            email=email,
            name=name or utorid,
            role=ROLE_SUPERUSER,
            verified=True,
            password_hash=hash_password(password),
        )
        db.session.add(user)
        db.session.flush()
        return user

    return run_atomic(_op)
