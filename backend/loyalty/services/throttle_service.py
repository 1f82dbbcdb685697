"""
Request Throttling Service

WHY: Password-reset requests are limited per client IP. The history lives in
the security_events table and is counted by time window, so there is no
in-process map to grow without bound, and limits survive restarts and hold
across worker processes.

RULES:
- at most one RESET_REQUESTED per IP per RESET_REQUEST_WINDOW_SECONDS
- login outcomes are recorded (LOGIN_FAILED / LOGIN_SUCCESS); MAX_FAILED_LOGINS
  failures for one utorid within LOGIN_LOCKOUT_WINDOW lock further attempts
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import TooManyRequestsError
from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


LOGIN_FAILED = "LOGIN_FAILED"
LOGIN_SUCCESS = "LOGIN_SUCCESS"
RESET_REQUESTED = "RESET_REQUESTED"

MAX_FAILED_LOGINS = 10
LOGIN_LOCKOUT_WINDOW = timedelta(minutes=15)


def record_event(
    event_type: str,
    *,
    identifier: str | None = None,
    user_id: int | None = None,
    ip_address: str | None = None,
    success: bool = True,
    reason: str | None = None,
) -> SecurityEvent:
    """Append a security event (flushed, not committed)."""
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        identifier=identifier,
        success=success,
        reason=reason,
        ip_address=ip_address,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event


def reset_window() -> timedelta:
    return timedelta(seconds=current_app.config.get("RESET_REQUEST_WINDOW_SECONDS", 60))


def last_reset_request(ip_address: str | None) -> SecurityEvent | None:
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == RESET_REQUESTED,
        SecurityEvent.ip_address == ip_address,
        SecurityEvent.occurred_at >= utcnow() - reset_window(),
    ).order_by(SecurityEvent.occurred_at.desc()).first()


def check_reset_allowed(ip_address: str | None) -> None:
    """
    Raise TooManyRequestsError if `ip_address` requested a reset within the window.

    The error carries retryAfter (seconds).
    """
    last = last_reset_request(ip_address)
    if last is None:
        return
    retry_after = int((last.occurred_at + reset_window() - utcnow()).total_seconds()) + 1
    raise TooManyRequestsError(
        "Too many reset requests",
        details={"retryAfter": max(retry_after, 1)},
    )


def get_recent_failed_logins(identifier: str, window: timedelta = LOGIN_LOCKOUT_WINDOW) -> int:
    """Count LOGIN_FAILED events for `identifier` in the trailing window."""
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == LOGIN_FAILED,
        SecurityEvent.identifier == identifier,
        SecurityEvent.occurred_at >= utcnow() - window,
    ).count()


def check_login_allowed(identifier: str) -> None:
    """Raise TooManyRequestsError once `identifier` hit MAX_FAILED_LOGINS in the window."""
    if get_recent_failed_logins(identifier) >= MAX_FAILED_LOGINS:
        raise TooManyRequestsError(
            "Too many failed login attempts",
            details={"retryAfter": int(LOGIN_LOCKOUT_WINDOW.total_seconds())},
        )
