from __future__ import annotations

from ..extensions import db


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Login failures and password-reset requests are counted by time
    window straight from this table, so throttling needs no in-process
    state and survives restarts.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_type_ip_occurred", "event_type", "ip_address", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # LOGIN_FAILED, LOGIN_SUCCESS, RESET_REQUESTED
    identifier = db.Column(db.String(64), nullable=True)  # utorid as submitted

    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)

