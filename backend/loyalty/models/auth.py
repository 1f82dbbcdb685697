from __future__ import annotations

from ..extensions import db
from ..permissions.roles import ROLE_REGULAR
from loyalty.time_utils import to_utc_z


class User(db.Model):
    """
    Loyalty account holder. Also the actor for every operation.

    WHY: points is the single balance column every transaction kind mutates.
    The check constraint is the last line behind the ledger's own balance
    check: no committed state can ever hold a negative balance.

    role is re-read from this row on every request; sessions never cache it.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    utorid = db.Column(db.String(8), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(50), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_REGULAR, index=True)
    points = db.Column(db.Integer, nullable=False, default=0)

    verified = db.Column(db.Boolean, nullable=False, default=False)
    # Only meaningful for cashiers: purchases they ring up are held for review
    suspicious = db.Column(db.Boolean, nullable=False, default=False)

    birthday = db.Column(db.String(10), nullable=True)  # YYYY-MM-DD

    # Bcrypt hashed password; null until the account is activated via reset token
    password_hash = db.Column(db.String(255), nullable=True)

    reset_token = db.Column(db.String(36), nullable=True, unique=True, index=True)
    reset_expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    last_login = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_summary(self) -> dict:
        return {"id": self.id, "utorid": self.utorid, "name": self.name}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "utorid": self.utorid,
            "name": self.name,
            "email": self.email,
            "birthday": self.birthday,
            "role": self.role,
            "points": self.points,
            "createdAt": to_utc_z(self.created_at),
            "lastLogin": to_utc_z(self.last_login) if self.last_login else None,
            "verified": self.verified,
            "suspicious": self.suspicious,
        }

    def __repr__(self) -> str:
        return f"<User {self.utorid} role={self.role} points={self.points}>"


class SessionToken(db.Model):
    """
    Opaque bearer token for the HTTP layer.

    WHY: Only a SHA-256 hash of the token is stored; the plaintext is
    returned to the client once at login.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)
    revoked_at = db.Column(db.DateTime, nullable=True)
