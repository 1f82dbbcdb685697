# Overview: Service-layer operations for users; registration, lookup and administrative patches.

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app

from ..errors import ConflictError, InvalidRequestError, NotFoundError
from ..extensions import db
from ..models import User
from ..permissions import ROLES, policy
from ..validation import (
    BIRTHDAY_RE,
    EMAIL_RE,
    NAME_RE,
    UTORID_RE,
    parse_bool,
    parse_bool_arg,
    parse_pagination,
    parse_str,
    require_fields,
)
from . import auth_service, promotions_service
from .concurrency import run_atomic


logger = logging.getLogger(__name__)


def _email_taken(email: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(User.id).filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def _parse_birthday(value) -> str:
    value = parse_str(value, "birthday", pattern=BIRTHDAY_RE)
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise InvalidRequestError("birthday is not a valid calendar date")
    return value


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def register_user(actor: User, data: dict) -> User:
    """
    Create an unactivated account.

    The new user has no password; the returned user carries an activation
    reset token valid ACTIVATION_TOKEN_TTL_DAYS.
    """
    policy.require_permission(actor.role, "REGISTER_USERS")
    require_fields(data, "utorid", "name", "email")
    utorid = parse_str(data["utorid"], "utorid", pattern=UTORID_RE)
    name = parse_str(data["name"], "name", pattern=NAME_RE)
    email = parse_str(data["email"], "email", pattern=EMAIL_RE)

    def _op():
        existing = db.session.query(User).filter(
            db.or_(User.utorid == utorid, User.email == email)
        ).first()
        if existing:
            raise ConflictError("A user with this utorid or email already exists")

        user = User(utorid=utorid, name=name, email=email)
        db.session.add(user)
        db.session.flush()
        ttl = timedelta(days=current_app.config.get("ACTIVATION_TOKEN_TTL_DAYS", 7))
        auth_service.issue_reset_token(user, ttl)
        return user

    user = run_atomic(_op)
    logger.info("user %s registered by %s", user.utorid, actor.utorid)
    return user


def list_users(actor: User, args) -> tuple[int, list[User]]:
    policy.require_permission(actor.role, "MANAGE_USERS")
    page, limit = parse_pagination(args)
    query = db.session.query(User)

    name = args.get("name")
    if name:
        query = query.filter(db.or_(User.utorid.contains(name), User.name.contains(name)))

    role = args.get("role")
    if role:
        if role not in ROLES:
            raise InvalidRequestError(f"Unknown role: {role}")
        query = query.filter(User.role == role)

    verified = parse_bool_arg(args.get("verified"), "verified")
    if verified is not None:
        query = query.filter(User.verified.is_(verified))

    activated = parse_bool_arg(args.get("activated"), "activated")
    if activated is not None:
        query = query.filter(User.last_login.isnot(None) if activated else User.last_login.is_(None))

    count = query.count()
    results = query.order_by(User.id).offset((page - 1) * limit).limit(limit).all()
    return count, results


def lookup_user(actor: User, user_id: int) -> dict:
    """
    Staff view of a user.

    Cashiers get the point-of-sale subset plus the one-time promotions the
    user can still claim; managers get the full record plus the ids of
    promotions already used.
    """
    policy.require_permission(actor.role, "LOOKUP_USERS")
    user = get_user(user_id)

    if policy.is_privileged(actor.role):
        data = user.to_dict()
        data["promotions"] = sorted(promotions_service.used_promotion_ids(user.id))
        return data

    data = {
        "id": user.id,
        "utorid": user.utorid,
        "name": user.name,
        "points": user.points,
        "verified": user.verified,
    }
    data["promotions"] = [p.id for p in promotions_service.available_one_time_promotions(user)]
    return data


def update_user(actor: User, user_id: int, data: dict) -> tuple[User, set[str]]:
    """
    Manager patch of email / verified / suspicious / role.

    verified may only be set to true. Role changes go through
    policy.check_role_change against the target's stored state.
    Returns the user and the set of wire fields that changed.
    """
    data = {k: v for k, v in data.items() if k in ("email", "verified", "suspicious", "role") and v is not None}
    if not data:
        raise InvalidRequestError("Nothing to update")

    def _op():
        manager = db.session.get(User, actor.id, populate_existing=True)
        policy.require_permission(manager.role, "MANAGE_USERS")
        user = get_user(user_id)
        stored_role, stored_suspicious = user.role, user.suspicious
        changed: set[str] = set()

        if "email" in data:
            email = parse_str(data["email"], "email", pattern=EMAIL_RE)
            if _email_taken(email, exclude_id=user.id):
                raise ConflictError("Email already in use")
            user.email = email
            changed.add("email")

        if "verified" in data:
            if parse_bool(data["verified"], "verified") is not True:
                raise InvalidRequestError("verified can only be set to true")
            user.verified = True
            changed.add("verified")

        if "suspicious" in data:
            user.suspicious = parse_bool(data["suspicious"], "suspicious")
            changed.add("suspicious")

        if "role" in data:
            new_role = parse_str(data["role"], "role")
            policy.check_role_change(manager.role, stored_role, new_role, stored_suspicious)
            user.role = new_role
            changed.add("role")

        db.session.flush()
        return user, changed

    user, changed = run_atomic(_op)
    if "role" in changed:
        logger.info("user %s role set to %s by %s", user.utorid, user.role, actor.utorid)
    return user, changed


def update_user_role(actor: User, user_id: int, new_role: str) -> User:
    user, _ = update_user(actor, user_id, {"role": new_role})
    return user


def update_me(user: User, data: dict) -> User:
    data = {k: v for k, v in data.items() if k in ("name", "email", "birthday") and v is not None}
    if not data:
        raise InvalidRequestError("Nothing to update")

    def _op():
        if "name" in data:
            user.name = parse_str(data["name"], "name", pattern=NAME_RE)
        if "email" in data:
            email = parse_str(data["email"], "email", pattern=EMAIL_RE)
            if _email_taken(email, exclude_id=user.id):
                raise ConflictError("Email already in use")
            user.email = email
        if "birthday" in data:
            user.birthday = _parse_birthday(data["birthday"])
        db.session.flush()
        return user

    return run_atomic(_op)


def me_dict(user: User) -> dict:
    data = user.to_dict()
    data["promotions"] = [p.to_dict() for p in promotions_service.available_one_time_promotions(user)]
    return data
