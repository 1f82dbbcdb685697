from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from .errors import InvalidRequestError
from .time_utils import parse_iso_datetime


UTORID_RE = re.compile(r"^[a-z0-9]{7,8}$")
NAME_RE = re.compile(r"^.{1,50}$")
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@mail\.utoronto\.ca$")
BIRTHDAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10


def require_fields(data: dict, *names: str) -> None:
    """Reject payloads missing any of `names` (None counts as missing)."""
    missing = [n for n in names if data.get(n) is None]
    if missing:
        raise InvalidRequestError(f"Missing required fields: {', '.join(missing)}")


def parse_int(
    value: Any,
    field: str,
    *,
    minimum: int | None = None,
    allow_none: bool = False,
) -> int | None:
    """
    Strict integer coercion.

    - bools are rejected even though they subclass int
    - floats are rejected (no silent truncation of 12.5)
    - strings must be plain digits with an optional leading minus (query args)
    """
    if value is None:
        if allow_none:
            return None
        raise InvalidRequestError(f"{field} is required")

    if isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not re.fullmatch(r"-?\d+", stripped):
            raise InvalidRequestError(f"{field} must be an integer")
        result = int(stripped)
    else:
        raise InvalidRequestError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise InvalidRequestError(f"{field} must be at least {minimum}")
    return result


def parse_number(
    value: Any,
    field: str,
    *,
    minimum: float | None = None,
    allow_none: bool = False,
) -> float | None:
    if value is None:
        if allow_none:
            return None
        raise InvalidRequestError(f"{field} is required")

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRequestError(f"{field} must be a number")
    if value != value or value in (float("inf"), float("-inf")):
        raise InvalidRequestError(f"{field} must be a finite number")
    if minimum is not None and value < minimum:
        raise InvalidRequestError(f"{field} must be at least {minimum}")
    return float(value)


def parse_str(
    value: Any,
    field: str,
    *,
    pattern: re.Pattern | None = None,
    allow_none: bool = False,
) -> str | None:
    if value is None:
        if allow_none:
            return None
        raise InvalidRequestError(f"{field} is required")
    if not isinstance(value, str):
        raise InvalidRequestError(f"{field} must be a string")
    if pattern is not None and not pattern.fullmatch(value):
        raise InvalidRequestError(f"{field} is not in a valid format")
    return value


def parse_bool(value: Any, field: str, *, allow_none: bool = False) -> bool | None:
    """JSON booleans only; query-string flags go through parse_bool_arg."""
    if value is None and allow_none:
        return None
    if not isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be a boolean")
    return value


def parse_bool_arg(value: str | None, field: str) -> bool | None:
    """Query-string flag: absent -> None, 'true'/'false' -> bool, else 400."""
    if value is None or value == "":
        return None
    if value == "true":
        return True
    if value == "false":
        return False
    raise InvalidRequestError(f"{field} must be 'true' or 'false'")


def parse_datetime(value: Any, field: str, *, allow_none: bool = False) -> datetime | None:
    if value is None:
        if allow_none:
            return None
        raise InvalidRequestError(f"{field} is required")
    if not isinstance(value, str):
        raise InvalidRequestError(f"{field} must be an ISO-8601 datetime")
    try:
        dt = parse_iso_datetime(value)
    except ValueError:
        raise InvalidRequestError(f"{field} must be an ISO-8601 datetime")
    if dt is None:
        raise InvalidRequestError(f"{field} must be an ISO-8601 datetime")
    return dt


def parse_id_list(value: Any, field: str) -> list[int]:
    """A JSON array of non-negative integer ids; None means empty."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidRequestError(f"{field} must be an array of ids")
    return [parse_int(v, field, minimum=0) for v in value]


def parse_pagination(args) -> tuple[int, int]:
    """1-indexed page and positive limit from query args, default 1/10."""
    page = parse_int(args.get("page", DEFAULT_PAGE), "page", minimum=1)
    limit = parse_int(args.get("limit", DEFAULT_LIMIT), "limit", minimum=1)
    return page, limit
