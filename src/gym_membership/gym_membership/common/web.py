"""Helpers shared by the Flask controllers.

Authentication is done upstream; the gateway forwards the caller's id and
role in the X-Caller-Id / X-Caller-Role headers.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from functools import wraps
from typing import Any, Optional

from flask import Flask, jsonify, request

from ..core.enums import Role
from ..core.exceptions import (
    AuthorizationError,
    ConflictError,
    DeadlineExceededError,
    DomainError,
    InvalidStateError,
    NotFoundError,
    PartialResolutionError,
    PermissionDeniedError,
    QuotaExceededError,
    SessionFullError,
    SubscriptionInactiveError,
    ValidationError,
)
from .datetime_utils import parse_iso_datetime

_HTTP_STATUS = {
    NotFoundError: 404,
    AuthorizationError: 403,
    PermissionDeniedError: 403,
    SubscriptionInactiveError: 403,
    ValidationError: 400,
    DeadlineExceededError: 504,
    InvalidStateError: 422,
    QuotaExceededError: 409,
    SessionFullError: 409,
    ConflictError: 409,
}


@dataclass(frozen=True)
class Caller:
    member_id: Optional[int]
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def current_caller() -> Caller:
    raw_role = (request.headers.get("X-Caller-Role") or "").strip().lower()
    raw_id = (request.headers.get("X-Caller-Id") or "").strip()
    try:
        role = Role(raw_role)
    except ValueError:
        raise AuthorizationError("Missing or unknown caller role")
    member_id = int(raw_id) if raw_id.isdigit() else None
    if role == Role.MEMBER and member_id is None:
        raise AuthorizationError("Missing caller id")
    return Caller(member_id=member_id, role=role)


def require_self_or_admin(member_id: int) -> Caller:
    caller = current_caller()
    if not caller.is_admin and caller.member_id != int(member_id):
        raise AuthorizationError("You can only act on your own membership")
    return caller


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_caller().is_admin:
            raise AuthorizationError("Admin capability required")
        return view(*args, **kwargs)

    return wrapper


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {_camel(f.name): to_json(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json(v) for v in value]
    return value


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def optional_datetime_arg(name: str) -> Optional[datetime]:
    raw = request.args.get(name)
    return parse_iso_datetime(raw, name) if raw else None


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(exc: DomainError):
        status = next((_HTTP_STATUS[k] for k in type(exc).__mro__ if k in _HTTP_STATUS), 400)
        body = {"error": exc.code, "message": str(exc)}
        if isinstance(exc, PartialResolutionError):
            body["unresolvedMemberIds"] = exc.unresolved_member_ids
        return jsonify(body), status
