from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Callable, Optional

import jwt
from flask import current_app, g
from flask_login import login_required, current_user

from .errors import Forbidden, NotFound
from .extensions import db


def issue_token(user) -> str:
    """Sign a bearer token for ``user``."""
    now = datetime.now(timezone.utc)
    hours = int(current_app.config.get("JWT_EXPIRES_HOURS", 168))
    payload = {"sub": str(user.id), "iat": now, "exp": now + timedelta(hours=hours)}
    return jwt.encode(payload, current_app.config["JWT_SECRET_KEY"], algorithm="HS256")


def decode_token(token: str) -> Optional[int]:
    """Return the user id carried by ``token``, or None when it is invalid or expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET_KEY"], algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def _canonicalize_role(role_name: str | None) -> str | None:
    """Normalize role names to canonical identifiers.

    Supports legacy/synonym role names without changing stored memberships.
    """
    if not role_name:
        return None
    name = role_name.strip().lower()
    synonyms = {
        "admin": "owner",
        "staff": "employee",
        "employees": "employee",
        "accountants": "accountant",
    }
    return synonyms.get(name, name)


def membership_for(company_id: int, user=None):
    from .models import CompanyUser

    user = user or current_user
    user_id = getattr(user, "id", None)
    if user_id is None:
        return None
    return CompanyUser.query.filter_by(company_id=company_id, user_id=user_id).first()


def ensure_company_access(company_id: int, *allowed_roles: str):
    """Return the caller's membership in ``company_id`` or raise 403.

    When ``allowed_roles`` is given, the membership role must be one of them.
    """
    from .models import Company

    if db.session.get(Company, company_id) is None:
        raise NotFound("Company not found")
    membership = membership_for(company_id)
    if membership is None:
        raise Forbidden("Access denied")
    normalized_allowed = {r for r in (_canonicalize_role(r) for r in allowed_roles) if r}
    if normalized_allowed and _canonicalize_role(membership.role) not in normalized_allowed:
        raise Forbidden("Insufficient permissions")
    g.membership = membership
    return membership


def company_access_required(*allowed_roles: str) -> Callable:
    """Decorator for views taking a ``company_id`` URL argument.

    Usage: @company_access_required() or @company_access_required("owner", "accountant")
    """

    def decorator(view_func: Callable) -> Callable:
        @wraps(view_func)
        @login_required
        def wrapper(*args, **kwargs):
            ensure_company_access(int(kwargs["company_id"]), *allowed_roles)
            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def get_owned_or_404(model, object_id: int, *allowed_roles: str):
    """Load a company-scoped row and check the caller may access its company."""
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFound(f"{model.__name__} not found")
    ensure_company_access(obj.company_id, *allowed_roles)
    return obj


# Roles allowed to change the ledger (accounts, journal, invoices, posting)
LEDGER_ROLES = ("owner", "accountant", "cfo")
