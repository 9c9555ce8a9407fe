from typing import Optional, Any, Dict
from flask_login import current_user
from ..extensions import db
from ..models import AuditLog


def log_action(action: str, target_type: str, target_id: Optional[int] = None,
               meta: Optional[Dict[str, Any]] = None, company_id: Optional[int] = None) -> None:
    """Record an audit row in the current session; the caller's commit persists it."""
    user_id = getattr(current_user, 'id', None)
    entry = AuditLog(
        company_id=company_id,
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta=meta or {},
    )
    db.session.add(entry)
