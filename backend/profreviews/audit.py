"""
audit.py — Central audit logging helper.

Usage (in any route):
    from ..audit import log_action
    log_action(session, action="CREATE_REVIEW", actor=current_user, request=request, detail="...")
"""
import logging
from typing import Optional
from sqlmodel import Session
from .models import AuditLog, User, utcnow

logger = logging.getLogger(__name__)


def client_ip(request) -> Optional[str]:
    if request is None:
        return None
    # Support X-Forwarded-For for proxies
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else None


def log_action(
    session: Session,
    action: str,
    actor: Optional[User] = None,
    actor_email: Optional[str] = None,
    resource: Optional[str] = None,
    detail: Optional[str] = None,
    request=None,
):
    """
    Write a row to the audit_log table. Audit failures are logged and never
    break the main request.
    """
    try:
        entry = AuditLog(
            timestamp=utcnow(),
            actor_id=actor.id if actor else None,
            actor_email=actor.email if actor else actor_email,
            actor_role=actor.role.value if actor else "ANON",
            action=action,
            resource=resource,
            detail=detail,
            ip_address=client_ip(request),
        )
        session.add(entry)
        session.commit()
    except Exception:
        logger.exception("Audit write failed for action %s", action)
        session.rollback()
