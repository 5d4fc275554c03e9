from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlmodel import Session, select, func
from ..access_context import AccessContext, get_access
from ..audit import log_action
from ..auth import require_admin
from ..database import get_session
from ..events import EventName
from ..models import User, Review, Report, ReportStatus, AuditLog
from .reviews import review_data, review_event, delete_reviews

router = APIRouter(prefix="/admin", tags=["admin"])

class UnlimitedAccessUpdate(BaseModel):
    has_unlimited_access: bool

@router.get("/flagged")
async def list_flagged_reviews(
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    """Hidden reviews plus any review that still has pending reports."""
    pending_ids = select(Report.review_id).where(Report.status == ReportStatus.PENDING)
    reviews = session.exec(
        select(Review).where((Review.is_hidden == True) | (Review.id.in_(pending_ids)))  # noqa: E712
        .order_by(Review.created_at.desc())
    ).all()

    flagged = []
    for review in reviews:
        reports = session.exec(
            select(Report).where(Report.review_id == review.id).order_by(Report.created_at.asc())
        ).all()
        item = review_data(session, review)
        item["reports_count"] = len([r for r in reports if r.status == ReportStatus.PENDING])
        item["reports"] = [
            {"id": r.id, "reason": r.reason, "comment": r.comment, "status": r.status.value}
            for r in reports[:3]
        ]
        flagged.append(item)

    return {"success": True, "data": flagged}

@router.post("/reviews/{review_id}/restore")
async def restore_review(
    review_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    """Dismiss pending reports and make the review visible again."""
    review = session.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")

    reports = session.exec(
        select(Report).where(Report.review_id == review_id, Report.status == ReportStatus.PENDING)
    ).all()
    for report in reports:
        report.status = ReportStatus.DISMISSED
        session.add(report)

    was_hidden = review.is_hidden
    review.is_hidden = False
    session.add(review)
    session.commit()

    if was_hidden:
        access.bus.emit(EventName.REVIEW_RESTORED, review_event(review, current_user))

    log_action(session, action="ADMIN_RESTORE_REVIEW", actor=current_user,
               resource=f"review:{review_id}", request=request,
               detail=f"Dismissed {len(reports)} reports")

    return {"success": True, "message": "Review restored", "data": {"dismissed": len(reports)}}

@router.delete("/reviews/{review_id}")
async def delete_review(
    review_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    review = session.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    event = review_event(review, current_user)

    delete_reviews(session, [review])
    session.commit()

    access.bus.emit(EventName.REVIEW_DELETED, event)

    log_action(session, action="ADMIN_DELETE_REVIEW", actor=current_user,
               resource=f"review:{review_id}", request=request)

    return {"success": True, "message": "Review deleted"}

@router.post("/users/{user_id}/unlimited")
async def set_unlimited_access(
    user_id: int,
    request: Request,
    data: UnlimitedAccessUpdate,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.has_unlimited_access = data.has_unlimited_access
    session.add(user)
    session.commit()

    log_action(session, action="ADMIN_SET_UNLIMITED", actor=current_user,
               resource=f"user:{user_id}", request=request,
               detail=f"has_unlimited_access={data.has_unlimited_access}")

    return {"success": True, "data": {"id": user.id, "has_unlimited_access": user.has_unlimited_access}}

@router.get("/audit")
async def get_audit_log(
    limit: int = 50,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    """View recent audit log entries."""
    logs = session.exec(
        select(AuditLog).order_by(AuditLog.timestamp.desc()).limit(limit)
    ).all()
    total = session.exec(select(func.count(AuditLog.id))).one()
    return {
        "count": len(logs),
        "total": total,
        "logs": [
            {
                "id": l.id,
                "timestamp": l.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                "actor": l.actor_email or "anonymous",
                "role": l.actor_role,
                "action": l.action,
                "resource": l.resource,
                "detail": l.detail,
                "ip": l.ip_address,
            }
            for l in logs
        ]
    }
