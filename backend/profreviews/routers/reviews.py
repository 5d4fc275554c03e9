import logging
from typing import Optional, List, Literal
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func
from ..access_context import AccessContext, get_access
from ..aggregates import current_trimester
from ..audit import log_action
from ..auth import get_current_user, get_optional_user, get_device_id, is_admin
from ..config import REPORT_HIDE_THRESHOLD
from ..database import get_session
from ..events import EventName, ReviewEvent
from ..models import User, Review, ReviewVote, Report, ReportStatus, Professor, Course, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])

# --- Schemas ---

class ReviewCreate(BaseModel):
    professor_id: int
    course_id: int
    quality: int = Field(ge=1, le=5)
    difficulty: int = Field(ge=1, le=5)
    would_take_again: bool = False
    attendance_required: bool = False
    uses_textbook: bool = False
    comment: Optional[str] = Field(default=None, max_length=2000)
    tags: List[str] = Field(default_factory=list, max_length=10)
    score: Optional[float] = Field(default=None, ge=0, le=5)

class ReportCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=200)
    comment: Optional[str] = Field(default=None, max_length=1000)

# --- Helpers ---

def vote_count(session: Session, review_id: int) -> int:
    return session.exec(select(func.count(ReviewVote.id)).where(ReviewVote.review_id == review_id)).one()

def review_data(session: Session, review: Review) -> dict:
    return {
        "id": review.id,
        "professor": {"id": review.professor_id, "full_name": review.professor.full_name if review.professor else None},
        "course": {
            "id": review.course_id,
            "name": review.course.name if review.course else None,
            "code": review.course.code if review.course else None,
        },
        "quality": review.quality,
        "difficulty": review.difficulty,
        "would_take_again": review.would_take_again,
        "attendance_required": review.attendance_required,
        "uses_textbook": review.uses_textbook,
        "comment": review.comment,
        "tags": review.tags or [],
        "score": review.score,
        "trimester": review.trimester,
        "is_hidden": review.is_hidden,
        "useful_count": vote_count(session, review.id),
        "created_at": review.created_at.isoformat(),
    }

def review_event(review: Review, user: Optional[User] = None) -> ReviewEvent:
    return ReviewEvent(
        review_id=review.id,
        professor_id=review.professor_id,
        course_id=review.course_id,
        user_id=user.id if user else None,
    )

def delete_reviews(session: Session, reviews: List[Review]) -> None:
    """Delete reviews with their votes and reports. The caller commits."""
    ids = [r.id for r in reviews]
    if not ids:
        return
    for model in (ReviewVote, Report):
        for row in session.exec(select(model).where(model.review_id.in_(ids))).all():
            session.delete(row)
    session.flush()
    for review in reviews:
        session.delete(review)
    session.flush()

def get_visible_review(session: Session, review_id: int, user: Optional[User] = None) -> Review:
    review = session.get(Review, review_id)
    if not review or (review.is_hidden and not is_admin(user)):
        raise HTTPException(status_code=404, detail="Review not found")
    return review

def gate_denied(review_id: int, authenticated: bool):
    options = ["write_review"] if authenticated else ["login", "write_review"]
    raise HTTPException(status_code=403, detail={
        "gate": True,
        "review_id": review_id,
        "remaining": 0,
        "authenticated": authenticated,
        "options": options,
        "message": "You have reached the free review limit. Sign in or write a review to keep reading.",
    })

# --- Routes ---

@router.get("")
async def list_reviews(
    professor_id: Optional[int] = None,
    course_id: Optional[int] = None,
    min_quality: Optional[int] = Query(default=None, ge=1, le=5),
    min_difficulty: Optional[int] = Query(default=None, ge=1, le=5),
    order_by: Literal["created_at", "quality", "difficulty"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session)
):
    statement = select(Review).where(Review.is_hidden == False)  # noqa: E712
    if professor_id:
        statement = statement.where(Review.professor_id == professor_id)
    if course_id:
        statement = statement.where(Review.course_id == course_id)
    if min_quality is not None:
        statement = statement.where(Review.quality >= min_quality)
    if min_difficulty is not None:
        statement = statement.where(Review.difficulty >= min_difficulty)

    total = session.exec(select(func.count()).select_from(statement.subquery())).one()

    column = getattr(Review, order_by)
    statement = statement.order_by(column.asc() if order == "asc" else column.desc(), Review.id.desc())
    reviews = session.exec(statement.offset(offset).limit(limit)).all()

    return {"success": True, "data": [review_data(session, r) for r in reviews], "total": total}

@router.get("/mine")
async def my_reviews(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    reviews = session.exec(
        select(Review).where(Review.user_id == current_user.id).order_by(Review.created_at.desc())
    ).all()
    return {"success": True, "data": [review_data(session, r) for r in reviews]}

@router.get("/{review_id}")
async def get_review(
    review_id: int,
    request: Request,
    current_user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    review = get_visible_review(session, review_id, current_user)
    gate = access.gate

    if current_user:
        decision = gate.can_authed_view_another(current_user.id, review_id)
        if not decision.allowed:
            gate_denied(review_id, authenticated=True)
        counted = gate.register_authed_review_view(current_user.id, review_id)
    else:
        device_id = get_device_id(request)
        decision = gate.can_view_another(device_id, review_id)
        if not decision.allowed:
            gate_denied(review_id, authenticated=False)
        counted = gate.register_view(device_id, review_id)

    return {"success": True, "data": review_data(session, review), "access": counted.model_dump()}

@router.post("")
async def create_review(
    request: Request,
    data: ReviewCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    if not session.get(Professor, data.professor_id):
        raise HTTPException(status_code=404, detail="Professor not found")
    if not session.get(Course, data.course_id):
        raise HTTPException(status_code=404, detail="Course not found")

    comment = data.comment.strip() if data.comment else None
    review = Review(
        professor_id=data.professor_id,
        course_id=data.course_id,
        user_id=current_user.id,
        quality=data.quality,
        difficulty=data.difficulty,
        would_take_again=data.would_take_again,
        attendance_required=data.attendance_required,
        uses_textbook=data.uses_textbook,
        comment=comment or None,
        tags=[t.strip() for t in data.tags if t.strip()],
        score=data.score if data.score is not None else float(data.quality),
        trimester=current_trimester(utcnow()),
    )
    session.add(review)
    session.commit()
    session.refresh(review)

    # Aggregates are refreshed by the review:created subscribers
    access.bus.emit(EventName.REVIEW_CREATED, review_event(review, current_user))

    log_action(session, action="CREATE_REVIEW", actor=current_user,
               resource=f"review:{review.id}", request=request,
               detail=f"Review for professor {review.professor_id} / course {review.course_id}")

    session.refresh(review)
    return {"success": True, "message": "Review published", "data": review_data(session, review)}

# --- Useful votes ---

@router.post("/{review_id}/vote")
async def toggle_vote(
    review_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    review = get_visible_review(session, review_id, current_user)
    existing = session.exec(
        select(ReviewVote).where(ReviewVote.review_id == review_id, ReviewVote.user_id == current_user.id)
    ).first()

    if existing:
        session.delete(existing)
        session.commit()
        voted = False
    else:
        session.add(ReviewVote(review_id=review_id, user_id=current_user.id))
        try:
            session.commit()
        except IntegrityError:
            # Double tap: the vote is already there
            session.rollback()
        voted = True

    access.bus.emit(EventName.REVIEW_VOTED, review_event(review, current_user))
    return {"success": True, "data": {"voted": voted, "vote_count": vote_count(session, review_id)}}

@router.get("/{review_id}/votes")
async def get_votes(
    review_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    session: Session = Depends(get_session)
):
    get_visible_review(session, review_id, current_user)
    voted = False
    if current_user:
        voted = session.exec(
            select(ReviewVote.id).where(ReviewVote.review_id == review_id, ReviewVote.user_id == current_user.id)
        ).first() is not None
    return {"success": True, "data": {"voted": voted, "vote_count": vote_count(session, review_id)}}

# --- Reports ---

@router.post("/{review_id}/report")
async def report_review(
    review_id: int,
    request: Request,
    data: ReportCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    access: AccessContext = Depends(get_access),
):
    review = get_visible_review(session, review_id, current_user)

    already = session.exec(
        select(Report.id).where(Report.review_id == review_id, Report.user_id == current_user.id)
    ).first()
    if already:
        raise HTTPException(status_code=409, detail="You already reported this review.")

    report = Report(review_id=review_id, user_id=current_user.id, reason=data.reason.strip(), comment=data.comment)
    session.add(report)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="You already reported this review.")
    session.refresh(report)

    access.bus.emit(EventName.REVIEW_REPORTED, review_event(review, current_user))

    pending = session.exec(
        select(func.count(Report.id)).where(Report.review_id == review_id, Report.status == ReportStatus.PENDING)
    ).one()
    if pending >= REPORT_HIDE_THRESHOLD and not review.is_hidden:
        review.is_hidden = True
        session.add(review)
        session.commit()
        logger.info("Review %s hidden after %s reports", review_id, pending)
        access.bus.emit(EventName.REVIEW_HIDDEN, review_event(review))

    log_action(session, action="REPORT_REVIEW", actor=current_user,
               resource=f"review:{review_id}", request=request, detail=data.reason)

    return {"success": True, "data": {"id": report.id, "status": report.status.value, "review_hidden": review.is_hidden}}

@router.get("/{review_id}/report")
async def has_reported(
    review_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    reported = session.exec(
        select(Report.id).where(Report.review_id == review_id, Report.user_id == current_user.id)
    ).first() is not None
    return {"success": True, "data": {"reported": reported}}
