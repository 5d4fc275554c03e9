"""
aggregates.py — Rating aggregates for professors, courses and their pairing.

Averages are derived from visible reviews only and are refreshed whenever the
event bus reports a review was created, hidden, restored or deleted.
"""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import Engine
from sqlmodel import Session, select
from .events import EventBus, EventName, ReviewEvent
from .models import Review, Professor, Course, ProfessorCourse

logger = logging.getLogger(__name__)

REFRESH_EVENTS = (
    EventName.REVIEW_CREATED,
    EventName.REVIEW_HIDDEN,
    EventName.REVIEW_RESTORED,
    EventName.REVIEW_DELETED,
)


def current_trimester(now: datetime) -> str:
    """The academic year is split into three 4-month terms: 2025-1, 2025-2, 2025-3."""
    term = (now.month - 1) // 4 + 1
    return f"{now.year}-{term}"


def summarize(reviews) -> dict:
    n = len(reviews)
    if n == 0:
        return {"avg_rating": None, "avg_difficulty": None, "would_take_again_rate": None, "reviews_count": 0}
    return {
        "avg_rating": round(sum(r.quality for r in reviews) / n, 2),
        "avg_difficulty": round(sum(r.difficulty for r in reviews) / n, 2),
        "would_take_again_rate": round(sum(1 for r in reviews if r.would_take_again) / n, 2),
        "reviews_count": n,
    }


def _apply(target, stats: dict) -> None:
    for field, value in stats.items():
        setattr(target, field, value)


def ensure_link(session: Session, professor_id: int, course_id: int) -> ProfessorCourse:
    link = session.exec(
        select(ProfessorCourse).where(
            ProfessorCourse.professor_id == professor_id,
            ProfessorCourse.course_id == course_id,
        )
    ).first()
    if not link:
        link = ProfessorCourse(professor_id=professor_id, course_id=course_id)
        session.add(link)
        session.commit()
        session.refresh(link)
    return link


def recompute(session: Session, professor_id: Optional[int], course_id: Optional[int]) -> None:
    visible = select(Review).where(Review.is_hidden == False)  # noqa: E712

    if professor_id is not None and course_id is not None:
        link = ensure_link(session, professor_id, course_id)
        pair = session.exec(
            visible.where(Review.professor_id == professor_id, Review.course_id == course_id)
        ).all()
        _apply(link, summarize(pair))
        session.add(link)

    if professor_id is not None:
        professor = session.get(Professor, professor_id)
        if professor:
            _apply(professor, summarize(session.exec(visible.where(Review.professor_id == professor_id)).all()))
            session.add(professor)

    if course_id is not None:
        course = session.get(Course, course_id)
        if course:
            _apply(course, summarize(session.exec(visible.where(Review.course_id == course_id)).all()))
            session.add(course)

    session.commit()


def subscribe_aggregate_refresh(bus: EventBus, engine: Engine) -> list:
    """Wire aggregate recomputation to review events. Returns the unsubscribe handles."""

    def refresh(event: ReviewEvent):
        with Session(engine) as session:
            recompute(session, event.professor_id, event.course_id)

    return [bus.subscribe(name, refresh) for name in REFRESH_EVENTS]
