from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlmodel import Session, select, or_, func
from ..aggregates import recompute
from ..audit import log_action
from ..auth import require_admin
from ..database import get_session
from ..models import User, Professor, Course, ProfessorCourse, Review
from .reviews import delete_reviews

router = APIRouter(tags=["catalog"])

class ProfessorCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=200)
    department: Optional[str] = None

class ProfessorUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    department: Optional[str] = None

class CourseCreate(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=2, max_length=200)
    department: Optional[str] = None

class CourseUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    department: Optional[str] = None

def _stats(obj) -> dict:
    return {
        "avg_rating": obj.avg_rating,
        "avg_difficulty": obj.avg_difficulty,
        "would_take_again_rate": obj.would_take_again_rate,
        "reviews_count": obj.reviews_count,
    }

def _professor_data(p: Professor) -> dict:
    return {"id": p.id, "full_name": p.full_name, "department": p.department, **_stats(p)}

def _course_data(c: Course) -> dict:
    return {"id": c.id, "code": c.code, "name": c.name, "department": c.department, **_stats(c)}

def _get_or_404(session: Session, model, obj_id: int):
    obj = session.get(model, obj_id)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{model.__name__} not found")
    return obj

def _find_link(session: Session, professor_id: int, course_id: int) -> Optional[ProfessorCourse]:
    return session.exec(
        select(ProfessorCourse).where(
            ProfessorCourse.professor_id == professor_id,
            ProfessorCourse.course_id == course_id,
        )
    ).first()

def _professor_name_taken(session: Session, full_name: str, exclude_id: Optional[int] = None) -> bool:
    statement = select(Professor).where(func.lower(Professor.full_name) == full_name.lower())
    if exclude_id is not None:
        statement = statement.where(Professor.id != exclude_id)
    return session.exec(statement).first() is not None

def _course_code_taken(session: Session, code: str, exclude_id: Optional[int] = None) -> bool:
    statement = select(Course).where(Course.code == code)
    if exclude_id is not None:
        statement = statement.where(Course.id != exclude_id)
    return session.exec(statement).first() is not None

# --- Professors ---

@router.get("/professors")
async def list_professors(
    q: Optional[str] = None,
    limit: int = 50,
    session: Session = Depends(get_session)
):
    statement = select(Professor)
    if q:
        statement = statement.where(Professor.full_name.ilike(f"%{q.strip()}%"))
    professors = session.exec(statement.order_by(Professor.full_name).limit(limit)).all()
    return {"success": True, "data": [_professor_data(p) for p in professors]}

@router.get("/professors/{professor_id}")
async def get_professor(professor_id: int, session: Session = Depends(get_session)):
    """Professor with the courses they are linked to and the per-course aggregates."""
    professor = _get_or_404(session, Professor, professor_id)
    rows = session.exec(
        select(ProfessorCourse, Course).join(Course, ProfessorCourse.course_id == Course.id)
        .where(ProfessorCourse.professor_id == professor_id)
        .order_by(Course.name)
    ).all()
    courses = [{"id": c.id, "code": c.code, "name": c.name, "department": c.department, **_stats(link)}
               for link, c in rows]
    return {"success": True, "data": {**_professor_data(professor), "courses": courses}}

@router.post("/professors")
async def create_professor(
    request: Request,
    data: ProfessorCreate,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    full_name = data.full_name.strip()
    if _professor_name_taken(session, full_name):
        raise HTTPException(status_code=400, detail="A professor with this name already exists.")

    professor = Professor(full_name=full_name, department=data.department)
    session.add(professor)
    session.commit()
    session.refresh(professor)

    log_action(session, action="CREATE_PROFESSOR", actor=current_user,
               resource=f"professor:{professor.id}", request=request, detail=professor.full_name)
    return {"success": True, "data": {"id": professor.id, "full_name": professor.full_name}}

@router.patch("/professors/{professor_id}")
async def update_professor(
    professor_id: int,
    request: Request,
    data: ProfessorUpdate,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    professor = _get_or_404(session, Professor, professor_id)
    changes = data.model_dump(exclude_unset=True)
    if "full_name" in changes:
        if changes["full_name"] is None:
            raise HTTPException(status_code=400, detail="Full name is required.")
        changes["full_name"] = changes["full_name"].strip()
        if _professor_name_taken(session, changes["full_name"], exclude_id=professor_id):
            raise HTTPException(status_code=400, detail="A professor with this name already exists.")

    for field, value in changes.items():
        setattr(professor, field, value)
    session.add(professor)
    session.commit()
    session.refresh(professor)

    log_action(session, action="UPDATE_PROFESSOR", actor=current_user,
               resource=f"professor:{professor_id}", request=request, detail=str(changes))
    return {"success": True, "data": _professor_data(professor)}

@router.delete("/professors/{professor_id}")
async def delete_professor(
    professor_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    """Removes the professor together with their course links and reviews."""
    professor = _get_or_404(session, Professor, professor_id)

    reviews = session.exec(select(Review).where(Review.professor_id == professor_id)).all()
    links = session.exec(select(ProfessorCourse).where(ProfessorCourse.professor_id == professor_id)).all()
    course_ids = {r.course_id for r in reviews} | {l.course_id for l in links}

    delete_reviews(session, reviews)
    for link in links:
        session.delete(link)
    session.flush()
    session.delete(professor)
    session.commit()

    for course_id in course_ids:
        recompute(session, None, course_id)

    log_action(session, action="DELETE_PROFESSOR", actor=current_user,
               resource=f"professor:{professor_id}", request=request,
               detail=f"Cascade: {len(links)} links, {len(reviews)} reviews")
    return {"success": True, "message": "Professor deleted",
            "data": {"links": len(links), "reviews": len(reviews)}}

# --- Courses ---

@router.get("/courses")
async def list_courses(
    q: Optional[str] = None,
    limit: int = 50,
    session: Session = Depends(get_session)
):
    statement = select(Course)
    if q:
        term = f"%{q.strip()}%"
        statement = statement.where(or_(Course.name.ilike(term), Course.code.ilike(term)))
    courses = session.exec(statement.order_by(Course.name).limit(limit)).all()
    return {"success": True, "data": [_course_data(c) for c in courses]}

@router.get("/courses/{course_id}")
async def get_course(course_id: int, session: Session = Depends(get_session)):
    """Course with the professors who teach it."""
    course = _get_or_404(session, Course, course_id)
    rows = session.exec(
        select(ProfessorCourse, Professor).join(Professor, ProfessorCourse.professor_id == Professor.id)
        .where(ProfessorCourse.course_id == course_id)
        .order_by(Professor.full_name)
    ).all()
    professors = [{"id": p.id, "full_name": p.full_name, "department": p.department, **_stats(link)}
                  for link, p in rows]
    return {"success": True, "data": {**_course_data(course), "professors": professors}}

@router.post("/courses")
async def create_course(
    request: Request,
    data: CourseCreate,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    code = data.code.strip().upper()
    if _course_code_taken(session, code):
        raise HTTPException(status_code=400, detail="A course with this code already exists.")

    course = Course(code=code, name=data.name.strip(), department=data.department)
    session.add(course)
    session.commit()
    session.refresh(course)

    log_action(session, action="CREATE_COURSE", actor=current_user,
               resource=f"course:{course.id}", request=request, detail=f"{course.code} {course.name}")
    return {"success": True, "data": {"id": course.id, "code": course.code, "name": course.name}}

@router.patch("/courses/{course_id}")
async def update_course(
    course_id: int,
    request: Request,
    data: CourseUpdate,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    course = _get_or_404(session, Course, course_id)
    changes = data.model_dump(exclude_unset=True)
    for required in ("code", "name"):
        if required in changes and changes[required] is None:
            raise HTTPException(status_code=400, detail=f"Course {required} is required.")
    if "code" in changes:
        changes["code"] = changes["code"].strip().upper()
        if _course_code_taken(session, changes["code"], exclude_id=course_id):
            raise HTTPException(status_code=400, detail="A course with this code already exists.")
    if "name" in changes:
        changes["name"] = changes["name"].strip()

    for field, value in changes.items():
        setattr(course, field, value)
    session.add(course)
    session.commit()
    session.refresh(course)

    log_action(session, action="UPDATE_COURSE", actor=current_user,
               resource=f"course:{course_id}", request=request, detail=str(changes))
    return {"success": True, "data": _course_data(course)}

@router.delete("/courses/{course_id}")
async def delete_course(
    course_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    """Removes the course together with its professor links and reviews."""
    course = _get_or_404(session, Course, course_id)

    reviews = session.exec(select(Review).where(Review.course_id == course_id)).all()
    links = session.exec(select(ProfessorCourse).where(ProfessorCourse.course_id == course_id)).all()
    professor_ids = {r.professor_id for r in reviews} | {l.professor_id for l in links}

    delete_reviews(session, reviews)
    for link in links:
        session.delete(link)
    session.flush()
    session.delete(course)
    session.commit()

    for professor_id in professor_ids:
        recompute(session, professor_id, None)

    log_action(session, action="DELETE_COURSE", actor=current_user,
               resource=f"course:{course_id}", request=request,
               detail=f"Cascade: {len(links)} links, {len(reviews)} reviews")
    return {"success": True, "message": "Course deleted",
            "data": {"links": len(links), "reviews": len(reviews)}}

# --- Links ---

@router.post("/professors/{professor_id}/courses/{course_id}")
async def link_professor_course(
    professor_id: int,
    course_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    _get_or_404(session, Professor, professor_id)
    _get_or_404(session, Course, course_id)
    if _find_link(session, professor_id, course_id):
        raise HTTPException(status_code=409, detail="Professor already teaches this course.")

    link = ProfessorCourse(professor_id=professor_id, course_id=course_id)
    session.add(link)
    session.commit()
    session.refresh(link)
    # Reviews may predate the link
    recompute(session, professor_id, course_id)

    log_action(session, action="LINK_PROFESSOR_COURSE", actor=current_user,
               resource=f"professor:{professor_id}", request=request, detail=f"course:{course_id}")
    return {"success": True, "data": {"id": link.id, "professor_id": professor_id, "course_id": course_id}}

@router.delete("/professors/{professor_id}/courses/{course_id}")
async def unlink_professor_course(
    professor_id: int,
    course_id: int,
    request: Request,
    current_user: User = Depends(require_admin),
    session: Session = Depends(get_session)
):
    """Only the link goes; reviews for the pair stay."""
    link = _find_link(session, professor_id, course_id)
    if not link:
        raise HTTPException(status_code=404, detail="Link not found")
    session.delete(link)
    session.commit()

    log_action(session, action="UNLINK_PROFESSOR_COURSE", actor=current_user,
               resource=f"professor:{professor_id}", request=request, detail=f"course:{course_id}")
    return {"success": True, "message": "Link removed"}
