from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    # Naive UTC, matching what SQLite and the Postgres timestamp columns store.
    # sqlmodel 0.0.45+ rejects naive datetimes, hence the upper bound in pyproject.toml
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    STUDENT = "STUDENT"
    ADMIN = "ADMIN"

class Status(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"

class ReportStatus(str, Enum):
    PENDING = "pending"
    DISMISSED = "dismissed"

# --- Core Auth ---

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    role: Role = Field(default=Role.STUDENT)
    status: Status = Field(default=Status.ACTIVE)
    has_unlimited_access: Optional[bool] = Field(default=False)
    failed_attempts: int = Field(default=0)
    lockout_until: Optional[datetime] = None

    reviews: List["Review"] = Relationship(back_populates="author")

    created_at: datetime = Field(default_factory=utcnow)

# --- Catalog ---

class Professor(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(index=True)
    department: Optional[str] = None
    avg_rating: Optional[float] = None
    avg_difficulty: Optional[float] = None
    would_take_again_rate: Optional[float] = None
    reviews_count: int = Field(default=0)

    reviews: List["Review"] = Relationship(back_populates="professor")

class Course(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str = Field(index=True)
    department: Optional[str] = None
    avg_rating: Optional[float] = None
    avg_difficulty: Optional[float] = None
    would_take_again_rate: Optional[float] = None
    reviews_count: int = Field(default=0)

    reviews: List["Review"] = Relationship(back_populates="course")

class ProfessorCourse(SQLModel, table=True):
    __tablename__ = "professor_course"
    __table_args__ = (UniqueConstraint("professor_id", "course_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    professor_id: int = Field(foreign_key="professor.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    avg_rating: Optional[float] = None
    avg_difficulty: Optional[float] = None
    would_take_again_rate: Optional[float] = None
    reviews_count: int = Field(default=0)

# --- Reviews ---

class Review(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    professor_id: int = Field(foreign_key="professor.id", index=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    quality: int               # 1..5
    difficulty: int            # 1..5
    would_take_again: bool = Field(default=False)
    attendance_required: bool = Field(default=False)
    uses_textbook: bool = Field(default=False)
    comment: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    score: float = Field(default=0)
    trimester: str             # e.g. "2025-2"
    is_hidden: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow)

    author: Optional[User] = Relationship(back_populates="reviews")
    professor: Optional[Professor] = Relationship(back_populates="reviews")
    course: Optional[Course] = Relationship(back_populates="reviews")

class ReviewVote(SQLModel, table=True):
    __tablename__ = "review_vote"
    __table_args__ = (UniqueConstraint("review_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    review_id: int = Field(foreign_key="review.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)

class Report(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("review_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    review_id: int = Field(foreign_key="review.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    reason: str
    comment: Optional[str] = None
    status: ReportStatus = Field(default=ReportStatus.PENDING)
    created_at: datetime = Field(default_factory=utcnow)

# --- Review access quota ---

class ReviewView(SQLModel, table=True):
    """One row per (user, review) pair; append-only record of quota consumption."""
    __tablename__ = "review_views"
    __table_args__ = (UniqueConstraint("user_id", "review_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    review_id: int = Field(index=True)
    viewed_at: datetime = Field(default_factory=utcnow, index=True)

class DeviceStorage(SQLModel, table=True):
    """Per-device key/value entries (anonymous quota lives here)."""
    __tablename__ = "device_storage"
    __table_args__ = (UniqueConstraint("device_id", "key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(index=True)
    key: str
    value: str

# ── Audit Log ─────────────────────────────────────────────────────────────────

class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=utcnow)
    actor_id: Optional[int] = None          # user.id who triggered the action
    actor_email: Optional[str] = None       # human-readable identity
    actor_role: Optional[str] = None        # STUDENT / ADMIN / ANON
    action: str                             # e.g. LOGIN, CREATE_REVIEW, REPORT_REVIEW
    resource: Optional[str] = None          # e.g. "review:42"
    detail: Optional[str] = None            # free-text description
    ip_address: Optional[str] = None        # request IP
