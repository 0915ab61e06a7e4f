from typing import Optional
from datetime import datetime, timezone
import uuid

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field


COMPLAINT_CATEGORIES = ("electrical", "plumbing", "carpentry", "internet", "sanitation", "other")
COMPLAINT_PRIORITIES = ("low", "medium", "high")
COMPLAINT_URGENCIES = ("minor", "moderate", "critical")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Student(SQLModel, table=True):
    __tablename__ = "students"
    id: Optional[str] = Field(default_factory=_new_id, primary_key=True)
    name: str
    email: str = Field(sa_column_kwargs={"unique": True})
    student_number: str = Field(sa_column_kwargs={"unique": True})
    room_number: Optional[str] = None
    block: Optional[str] = None
    phone: Optional[str] = None
    password_hash: str
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Admin(SQLModel, table=True):
    __tablename__ = "admins"
    id: Optional[str] = Field(default_factory=_new_id, primary_key=True)
    full_name: str
    email: str = Field(sa_column_kwargs={"unique": True})
    department: Optional[str] = None
    phone: Optional[str] = None
    password_hash: str
    is_active: bool = Field(default=True)
    # Permission flags checked by the complaint and account endpoints
    can_manage_complaints: bool = Field(default=True)
    can_manage_users: bool = Field(default=False)
    can_manage_admins: bool = Field(default=False)
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Complaint(SQLModel, table=True):
    __tablename__ = "complaints"
    id: Optional[str] = Field(default_factory=_new_id, primary_key=True)
    # Human-facing identifier (TKT000123). The unique constraint backs up the
    # allocator: a duplicate can never be committed whatever the strategy.
    ticket_id: str = Field(index=True, sa_column_kwargs={"unique": True})
    student_id: str = Field(foreign_key="students.id", index=True)
    category: str
    title: str
    description: str
    location: str
    priority: str = Field(default="medium")
    urgency: str = Field(default="moderate")
    status: str = Field(default="pending", index=True)
    assigned_to: Optional[str] = Field(default=None, foreign_key="admins.id")

    # Resolution record, written when status moves to resolved
    resolved_by: Optional[str] = Field(default=None, foreign_key="admins.id")
    resolved_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    resolution_notes: Optional[str] = None
    resolution_solution: Optional[str] = None

    # Student rating, only accepted once the complaint is resolved
    rating_score: Optional[int] = None
    rating_feedback: Optional[str] = None
    rated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    # Bumped on every lifecycle write; used for compare-and-set updates
    version: int = Field(default=1)
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class ComplaintImage(SQLModel, table=True):
    __tablename__ = "complaint_images"
    id: Optional[str] = Field(default_factory=_new_id, primary_key=True)
    complaint_id: str = Field(foreign_key="complaints.id", index=True)
    url: str
    filename: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None  # Size in bytes
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class TicketCounter(SQLModel, table=True):
    """Named monotonically increasing sequence used to number tickets."""
    __tablename__ = "ticket_counters"
    name: str = Field(primary_key=True)
    value: int = Field(default=0)


class AssignmentAudit(SQLModel, table=True):
    __tablename__ = "assignment_audits"
    id: Optional[int] = Field(default=None, primary_key=True)
    complaint_id: str = Field(foreign_key="complaints.id", index=True)
    assigned_by: str
    assigned_to: str
    created_at: Optional[datetime] = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
