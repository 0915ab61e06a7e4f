"""Complaint routes: submission, triage, resolution and rating."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, constr, field_validator
from sqlmodel.ext.asyncio.session import AsyncSession

from .. import auth
from .. import complaints as service
from .. import lifecycle
from ..database import get_session
from ..dependencies import get_ticket_allocator, load_complaint
from ..models import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_PRIORITIES,
    COMPLAINT_URGENCIES,
    Complaint,
    ComplaintImage,
    as_utc,
)


router = APIRouter(prefix="/api/v1/complaints", tags=["complaints"])

require_student = auth.require_role(auth.STUDENT)
require_admin = auth.require_role(auth.ADMIN)
require_complaint_manager = auth.require_admin_permission("can_manage_complaints")


class ImageIn(BaseModel):
    url: constr(strip_whitespace=True, min_length=1)
    filename: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)


class ComplaintCreate(BaseModel):
    category: str
    title: constr(strip_whitespace=True, min_length=1, max_length=100)
    description: constr(strip_whitespace=True, min_length=1, max_length=1000)
    location: constr(strip_whitespace=True, min_length=1)
    priority: Optional[str] = None
    urgency: Optional[str] = None
    images: List[ImageIn] = []

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in COMPLAINT_CATEGORIES:
            raise ValueError(f"category must be one of {', '.join(COMPLAINT_CATEGORIES)}")
        return v

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in COMPLAINT_PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(COMPLAINT_PRIORITIES)}")
        return v

    @field_validator("urgency")
    @classmethod
    def validate_urgency(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in COMPLAINT_URGENCIES:
            raise ValueError(f"urgency must be one of {', '.join(COMPLAINT_URGENCIES)}")
        return v


class StatusUpdateSchema(BaseModel):
    status: str
    notes: Optional[str] = None
    solution: Optional[str] = None
    version: Optional[int] = None


class AssignmentSchema(BaseModel):
    admin_id: str
    version: Optional[int] = None


class RatingSchema(BaseModel):
    rating: int = Field(..., ge=lifecycle.MIN_RATING, le=lifecycle.MAX_RATING)
    feedback: Optional[str] = None


class ImageRead(BaseModel):
    id: str
    url: str
    filename: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None


class ResolutionDetails(BaseModel):
    resolved_by: Optional[str]
    resolved_at: datetime
    notes: Optional[str] = None
    solution: Optional[str] = None


class RatingRead(BaseModel):
    score: int
    feedback: Optional[str] = None
    rated_at: Optional[datetime] = None


class ComplaintRead(BaseModel):
    id: str
    ticket_id: str
    student_id: str
    category: str
    title: str
    description: str
    location: str
    priority: str
    urgency: str
    status: str
    assigned_to: Optional[str] = None
    resolution_details: Optional[ResolutionDetails] = None
    rating: Optional[RatingRead] = None
    images: List[ImageRead] = []
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaginatedComplaints(BaseModel):
    items: List[ComplaintRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class PublicComplaint(BaseModel):
    ticket_id: str
    title: str
    category: str
    status: str
    created_at: Optional[datetime] = None


class AssignmentRead(BaseModel):
    id: int
    complaint_id: str
    assigned_by: str
    assigned_to: str
    created_at: Optional[datetime] = None


def to_read(complaint: Complaint, images: Optional[List[ComplaintImage]] = None) -> ComplaintRead:
    resolution = None
    if complaint.resolved_at is not None:
        resolution = ResolutionDetails(
            resolved_by=complaint.resolved_by,
            resolved_at=as_utc(complaint.resolved_at),
            notes=complaint.resolution_notes,
            solution=complaint.resolution_solution,
        )
    rating = None
    if complaint.rating_score is not None:
        rating = RatingRead(
            score=complaint.rating_score,
            feedback=complaint.rating_feedback,
            rated_at=as_utc(complaint.rated_at),
        )
    return ComplaintRead(
        id=complaint.id,
        ticket_id=complaint.ticket_id,
        student_id=complaint.student_id,
        category=complaint.category,
        title=complaint.title,
        description=complaint.description,
        location=complaint.location,
        priority=complaint.priority,
        urgency=complaint.urgency,
        status=complaint.status,
        assigned_to=complaint.assigned_to,
        resolution_details=resolution,
        rating=rating,
        images=[
            ImageRead(
                id=img.id,
                url=img.url,
                filename=img.filename,
                original_name=img.original_name,
                mime_type=img.mime_type,
                size=img.size,
            )
            for img in images or []
        ],
        version=complaint.version,
        created_at=as_utc(complaint.created_at),
        updated_at=as_utc(complaint.updated_at),
    )


async def _read_one(session: AsyncSession, complaint: Complaint) -> ComplaintRead:
    images = await service.images_for(session, [complaint.id])
    return to_read(complaint, images.get(complaint.id))


async def _paginate(session: AsyncSession, items: List[Complaint], total: int, page: int, page_size: int) -> PaginatedComplaints:
    images = await service.images_for(session, [c.id for c in items])
    return PaginatedComplaints(
        items=[to_read(c, images.get(c.id)) for c in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.post("", response_model=ComplaintRead, status_code=status.HTTP_201_CREATED)
async def submit_complaint(
    payload: ComplaintCreate,
    student: auth.Principal = Depends(require_student),
    allocator=Depends(get_ticket_allocator),
    session: AsyncSession = Depends(get_session),
):
    data = payload.model_dump(exclude={"images"})
    data["priority"] = data["priority"] or "medium"
    data["urgency"] = data["urgency"] or "moderate"
    images = [image.model_dump() for image in payload.images]

    complaint = await service.create_complaint(session, student.id, data, images, allocator)
    return await _read_one(session, complaint)


@router.get("/my", response_model=PaginatedComplaints)
async def my_complaints(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None),
    student: auth.Principal = Depends(require_student),
    session: AsyncSession = Depends(get_session),
):
    if status == "all":
        status = None
    items, total = await service.list_complaints(
        session, page=page, page_size=page_size, student_id=student.id, status=status
    )
    return await _paginate(session, items, total, page, page_size)


@router.get("", response_model=PaginatedComplaints)
async def list_complaints(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    assigned: Optional[str] = Query(None, pattern="^(me|unassigned)$"),
    admin: auth.Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Admin dashboard listing, newest first. `all` disables a filter."""
    items, total = await service.list_complaints(
        session,
        page=page,
        page_size=page_size,
        status=None if status == "all" else status,
        category=None if category == "all" else category,
        assigned_to=admin.id if assigned == "me" else None,
        unassigned=assigned == "unassigned",
    )
    return await _paginate(session, items, total, page, page_size)


@router.get("/stats/overview")
async def stats_overview(
    _: auth.Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    return await service.statistics(session)


@router.get("/stats/public")
async def stats_public(session: AsyncSession = Depends(get_session)):
    stats = await service.statistics(session)
    return {
        "total": stats["total"],
        "resolved": stats["resolved"],
        "pending": stats["pending"],
        "in_progress": stats["in_progress"],
        "resolution_rate": round(stats["resolution_rate"]),
        "avg_resolution_days": stats["avg_resolution_days"],
    }


@router.get("/recent/public", response_model=List[PublicComplaint])
async def recent_complaints(session: AsyncSession = Depends(get_session)):
    complaints = await service.recent_public(session)
    return [
        PublicComplaint(
            ticket_id=c.ticket_id,
            title=c.title,
            category=c.category,
            status=c.status,
            created_at=as_utc(c.created_at),
        )
        for c in complaints
    ]


@router.get("/{complaint_id}", response_model=ComplaintRead)
async def get_complaint(
    complaint_id: str,
    principal: auth.Principal = Depends(auth.get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    complaint = await service.get_complaint_for(session, complaint_id, principal)
    return await _read_one(session, complaint)


@router.patch("/{complaint_id}/status", response_model=ComplaintRead)
async def update_complaint_status(
    complaint_id: str,
    body: StatusUpdateSchema,
    admin: auth.Principal = Depends(require_complaint_manager),
    session: AsyncSession = Depends(get_session),
):
    complaint = await service.update_status(
        session,
        complaint_id,
        admin,
        body.status,
        notes=body.notes,
        solution=body.solution,
        expected_version=body.version,
    )
    return await _read_one(session, complaint)


@router.patch("/{complaint_id}/assign", response_model=ComplaintRead)
async def assign_complaint(
    complaint_id: str,
    body: AssignmentSchema,
    admin: auth.Principal = Depends(require_complaint_manager),
    session: AsyncSession = Depends(get_session),
):
    complaint = await service.assign_complaint(
        session, complaint_id, admin, body.admin_id, expected_version=body.version
    )
    return await _read_one(session, complaint)


@router.post("/{complaint_id}/rating", response_model=ComplaintRead)
async def rate_complaint(
    complaint_id: str,
    body: RatingSchema,
    student: auth.Principal = Depends(require_student),
    session: AsyncSession = Depends(get_session),
):
    complaint = await service.rate_complaint(session, complaint_id, student, body.rating, body.feedback)
    return await _read_one(session, complaint)


@router.get("/{complaint_id}/assignments", response_model=List[AssignmentRead])
async def list_assignments(
    complaint_id: str,
    _: auth.Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    await load_complaint(session, complaint_id)
    rows = await service.list_assignments(session, complaint_id)
    return [
        AssignmentRead(
            id=r.id,
            complaint_id=r.complaint_id,
            assigned_by=r.assigned_by,
            assigned_to=r.assigned_to,
            created_at=as_utc(r.created_at),
        )
        for r in rows
    ]
