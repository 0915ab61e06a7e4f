"""Student account routes. Deleting an account removes the student's complaints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, constr, field_validator
from sqlalchemy import func, or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .. import auth
from .. import complaints as service
from ..database import get_session
from ..models import Complaint, Student


router = APIRouter(prefix="/api/v1/students", tags=["students"])

require_student = auth.require_role(auth.STUDENT)
require_user_manager = auth.require_admin_permission("can_manage_users")


class ComplaintSummary(BaseModel):
    id: str
    ticket_id: str
    title: str
    category: str
    status: str


class StudentProfile(BaseModel):
    id: str
    name: str
    email: str
    student_number: str
    room_number: Optional[str] = None
    block: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


class StudentDetail(StudentProfile):
    complaints: List[ComplaintSummary]


class StudentPage(BaseModel):
    items: List[StudentProfile]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProfileUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1)] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    room_number: Optional[str] = None
    block: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v: Optional[str]) -> Optional[str]:
        return auth.normalize_email(v) if v is not None else v


class PasswordChange(BaseModel):
    current_password: str
    new_password: constr(min_length=6)


def _profile(student: Student) -> StudentProfile:
    return StudentProfile.model_validate(student, from_attributes=True)


@router.get("", response_model=StudentPage)
async def list_students(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    _: auth.Principal = Depends(require_user_manager),
    session: AsyncSession = Depends(get_session),
):
    statement = select(Student)
    count_statement = select(func.count(Student.id))
    if search:
        pattern = f"%{search.strip()}%"
        condition = or_(
            Student.name.ilike(pattern),
            Student.email.ilike(pattern),
            Student.student_number.ilike(pattern),
        )
        statement = statement.where(condition)
        count_statement = count_statement.where(condition)

    total = (await session.exec(count_statement)).one()
    students = (
        await session.exec(
            statement.order_by(Student.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        )
    ).all()
    return StudentPage(
        items=[_profile(s) for s in students],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get("/me", response_model=StudentProfile)
async def get_own_profile(principal: auth.Principal = Depends(require_student)):
    return _profile(principal.account)


@router.put("/me", response_model=StudentProfile)
async def update_own_profile(
    body: ProfileUpdate,
    principal: auth.Principal = Depends(require_student),
    session: AsyncSession = Depends(get_session),
):
    student = principal.account
    changes = body.model_dump(exclude_unset=True)
    if changes.get("email") and changes["email"] != student.email:
        taken = (
            await session.exec(select(Student.id).where(Student.email == changes["email"], Student.id != student.id))
        ).first()
        if taken:
            raise HTTPException(status_code=409, detail="Email is already in use")
    for field, value in changes.items():
        if field in ("name", "email") and value is None:
            continue
        setattr(student, field, value)
    session.add(student)
    await session.commit()
    await session.refresh(student)
    return _profile(student)


@router.put("/me/password")
async def change_own_password(
    body: PasswordChange,
    principal: auth.Principal = Depends(require_student),
    session: AsyncSession = Depends(get_session),
):
    student = principal.account
    if not auth.verify_password(body.current_password, student.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    student.password_hash = auth.get_password_hash(body.new_password)
    session.add(student)
    await session.commit()
    return {"message": "Password changed successfully"}


@router.delete("/me")
async def delete_own_account(
    password: str = Body(..., embed=True),
    principal: auth.Principal = Depends(require_student),
    session: AsyncSession = Depends(get_session),
):
    student = principal.account
    if not auth.verify_password(password, student.password_hash):
        raise HTTPException(status_code=400, detail="Password is incorrect")
    removed = await service.delete_student(session, student)
    return {"message": "Account deleted successfully", "complaints_removed": removed}


@router.get("/{student_id}", response_model=StudentDetail)
async def get_student(
    student_id: str,
    _: auth.Principal = Depends(require_user_manager),
    session: AsyncSession = Depends(get_session),
):
    student = await session.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    stmt = (
        select(Complaint)
        .where(Complaint.student_id == student.id)
        .order_by(Complaint.created_at.desc())
    )
    complaints = (await session.exec(stmt)).all()
    return StudentDetail(
        **_profile(student).model_dump(),
        complaints=[
            ComplaintSummary(id=c.id, ticket_id=c.ticket_id, title=c.title, category=c.category, status=c.status)
            for c in complaints
        ],
    )


@router.delete("/{student_id}")
async def delete_student(
    student_id: str,
    _: auth.Principal = Depends(require_user_manager),
    session: AsyncSession = Depends(get_session),
):
    student = await session.get(Student, student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    removed = await service.delete_student(session, student)
    return {"message": "Student deleted successfully", "complaints_removed": removed}
