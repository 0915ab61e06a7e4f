"""Admin account management: listing, permission changes and deactivation."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .. import auth
from ..database import get_session
from ..models import Admin


logger = logging.getLogger("app.admins")

router = APIRouter(prefix="/api/v1/admins", tags=["admins"])

require_admin_manager = auth.require_admin_permission("can_manage_admins")


class AdminRead(BaseModel):
    id: str
    full_name: str
    email: str
    department: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool
    can_manage_complaints: bool
    can_manage_users: bool
    can_manage_admins: bool
    created_at: Optional[datetime] = None


class PermissionsUpdate(BaseModel):
    can_manage_complaints: Optional[bool] = None
    can_manage_users: Optional[bool] = None
    can_manage_admins: Optional[bool] = None


async def _load_admin(session: AsyncSession, admin_id: str) -> Admin:
    admin = await session.get(Admin, admin_id)
    if not admin:
        raise HTTPException(status_code=404, detail="Admin not found")
    return admin


def _read(admin: Admin) -> AdminRead:
    return AdminRead.model_validate(admin, from_attributes=True)


@router.get("", response_model=List[AdminRead])
async def list_admins(
    _: auth.Principal = Depends(require_admin_manager),
    session: AsyncSession = Depends(get_session),
):
    admins = (await session.exec(select(Admin).order_by(Admin.created_at.desc()))).all()
    return [_read(a) for a in admins]


@router.put("/{admin_id}/permissions", response_model=AdminRead)
async def update_permissions(
    admin_id: str,
    body: PermissionsUpdate,
    principal: auth.Principal = Depends(require_admin_manager),
    session: AsyncSession = Depends(get_session),
):
    admin = await _load_admin(session, admin_id)
    for flag, value in body.model_dump(exclude_none=True).items():
        setattr(admin, flag, value)
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    logger.info(
        "Admin permissions updated",
        extra={"context": {"admin_id": admin.id, "updated_by": principal.id}},
    )
    return _read(admin)


@router.patch("/{admin_id}/toggle-status", response_model=AdminRead)
async def toggle_status(
    admin_id: str,
    principal: auth.Principal = Depends(require_admin_manager),
    session: AsyncSession = Depends(get_session),
):
    if admin_id == principal.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    admin = await _load_admin(session, admin_id)
    admin.is_active = not admin.is_active
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    logger.info("Admin %s %s by %s", admin.id, "activated" if admin.is_active else "deactivated", principal.id)
    return _read(admin)
