"""Common FastAPI dependencies."""

from fastapi import HTTPException
from sqlmodel.ext.asyncio.session import AsyncSession

from .models import Complaint
from .ticketing import get_allocator


def get_ticket_allocator():
    """Allocator used for new complaints; overridable in tests."""
    return get_allocator()


async def load_complaint(session: AsyncSession, complaint_id: str) -> Complaint:
    complaint = await session.get(Complaint, complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return complaint


__all__ = ["get_ticket_allocator", "load_complaint"]
