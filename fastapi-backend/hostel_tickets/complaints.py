"""Complaint operations shared by the HTTP routes and scripts.

Every operation here touches a single complaint and either commits all of its
changes or none of them. Lifecycle writes are compare-and-set on the
complaint's ``version`` so two admins racing on the same ticket cannot
silently overwrite each other: the second write gets a 409.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException
from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from . import lifecycle
from .auth import Principal
from .dependencies import load_complaint
from .models import Admin, AssignmentAudit, Complaint, ComplaintImage, Student, as_utc, utcnow
from .ticket_metrics import COMPLAINT_TRANSITIONS, STALE_WRITES, TICKET_CONFLICTS
from .ticketing import TicketAllocationError

logger = logging.getLogger("app.complaints")

RECENT_PUBLIC_LIMIT = 14


async def create_complaint(
    session: AsyncSession,
    student_id: str,
    data: dict,
    images: Sequence[dict],
    allocator,
) -> Complaint:
    """Allocate a ticket and insert the complaint in one transaction."""
    try:
        ticket_id = await allocator.allocate(session)
        complaint = Complaint(ticket_id=ticket_id, student_id=student_id, **data)
        session.add(complaint)
        await session.flush()
        for image in images:
            session.add(ComplaintImage(complaint_id=complaint.id, **image))
        await session.commit()
    except TicketAllocationError as exc:
        await session.rollback()
        TICKET_CONFLICTS.inc()
        logger.warning("Ticket allocation gave up: %s", exc)
        raise HTTPException(status_code=409, detail="Could not allocate a ticket id, please retry") from exc
    except IntegrityError as exc:
        # Two creations picked the same ticket; the unique constraint kept
        # the loser out and nothing was persisted for it.
        await session.rollback()
        TICKET_CONFLICTS.inc()
        logger.warning("Ticket id collision on insert for student %s", student_id)
        raise HTTPException(status_code=409, detail="Ticket id collision, please retry") from exc

    await session.refresh(complaint)
    logger.info(
        "Complaint created",
        extra={"context": {"ticket_id": complaint.ticket_id, "complaint_id": complaint.id}},
    )
    return complaint


async def _claim_version(session: AsyncSession, complaint: Complaint, expected_version: Optional[int]) -> None:
    """Bump the stored version iff it still equals what the caller read."""
    if expected_version is not None and expected_version != complaint.version:
        STALE_WRITES.inc()
        raise HTTPException(
            status_code=409,
            detail=f"Stale version {expected_version}; complaint is at version {complaint.version}",
        )
    expected = complaint.version
    connection = await session.connection()
    result = await connection.execute(
        update(Complaint)
        .where(Complaint.id == complaint.id, Complaint.version == expected)
        .values(version=expected + 1)
    )
    if result.rowcount != 1:
        await session.rollback()
        STALE_WRITES.inc()
        raise HTTPException(
            status_code=409,
            detail="Complaint was modified by another request; reload and retry",
        )
    complaint.version = expected + 1


async def get_complaint_for(session: AsyncSession, complaint_id: str, principal: Principal) -> Complaint:
    complaint = await load_complaint(session, complaint_id)
    allowed, code, msg = lifecycle.can_view(complaint, principal.role, principal.id)
    if not allowed:
        raise HTTPException(status_code=code, detail=msg)
    return complaint


async def update_status(
    session: AsyncSession,
    complaint_id: str,
    actor: Principal,
    new_status: str,
    notes: Optional[str] = None,
    solution: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Complaint:
    complaint = await load_complaint(session, complaint_id)

    allowed, code, msg = lifecycle.can_transition(complaint.status, new_status)
    if not allowed:
        raise HTTPException(status_code=code, detail=msg)

    old_status = complaint.status
    await _claim_version(session, complaint, expected_version)
    lifecycle.apply_status(complaint, new_status, actor.id, notes=notes, solution=solution)
    session.add(complaint)
    await session.commit()
    await session.refresh(complaint)

    COMPLAINT_TRANSITIONS.labels(from_status=old_status, to_status=new_status).inc()
    logger.info(
        "Complaint %s status %s -> %s by %s", complaint.ticket_id, old_status, new_status, actor.id
    )
    return complaint


async def assign_complaint(
    session: AsyncSession,
    complaint_id: str,
    actor: Principal,
    admin_id: str,
    expected_version: Optional[int] = None,
) -> Complaint:
    complaint = await load_complaint(session, complaint_id)

    target = await session.get(Admin, admin_id)
    if not target:
        raise HTTPException(status_code=404, detail="Admin not found")
    if not target.is_active:
        raise HTTPException(status_code=400, detail="Cannot assign a deactivated admin")

    old_status = complaint.status
    await _claim_version(session, complaint, expected_version)
    lifecycle.assign(complaint, target.id)
    session.add(complaint)
    session.add(AssignmentAudit(complaint_id=complaint.id, assigned_by=actor.id, assigned_to=target.id))
    await session.commit()
    await session.refresh(complaint)

    if old_status != complaint.status:
        COMPLAINT_TRANSITIONS.labels(from_status=old_status, to_status=complaint.status).inc()
    logger.info("Complaint %s assigned to %s by %s", complaint.ticket_id, target.id, actor.id)
    return complaint


async def rate_complaint(
    session: AsyncSession,
    complaint_id: str,
    student: Principal,
    score: int,
    feedback: Optional[str] = None,
) -> Complaint:
    complaint = await load_complaint(session, complaint_id)

    allowed, code, msg = lifecycle.can_rate(complaint, student.id)
    if not allowed:
        raise HTTPException(status_code=code, detail=msg)

    allowed, code, msg = lifecycle.check_score(score)
    if not allowed:
        raise HTTPException(status_code=code, detail=msg)

    await _claim_version(session, complaint, None)
    lifecycle.rate(complaint, score, feedback)
    session.add(complaint)
    await session.commit()
    await session.refresh(complaint)
    logger.info("Complaint %s rated %d", complaint.ticket_id, score)
    return complaint


async def list_assignments(session: AsyncSession, complaint_id: str) -> List[AssignmentAudit]:
    stmt = (
        select(AssignmentAudit)
        .where(AssignmentAudit.complaint_id == complaint_id)
        .order_by(AssignmentAudit.created_at.desc(), AssignmentAudit.id.desc())
    )
    return list((await session.exec(stmt)).all())


async def list_complaints(
    session: AsyncSession,
    page: int = 1,
    page_size: int = 10,
    student_id: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    assigned_to: Optional[str] = None,
    unassigned: bool = False,
) -> Tuple[List[Complaint], int]:
    statement = select(Complaint)
    count_statement = select(func.count(Complaint.id))

    filters = []
    if student_id:
        filters.append(Complaint.student_id == student_id)
    if status:
        filters.append(Complaint.status == status)
    if category:
        filters.append(Complaint.category == category)
    if assigned_to:
        filters.append(Complaint.assigned_to == assigned_to)
    if unassigned:
        filters.append(Complaint.assigned_to.is_(None))
    for condition in filters:
        statement = statement.where(condition)
        count_statement = count_statement.where(condition)

    statement = (
        statement.order_by(Complaint.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    total = (await session.exec(count_statement)).one()
    items = list((await session.exec(statement)).all())
    return items, total


async def images_for(session: AsyncSession, complaint_ids: Sequence[str]) -> Dict[str, List[ComplaintImage]]:
    grouped: Dict[str, List[ComplaintImage]] = {cid: [] for cid in complaint_ids}
    if not complaint_ids:
        return grouped
    stmt = (
        select(ComplaintImage)
        .where(ComplaintImage.complaint_id.in_(list(complaint_ids)))
        .order_by(ComplaintImage.created_at)
    )
    for image in (await session.exec(stmt)).all():
        grouped.setdefault(image.complaint_id, []).append(image)
    return grouped


async def recent_public(session: AsyncSession, limit: int = RECENT_PUBLIC_LIMIT) -> List[Complaint]:
    stmt = select(Complaint).order_by(Complaint.created_at.desc()).limit(limit)
    return list((await session.exec(stmt)).all())


async def _average_resolution_days(session: AsyncSession) -> float:
    stmt = select(Complaint.created_at, Complaint.resolved_at).where(
        Complaint.status == lifecycle.RESOLVED,
        Complaint.resolved_at.is_not(None),
        Complaint.created_at.is_not(None),
    )
    rows = (await session.exec(stmt)).all()
    if not rows:
        return 0.0
    total = sum(
        ((as_utc(resolved) - as_utc(created)).total_seconds() for created, resolved in rows),
        0.0,
    )
    return total / len(rows) / 86400


async def statistics(session: AsyncSession) -> dict:
    """Totals per status and category plus resolution timing."""
    status_rows = (
        await session.exec(select(Complaint.status, func.count(Complaint.id)).group_by(Complaint.status))
    ).all()
    by_status = {status: count for status, count in status_rows}
    total = sum(by_status.values())
    resolved = by_status.get(lifecycle.RESOLVED, 0)

    category_rows = (
        await session.exec(
            select(Complaint.category, Complaint.status, func.count(Complaint.id)).group_by(
                Complaint.category, Complaint.status
            )
        )
    ).all()
    categories: Dict[str, Dict[str, int]] = {}
    for category, status, count in category_rows:
        entry = categories.setdefault(
            category, {"count": 0, "resolved": 0, "pending": 0, "in_progress": 0}
        )
        entry["count"] += count
        if status == lifecycle.RESOLVED:
            entry["resolved"] += count
        elif status == lifecycle.PENDING:
            entry["pending"] += count
        elif status == lifecycle.IN_PROGRESS:
            entry["in_progress"] += count

    week_ago = utcnow() - timedelta(days=7)
    recently_resolved = (
        await session.exec(
            select(func.count(Complaint.id)).where(
                Complaint.status == lifecycle.RESOLVED, Complaint.resolved_at >= week_ago
            )
        )
    ).one()

    return {
        "total": total,
        "pending": by_status.get(lifecycle.PENDING, 0),
        "in_progress": by_status.get(lifecycle.IN_PROGRESS, 0),
        "resolved": resolved,
        "rejected": by_status.get(lifecycle.REJECTED, 0),
        "resolution_rate": (resolved / total) * 100 if total else 0.0,
        "category_stats": [{"category": name, **counts} for name, counts in sorted(categories.items())],
        "recently_resolved": recently_resolved,
        "avg_resolution_days": round(await _average_resolution_days(session), 1),
    }


async def delete_student(session: AsyncSession, student: Student) -> int:
    """Delete a student and every complaint they own. Returns the complaint count."""
    owned = select(Complaint.id).where(Complaint.student_id == student.id)
    connection = await session.connection()
    await connection.execute(delete(ComplaintImage).where(ComplaintImage.complaint_id.in_(owned)))
    await connection.execute(delete(AssignmentAudit).where(AssignmentAudit.complaint_id.in_(owned)))
    result = await connection.execute(delete(Complaint).where(Complaint.student_id == student.id))
    removed = result.rowcount
    await session.delete(student)
    await session.commit()
    logger.info("Deleted student %s and %d complaints", student.id, removed)
    return removed
