"""
Ticket identifier allocation for new complaints.

Tickets are the human-facing handle of a complaint (``TKT000042``) used in the
dashboard, in search and in conversations with maintenance staff, so they are
short, prefixed and zero padded rather than opaque UUIDs.

Two strategies are available, selected with ``TICKET_ALLOCATOR``:

``sequence`` (default)
    A single ``ticket_counters`` row is incremented with
    ``UPDATE ... SET value = value + 1 RETURNING value`` inside the transaction
    that inserts the complaint. The database row/write lock serialises
    concurrent creations, so every caller gets a distinct number without an
    application-level lock and without retrying. If the number handed out is
    already in use (rows written by ``probe``, imported data, a low seed) the
    counter jumps past the highest existing ticket in the same transaction.

``probe``
    The legacy scheme: start just past the highest ticket in use (never below
    ``count(complaints) + 1``) and probe upward until a free ticket is found,
    giving up after ``TICKET_MAX_ATTEMPTS``. Two racing requests can still
    pick the same candidate; the unique constraint on ``complaints.ticket_id``
    rejects the loser at commit time.

Both allocators only *choose* the identifier. They run inside the caller's
session so a failed insert rolls the counter increment back with it.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .config import Settings, get_settings
from .models import Complaint, TicketCounter
from .ticket_metrics import TICKETS_ALLOCATED, TICKET_COLLISIONS

logger = logging.getLogger("app.ticketing")

COUNTER_NAME = "complaints"


class TicketAllocationError(Exception):
    """No unique ticket id could be chosen for a new complaint."""


def format_ticket_id(sequence: int, prefix: str = "TKT", width: int = 6) -> str:
    return f"{prefix}{sequence:0{width}d}"


def parse_ticket_number(ticket_id: Optional[str], prefix: str = "TKT") -> int:
    """Return the numeric part of a ticket id, or 0 if it does not match."""
    if not ticket_id or not ticket_id.startswith(prefix):
        return 0
    digits = ticket_id[len(prefix):]
    return int(digits) if digits.isdigit() else 0


async def _existing_high_water_mark(session: AsyncSession, prefix: str) -> int:
    """Highest ticket number in use, never below the number of complaints."""
    count = (await session.exec(select(func.count(Complaint.id)))).one()
    # Longer ids are larger numbers once they outgrow the zero padding
    highest = (
        await session.exec(
            select(Complaint.ticket_id)
            .where(Complaint.ticket_id.startswith(prefix))
            .order_by(func.length(Complaint.ticket_id).desc(), Complaint.ticket_id.desc())
            .limit(1)
        )
    ).first()
    return max(count, parse_ticket_number(highest, prefix))


async def _raise_counter(session: AsyncSession, name: str, value: int) -> int:
    """Lift the counter to ``value`` unless it is already at or past it."""
    connection = await session.connection()
    result = await connection.execute(
        update(TicketCounter)
        .where(TicketCounter.name == name, TicketCounter.value < value)
        .values(value=value)
    )
    return result.rowcount


async def ensure_ticket_counter(session: AsyncSession, name: str = COUNTER_NAME) -> TicketCounter:
    """Create the counter row if missing and lift it past any existing tickets."""
    high_water = await _existing_high_water_mark(session, get_settings().ticket_prefix)
    counter = await session.get(TicketCounter, name)
    if counter is not None:
        raised = await _raise_counter(session, name, high_water)
        await session.commit()
        if raised:
            await session.refresh(counter)
            logger.warning("Ticket counter %s was behind existing tickets, advanced to %d", name, counter.value)
        return counter
    counter = TicketCounter(name=name, value=high_water)
    session.add(counter)
    try:
        await session.commit()
    except IntegrityError:
        # Another worker seeded it between our read and insert
        await session.rollback()
        return await session.get(TicketCounter, name)
    logger.info("Created ticket counter %s starting at %d", name, counter.value)
    return counter


class SequenceTicketAllocator:
    strategy = "sequence"

    def __init__(self, prefix: str = "TKT", width: int = 6, counter_name: str = COUNTER_NAME):
        self.prefix = prefix
        self.width = width
        self.counter_name = counter_name

    async def _increment(self, session: AsyncSession) -> Optional[int]:
        connection = await session.connection()
        result = await connection.execute(
            update(TicketCounter)
            .where(TicketCounter.name == self.counter_name)
            .values(value=TicketCounter.value + 1)
            .returning(TicketCounter.value)
        )
        return result.scalar_one_or_none()

    async def _taken(self, session: AsyncSession, ticket_id: str) -> bool:
        found = await session.exec(select(Complaint.id).where(Complaint.ticket_id == ticket_id))
        return found.first() is not None

    async def allocate(self, session: AsyncSession) -> str:
        value = await self._increment(session)
        if value is None:
            # Counter row missing (fresh database that skipped startup). A
            # concurrent first insert loses on the primary key and the whole
            # creation fails, which the caller reports as a conflict.
            value = await _existing_high_water_mark(session, self.prefix) + 1
            session.add(TicketCounter(name=self.counter_name, value=value))
            await session.flush()
        elif await self._taken(session, format_ticket_id(value, self.prefix, self.width)):
            # Counter lags tickets written by the probe strategy or imported
            # rows. Our increment holds the counter row lock until commit.
            TICKET_COLLISIONS.inc()
            stale = value
            value = await _existing_high_water_mark(session, self.prefix) + 1
            await _raise_counter(session, self.counter_name, value)
            logger.warning("Ticket counter %s was at %d behind existing tickets, jumped to %d", self.counter_name, stale, value)
        TICKETS_ALLOCATED.labels(strategy=self.strategy).inc()
        return format_ticket_id(value, self.prefix, self.width)


class ProbeTicketAllocator:
    strategy = "probe"

    def __init__(self, prefix: str = "TKT", width: int = 6, max_attempts: int = 25):
        self.prefix = prefix
        self.width = width
        self.max_attempts = max_attempts

    async def allocate(self, session: AsyncSession) -> str:
        start = await _existing_high_water_mark(session, self.prefix) + 1
        for offset in range(self.max_attempts):
            candidate = format_ticket_id(start + offset, self.prefix, self.width)
            taken = (
                await session.exec(select(Complaint.id).where(Complaint.ticket_id == candidate))
            ).first()
            if taken is None:
                TICKETS_ALLOCATED.labels(strategy=self.strategy).inc()
                return candidate
            TICKET_COLLISIONS.inc()
            logger.debug("Ticket %s already taken, probing next", candidate)
        raise TicketAllocationError(
            f"No free ticket id after {self.max_attempts} attempts starting at {start}"
        )


def get_allocator(settings: Settings = None):
    settings = settings or get_settings()
    if settings.ticket_allocator == "probe":
        return ProbeTicketAllocator(settings.ticket_prefix, settings.ticket_width, settings.ticket_max_attempts)
    return SequenceTicketAllocator(settings.ticket_prefix, settings.ticket_width)


__all__ = [
    "TicketAllocationError",
    "SequenceTicketAllocator",
    "ProbeTicketAllocator",
    "ensure_ticket_counter",
    "format_ticket_id",
    "get_allocator",
    "parse_ticket_number",
]
