"""Complaint status rules and the side effects each transition carries.

These helpers only touch the in-memory ``Complaint``; callers persist it.
Checks return ``(allowed, http_code, message)`` so route handlers can turn a
refusal straight into an ``HTTPException``.
"""

from datetime import datetime
from typing import Optional, Tuple

from .models import Complaint, utcnow

PENDING = "pending"
IN_PROGRESS = "in-progress"
RESOLVED = "resolved"
REJECTED = "rejected"

STATUSES = (PENDING, IN_PROGRESS, RESOLVED, REJECTED)

# Status-update transitions. Resolved and rejected are terminal for this
# path; only an explicit assignment can move a complaint out of them.
ALLOWED_TRANSITIONS = {
    PENDING: {PENDING, IN_PROGRESS, RESOLVED, REJECTED},
    IN_PROGRESS: {IN_PROGRESS, RESOLVED, REJECTED},
    RESOLVED: set(),
    REJECTED: set(),
}

MIN_RATING = 1
MAX_RATING = 5


def can_transition(old_status: str, new_status: str) -> Tuple[bool, int, str]:
    if new_status not in STATUSES:
        return False, 400, f"Invalid status. Allowed: {', '.join(STATUSES)}"
    old = old_status or PENDING
    if new_status not in ALLOWED_TRANSITIONS.get(old, set()):
        return False, 400, f"Invalid status transition from {old} to {new_status}"
    return True, 200, ""


def apply_status(
    complaint: Complaint,
    new_status: str,
    actor_id: str,
    notes: Optional[str] = None,
    solution: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Complaint:
    """Set ``new_status`` and apply its side effects. Assumes can_transition passed."""
    now = now or utcnow()
    complaint.status = new_status

    if new_status == IN_PROGRESS and not complaint.assigned_to:
        complaint.assigned_to = actor_id

    if new_status == RESOLVED:
        complaint.resolved_by = actor_id
        complaint.resolved_at = now
        complaint.resolution_notes = notes or ""
        complaint.resolution_solution = solution or ""

    complaint.updated_at = now
    return complaint


def assign(complaint: Complaint, admin_id: str, now: Optional[datetime] = None) -> Complaint:
    """Force ``assigned_to`` and move the complaint to in-progress.

    Works from any status. A resolution record left by an earlier resolve is
    kept as-is.
    """
    now = now or utcnow()
    complaint.assigned_to = admin_id
    complaint.status = IN_PROGRESS
    complaint.updated_at = now
    return complaint


def can_view(complaint: Complaint, role: str, principal_id: str) -> Tuple[bool, int, str]:
    if role == "admin":
        return True, 200, ""
    if role == "student" and complaint.student_id == principal_id:
        return True, 200, ""
    return False, 403, "Access denied"


def can_rate(complaint: Complaint, student_id: str) -> Tuple[bool, int, str]:
    if complaint.student_id != student_id:
        return False, 403, "Access denied"
    if complaint.status != RESOLVED:
        return False, 400, "Only resolved complaints can be rated"
    return True, 200, ""


def check_score(score) -> Tuple[bool, int, str]:
    if isinstance(score, bool) or not isinstance(score, int) or not MIN_RATING <= score <= MAX_RATING:
        return False, 400, f"Rating must be between {MIN_RATING} and {MAX_RATING}"
    return True, 200, ""


def rate(
    complaint: Complaint,
    score: int,
    feedback: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Complaint:
    # A later rating replaces the earlier one
    now = now or utcnow()
    complaint.rating_score = score
    complaint.rating_feedback = feedback or ""
    complaint.rated_at = now
    complaint.updated_at = now
    return complaint
