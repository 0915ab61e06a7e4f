"""Prometheus metrics shared by ticket allocation and lifecycle modules."""

from prometheus_client import Counter


TICKETS_ALLOCATED = Counter(
    "ticket_allocations_total",
    "Total number of ticket ids handed out, by allocation strategy",
    ["strategy"],
)
TICKET_COLLISIONS = Counter(
    "ticket_allocation_collisions_total",
    "Candidate ticket ids that were already taken when allocated",
)
TICKET_CONFLICTS = Counter(
    "ticket_allocation_conflicts_total",
    "Complaint creations that failed because no unique ticket id could be committed",
)
COMPLAINT_TRANSITIONS = Counter(
    "complaint_status_transitions_total",
    "Applied complaint status changes",
    ["from_status", "to_status"],
)
STALE_WRITES = Counter(
    "complaint_stale_writes_total",
    "Lifecycle writes rejected because the complaint changed since it was read",
)
