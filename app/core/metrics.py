"""Prometheus metrics for the scheduling workflow."""

from prometheus_client import Counter

ORPHANED_APPOINTMENTS = Counter(
    "appointment_orphaned_records_total",
    "Appointments saved locally whose calendar mirror could not be written",
)

SCHEDULING_CONFLICTS = Counter(
    "appointment_conflicts_total",
    "Create or reschedule requests rejected because of an overlap",
    ["source"],
)
