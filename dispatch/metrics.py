"""
Prometheus metrics: order lifecycle (API), assignment contention, event publication.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders created by businesses",
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions applied",
    ["status"],
)
transitions_rejected_total = Counter(
    "transitions_rejected_total",
    "Total status changes rejected due to invalid order lifecycle transition",
    ["current_state", "attempted_state"],
)

# Assignment: successes and one-active-order conflicts (including lost races)
assignments_total = Counter(
    "assignments_total",
    "Total orders assigned to riders",
)
assignment_conflicts_total = Counter(
    "assignment_conflicts_total",
    "Total assignments rejected because the rider or order was busy",
)

rider_location_updates_total = Counter(
    "rider_location_updates_total",
    "Total rider location updates received",
)

events_published_total = Counter(
    "events_published_total",
    "Total real-time order events published",
    ["kind"],
)
events_publish_failed_total = Counter(
    "events_publish_failed_total",
    "Total real-time order events that failed to publish (dropped)",
    ["kind"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
