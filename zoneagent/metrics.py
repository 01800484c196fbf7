"""Prometheus metrics for zone provisioning.

Exposes durations of zone lifecycle operations and of the individual
remote commands they issue. Metrics live in the default registry, so a
host process serving prometheus_client exposition picks them up.
"""
from __future__ import annotations

from prometheus_client import Counter, Histogram


zone_operation_duration = Histogram(
    "zoneagent_zone_operation_seconds",
    "Duration of zone lifecycle operations",
    ["operation", "status"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, float("inf")),
)

remote_command_duration = Histogram(
    "zoneagent_remote_command_seconds",
    "Duration of remote zone commands",
    ["kind", "status"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120, float("inf")),
)

zone_operation_errors = Counter(
    "zoneagent_zone_operation_errors_total",
    "Total zone operation errors",
    ["operation"],
)
