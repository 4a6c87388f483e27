"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

OPS_INTERACTIONS_TOTAL = "ops_interactions_total"
OPS_STATUS_TRANSITIONS_TOTAL = "ops_status_transitions_total"
OPS_INTERACTION_DURATION_SECONDS = "ops_interaction_duration_seconds"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=OPS_INTERACTIONS_TOTAL,
        metric_type="counter",
        description="Simulated OPS interactions by action and logged outcome.",
        label_names=("action", "outcome"),
    ),
    MetricDefinition(
        name=OPS_STATUS_TRANSITIONS_TOTAL,
        metric_type="counter",
        description="Ticket status changes applied from OPS outcomes.",
        label_names=("from_status", "to_status"),
    ),
    MetricDefinition(
        name=OPS_INTERACTION_DURATION_SECONDS,
        metric_type="distribution",
        description="Wall time spent handling an OPS interaction, persistence included.",
        label_names=("action",),
    ),
)
