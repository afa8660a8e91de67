"""History reconstruction engine.

Replays newest-first audit log events to reconstruct, per instance, where it
ran (placements) and how it was configured (configuration histories).
"""

from license_tracker.history.configuration import ConfigurationChange, ConfigurationHistory
from license_tracker.history.instance import InstanceHistoryBuilder
from license_tracker.history.instance_set import (
    EventOrder,
    InstanceSetHistory,
    InstanceSetHistoryBuilder,
)
from license_tracker.history.placement import (
    InstanceState,
    Placement,
    PlacementHistory,
    PlacementHistoryBuilder,
    PlacementHistoryState,
    Tenancy,
)

__all__ = [
    "ConfigurationChange",
    "ConfigurationHistory",
    "EventOrder",
    "InstanceHistoryBuilder",
    "InstanceSetHistory",
    "InstanceSetHistoryBuilder",
    "InstanceState",
    "Placement",
    "PlacementHistory",
    "PlacementHistoryBuilder",
    "PlacementHistoryState",
    "Tenancy",
]
