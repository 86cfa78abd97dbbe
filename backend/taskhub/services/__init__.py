"""Business logic services."""

from taskhub.services.aggregation import AggregationQuery, TaskFilters
from taskhub.services.assignment import AssignmentEngine
from taskhub.services.task_store import TaskStore
from taskhub.services.transition import StatusTransitionEngine

__all__ = [
    "AggregationQuery",
    "AssignmentEngine",
    "StatusTransitionEngine",
    "TaskFilters",
    "TaskStore",
]
