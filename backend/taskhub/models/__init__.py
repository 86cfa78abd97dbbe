"""SQLAlchemy models package."""

from taskhub.models.organization import Employee, Organization, Project
from taskhub.models.task import Task, TaskAssignee, TaskComment

__all__ = [
    "Employee",
    "Organization",
    "Project",
    "Task",
    "TaskAssignee",
    "TaskComment",
]
