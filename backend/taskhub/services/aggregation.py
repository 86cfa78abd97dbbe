"""Dashboard statistics and paginated task listings."""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, contains_eager, noload

from taskhub.config import get_settings
from taskhub.exceptions import BadRequestError
from taskhub.models.task import (
    MULTI_ASSIGNEE_TYPES,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_PENDING_REVIEW,
    TERMINAL_STATUSES,
    Task,
    TaskAssignee,
)
from taskhub.security import Caller
from taskhub.services.assignment import normalize_status
from taskhub.services.assignment_modes import Shared, mode_for
from taskhub.services.task_store import organization_projects, task_to_dict

logger = structlog.get_logger()

DATE_SCOPES = ("today", "week", "overdue")

PRIORITY_RANK = case(
    {"LOW": 1, "MEDIUM": 2, "HIGH": 3},
    value=Task.priority,
    else_=0,
)

SORT_COLUMNS = {
    "createdAt": Task.created_at,
    "dueDate": Task.due_date,
    "status": Task.status,
    "points": Task.points,
    "priority": PRIORITY_RANK,
    "description": Task.description,
    "order": Task.order,
}


@dataclass
class TaskFilters:
    """Context filters for a listing; ``status`` only narrows the rows, never the stats."""

    project_id: UUID | None = None
    assigned_to: UUID | None = None
    date_scope: str | None = None
    status: str | None = None


def assigned_to_employee(employee_id: UUID):
    """Employee holds the pointer or an assignee row of the task."""
    return or_(
        Task.assigned_to == employee_id,
        select(TaskAssignee.id)
        .where(
            TaskAssignee.task_id == Task.id,
            TaskAssignee.employee_id == employee_id,
        )
        .exists(),
    )


def visible_to(caller: Caller):
    """Visibility rule: admins see the organization, users see their own work."""
    in_organization = Task.project_id.in_(organization_projects(caller.organization_id))
    if caller.is_admin:
        return in_organization
    is_group_member = and_(
        Task.task_type.in_(MULTI_ASSIGNEE_TYPES),
        select(TaskAssignee.id)
        .where(
            TaskAssignee.task_id == Task.id,
            TaskAssignee.employee_id == caller.id,
        )
        .exists(),
    )
    return and_(
        in_organization,
        or_(
            Task.assigned_to == caller.id,
            Task.created_by == caller.id,
            is_group_member,
        ),
    )


def date_scope_condition(scope: str, today: date):
    if scope == "today":
        return Task.due_date == today
    if scope == "week":
        monday = today - timedelta(days=today.weekday())
        return Task.due_date.between(monday, monday + timedelta(days=6))
    if scope == "overdue":
        return and_(Task.due_date < today, Task.status.notin_(tuple(TERMINAL_STATUSES)))
    raise BadRequestError(
        f"date must be one of {', '.join(DATE_SCOPES)}",
        details={"date": scope},
    )


def status_matches(status: str):
    """Root task qualifies when it, or any of its subtasks, has ``status``."""
    subtask = aliased(Task)
    return or_(
        Task.status == status,
        select(subtask.id)
        .where(subtask.parent_id == Task.id, subtask.status == status)
        .exists(),
    )


class AggregationQuery:
    """Computes stats and paginated root-task listings for dashboards and boards."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def list_tasks(
        self,
        caller: Caller,
        filters: TaskFilters | None = None,
        page: int = 1,
        limit: int | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> dict[str, Any]:
        """List root tasks with subtasks and assignees attached.

        Returns ``tasks``, ``pagination``, ``stats`` (all matching tasks,
        subtasks included) and ``root_stats`` (root tasks only). Both stats
        ignore the status filter so summary cards stay stable across tabs.
        """
        filters = filters or TaskFilters()
        page = max(page, 1)
        limit = limit or self.settings.default_page_size
        if limit < 1 or limit > self.settings.max_page_size:
            raise BadRequestError(
                f"limit must be between 1 and {self.settings.max_page_size}",
                details={"limit": limit},
            )
        status = normalize_status(filters.status) if filters.status else None
        ordering = self._ordering(sort_by, sort_order)

        context = self._context(caller, filters)
        roots = [*context, Task.parent_id.is_(None)]

        stats = await self._stats(context)
        root_stats = await self._stats(roots)

        listing = [*roots, status_matches(status)] if status else roots
        total_result = await self.db.execute(
            select(func.count(Task.id)).where(*listing)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(Task)
            .options(noload(Task.assignees))
            .where(*listing)
            .order_by(*ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        tasks = list(result.scalars().all())

        subtasks_by_parent = await self._subtasks_for([t.id for t in tasks])
        all_ids = [t.id for t in tasks] + [
            s.id for children in subtasks_by_parent.values() for s in children
        ]
        assignees_by_task = await self._assignees_for(all_ids)

        def serialize(task: Task, subtasks: list[dict[str, Any]] | None = None) -> dict[str, Any]:
            assignees = assignees_by_task.get(task.id, [])
            points = None
            if filters.assigned_to is not None:
                mode = mode_for(task, assignees)
                if isinstance(mode, Shared):
                    points = mode.share()
            return task_to_dict(task, assignees=assignees, subtasks=subtasks, points=points)

        items = [
            serialize(task, [serialize(s) for s in subtasks_by_parent.get(task.id, [])])
            for task in tasks
        ]

        logger.debug(
            "tasks_listed",
            caller_id=str(caller.id),
            status=status,
            page=page,
            returned=len(items),
            total=total,
        )

        return {
            "tasks": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": (total + limit - 1) // limit,
            },
            "stats": stats,
            "root_stats": root_stats,
        }

    def _context(self, caller: Caller, filters: TaskFilters) -> list:
        conditions = [visible_to(caller)]
        if filters.project_id is not None:
            conditions.append(Task.project_id == filters.project_id)
        if filters.assigned_to is not None:
            conditions.append(assigned_to_employee(filters.assigned_to))
        if filters.date_scope:
            today = datetime.now(timezone.utc).date()
            conditions.append(date_scope_condition(filters.date_scope, today))
        return conditions

    def _ordering(self, sort_by: str | None, sort_order: str | None) -> list:
        if not sort_by:
            return [Task.order.asc(), Task.created_at.desc(), Task.id.asc()]
        column = SORT_COLUMNS.get(sort_by)
        if column is None:
            raise BadRequestError(
                f"sortBy must be one of {', '.join(SORT_COLUMNS)}",
                details={"sortBy": sort_by},
            )
        direction = (sort_order or "desc").lower()
        if direction not in ("asc", "desc"):
            raise BadRequestError("sortOrder must be asc or desc", details={"sortOrder": sort_order})
        ordered = column.asc() if direction == "asc" else column.desc()
        if sort_by == "dueDate":
            ordered = ordered.nulls_last()
        return [ordered, Task.id.asc()]

    async def _stats(self, conditions: list) -> dict[str, Any]:
        today_start = datetime.combine(
            datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc
        )
        completed_today = and_(
            Task.status == STATUS_COMPLETED,
            Task.completed_at >= today_start,
        )
        result = await self.db.execute(
            select(
                func.count(Task.id),
                func.count(case((Task.status == STATUS_PENDING, 1))),
                func.count(case((Task.status == STATUS_IN_PROGRESS, 1))),
                func.count(case((Task.status == STATUS_PENDING_REVIEW, 1))),
                func.count(case((Task.status == STATUS_COMPLETED, 1))),
                func.coalesce(func.sum(case((completed_today, Task.points), else_=0)), 0),
            ).where(*conditions)
        )
        total, pending, in_progress, pending_review, completed, points_today = result.one()
        return {
            "total_tasks": total or 0,
            "pending_tasks": pending or 0,
            "in_progress_tasks": in_progress or 0,
            "pending_review_tasks": pending_review or 0,
            "completed_tasks": completed or 0,
            "points_today": float(points_today or 0),
        }

    async def _subtasks_for(self, parent_ids: list[UUID]) -> dict[UUID, list[Task]]:
        grouped: dict[UUID, list[Task]] = defaultdict(list)
        if not parent_ids:
            return grouped
        result = await self.db.execute(
            select(Task)
            .options(noload(Task.assignees))
            .where(Task.parent_id.in_(parent_ids))
            .order_by(Task.order.asc(), Task.created_at.asc())
        )
        for subtask in result.scalars().all():
            grouped[subtask.parent_id].append(subtask)
        return grouped

    async def _assignees_for(self, task_ids: list[UUID]) -> dict[UUID, list[TaskAssignee]]:
        grouped: dict[UUID, list[TaskAssignee]] = defaultdict(list)
        if not task_ids:
            return grouped
        result = await self.db.execute(
            select(TaskAssignee)
            .outerjoin(TaskAssignee.employee)
            .options(contains_eager(TaskAssignee.employee))
            .where(TaskAssignee.task_id.in_(task_ids))
            .order_by(TaskAssignee.order.asc(), TaskAssignee.assigned_at.asc())
        )
        for row in result.scalars().all():
            grouped[row.task_id].append(row)
        return grouped
