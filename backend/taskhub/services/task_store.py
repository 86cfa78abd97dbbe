"""Persistence boundary over tasks, their assignee rows and comments."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, inspect, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskhub.config import get_settings
from taskhub.exceptions import BadRequestError, NotFoundError
from taskhub.models.organization import Project
from taskhub.models.task import PRIORITIES, Task, TaskAssignee, TaskComment

logger = structlog.get_logger()


def _money(value: Decimal | float | int | None) -> float:
    return float(Decimal(str(value or 0)).quantize(Decimal("0.01")))


def assignee_to_dict(row: TaskAssignee) -> dict[str, Any]:
    """Serialize an assignee row, with the employee's name when it is loaded."""
    employee = None if "employee" in inspect(row).unloaded else row.employee
    return {
        "id": row.id,
        "task_id": row.task_id,
        "employee_id": row.employee_id,
        "order": row.order,
        "is_completed": bool(row.is_completed),
        "completed_at": row.completed_at,
        "assigned_at": row.assigned_at,
        "first_name": employee.first_name if employee else None,
        "last_name": employee.last_name if employee else None,
        "email": employee.email if employee else None,
    }


def task_to_dict(
    task: Task,
    assignees: Iterable[TaskAssignee] | None = None,
    subtasks: Iterable[dict[str, Any]] | None = None,
    points: Decimal | float | None = None,
) -> dict[str, Any]:
    """Serialize a task for API responses.

    ``assignees`` defaults to the loaded relationship. ``points`` overrides the
    stored value for view-layer derived shares.
    """
    if assignees is None:
        assignees = [] if "assignees" in inspect(task).unloaded else task.assignees
    data = {
        "id": task.id,
        "description": task.description,
        "status": task.status,
        "points": _money(task.points if points is None else points),
        "priority": task.priority,
        "due_date": task.due_date,
        "project_id": task.project_id,
        "parent_id": task.parent_id,
        "type": task.task_type,
        "assigned_to": task.assigned_to,
        "assigned_at": task.assigned_at,
        "completed_at": task.completed_at,
        "created_by": task.created_by,
        "order": task.order,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
        "assignees": [assignee_to_dict(a) for a in assignees],
    }
    if subtasks is not None:
        data["subtasks"] = list(subtasks)
    return data


def comment_to_dict(comment: TaskComment) -> dict[str, Any]:
    author = None if "author" in inspect(comment).unloaded else comment.author
    return {
        "id": comment.id,
        "task_id": comment.task_id,
        "author_id": comment.author_id,
        "user_name": author.full_name if author else None,
        "content": comment.content,
        "created_at": comment.created_at,
    }


def organization_projects(organization_id: UUID):
    """Subquery of project ids owned by an organization."""
    return select(Project.id).where(Project.organization_id == organization_id)


class TaskStore:
    """Reads and writes task records scoped to one organization at a time."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_project(self, project_id: UUID, organization_id: UUID) -> Project:
        """Validate that a project belongs to the caller's organization."""
        result = await self.db.execute(
            select(Project).where(
                Project.id == project_id,
                Project.organization_id == organization_id,
            )
        )
        project = result.scalar_one_or_none()
        if not project:
            raise NotFoundError("Project not found", details={"project_id": str(project_id)})
        return project

    async def get_task(
        self,
        task_id: UUID,
        organization_id: UUID,
        for_update: bool = False,
    ) -> Task:
        """Load a task of the organization, optionally locking its row."""
        query = select(Task).where(
            Task.id == task_id,
            Task.project_id.in_(organization_projects(organization_id)),
        )
        if for_update:
            query = self._locked(query)
        result = await self.db.execute(query)
        task = result.scalar_one_or_none()
        if not task:
            raise NotFoundError("Task not found", details={"task_id": str(task_id)})
        return task

    async def get_task_detail(self, task_id: UUID, organization_id: UUID) -> Task:
        """Load a task with subtasks and assignee rows freshly populated."""
        result = await self.db.execute(
            select(Task)
            .options(
                selectinload(Task.subtasks),
                selectinload(Task.assignees).selectinload(TaskAssignee.employee),
            )
            .where(
                Task.id == task_id,
                Task.project_id.in_(organization_projects(organization_id)),
            )
            .execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if not task:
            raise NotFoundError("Task not found", details={"task_id": str(task_id)})
        return task

    async def get_assignees(self, task_id: UUID, for_update: bool = False) -> list[TaskAssignee]:
        """Assignee rows of a task in chain order."""
        query = (
            select(TaskAssignee)
            .where(TaskAssignee.task_id == task_id)
            .order_by(TaskAssignee.order.asc(), TaskAssignee.assigned_at.asc())
        )
        if for_update:
            query = self._locked(query)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    def _locked(self, query):
        query = query.execution_options(populate_existing=True)
        if self.settings.lock_rows_on_transition:
            query = query.with_for_update()
        return query

    async def list_project_tasks(self, project_id: UUID, organization_id: UUID) -> Sequence[Task]:
        """All tasks of a project, newest first."""
        await self.get_project(project_id, organization_id)
        result = await self.db.execute(
            select(Task)
            .where(Task.project_id == project_id)
            .order_by(Task.created_at.desc(), Task.id)
        )
        return result.scalars().all()

    async def list_employee_tasks(self, employee_id: UUID, organization_id: UUID) -> Sequence[Task]:
        """Tasks an employee is responsible for, most recently assigned first."""
        is_assignee = (
            select(TaskAssignee.id)
            .where(
                TaskAssignee.task_id == Task.id,
                TaskAssignee.employee_id == employee_id,
            )
            .exists()
        )
        result = await self.db.execute(
            select(Task)
            .where(
                Task.project_id.in_(organization_projects(organization_id)),
                or_(Task.assigned_to == employee_id, is_assignee),
            )
            .order_by(Task.assigned_at.desc().nulls_last(), Task.updated_at.desc())
        )
        return result.scalars().all()

    async def descendant_ids(self, task_id: UUID) -> list[UUID]:
        """Ids of every subtask below a task, breadth first."""
        found: list[UUID] = []
        frontier = [task_id]
        while frontier:
            result = await self.db.execute(select(Task.id).where(Task.parent_id.in_(frontier)))
            frontier = [row[0] for row in result.all() if row[0] not in found]
            found.extend(frontier)
        return found

    # =========================================================================
    # Mutations
    # =========================================================================

    async def update_fields(
        self,
        task_id: UUID,
        organization_id: UUID,
        values: dict[str, Any],
        commit: bool = True,
    ) -> Task:
        """Update plain task attributes that carry no assignment semantics.

        With ``commit=False`` the changes are only flushed so the caller can
        finish a larger unit of work in the same transaction.
        """
        allowed = {"description", "points", "priority", "due_date", "order"}
        unknown = set(values) - allowed
        if unknown:
            raise BadRequestError("Fields cannot be updated here", details=sorted(unknown))
        if "description" in values and not (values["description"] or "").strip():
            raise BadRequestError("description must not be empty")
        if "points" in values and (values["points"] is None or Decimal(str(values["points"])) < 0):
            raise BadRequestError("points must be a non-negative number")
        if "priority" in values and values["priority"] not in PRIORITIES:
            raise BadRequestError(f"priority must be one of {', '.join(PRIORITIES)}")

        try:
            task = await self.get_task(task_id, organization_id)
            for field, value in values.items():
                setattr(task, field, value)
            if commit:
                await self.db.commit()
            else:
                await self.db.flush()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("task_updated", task_id=str(task_id), fields=sorted(values))
        return task

    async def reorder(self, positions: list[tuple[UUID, int]], organization_id: UUID) -> int:
        """Persist manual display order for a batch of tasks."""
        updated = 0
        try:
            for task_id, position in positions:
                result = await self.db.execute(
                    update(Task)
                    .where(
                        Task.id == task_id,
                        Task.project_id.in_(organization_projects(organization_id)),
                    )
                    .values(order=position, updated_at=datetime.now(timezone.utc))
                    .execution_options(synchronize_session=False)
                )
                updated += result.rowcount
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("tasks_reordered", requested=len(positions), updated=updated)
        return updated

    async def delete_task(self, task_id: UUID, organization_id: UUID) -> None:
        """Delete a task with its comments and subtasks, children first."""
        try:
            await self.get_task(task_id, organization_id, for_update=True)
            subtask_ids = await self.descendant_ids(task_id)

            await self.db.execute(delete(TaskComment).where(TaskComment.task_id == task_id))
            if subtask_ids:
                await self.db.execute(
                    delete(TaskComment).where(TaskComment.task_id.in_(subtask_ids))
                )
            await self.db.execute(
                delete(TaskAssignee).where(TaskAssignee.task_id.in_([task_id, *subtask_ids]))
            )
            # Deepest subtasks first so no row ever points at a deleted parent
            for subtask_id in reversed(subtask_ids):
                await self.db.execute(delete(Task).where(Task.id == subtask_id))
            await self.db.execute(delete(Task).where(Task.id == task_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("task_deleted", task_id=str(task_id), subtasks_deleted=len(subtask_ids))

    # =========================================================================
    # Comments
    # =========================================================================

    async def add_comment(
        self,
        task_id: UUID,
        author_id: UUID,
        organization_id: UUID,
        content: str,
    ) -> TaskComment:
        if not (content or "").strip():
            raise BadRequestError("content must not be empty")
        await self.get_task(task_id, organization_id)

        comment = TaskComment(task_id=task_id, author_id=author_id, content=content)
        self.db.add(comment)
        await self.db.commit()

        result = await self.db.execute(
            select(TaskComment)
            .options(selectinload(TaskComment.author))
            .where(TaskComment.id == comment.id)
            .execution_options(populate_existing=True)
        )
        comment = result.scalar_one()
        logger.info("comment_created", task_id=str(task_id), comment_id=str(comment.id))
        return comment

    async def list_comments(self, task_id: UUID, organization_id: UUID) -> Sequence[TaskComment]:
        await self.get_task(task_id, organization_id)
        result = await self.db.execute(
            select(TaskComment)
            .options(selectinload(TaskComment.author))
            .where(TaskComment.task_id == task_id)
            .order_by(TaskComment.created_at.desc())
        )
        return result.scalars().all()
