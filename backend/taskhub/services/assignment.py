"""Assignment engine: who is responsible for a task, and in which mode."""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.exceptions import BadRequestError, ConflictError
from taskhub.models.task import (
    MULTI_ASSIGNEE_TYPES,
    PRIORITIES,
    STATUS_ALIASES,
    STATUS_PENDING,
    TASK_STATUSES,
    TASK_TYPES,
    TERMINAL_STATUSES,
    TYPE_SHARED,
    TYPE_SINGLE,
    Task,
    TaskAssignee,
)
from taskhub.security import Caller
from taskhub.services.assignment_modes import (
    Active,
    Sequential,
    Shared,
    Single,
    mode_for,
    ordered_rows,
)
from taskhub.services.task_store import TaskStore

logger = structlog.get_logger()


def normalize_status(value: str | None) -> str:
    """Map an incoming status to a stored one, accepting ``done`` for ``completed``."""
    status = STATUS_ALIASES.get((value or "").strip().lower(), (value or "").strip().lower())
    if status not in TASK_STATUSES:
        raise BadRequestError(
            f"status must be one of {', '.join(TASK_STATUSES)}",
            details={"status": value},
        )
    return status


def resolve_type(requested_type: str | None, assignee_count: int) -> str:
    """Pick the assignment mode for a new task.

    Zero or one assignee is always SINGLE; more than one requires the caller to
    say whether the group works in parallel (SHARED) or in turn (SEQUENTIAL).
    """
    if requested_type is not None and requested_type.upper() not in TASK_TYPES:
        raise BadRequestError(
            f"type must be one of {', '.join(TASK_TYPES)}",
            details={"type": requested_type},
        )
    if assignee_count <= 1:
        return TYPE_SINGLE
    if requested_type is None or requested_type.upper() not in MULTI_ASSIGNEE_TYPES:
        raise BadRequestError(
            "type must be SHARED or SEQUENTIAL when more than one assignee is given",
            details={"type": requested_type, "assignees": assignee_count},
        )
    return requested_type.upper()


def _points(value: Decimal | float | int | str | None) -> Decimal:
    try:
        points = Decimal(str(value if value is not None else 0))
    except InvalidOperation as exc:
        raise BadRequestError("points must be a number", details={"points": value}) from exc
    if not points.is_finite() or points < 0:
        raise BadRequestError("points must be a non-negative number", details={"points": value})
    return points.quantize(Decimal("0.01"))


class AssignmentEngine:
    """Creates tasks with their assignee rows and moves ownership between people."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = TaskStore(db)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create(
        self,
        caller: Caller,
        description: str,
        points: Decimal | float | int | None,
        project_id: UUID,
        priority: str = "MEDIUM",
        due_date: date | None = None,
        parent_id: UUID | None = None,
        requested_type: str | None = None,
        assignees: list[UUID] | None = None,
        assigned_to: UUID | None = None,
        status: str | None = None,
    ) -> Task:
        """Create a task and its assignee rows in one transaction."""
        if not description or not description.strip():
            raise BadRequestError("description is required")
        if priority not in PRIORITIES:
            raise BadRequestError(
                f"priority must be one of {', '.join(PRIORITIES)}",
                details={"priority": priority},
            )
        points = _points(points)
        status = normalize_status(status or STATUS_PENDING)

        people = list(assignees or [])
        if not people and assigned_to is not None:
            people = [assigned_to]
        if not people and not caller.is_admin:
            # Self-service: a USER creating an unassigned task owns it
            people = [caller.id]
        if len(set(people)) != len(people):
            raise BadRequestError("assignees must not contain duplicates")

        task_type = resolve_type(requested_type, len(people))
        now = datetime.now(timezone.utc)

        try:
            await self.store.get_project(project_id, caller.organization_id)
            if parent_id is not None:
                parent = await self.store.get_task(parent_id, caller.organization_id)
                if parent.project_id != project_id:
                    raise BadRequestError(
                        "Subtask must belong to the same project as its parent",
                        details={"parent_id": str(parent_id)},
                    )

            max_order = await self.db.execute(
                select(func.max(Task.order)).where(
                    Task.project_id == project_id,
                    Task.parent_id.is_(None) if parent_id is None else Task.parent_id == parent_id,
                )
            )

            task = Task(
                description=description.strip(),
                status=status,
                points=points,
                priority=priority,
                due_date=due_date,
                project_id=project_id,
                parent_id=parent_id,
                task_type=task_type,
                created_by=caller.id,
                order=(max_order.scalar() or 0) + 1,
                completed_at=now if status in TERMINAL_STATUSES else None,
            )
            if task_type != TYPE_SHARED and people:
                task.assigned_to = people[0]
                task.assigned_at = now

            task.assignees = [
                TaskAssignee(
                    employee_id=employee_id,
                    order=None if task_type == TYPE_SHARED else position,
                    is_completed=False,
                    assigned_at=now,
                )
                for position, employee_id in enumerate(people, start=1)
            ]
            self.db.add(task)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "task_created",
            task_id=str(task.id),
            project_id=str(project_id),
            task_type=task_type,
            assignee_count=len(people),
            parent_id=str(parent_id) if parent_id else None,
        )

        return await self.store.get_task_detail(task.id, caller.organization_id)

    # =========================================================================
    # Direct reassignment
    # =========================================================================

    async def reassign(
        self,
        task_id: UUID,
        employee_id: UUID,
        caller: Caller,
        commit: bool = True,
    ) -> Task:
        """Hand a task to another person, keeping pointer and rows in sync.

        SINGLE tasks get their one assignee row rewritten. SEQUENTIAL tasks hand
        the currently active link over. SHARED tasks have no single owner and
        are rejected.
        """
        now = datetime.now(timezone.utc)
        try:
            task = await self.store.get_task(task_id, caller.organization_id, for_update=True)
            rows = await self.store.get_assignees(task.id, for_update=True)
            mode = mode_for(task, rows)

            if isinstance(mode, Shared):
                raise BadRequestError(
                    "Shared tasks have no single owner to reassign",
                    details={"task_id": str(task_id)},
                )

            if isinstance(mode, Sequential):
                state = mode.state
                if not isinstance(state, Active):
                    raise BadRequestError(
                        "Sequential chain is finished; nothing to reassign",
                        details={"task_id": str(task_id)},
                    )
                active_row = ordered_rows(rows)[state.index]
                if any(r.employee_id == employee_id for r in rows if r is not active_row):
                    raise ConflictError(
                        "Employee already holds another link of this chain",
                        details={"employee_id": str(employee_id)},
                    )
                active_row.employee_id = employee_id
                active_row.assigned_at = now

            elif isinstance(mode, Single):
                if rows:
                    for extra in rows[1:]:
                        await self.db.delete(extra)
                    await self.db.flush()
                    rows[0].employee_id = employee_id
                    rows[0].assigned_at = now
                    rows[0].order = 1
                else:
                    self.db.add(
                        TaskAssignee(
                            task_id=task.id,
                            employee_id=employee_id,
                            order=1,
                            is_completed=False,
                            assigned_at=now,
                        )
                    )

            previous = task.assigned_to
            task.assigned_to = employee_id
            task.assigned_at = now
            if commit:
                await self.db.commit()
            else:
                await self.db.flush()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "task_reassigned",
            task_id=str(task_id),
            task_type=task.task_type,
            previous_assignee=str(previous) if previous else None,
            new_assignee=str(employee_id),
        )

        return await self.store.get_task_detail(task_id, caller.organization_id)
