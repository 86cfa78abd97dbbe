"""Status transition engine.

Applies a status change to a task. For SEQUENTIAL tasks a completion is a
hand-off: the active link of the chain is marked done and, while links remain,
the task goes back to ``pending`` for the next person. Only the last link
completes the task itself.
"""

from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import get_settings
from taskhub.exceptions import AuthorizationError
from taskhub.models.task import (
    STATUS_PENDING,
    STATUS_PENDING_REVIEW,
    TERMINAL_STATUSES,
    Task,
    TaskAssignee,
)
from taskhub.security import Caller
from taskhub.services.assignment import normalize_status
from taskhub.services.assignment_modes import (
    Active,
    Sequential,
    mode_for,
    ordered_rows,
    responsible_employee,
)
from taskhub.services.task_store import TaskStore

logger = structlog.get_logger()


def apply_status(task: Task, status: str, now: datetime) -> None:
    """Standard update keeping ``completed_at`` set iff the status is terminal."""
    was_terminal = task.status in TERMINAL_STATUSES
    task.status = status
    if status in TERMINAL_STATUSES:
        if not (was_terminal and task.completed_at):
            task.completed_at = now
    else:
        task.completed_at = None
    task.updated_at = now


class StatusTransitionEngine:
    """Moves tasks between statuses inside a single transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = TaskStore(db)
        self.settings = get_settings()

    async def transition(
        self,
        task_id: UUID,
        new_status: str,
        caller: Caller,
        commit: bool = True,
    ) -> Task:
        """Apply ``new_status`` to a task and return it freshly loaded.

        With ``commit=False`` the change is flushed but left for the caller to
        commit; any failure still rolls the whole transaction back.
        """
        status = normalize_status(new_status)
        now = datetime.now(timezone.utc)

        try:
            task = await self.store.get_task(task_id, caller.organization_id, for_update=True)
            rows = await self.store.get_assignees(task.id, for_update=True)
            previous_status = task.status
            self._check_review_approval(task, status, caller)

            handed_to = None
            mode = mode_for(task, rows)
            if isinstance(mode, Sequential) and status in TERMINAL_STATUSES:
                handed_to = self._advance_chain(task, rows, mode, now)
            if handed_to is None:
                apply_status(task, status, now)

            if commit:
                await self.db.commit()
            else:
                await self.db.flush()
        except Exception:
            await self.db.rollback()
            raise

        if handed_to is not None:
            logger.info(
                "sequential_task_handed_off",
                task_id=str(task_id),
                completed_by=str(caller.id),
                next_assignee=str(handed_to),
            )
        else:
            logger.info(
                "task_status_changed",
                task_id=str(task_id),
                task_type=task.task_type,
                old_status=previous_status,
                new_status=status,
            )

        return await self.store.get_task_detail(task_id, caller.organization_id)

    def _check_review_approval(self, task: Task, status: str, caller: Caller) -> None:
        """Only the creator or an admin may approve work submitted for review."""
        if not self.settings.enforce_review_approval:
            return
        if task.status != STATUS_PENDING_REVIEW or status not in TERMINAL_STATUSES:
            return
        if caller.is_admin or caller.id == task.created_by:
            return
        raise AuthorizationError(
            "Only the task creator or an admin can approve a task pending review",
            details={"task_id": str(task.id)},
        )

    def _advance_chain(
        self,
        task: Task,
        rows: list[TaskAssignee],
        mode: Sequential,
        now: datetime,
    ) -> UUID | None:
        """Complete the active link; return the next assignee, or None when the chain is done."""
        state = mode.state
        if not isinstance(state, Active):
            return None

        chain = ordered_rows(rows)
        current = chain[state.index]
        if task.assigned_to != current.employee_id:
            logger.warning(
                "sequential_pointer_desync",
                task_id=str(task.id),
                assigned_to=str(task.assigned_to) if task.assigned_to else None,
                active_link=str(current.employee_id),
            )
        current.is_completed = True
        current.completed_at = now

        advanced = mode.advance()
        next_state = advanced.state
        if not isinstance(next_state, Active):
            # Final link: the whole task completes through the standard update
            task.assigned_to = responsible_employee(advanced)
            return None

        successor = chain[next_state.index]
        task.assigned_to = successor.employee_id
        task.assigned_at = now
        task.status = STATUS_PENDING
        task.completed_at = None
        task.updated_at = now
        return successor.employee_id
