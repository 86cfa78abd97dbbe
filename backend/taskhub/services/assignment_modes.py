"""Assignment modes as a tagged union.

A task is owned in exactly one of three ways:

* :class:`Single` - one responsible person (or nobody yet).
* :class:`Shared` - a parallel pool; every member earns ``pool / len(members)``.
* :class:`Sequential` - an ordered hand-off chain; one link is active at a time.

The mode is derived from the stored ``TaskAssignee`` rows rather than trusted
from ``Task.assigned_to``, so the pointer can always be recomputed from the
chain. The sequential chain is a small state machine::

    Active(0) -> Active(1) -> ... -> Active(n - 1) -> Done

with :meth:`Sequential.advance` as its only transition.
"""

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union
from uuid import UUID

from taskhub.exceptions import ConflictError
from taskhub.models.task import TYPE_SEQUENTIAL, TYPE_SHARED, Task, TaskAssignee

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Single:
    assignee_id: UUID | None


@dataclass(frozen=True)
class Shared:
    pool: Decimal
    members: tuple[UUID, ...]

    def share(self) -> Decimal:
        """Points credited to each member, rounded to cents."""
        return split_points(self.pool, len(self.members))


@dataclass(frozen=True)
class Active:
    index: int


@dataclass(frozen=True)
class Done:
    pass


ChainState = Union[Active, Done]


@dataclass(frozen=True)
class ChainLink:
    employee_id: UUID
    is_completed: bool = False


@dataclass(frozen=True)
class Sequential:
    chain: tuple[ChainLink, ...]

    @property
    def state(self) -> ChainState:
        for index, link in enumerate(self.chain):
            if not link.is_completed:
                return Active(index)
        return Done()

    @property
    def active_employee(self) -> UUID | None:
        state = self.state
        if isinstance(state, Active):
            return self.chain[state.index].employee_id
        return None

    def advance(self) -> "Sequential":
        """Complete the active link; the next incomplete link becomes active."""
        state = self.state
        if isinstance(state, Done):
            raise ConflictError("Sequential chain is already finished")
        links = list(self.chain)
        links[state.index] = replace(links[state.index], is_completed=True)
        return Sequential(chain=tuple(links))


AssignmentMode = Union[Single, Shared, Sequential]


def ordered_rows(rows: Iterable[TaskAssignee]) -> list[TaskAssignee]:
    """Assignee rows in chain order; unordered (SHARED) rows last."""
    return sorted(rows, key=lambda row: (row.order is None, row.order or 0))


def mode_for(task: Task, rows: Iterable[TaskAssignee]) -> AssignmentMode:
    """Build the assignment mode of ``task`` from its assignee rows."""
    rows = ordered_rows(rows)
    if task.task_type == TYPE_SEQUENTIAL:
        return Sequential(
            chain=tuple(ChainLink(row.employee_id, bool(row.is_completed)) for row in rows)
        )
    if task.task_type == TYPE_SHARED:
        return Shared(
            pool=Decimal(str(task.points or 0)),
            members=tuple(row.employee_id for row in rows),
        )
    if rows:
        return Single(assignee_id=rows[0].employee_id)
    return Single(assignee_id=task.assigned_to)


def responsible_employee(mode: AssignmentMode) -> UUID | None:
    """Value ``Task.assigned_to`` must hold for the given mode."""
    if isinstance(mode, Sequential):
        state = mode.state
        if isinstance(state, Done):
            # The last link keeps the pointer once the chain is finished
            return mode.chain[-1].employee_id if mode.chain else None
        return mode.active_employee
    if isinstance(mode, Single):
        return mode.assignee_id
    return None


def split_points(pool: Decimal | int | float, count: int) -> Decimal:
    """Divide a points pool between ``count`` people, rounded to cents."""
    pool = Decimal(str(pool or 0))
    if count <= 0:
        return pool
    return (pool / count).quantize(CENT, rounding=ROUND_HALF_UP)
