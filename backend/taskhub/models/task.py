"""Task, TaskAssignee and TaskComment models."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub.db.base import BaseModel
from taskhub.models.organization import Employee

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in-progress"
STATUS_PENDING_REVIEW = "pending-review"
STATUS_COMPLETED = "completed"
TASK_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_PENDING_REVIEW)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED})

# Accepted on input, never stored
STATUS_ALIASES = {"done": STATUS_COMPLETED}

TYPE_SINGLE = "SINGLE"
TYPE_SHARED = "SHARED"
TYPE_SEQUENTIAL = "SEQUENTIAL"
TASK_TYPES = (TYPE_SINGLE, TYPE_SHARED, TYPE_SEQUENTIAL)
MULTI_ASSIGNEE_TYPES = (TYPE_SHARED, TYPE_SEQUENTIAL)

PRIORITIES = ("LOW", "MEDIUM", "HIGH")


class Task(BaseModel):
    """Unit of work inside a project; a task with a parent is a subtask."""

    __tablename__ = "tasks"

    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=STATUS_PENDING, index=True
    )  # pending, in-progress, completed, pending-review
    points: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )  # total pool for SHARED tasks
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    task_type: Mapped[str] = mapped_column(
        "type", String(20), nullable=False, default=TYPE_SINGLE
    )  # SINGLE, SHARED, SEQUENTIAL

    # Active responsible person; mirrors the assignee rows, unset for SHARED
    assigned_to: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Manual display ordering within a list
    order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)

    assignees: Mapped[list["TaskAssignee"]] = relationship(
        "TaskAssignee",
        back_populates="task",
        lazy="selectin",
        order_by=lambda: [TaskAssignee.order, TaskAssignee.assigned_at],
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    subtasks: Mapped[list["Task"]] = relationship(
        "Task",
        lazy="raise",
        viewonly=True,
        order_by=lambda: [Task.order, Task.created_at],
    )

    def __repr__(self) -> str:
        return f"<Task {self.description[:30]}>"


class TaskAssignee(BaseModel):
    """Join record between a task and a person, with per-person completion state."""

    __tablename__ = "task_assignees"
    __table_args__ = (
        UniqueConstraint("task_id", "employee_id", name="uq_task_assignee"),
    )

    task_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Chain position 1..N for SEQUENTIAL, 1 for SINGLE, null for SHARED
    order: Mapped[int | None] = mapped_column("order", Integer, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    task: Mapped["Task"] = relationship("Task", back_populates="assignees")
    employee: Mapped["Employee"] = relationship("Employee", lazy="selectin")

    def __repr__(self) -> str:
        return f"<TaskAssignee task={self.task_id} employee={self.employee_id} order={self.order}>"


class TaskComment(BaseModel):
    """Comment on a task."""

    __tablename__ = "comments"

    task_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    author: Mapped["Employee"] = relationship("Employee", lazy="selectin")

    def __repr__(self) -> str:
        return f"<TaskComment task={self.task_id} author={self.author_id}>"
