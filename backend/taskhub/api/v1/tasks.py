"""Tasks API endpoints."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.deps import CurrentCaller
from taskhub.db.session import get_db_session
from taskhub.exceptions import AuthorizationError
from taskhub.services import (
    AggregationQuery,
    AssignmentEngine,
    StatusTransitionEngine,
    TaskFilters,
    TaskStore,
)
from taskhub.services.assignment import normalize_status
from taskhub.services.task_store import comment_to_dict, task_to_dict

router = APIRouter()
logger = structlog.get_logger()


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Request/Response Models
class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while fields stay snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class TaskCreate(CamelModel):
    """Create a task, optionally with several assignees."""

    description: str = Field(..., min_length=1)
    status: str | None = None
    points: Decimal = Field(default=Decimal("0"), ge=0)
    project_id: UUID
    priority: str = Field(default="MEDIUM", pattern="^(LOW|MEDIUM|HIGH)$")
    due_date: date | None = None
    parent_id: UUID | None = None
    type: str | None = None
    assignees: list[UUID] = Field(default_factory=list)
    assigned_to: UUID | None = None

    @field_validator("due_date", "parent_id", "assigned_to", "type", "status", mode="before")
    @classmethod
    def empty_as_missing(cls, value):
        return _blank_to_none(value)


class TaskUpdate(CamelModel):
    """Update a task. ``status`` and ``assignedTo`` go through their engines."""

    description: str | None = Field(None, min_length=1)
    points: Decimal | None = Field(None, ge=0)
    priority: str | None = Field(None, pattern="^(LOW|MEDIUM|HIGH)$")
    due_date: date | None = None
    order: int | None = Field(None, ge=0)
    status: str | None = None
    assigned_to: UUID | None = None

    @field_validator("due_date", "assigned_to", "status", mode="before")
    @classmethod
    def empty_as_missing(cls, value):
        return _blank_to_none(value)


class TaskStatusUpdate(CamelModel):
    status: str = Field(..., min_length=1)


class TaskAssign(CamelModel):
    assigned_to: UUID


class TaskPosition(CamelModel):
    id: UUID
    order: int = Field(..., ge=0)


class TaskReorder(CamelModel):
    tasks: list[TaskPosition] = Field(..., min_length=1)


class CommentCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=10000)


class TaskAssigneeResponse(CamelModel):
    """One person attached to a task."""

    id: UUID
    task_id: UUID
    employee_id: UUID
    order: int | None
    is_completed: bool
    completed_at: datetime | None
    assigned_at: datetime | None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class TaskResponse(CamelModel):
    """Task response model."""

    id: UUID
    description: str
    status: str
    points: float
    priority: str
    due_date: date | None
    project_id: UUID
    parent_id: UUID | None
    type: str
    assigned_to: UUID | None
    assigned_at: datetime | None
    completed_at: datetime | None
    created_by: UUID | None
    order: int
    created_at: datetime
    updated_at: datetime
    assignees: list[TaskAssigneeResponse] = Field(default_factory=list)
    subtasks: list["TaskResponse"] | None = None


class TaskStatsResponse(CamelModel):
    total_tasks: int
    pending_tasks: int
    in_progress_tasks: int
    pending_review_tasks: int
    completed_tasks: int
    points_today: float


class PaginationResponse(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TaskListResponse(CamelModel):
    """Paginated root tasks with dashboard statistics."""

    tasks: list[TaskResponse]
    pagination: PaginationResponse
    stats: TaskStatsResponse
    root_stats: TaskStatsResponse


class CommentResponse(CamelModel):
    id: UUID
    task_id: UUID
    author_id: UUID
    user_name: str | None
    content: str
    created_at: datetime


class ReorderResponse(CamelModel):
    message: str
    updated: int


class MessageResponse(CamelModel):
    message: str


def _detail(task) -> dict:
    return task_to_dict(task, subtasks=[task_to_dict(s) for s in task.subtasks])


# =========================================================================
# Collection routes
# =========================================================================


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a task with its assignee rows."""
    task = await AssignmentEngine(db).create(
        current_caller,
        description=task_data.description,
        points=task_data.points,
        project_id=task_data.project_id,
        priority=task_data.priority,
        due_date=task_data.due_date,
        parent_id=task_data.parent_id,
        requested_type=task_data.type,
        assignees=task_data.assignees,
        assigned_to=task_data.assigned_to,
        status=task_data.status,
    )
    return _detail(task)


@router.get("/employees/tasks", response_model=TaskListResponse)
async def list_tasks(
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    task_status: str | None = Query(None, alias="status"),
    project_id: UUID | None = Query(None, alias="projectId"),
    assigned_to: UUID | None = Query(None, alias="assignedTo"),
    date_scope: str | None = Query(None, alias="date"),
    sort_by: str | None = Query(None, alias="sortBy"),
    sort_order: str | None = Query(None, alias="sortOrder"),
) -> dict:
    """Paginated root tasks visible to the caller, with stats for the same context."""
    filters = TaskFilters(
        project_id=project_id,
        assigned_to=assigned_to,
        date_scope=date_scope,
        status=task_status,
    )
    return await AggregationQuery(db).list_tasks(
        current_caller,
        filters=filters,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/projects/{project_id}/tasks", response_model=list[TaskResponse])
async def list_project_tasks(
    project_id: UUID,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> list[dict]:
    tasks = await TaskStore(db).list_project_tasks(project_id, current_caller.organization_id)
    return [task_to_dict(task) for task in tasks]


@router.get("/user/{employee_id}", response_model=list[TaskResponse])
async def list_employee_tasks(
    employee_id: UUID,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> list[dict]:
    """Tasks an employee is responsible for. Users may only look at their own."""
    if not current_caller.is_admin and employee_id != current_caller.id:
        raise AuthorizationError("You can only view your own tasks")
    tasks = await TaskStore(db).list_employee_tasks(employee_id, current_caller.organization_id)
    return [task_to_dict(task) for task in tasks]


# =========================================================================
# Comments
# =========================================================================


@router.get("/comments/{task_id}", response_model=list[CommentResponse])
async def list_comments(
    task_id: UUID,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> list[dict]:
    comments = await TaskStore(db).list_comments(task_id, current_caller.organization_id)
    return [comment_to_dict(comment) for comment in comments]


@router.post(
    "/comments/{task_id}",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_comment(
    task_id: UUID,
    comment_data: CommentCreate,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    comment = await TaskStore(db).add_comment(
        task_id,
        author_id=current_caller.id,
        organization_id=current_caller.organization_id,
        content=comment_data.content,
    )
    return comment_to_dict(comment)


# =========================================================================
# Assignment, ordering and status
# =========================================================================


@router.put("/assign/{task_id}", response_model=TaskResponse)
async def assign_task(
    task_id: UUID,
    assign_data: TaskAssign,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Hand a task to another employee."""
    task = await AssignmentEngine(db).reassign(task_id, assign_data.assigned_to, current_caller)
    return _detail(task)


@router.api_route("/reorder", methods=["PUT", "PATCH"], response_model=ReorderResponse)
async def reorder_tasks(
    reorder_data: TaskReorder,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    updated = await TaskStore(db).reorder(
        [(item.id, item.order) for item in reorder_data.tasks],
        current_caller.organization_id,
    )
    return {"message": "Tasks reordered successfully", "updated": updated}


@router.api_route("/{task_id}/status", methods=["PUT", "PATCH"], response_model=TaskResponse)
async def update_task_status(
    task_id: UUID,
    status_data: TaskStatusUpdate,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Change a task's status; completing a sequential link hands the task on."""
    task = await StatusTransitionEngine(db).transition(task_id, status_data.status, current_caller)
    return _detail(task)


# =========================================================================
# Single task routes
# =========================================================================


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: UUID,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Get a task with its subtasks and assignees."""
    task = await TaskStore(db).get_task_detail(task_id, current_caller.organization_id)
    return _detail(task)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: UUID,
    updates: TaskUpdate,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update a task.

    Plain fields are written directly. A new assignee goes through
    reassignment and a new status through the transition engine, in that
    order, so both representations of ownership stay consistent. All of it
    commits together or not at all.
    """
    store = TaskStore(db)
    values = updates.model_dump(exclude_unset=True)
    new_status = values.pop("status", None)
    new_assignee = values.pop("assigned_to", None)
    if new_status is not None:
        normalize_status(new_status)

    try:
        if values:
            await store.update_fields(
                task_id, current_caller.organization_id, values, commit=False
            )
        if new_assignee is not None:
            await AssignmentEngine(db).reassign(
                task_id, new_assignee, current_caller, commit=False
            )
        if new_status is not None:
            await StatusTransitionEngine(db).transition(
                task_id, new_status, current_caller, commit=False
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    task = await store.get_task_detail(task_id, current_caller.organization_id)
    return _detail(task)


@router.delete("/{task_id}", response_model=MessageResponse)
async def delete_task(
    task_id: UUID,
    current_caller: CurrentCaller,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Delete a task together with its subtasks and comments."""
    await TaskStore(db).delete_task(task_id, current_caller.organization_id)
    return {"message": "Task deleted successfully"}
