"""Tests for paginated listings and dashboard statistics."""

from datetime import timedelta
from decimal import Decimal

import pytest

from taskhub.exceptions import BadRequestError
from taskhub.services import AggregationQuery, TaskFilters


@pytest.fixture
def admin(seed):
    return seed.caller(seed.admin)


@pytest.fixture
async def board(seed, create_task):
    """Three roots with subtasks in mixed states."""
    shipped = await create_task("Shipped", points=Decimal("5"), status="completed")
    await create_task("Shipped follow-up", parent_id=shipped.id, status="pending")
    running = await create_task("Running", status="in-progress")
    await create_task(
        "Running check", parent_id=running.id, points=Decimal("3"), status="completed"
    )
    await create_task("Queued", status="pending")
    return shipped, running


class TestStatusFilter:
    async def test_root_with_matching_subtask_is_included(self, db, admin, board):
        result = await AggregationQuery(db).list_tasks(
            admin, TaskFilters(status="pending")
        )

        descriptions = [t["description"] for t in result["tasks"]]
        assert descriptions == ["Shipped", "Queued"]
        assert result["pagination"]["total"] == 2

    async def test_pagination_counts_distinct_roots(self, db, admin, board):
        query = AggregationQuery(db)

        first = await query.list_tasks(admin, TaskFilters(status="pending"), page=1, limit=1)
        second = await query.list_tasks(admin, TaskFilters(status="pending"), page=2, limit=1)

        assert first["pagination"] == {"page": 1, "limit": 1, "total": 2, "total_pages": 2}
        assert len(first["tasks"]) == 1
        assert len(second["tasks"]) == 1
        assert first["tasks"][0]["id"] != second["tasks"][0]["id"]

    async def test_done_alias_filters_completed(self, db, admin, board):
        result = await AggregationQuery(db).list_tasks(admin, TaskFilters(status="done"))

        assert [t["description"] for t in result["tasks"]] == ["Shipped", "Running"]

    async def test_unknown_status_is_rejected(self, db, admin, board):
        with pytest.raises(BadRequestError):
            await AggregationQuery(db).list_tasks(admin, TaskFilters(status="blocked"))


class TestStats:
    async def test_stats_include_subtasks_and_root_stats_do_not(self, db, admin, board):
        result = await AggregationQuery(db).list_tasks(admin, TaskFilters(status="pending"))

        assert result["stats"] == {
            "total_tasks": 5,
            "pending_tasks": 2,
            "in_progress_tasks": 1,
            "pending_review_tasks": 0,
            "completed_tasks": 2,
            "points_today": 8.0,
        }
        assert result["root_stats"] == {
            "total_tasks": 3,
            "pending_tasks": 1,
            "in_progress_tasks": 1,
            "pending_review_tasks": 0,
            "completed_tasks": 1,
            "points_today": 5.0,
        }

    async def test_empty_listing(self, db, admin, seed):
        result = await AggregationQuery(db).list_tasks(admin)

        assert result["tasks"] == []
        assert result["pagination"]["total"] == 0
        assert result["pagination"]["total_pages"] == 0
        assert result["stats"]["total_tasks"] == 0
        assert result["stats"]["points_today"] == 0.0


class TestAttachments:
    async def test_subtasks_and_assignees_are_attached(self, db, seed, admin, create_task):
        parent = await create_task(
            "Parent", requested_type="SEQUENTIAL", assignees=[seed.alice.id, seed.bob.id]
        )
        await create_task("Child", parent_id=parent.id, assignees=[seed.carol.id])

        result = await AggregationQuery(db).list_tasks(admin)

        [row] = result["tasks"]
        assert [a["employee_id"] for a in row["assignees"]] == [seed.alice.id, seed.bob.id]
        assert row["assignees"][0]["first_name"] == "Alice"
        [child] = row["subtasks"]
        assert child["description"] == "Child"
        assert [a["employee_id"] for a in child["assignees"]] == [seed.carol.id]


class TestSharedPoints:
    async def test_individual_view_reports_the_share(self, db, seed, admin, create_task):
        await create_task(
            "Pool",
            points=Decimal("30"),
            requested_type="SHARED",
            assignees=[seed.alice.id, seed.bob.id, seed.carol.id],
        )
        query = AggregationQuery(db)

        mine = await query.list_tasks(admin, TaskFilters(assigned_to=seed.bob.id))
        everyone = await query.list_tasks(admin)

        assert mine["tasks"][0]["points"] == 10.0
        assert everyone["tasks"][0]["points"] == 30.0


class TestContextFilters:
    async def test_user_sees_only_own_work(self, db, seed, create_task):
        await create_task("Admin only")
        await create_task("For alice", assignees=[seed.alice.id])
        await create_task(
            "Group", requested_type="SHARED", assignees=[seed.bob.id, seed.alice.id]
        )
        await create_task("Alice's own", caller=seed.caller(seed.alice), assignees=[seed.bob.id])

        result = await AggregationQuery(db).list_tasks(seed.caller(seed.alice))

        assert sorted(t["description"] for t in result["tasks"]) == [
            "Alice's own",
            "For alice",
            "Group",
        ]

    async def test_other_organization_sees_nothing(self, db, seed, board):
        result = await AggregationQuery(db).list_tasks(seed.caller(seed.foreign_admin))

        assert result["tasks"] == []
        assert result["stats"]["total_tasks"] == 0

    async def test_project_filter(self, db, seed, admin, create_task):
        await create_task("Launch task")
        await create_task("Hiring task", project_id=seed.other_project.id)

        result = await AggregationQuery(db).list_tasks(
            admin, TaskFilters(project_id=seed.other_project.id)
        )

        assert [t["description"] for t in result["tasks"]] == ["Hiring task"]

    async def test_date_scopes(self, db, admin, create_task, today):
        await create_task("Due today", due_date=today)
        await create_task("Late", due_date=today - timedelta(days=10))
        await create_task("Late but done", due_date=today - timedelta(days=10), status="completed")
        await create_task("Far away", due_date=today + timedelta(days=400))
        query = AggregationQuery(db)

        due_today = await query.list_tasks(admin, TaskFilters(date_scope="today"))
        this_week = await query.list_tasks(admin, TaskFilters(date_scope="week"))
        overdue = await query.list_tasks(admin, TaskFilters(date_scope="overdue"))

        assert [t["description"] for t in due_today["tasks"]] == ["Due today"]
        assert "Due today" in [t["description"] for t in this_week["tasks"]]
        assert "Far away" not in [t["description"] for t in this_week["tasks"]]
        assert [t["description"] for t in overdue["tasks"]] == ["Late"]

    async def test_unknown_date_scope_is_rejected(self, db, admin):
        with pytest.raises(BadRequestError):
            await AggregationQuery(db).list_tasks(admin, TaskFilters(date_scope="someday"))


class TestOrdering:
    async def test_default_is_manual_order(self, db, admin, create_task):
        for name in ["One", "Two", "Three"]:
            await create_task(name)

        result = await AggregationQuery(db).list_tasks(admin)

        assert [t["description"] for t in result["tasks"]] == ["One", "Two", "Three"]

    async def test_priority_sorts_by_rank(self, db, admin, create_task):
        await create_task("Low", priority="LOW")
        await create_task("High", priority="HIGH")
        await create_task("Medium", priority="MEDIUM")

        result = await AggregationQuery(db).list_tasks(
            admin, sort_by="priority", sort_order="desc"
        )

        assert [t["description"] for t in result["tasks"]] == ["High", "Medium", "Low"]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sort_by": "secret"},
            {"sort_by": "points", "sort_order": "sideways"},
            {"limit": 5000},
        ],
    )
    async def test_invalid_listing_options_are_rejected(self, db, admin, kwargs):
        with pytest.raises(BadRequestError):
            await AggregationQuery(db).list_tasks(admin, **kwargs)
