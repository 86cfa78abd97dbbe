"""HTTP-level tests for the tasks API."""

from uuid import uuid4

import pytest

from tests.conftest import auth_headers


@pytest.fixture
def admin_headers(seed):
    return auth_headers(seed.admin)


async def create(client, headers, **body):
    response = await client.post("/api/tasks", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestCreateAndRead:
    async def test_create_sequential_task(self, client, seed, admin_headers):
        data = await create(
            client,
            admin_headers,
            description="Sign off release",
            points=12.5,
            projectId=str(seed.project.id),
            type="SEQUENTIAL",
            assignees=[str(seed.alice.id), str(seed.bob.id)],
        )

        assert data["type"] == "SEQUENTIAL"
        assert data["assignedTo"] == str(seed.alice.id)
        assert data["points"] == 12.5
        assert [a["order"] for a in data["assignees"]] == [1, 2]
        assert data["assignees"][0]["firstName"] == "Alice"
        assert data["subtasks"] == []

    async def test_get_task_includes_subtasks(self, client, seed, admin_headers):
        parent = await create(
            client, admin_headers, description="Parent", projectId=str(seed.project.id)
        )
        await create(
            client,
            admin_headers,
            description="Child",
            projectId=str(seed.project.id),
            parentId=parent["id"],
        )

        response = await client.get(f"/api/tasks/{parent['id']}", headers=admin_headers)

        assert response.status_code == 200
        assert [s["description"] for s in response.json()["subtasks"]] == ["Child"]

    async def test_project_and_user_listings(self, client, seed, admin_headers):
        await create(
            client,
            admin_headers,
            description="For bob",
            projectId=str(seed.project.id),
            assignedTo=str(seed.bob.id),
        )

        project = await client.get(
            f"/api/tasks/projects/{seed.project.id}/tasks", headers=admin_headers
        )
        mine = await client.get(f"/api/tasks/user/{seed.bob.id}", headers=auth_headers(seed.bob))
        theirs = await client.get(
            f"/api/tasks/user/{seed.bob.id}", headers=auth_headers(seed.alice)
        )

        assert [t["description"] for t in project.json()] == ["For bob"]
        assert [t["description"] for t in mine.json()] == ["For bob"]
        assert theirs.status_code == 403
        assert theirs.json()["error"]["code"] == "AUTHORIZATION_FAILED"


class TestStatusAndAssignment:
    async def test_sequential_hand_off_over_http(self, client, seed, admin_headers):
        task = await create(
            client,
            admin_headers,
            description="Chain",
            projectId=str(seed.project.id),
            type="SEQUENTIAL",
            assignees=[str(seed.alice.id), str(seed.bob.id)],
        )

        first = await client.patch(
            f"/api/tasks/{task['id']}/status", json={"status": "done"}, headers=admin_headers
        )
        second = await client.put(
            f"/api/tasks/{task['id']}/status", json={"status": "completed"}, headers=admin_headers
        )

        assert first.json()["status"] == "pending"
        assert first.json()["assignedTo"] == str(seed.bob.id)
        assert first.json()["completedAt"] is None
        assert second.json()["status"] == "completed"
        assert second.json()["completedAt"] is not None

    async def test_reassign_keeps_rows_in_sync(self, client, seed, admin_headers):
        task = await create(
            client,
            admin_headers,
            description="Solo",
            projectId=str(seed.project.id),
            assignedTo=str(seed.alice.id),
        )

        response = await client.put(
            f"/api/tasks/assign/{task['id']}",
            json={"assignedTo": str(seed.carol.id)},
            headers=admin_headers,
        )

        data = response.json()
        assert data["assignedTo"] == str(seed.carol.id)
        assert [a["employeeId"] for a in data["assignees"]] == [str(seed.carol.id)]

    async def test_update_routes_status_through_transition(self, client, seed, admin_headers):
        task = await create(
            client,
            admin_headers,
            description="Edit me",
            projectId=str(seed.project.id),
            type="SEQUENTIAL",
            assignees=[str(seed.alice.id), str(seed.bob.id)],
        )

        response = await client.put(
            f"/api/tasks/{task['id']}",
            json={"description": "Edited", "priority": "HIGH", "status": "completed"},
            headers=admin_headers,
        )

        data = response.json()
        assert data["description"] == "Edited"
        assert data["priority"] == "HIGH"
        assert data["status"] == "pending"
        assert data["assignedTo"] == str(seed.bob.id)

    async def test_rejected_update_keeps_every_field(self, client, seed):
        bob = auth_headers(seed.bob)
        alice = auth_headers(seed.alice)
        task = await create(
            client,
            bob,
            description="Quarterly report",
            points=5,
            projectId=str(seed.project.id),
            assignedTo=str(seed.alice.id),
        )
        await client.patch(
            f"/api/tasks/{task['id']}/status", json={"status": "pending-review"}, headers=alice
        )

        response = await client.put(
            f"/api/tasks/{task['id']}",
            json={"description": "Hijacked", "points": 99, "status": "completed"},
            headers=alice,
        )
        after = await client.get(f"/api/tasks/{task['id']}", headers=bob)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTHORIZATION_FAILED"
        data = after.json()
        assert data["description"] == "Quarterly report"
        assert data["points"] == 5.0
        assert data["status"] == "pending-review"
        assert data["completedAt"] is None

    async def test_reorder(self, client, seed, admin_headers):
        a = await create(client, admin_headers, description="A", projectId=str(seed.project.id))
        b = await create(client, admin_headers, description="B", projectId=str(seed.project.id))

        response = await client.patch(
            "/api/tasks/reorder",
            json={"tasks": [{"id": a["id"], "order": 2}, {"id": b["id"], "order": 1}]},
            headers=admin_headers,
        )
        listing = await client.get("/api/tasks/employees/tasks", headers=admin_headers)

        assert response.json()["updated"] == 2
        assert [t["description"] for t in listing.json()["tasks"]] == ["B", "A"]


class TestListing:
    async def test_listing_shape(self, client, seed, admin_headers):
        parent = await create(
            client,
            admin_headers,
            description="Done parent",
            projectId=str(seed.project.id),
            status="completed",
            points=2,
        )
        await create(
            client,
            admin_headers,
            description="Open child",
            projectId=str(seed.project.id),
            parentId=parent["id"],
        )

        response = await client.get(
            "/api/tasks/employees/tasks",
            params={"status": "pending", "page": 1, "limit": 10, "projectId": str(seed.project.id)},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert [t["description"] for t in body["tasks"]] == ["Done parent"]
        assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "totalPages": 1}
        assert body["stats"]["totalTasks"] == 2
        assert body["stats"]["pointsToday"] == 2.0
        assert body["rootStats"]["completedTasks"] == 1

    async def test_bad_sort_is_a_bad_request(self, client, admin_headers):
        response = await client.get(
            "/api/tasks/employees/tasks", params={"sortBy": "salary"}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BAD_REQUEST"


class TestCommentsAndDelete:
    async def test_comment_then_delete(self, client, seed, admin_headers):
        task = await create(
            client, admin_headers, description="Temp", projectId=str(seed.project.id)
        )

        posted = await client.post(
            f"/api/tasks/comments/{task['id']}", json={"content": "hello"}, headers=admin_headers
        )
        listed = await client.get(f"/api/tasks/comments/{task['id']}", headers=admin_headers)
        deleted = await client.delete(f"/api/tasks/{task['id']}", headers=admin_headers)
        missing = await client.get(f"/api/tasks/{task['id']}", headers=admin_headers)

        assert posted.status_code == 201
        assert posted.json()["userName"] == "Ada Tester"
        assert [c["content"] for c in listed.json()] == ["hello"]
        assert deleted.json() == {"message": "Task deleted successfully"}
        assert missing.status_code == 404


class TestErrors:
    async def test_missing_token(self, client):
        response = await client.get("/api/tasks/employees/tasks")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_FAILED"

    async def test_garbage_token(self, client):
        response = await client.get(
            "/api/tasks/employees/tasks", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    async def test_not_found_shape(self, client, admin_headers):
        response = await client.get(f"/api/tasks/{uuid4()}", headers=admin_headers)

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert error["message"] == "Task not found"
        assert "details" in error

    async def test_negative_points_fail_validation(self, client, seed, admin_headers):
        response = await client.post(
            "/api/tasks",
            json={"description": "x", "points": -1, "projectId": str(seed.project.id)},
            headers=admin_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "BAD_REQUEST"
        assert error["details"][0]["field"] == "points"

    async def test_foreign_project_is_not_found(self, client, seed, admin_headers):
        response = await client.post(
            "/api/tasks",
            json={"description": "x", "projectId": str(seed.foreign_project.id)},
            headers=admin_headers,
        )

        assert response.status_code == 404


class TestHealth:
    async def test_liveness_and_request_id(self, client):
        response = await client.get("/api/health", headers={"X-Request-ID": "abc-123"})

        assert response.json()["status"] == "healthy"
        assert response.headers["X-Request-ID"] == "abc-123"
        assert "X-Process-Time" in response.headers

    async def test_readiness_checks_database(self, client):
        response = await client.get("/api/health/ready")

        assert response.json()["checks"] == {"database": "healthy"}
