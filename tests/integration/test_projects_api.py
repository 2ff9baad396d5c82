"""
Integration Test: Projects, Tasks and Scheduling
================================================

Verifies:
1. Project CRUD with organization-scoped codes
2. Task rules: progress clamping, status side effects, parent checks
3. Dependencies reject self links, duplicates and cycles
4. Scheduling persists CPM results visible in the Gantt view
5. Kanban columns and the dashboard roll-up
"""

import pytest

pytestmark = pytest.mark.integration


async def create_task(client, workspace, role="member", **fields):
    fields.setdefault("name", f"Task {fields['wbs_code']}")
    response = await client.post(
        f"/api/projects/{workspace['project'].id}/tasks",
        json=fields,
        headers=workspace["headers"][role],
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestProjects:

    async def test_create_in_organization(self, client, workspace):
        response = await client.post(
            "/api/projects",
            json={
                "organization_id": workspace["org"].id,
                "name": "Gas Compression Station",
                "code": "GCS-7",
                "start_date": "2024-02-01",
                "budget": 2500000,
                "currency": "EUR",
            },
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 201
        body = response.json()
        assert body["organization_id"] == workspace["org"].id
        assert body["status"] == "planning"
        assert body["currency"] == "EUR"

    async def test_viewer_cannot_create(self, client, workspace):
        response = await client.post(
            "/api/projects",
            json={"organization_id": workspace["org"].id, "name": "X", "code": "X-1"},
            headers=workspace["headers"]["viewer"],
        )
        assert response.status_code == 403

    async def test_foreign_organization_is_denied(self, client, workspace):
        response = await client.post(
            "/api/projects",
            json={"organization_id": workspace["org"].id, "name": "X", "code": "X-1"},
            headers=workspace["headers"]["outsider"],
        )

        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Access denied"

    async def test_duplicate_code_conflicts(self, client, workspace):
        response = await client.post(
            "/api/projects",
            json={"organization_id": workspace["org"].id, "name": "Again", "code": "ACME-01"},
            headers=workspace["headers"]["admin"],
        )
        assert response.status_code == 409

    async def test_list_and_search(self, client, workspace, factory):
        await factory.project(workspace["org"], "LNG-3", name="LNG Train 3")

        everything = await client.get("/api/projects", headers=workspace["headers"]["viewer"])
        searched = await client.get("/api/projects", params={"search": "lng"}, headers=workspace["headers"]["viewer"])
        outsider = await client.get("/api/projects", headers=workspace["headers"]["outsider"])

        assert sorted(p["code"] for p in everything.json()) == ["ACME-01", "LNG-3"]
        assert [p["code"] for p in searched.json()] == ["LNG-3"]
        assert outsider.json() == []

    async def test_update_and_delete(self, client, workspace):
        project_id = workspace["project"].id

        updated = await client.patch(
            f"/api/projects/{project_id}", json={"status": "active"}, headers=workspace["headers"]["member"]
        )
        member_delete = await client.delete(f"/api/projects/{project_id}", headers=workspace["headers"]["member"])
        admin_delete = await client.delete(f"/api/projects/{project_id}", headers=workspace["headers"]["admin"])
        gone = await client.get(f"/api/projects/{project_id}", headers=workspace["headers"]["admin"])

        assert updated.json()["status"] == "active"
        assert member_delete.status_code == 403
        assert admin_delete.status_code == 204
        assert gone.status_code == 404

    async def test_null_name_rejected(self, client, workspace):
        project_id = workspace["project"].id

        response = await client.patch(
            f"/api/projects/{project_id}", json={"name": None}, headers=workspace["headers"]["member"]
        )
        current = await client.get(f"/api/projects/{project_id}", headers=workspace["headers"]["member"])

        assert response.status_code == 422
        assert "name cannot be null" in response.text
        assert current.json()["name"] == "Acme Refinery"

    async def test_null_optional_field_clears_it(self, client, workspace):
        project_id = workspace["project"].id

        response = await client.patch(
            f"/api/projects/{project_id}", json={"budget": None}, headers=workspace["headers"]["member"]
        )

        assert response.status_code == 200
        assert response.json()["budget"] is None

    async def test_delete_cascades_to_tasks(self, client, workspace):
        await create_task(client, workspace, wbs_code="1")
        project_id = workspace["project"].id

        await client.delete(f"/api/projects/{project_id}", headers=workspace["headers"]["owner"])
        response = await client.get(f"/api/projects/{project_id}/tasks", headers=workspace["headers"]["owner"])

        assert response.status_code == 404


class TestTasks:

    async def test_progress_is_clamped(self, client, workspace):
        task = await create_task(client, workspace, wbs_code="1", progress=150)
        assert task["progress"] == 100

        response = await client.patch(
            f"/api/projects/{workspace['project'].id}/tasks/{task['id']}",
            json={"progress": -5},
            headers=workspace["headers"]["member"],
        )
        assert response.json()["progress"] == 0

    async def test_null_status_rejected(self, client, workspace):
        task = await create_task(client, workspace, wbs_code="1")
        url = f"/api/projects/{workspace['project'].id}/tasks/{task['id']}"

        response = await client.patch(url, json={"status": None, "priority": None}, headers=workspace["headers"]["member"])
        current = await client.get(url, headers=workspace["headers"]["member"])

        assert response.status_code == 422
        assert response.json()["error"]["error_type"] == "RequestValidationError"
        assert "priority, status cannot be null" in response.text
        assert current.json()["status"] == "not-started"

    async def test_completed_sets_progress_and_finish(self, client, workspace):
        task = await create_task(client, workspace, wbs_code="1")

        response = await client.patch(
            f"/api/projects/{workspace['project'].id}/tasks/{task['id']}",
            json={"status": "completed"},
            headers=workspace["headers"]["member"],
        )

        body = response.json()
        assert body["progress"] == 100
        assert body["actual_finish_date"] is not None
        assert body["actual_start_date"] is not None

    async def test_in_progress_sets_actual_start(self, client, workspace):
        task = await create_task(client, workspace, wbs_code="1")

        response = await client.patch(
            f"/api/projects/{workspace['project'].id}/tasks/{task['id']}",
            json={"status": "in-progress"},
            headers=workspace["headers"]["member"],
        )

        assert response.json()["actual_start_date"] is not None
        assert response.json()["actual_finish_date"] is None

    async def test_parent_cycle_rejected(self, client, workspace):
        parent = await create_task(client, workspace, wbs_code="1")
        child = await create_task(client, workspace, wbs_code="1.1", parent_id=parent["id"])

        response = await client.patch(
            f"/api/projects/{workspace['project'].id}/tasks/{parent['id']}",
            json={"parent_id": child["id"]},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 400

    async def test_parent_from_other_project_rejected(self, client, workspace, factory):
        other = await factory.project(workspace["org"], "OTHER")
        foreign = await factory.task(other, "1")

        response = await client.post(
            f"/api/projects/{workspace['project'].id}/tasks",
            json={"name": "Orphan", "wbs_code": "9", "parent_id": foreign.id},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 400

    async def test_delete_reparents_children(self, client, workspace):
        root = await create_task(client, workspace, wbs_code="1")
        middle = await create_task(client, workspace, wbs_code="1.1", parent_id=root["id"])
        leaf = await create_task(client, workspace, wbs_code="1.1.1", parent_id=middle["id"])
        base = f"/api/projects/{workspace['project'].id}/tasks"

        deleted = await client.delete(f"{base}/{middle['id']}", headers=workspace["headers"]["member"])
        response = await client.get(f"{base}/{leaf['id']}", headers=workspace["headers"]["viewer"])

        assert deleted.status_code == 204
        assert response.json()["parent_id"] == root["id"]

    async def test_assignment_notifies_assignee(self, client, workspace):
        await create_task(
            client, workspace, wbs_code="1", name="Hydrotest", assigned_to=workspace["viewer"].id
        )

        response = await client.get("/api/notifications", headers=workspace["headers"]["viewer"])

        notifications = response.json()
        assert len(notifications) == 1
        assert notifications[0]["type"] == "task_assigned"
        assert "Hydrotest" in notifications[0]["message"]

    async def test_assignee_must_belong_to_organization(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/tasks",
            json={"name": "X", "wbs_code": "1", "assigned_to": workspace["outsider"].id},
            headers=workspace["headers"]["member"],
        )
        assert response.status_code == 400

    async def test_viewer_cannot_create(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/tasks",
            json={"name": "X", "wbs_code": "1"},
            headers=workspace["headers"]["viewer"],
        )
        assert response.status_code == 403

    async def test_unknown_task(self, client, workspace):
        response = await client.get(
            f"/api/projects/{workspace['project'].id}/tasks/9999", headers=workspace["headers"]["viewer"]
        )
        assert response.status_code == 404


class TestDependencies:

    async def test_rules(self, client, workspace):
        a = await create_task(client, workspace, wbs_code="1")
        b = await create_task(client, workspace, wbs_code="2")
        url = f"/api/projects/{workspace['project'].id}/dependencies"
        headers = workspace["headers"]["member"]

        created = await client.post(url, json={"predecessor_id": a["id"], "successor_id": b["id"]}, headers=headers)
        duplicate = await client.post(url, json={"predecessor_id": a["id"], "successor_id": b["id"]}, headers=headers)
        self_link = await client.post(url, json={"predecessor_id": a["id"], "successor_id": a["id"]}, headers=headers)
        cycle = await client.post(url, json={"predecessor_id": b["id"], "successor_id": a["id"]}, headers=headers)

        assert created.status_code == 201
        assert created.json()["type"] == "FS"
        assert duplicate.status_code == 409
        assert self_link.status_code == 400
        assert cycle.status_code == 422
        assert cycle.json()["error"]["error_type"] == "SchedulingError"

    async def test_delete(self, client, workspace):
        a = await create_task(client, workspace, wbs_code="1")
        b = await create_task(client, workspace, wbs_code="2")
        url = f"/api/projects/{workspace['project'].id}/dependencies"
        headers = workspace["headers"]["member"]
        dep = (await client.post(url, json={"predecessor_id": a["id"], "successor_id": b["id"]}, headers=headers)).json()

        assert (await client.delete(f"{url}/{dep['id']}", headers=headers)).status_code == 204
        assert (await client.get(url, headers=headers)).json() == []
        assert (await client.delete(f"{url}/{dep['id']}", headers=headers)).status_code == 404


class TestScheduling:

    async def test_schedule_persists_cpm(self, client, workspace):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]
        design = await create_task(client, workspace, wbs_code="1", estimated_hours=16)
        build = await create_task(client, workspace, wbs_code="2", estimated_hours=24)
        permit = await create_task(client, workspace, wbs_code="3", estimated_hours=8)
        for pred in (design, permit):
            await client.post(
                f"/api/projects/{project_id}/dependencies",
                json={"predecessor_id": pred["id"], "successor_id": build["id"]},
                headers=headers,
            )

        response = await client.post(
            f"/api/projects/{project_id}/schedule", json={"start_date": "2024-01-01"}, headers=headers
        )

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is True
        assert result["tasks_updated"] == 3
        assert result["project_end_date"] == "2024-01-05"
        assert sorted(result["critical_tasks"]) == sorted([design["id"], build["id"]])
        assert result["critical_path_length"] == 5

        gantt = {row["wbs_code"]: row for row in (await client.get(
            f"/api/projects/{project_id}/gantt", headers=workspace["headers"]["viewer"]
        )).json()}
        assert gantt["1"]["early_start"] == "2024-01-01"
        assert gantt["1"]["early_finish"] == "2024-01-02"
        assert gantt["2"]["start_date"] == "2024-01-03"
        assert gantt["2"]["end_date"] == "2024-01-05"
        assert gantt["3"]["total_float"] == 1
        assert gantt["3"]["is_critical_path"] is False
        assert len(gantt["2"]["predecessors"]) == 2
        assert len(gantt["1"]["successors"]) == 1

    async def test_empty_project(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/schedule", headers=workspace["headers"]["member"]
        )

        assert response.status_code == 200
        assert response.json()["message"] == "No tasks to schedule"

    async def test_viewer_cannot_schedule(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/schedule", headers=workspace["headers"]["viewer"]
        )
        assert response.status_code == 403


class TestViews:

    async def test_kanban_columns(self, client, workspace):
        await create_task(client, workspace, wbs_code="2", status="review")
        await create_task(client, workspace, wbs_code="1", status="review")
        await create_task(client, workspace, wbs_code="3")

        response = await client.get(
            f"/api/projects/{workspace['project'].id}/kanban", headers=workspace["headers"]["viewer"]
        )

        columns = response.json()
        assert [c["status"] for c in columns] == ["not-started", "in-progress", "review", "completed", "on-hold"]
        assert [t["wbs_code"] for t in columns[2]["tasks"]] == ["1", "2"]
        assert [t["wbs_code"] for t in columns[0]["tasks"]] == ["3"]

    async def test_dashboard(self, client, workspace):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]
        await create_task(client, workspace, wbs_code="1", status="completed")
        await create_task(client, workspace, wbs_code="2", progress=50, end_date="2020-01-01")
        await client.post(
            f"/api/projects/{project_id}/risks",
            json={"title": "Late steel", "impact": "high", "probability": 4, "cost_impact": 50000},
            headers=headers,
        )
        await client.patch(
            f"/api/projects/{project_id}",
            json={"baseline_cost": 1000, "earned_value": 500, "actual_cost": 400},
            headers=headers,
        )

        response = await client.get(f"/api/projects/{project_id}/dashboard", headers=workspace["headers"]["viewer"])

        assert response.status_code == 200
        body = response.json()
        assert body["total_tasks"] == 2
        assert body["tasks_by_status"] == {
            "not-started": 1, "in-progress": 0, "review": 0, "completed": 1, "on-hold": 0,
        }
        assert set(body["open_issues_by_priority"]) == {"low", "medium", "high", "critical"}
        assert body["average_progress"] == 75.0
        assert [t["wbs_code"] for t in body["overdue_tasks"]] == ["2"]
        assert body["open_risks_by_impact"]["high"] == 1
        assert body["top_risks"][0]["risk_exposure"] == 40000
        assert body["evm"]["cpi"] == 1.25
        assert body["evm"]["spi"] == 0.5
