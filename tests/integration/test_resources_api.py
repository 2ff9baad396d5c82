"""
Integration Test: Resources, Assignments and Time Tracking
==========================================================

Verifies:
1. Tier tables are validated before they are stored
2. Assignment cost goes through the tier calculator
3. Logged hours roll into task actuals and utilization
"""

import pytest

pytestmark = pytest.mark.integration

LABOR_TIERS = [
    {"from_quantity": 0, "to_quantity": 10, "rate": 50},
    {"from_quantity": 10, "to_quantity": 50, "rate": 45},
    {"from_quantity": 50, "to_quantity": None, "rate": 40},
]


@pytest.fixture
async def crew(client, workspace, factory):
    """A tiered welding crew and one task."""
    response = await client.post(
        f"/api/projects/{workspace['project'].id}/resources",
        json={"name": "Welding Crew A", "type": "labor", "base_rate": 55, "pricing_tiers": LABOR_TIERS},
        headers=workspace["headers"]["member"],
    )
    assert response.status_code == 201, response.text
    task = await factory.task(workspace["project"], "1.1", name="Pipe spool welding")
    return {"resource": response.json(), "task": task}


class TestResources:

    async def test_create_stores_tiers(self, crew):
        resource = crew["resource"]
        assert resource["type"] == "labor"
        assert resource["base_rate"] == 55
        assert len(resource["pricing_tiers"]) == 3

    async def test_invalid_tiers_rejected(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/resources",
            json={
                "name": "Crane",
                "type": "equipment",
                "pricing_tiers": [
                    {"from_quantity": 0, "to_quantity": 10, "rate": 100},
                    {"from_quantity": 20, "to_quantity": None, "rate": 90},
                ],
            },
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 400
        assert response.json()["error"]["context"]["errors"] == [
            "Tier 1: Gap between tiers (ends at 10, next starts at 20)"
        ]

    async def test_delete(self, client, workspace, crew):
        base = f"/api/projects/{workspace['project'].id}/resources/{crew['resource']['id']}"
        headers = workspace["headers"]["member"]

        assert (await client.delete(base, headers=headers)).status_code == 204
        assert (await client.get(base, headers=headers)).status_code == 404


class TestAssignments:

    async def test_cost_uses_tiers(self, client, workspace, crew):
        url = f"/api/projects/{workspace['project'].id}/tasks/{crew['task'].id}/assignments"

        response = await client.post(
            url,
            json={"resource_id": crew["resource"]["id"], "effort_hours": 60, "allocation": 100},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 201
        assert response.json()["cost"] == 2700

    async def test_allocation_scales_quantity(self, client, workspace, crew):
        url = f"/api/projects/{workspace['project'].id}/tasks/{crew['task'].id}/assignments"
        headers = workspace["headers"]["member"]
        assignment = (await client.post(
            url, json={"resource_id": crew["resource"]["id"], "effort_hours": 60}, headers=headers
        )).json()

        response = await client.patch(f"{url}/{assignment['id']}", json={"allocation": 50}, headers=headers)

        # 30 hours: 10 x 50 + 20 x 45
        assert response.json()["cost"] == 1400

    async def test_duplicate_assignment_conflicts(self, client, workspace, crew):
        url = f"/api/projects/{workspace['project'].id}/tasks/{crew['task'].id}/assignments"
        headers = workspace["headers"]["member"]
        body = {"resource_id": crew["resource"]["id"], "effort_hours": 8}

        await client.post(url, json=body, headers=headers)
        response = await client.post(url, json=body, headers=headers)

        assert response.status_code == 409

    async def test_allocation_bounds(self, client, workspace, crew):
        url = f"/api/projects/{workspace['project'].id}/tasks/{crew['task'].id}/assignments"

        response = await client.post(
            url,
            json={"resource_id": crew["resource"]["id"], "allocation": 150},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 422

    async def test_resource_from_other_project(self, client, workspace, factory, crew):
        other = await factory.project(workspace["org"], "OTHER")
        foreign_task = await factory.task(other, "1")

        response = await client.post(
            f"/api/projects/{other.id}/tasks/{foreign_task.id}/assignments",
            json={"resource_id": crew["resource"]["id"]},
            headers=workspace["headers"]["member"],
        )

        assert response.status_code == 400


class TestTimeEntries:

    async def test_logging_updates_actuals_and_utilization(self, client, workspace, crew):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]
        resource_id = crew["resource"]["id"]
        task_id = crew["task"].id
        await client.post(
            f"/api/projects/{project_id}/tasks/{task_id}/assignments",
            json={"resource_id": resource_id, "effort_hours": 40},
            headers=headers,
        )

        first = await client.post(
            f"/api/projects/{project_id}/time-entries",
            json={"resource_id": resource_id, "task_id": task_id, "date": "2024-03-04", "hours": 8},
            headers=headers,
        )
        await client.post(
            f"/api/projects/{project_id}/time-entries",
            json={"resource_id": resource_id, "task_id": task_id, "date": "2024-03-05", "hours": 4},
            headers=headers,
        )

        task = (await client.get(f"/api/projects/{project_id}/tasks/{task_id}", headers=headers)).json()
        utilization = (await client.get(
            f"/api/projects/{project_id}/resources/{resource_id}/utilization", headers=headers
        )).json()

        assert first.status_code == 201
        assert task["actual_hours"] == 12
        assert utilization["assigned_hours"] == 40
        assert utilization["logged_hours"] == 12
        assert utilization["utilization_percent"] == 30.0
        assert utilization["cost_to_date"] == 590

        await client.delete(f"/api/projects/{project_id}/time-entries/{first.json()['id']}", headers=headers)
        task = (await client.get(f"/api/projects/{project_id}/tasks/{task_id}", headers=headers)).json()
        assert task["actual_hours"] == 4

    async def test_filters(self, client, workspace, crew):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]
        for day in ("2024-03-01", "2024-03-10", "2024-03-20"):
            await client.post(
                f"/api/projects/{project_id}/time-entries",
                json={"resource_id": crew["resource"]["id"], "date": day, "hours": 2},
                headers=headers,
            )

        response = await client.get(
            f"/api/projects/{project_id}/time-entries",
            params={"start": "2024-03-05", "end": "2024-03-31"},
            headers=headers,
        )

        assert [e["date"] for e in response.json()] == ["2024-03-20", "2024-03-10"]

    @pytest.mark.parametrize("hours", [0, 25])
    async def test_hours_bounds(self, client, workspace, crew, hours):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/time-entries",
            json={"resource_id": crew["resource"]["id"], "date": "2024-03-01", "hours": hours},
            headers=workspace["headers"]["member"],
        )
        assert response.status_code == 422
