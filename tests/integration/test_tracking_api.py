"""
Integration Test: Risks, Issues, Stakeholders and Cost Items
============================================================
"""

import pytest

pytestmark = pytest.mark.integration


def url(workspace, path):
    return f"/api/projects/{workspace['project'].id}/{path}"


class TestRisks:

    async def test_codes_are_generated_in_sequence(self, client, workspace):
        headers = workspace["headers"]["member"]

        first = await client.post(url(workspace, "risks"), json={"title": "Crane availability"}, headers=headers)
        second = await client.post(url(workspace, "risks"), json={"title": "Weather window"}, headers=headers)

        assert first.status_code == 201
        assert first.json()["code"] == "R-001"
        assert second.json()["code"] == "R-002"
        assert first.json()["status"] == "identified"

    async def test_duplicate_code_conflicts(self, client, workspace):
        headers = workspace["headers"]["member"]
        await client.post(url(workspace, "risks"), json={"title": "A", "code": "R-010"}, headers=headers)

        response = await client.post(url(workspace, "risks"), json={"title": "B", "code": "R-010"}, headers=headers)

        assert response.status_code == 409

    async def test_exposure_and_closing(self, client, workspace):
        headers = workspace["headers"]["member"]
        risk = (await client.post(
            url(workspace, "risks"),
            json={"title": "Long-lead compressor", "probability": 2, "cost_impact": 10000, "impact": "critical"},
            headers=headers,
        )).json()
        assert risk["risk_exposure"] == 4000
        assert risk["closed_date"] is None

        raised = await client.patch(url(workspace, f"risks/{risk['id']}"), json={"probability": 5}, headers=headers)
        closed = await client.patch(url(workspace, f"risks/{risk['id']}"), json={"status": "closed"}, headers=headers)

        assert raised.json()["risk_exposure"] == 10000
        assert closed.json()["closed_date"] is not None

    async def test_matrix_counts_open_risks(self, client, workspace):
        headers = workspace["headers"]["member"]
        for body in (
            {"title": "A", "probability": 4, "impact": "high"},
            {"title": "B", "probability": 4, "impact": "high"},
            {"title": "C", "probability": 1, "impact": "low", "status": "closed"},
        ):
            await client.post(url(workspace, "risks"), json=body, headers=headers)

        response = await client.get(url(workspace, "risks/matrix"), headers=workspace["headers"]["viewer"])

        matrix = response.json()
        assert matrix["probabilities"] == [1, 2, 3, 4, 5]
        assert matrix["impacts"] == ["low", "medium", "high", "critical"]
        assert matrix["cells"]["4"]["high"] == 2
        assert matrix["cells"]["1"]["low"] == 0
        assert matrix["total_open"] == 2

    async def test_viewer_is_read_only(self, client, workspace):
        response = await client.post(url(workspace, "risks"), json={"title": "X"}, headers=workspace["headers"]["viewer"])
        assert response.status_code == 403

    async def test_delete(self, client, workspace):
        headers = workspace["headers"]["member"]
        risk = (await client.post(url(workspace, "risks"), json={"title": "X"}, headers=headers)).json()

        assert (await client.delete(url(workspace, f"risks/{risk['id']}"), headers=headers)).status_code == 204
        assert (await client.get(url(workspace, f"risks/{risk['id']}"), headers=headers)).status_code == 404


class TestIssues:

    async def test_create_defaults(self, client, workspace):
        response = await client.post(
            url(workspace, "issues"), json={"title": "Flange leak at P-101"}, headers=workspace["headers"]["member"]
        )

        issue = response.json()
        assert issue["code"] == "I-001"
        assert issue["status"] == "open"
        assert issue["reported_by"] == "Member"
        assert issue["resolved_date"] is None

    async def test_resolving_sets_resolved_date(self, client, workspace):
        headers = workspace["headers"]["member"]
        issue = (await client.post(url(workspace, "issues"), json={"title": "X"}, headers=headers)).json()

        response = await client.patch(
            url(workspace, f"issues/{issue['id']}"),
            json={"status": "resolved", "resolution": "Gasket replaced"},
            headers=headers,
        )

        assert response.json()["resolved_date"] is not None
        assert response.json()["resolution"] == "Gasket replaced"


class TestStakeholders:

    async def test_crud(self, client, workspace):
        headers = workspace["headers"]["member"]
        created = await client.post(
            url(workspace, "stakeholders"),
            json={"name": "City Permits Office", "influence": "high", "phone": "+15550002222"},
            headers=headers,
        )
        sid = created.json()["id"]

        updated = await client.patch(url(workspace, f"stakeholders/{sid}"), json={"interest": "low"}, headers=headers)
        listed = await client.get(url(workspace, "stakeholders"), headers=workspace["headers"]["viewer"])

        assert created.status_code == 201
        assert updated.json()["interest"] == "low"
        assert [s["name"] for s in listed.json()] == ["City Permits Office"]


class TestCostItems:

    async def test_variance_is_recomputed(self, client, workspace):
        headers = workspace["headers"]["member"]
        item = (await client.post(
            url(workspace, "cost-items"),
            json={"description": "Structural steel", "budgeted": 120000, "actual": 90000},
            headers=headers,
        )).json()

        assert item["variance"] == 30000
        assert item["currency"] == "USD"

        response = await client.patch(url(workspace, f"cost-items/{item['id']}"), json={"actual": 130000}, headers=headers)

        assert response.json()["variance"] == -10000

    async def test_item_from_other_project_is_hidden(self, client, workspace, factory):
        other = await factory.project(workspace["org"], "OTHER")
        headers = workspace["headers"]["member"]
        item = (await client.post(
            f"/api/projects/{other.id}/cost-items", json={"description": "X"}, headers=headers
        )).json()

        response = await client.get(url(workspace, f"cost-items/{item['id']}"), headers=headers)

        assert response.status_code == 404
