"""
Integration Test: Project Import / Export
=========================================
"""

import csv
import io

import pytest

pytestmark = pytest.mark.integration


IMPORT_PAYLOAD = {
    "version": "1.0",
    "tasks": [
        {"wbsCode": "1.1.1", "name": "Pour foundations", "status": "Done", "progress": 100},
        {"wbsCode": "1", "name": "Civil works", "priority": "urgent"},
        {"wbsCode": "1.1", "name": "Foundations", "startDate": "2024-05-01T00:00:00Z", "progress": 140},
    ],
    "risks": [
        {"code": "R-001", "title": "Ground water", "impact": "major", "probability": 9},
        {"title": "Late vendor data"},
    ],
    "issues": [{"title": "Survey mismatch", "status": "investigating"}],
    "stakeholders": [{"name": "Port Authority", "phone": "+15550003333"}],
    "cost_items": [{"description": "Rebar", "budgeted": 5000, "actual": 5500}],
    "documents": [{"documentNumber": "ACME-CIV-001", "title": "Foundation plan", "revision": "B"}],
}


class TestImport:

    async def test_creates_every_entity(self, client, workspace):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]

        response = await client.post(f"/api/projects/{project_id}/import", json=IMPORT_PAYLOAD, headers=headers)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "created": {"tasks": 3, "risks": 2, "issues": 1, "stakeholders": 1, "cost_items": 1, "documents": 1},
        }

    async def test_parents_resolved_from_wbs_codes(self, client, workspace):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]
        await client.post(f"/api/projects/{project_id}/import", json=IMPORT_PAYLOAD, headers=headers)

        tasks = {t["wbs_code"]: t for t in (await client.get(f"/api/projects/{project_id}/tasks", headers=headers)).json()}

        assert tasks["1"]["parent_id"] is None
        assert tasks["1.1"]["parent_id"] == tasks["1"]["id"]
        assert tasks["1.1.1"]["parent_id"] == tasks["1.1"]["id"]
        assert tasks["1"]["priority"] == "critical"
        assert tasks["1.1"]["progress"] == 100
        assert tasks["1.1"]["start_date"] == "2024-05-01"
        assert tasks["1.1.1"]["status"] == "completed"

    async def test_vocabulary_and_codes_normalized(self, client, workspace):
        project_id = workspace["project"].id
        headers = workspace["headers"]["member"]
        await client.post(f"/api/projects/{project_id}/import", json=IMPORT_PAYLOAD, headers=headers)

        risks = (await client.get(f"/api/projects/{project_id}/risks", headers=headers)).json()
        issues = (await client.get(f"/api/projects/{project_id}/issues", headers=headers)).json()
        costs = (await client.get(f"/api/projects/{project_id}/cost-items", headers=headers)).json()

        assert [(r["code"], r["impact"], r["probability"]) for r in risks] == [
            ("R-001", "high", 5),
            ("R-002", "medium", 3),
        ]
        assert issues[0]["status"] == "in-progress"
        assert costs[0]["variance"] == -500
        assert costs[0]["currency"] == "USD"

    async def test_viewer_cannot_import(self, client, workspace):
        response = await client.post(
            f"/api/projects/{workspace['project'].id}/import",
            json=IMPORT_PAYLOAD,
            headers=workspace["headers"]["viewer"],
        )
        assert response.status_code == 403


class TestExport:

    async def test_json_export(self, client, workspace, factory):
        await factory.task(workspace["project"], "1", name="Engineering", progress=40)
        await factory.task(workspace["project"], "1.1", name="Process design")

        response = await client.get(
            f"/api/projects/{workspace['project'].id}/export", headers=workspace["headers"]["viewer"]
        )

        body = response.json()
        assert response.status_code == 200
        assert response.headers["content-disposition"] == 'attachment; filename="ACME-01-export.json"'
        assert body["version"] == "1.0"
        assert body["project"]["code"] == "ACME-01"
        assert body["project"]["budget"] == 100000
        assert [t["wbsCode"] for t in body["tasks"]] == ["1", "1.1"]
        assert body["tasks"][0]["progress"] == 40
        assert set(body) >= {"exportDate", "risks", "issues", "stakeholders", "costItems", "documents"}

    async def test_csv_export(self, client, workspace, factory):
        await factory.task(workspace["project"], "1", name="Engineering")

        response = await client.get(
            f"/api/projects/{workspace['project'].id}/export",
            params={"format": "csv"},
            headers=workspace["headers"]["viewer"],
        )

        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"] == 'attachment; filename="ACME-01-tasks.csv"'
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert rows[0]["wbsCode"] == "1"
        assert rows[0]["name"] == "Engineering"

    async def test_unknown_format_rejected(self, client, workspace):
        response = await client.get(
            f"/api/projects/{workspace['project'].id}/export",
            params={"format": "xml"},
            headers=workspace["headers"]["viewer"],
        )
        assert response.status_code == 422

    async def test_export_then_import_into_new_project(self, client, workspace, factory):
        await factory.task(workspace["project"], "1", name="Engineering")
        await factory.task(workspace["project"], "1.1", name="Process design")
        headers = workspace["headers"]["member"]
        exported = (await client.get(f"/api/projects/{workspace['project'].id}/export", headers=headers)).json()
        target = await factory.project(workspace["org"], "ACME-02")

        response = await client.post(f"/api/projects/{target.id}/import", json=exported, headers=headers)
        tasks = (await client.get(f"/api/projects/{target.id}/tasks", headers=headers)).json()

        assert response.json()["created"]["tasks"] == 2
        by_code = {t["wbs_code"]: t for t in tasks}
        assert by_code["1.1"]["parent_id"] == by_code["1"]["id"]
