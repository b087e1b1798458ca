import io
import zipfile

import pytest
from fastapi.testclient import TestClient

from visual_tracker.infrastructure.exceptions import ConfigurationError
from visual_tracker.web.dependencies import get_db_session
from visual_tracker.web.main import create_application


@pytest.fixture
def seeded_client(seeded_session, client):
    return client


def create_student(client, name="Ada", **extra):
    response = client.post("/api/students", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_objective_tree(seeded_client):
    response = seeded_client.get("/api/objectives/tree")
    assert response.status_code == 200
    nodes = response.json()
    assert nodes[0] == {
        "code": "A",
        "title": "Able to apply 100% of core LOs for chosen path",
        "depth": 0,
        "is_leaf": False,
    }
    by_code = {n["code"]: n for n in nodes}
    assert by_code["C.2.3"]["depth"] == 2 and by_code["C.2.3"]["is_leaf"]


def test_create_objective_and_duplicate(seeded_client):
    response = seeded_client.post(
        "/api/objectives", json={"code": "E.5", "title": "Reflect", "parent_code": "E"}
    )
    assert response.status_code == 201
    assert response.json()["parent_code"] == "E"

    duplicate = seeded_client.post("/api/objectives", json={"code": "E.5", "title": "Again"})
    assert duplicate.status_code == 409
    assert "E.5" in duplicate.json()["detail"]

    missing_parent = seeded_client.post(
        "/api/objectives", json={"code": "Z.1", "title": "Lost", "parent_code": "Z"}
    )
    assert missing_parent.status_code == 404


def test_archive_objective(seeded_client):
    created = seeded_client.post("/api/objectives", json={"code": "F", "title": "Temp"}).json()
    response = seeded_client.post(f"/api/objectives/{created['id']}/archive")
    assert response.status_code == 200
    assert response.json()["is_archived"] is True

    active = {o["code"] for o in seeded_client.get("/api/objectives").json()}
    assert "F" not in active
    every = {o["code"] for o in seeded_client.get("/api/objectives?include_archived=true").json()}
    assert "F" in every


def test_student_lifecycle(seeded_client):
    student = create_student(seeded_client, "Ada", session="Afternoon")
    assert student["overall"] == 0
    assert student["status"] == "Not Started"

    for code in ("A.1", "A.2", "A.3"):
        response = seeded_client.put(
            f"/api/students/{student['id']}/progress", json={"objective_code": code, "value": 100}
        )
        assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Complete"
    assert body["overall"] == 20

    detail = seeded_client.get(f"/api/students/{student['id']}").json()
    assert detail["session"] == "Afternoon"
    rows = {row["code"]: row for row in detail["objectives"]}
    assert rows["A"]["percentage"] == 100
    assert rows["A"]["status"] == "Complete"
    assert rows["B"]["percentage"] == 0

    assert seeded_client.delete(f"/api/students/{student['id']}").status_code == 204
    assert seeded_client.get(f"/api/students/{student['id']}").status_code == 404


def test_progress_errors(seeded_client):
    student = create_student(seeded_client)
    url = f"/api/students/{student['id']}/progress"

    assert seeded_client.put(url, json={"objective_code": "C.1", "value": 50}).status_code == 400
    assert seeded_client.put(url, json={"objective_code": "Q.1", "value": 50}).status_code == 404
    assert (
        seeded_client.put("/api/students/999/progress", json={"objective_code": "A.1", "value": 5})
        .status_code
        == 404
    )

    clamped = seeded_client.put(url, json={"objective_code": "A.1", "value": 140})
    assert clamped.json()["value"] == 100


def test_invalid_student_is_rejected(seeded_client):
    response = seeded_client.post("/api/students", json={"name": "  "})
    assert response.status_code == 400


def test_groups_and_scoped_students(seeded_client):
    group = seeded_client.post("/api/groups", json={"name": "Android", "color_hex": "#22C55E"})
    assert group.status_code == 201
    group_id = group.json()["id"]
    assert seeded_client.post("/api/groups", json={"name": "android"}).status_code == 409

    create_student(seeded_client, "Ada", group_ids=[group_id])
    create_student(seeded_client, "Bea")

    grouped = seeded_client.get(f"/api/students?scope=group&target_id={group_id}").json()
    assert [s["name"] for s in grouped] == ["Ada"]
    ungrouped = seeded_client.get("/api/students?scope=ungrouped").json()
    assert [s["name"] for s in ungrouped] == ["Bea"]
    assert seeded_client.get("/api/students?scope=group").status_code == 400

    groups = {g["name"]: g for g in seeded_client.get("/api/groups").json()}
    assert groups["Android"]["member_count"] == 1


def test_domain_mode_and_rollup(seeded_client):
    domains = {d["name"]: d for d in seeded_client.get("/api/domains").json()}
    assert set(domains) == {"Design", "Domain Expert", "Tech"}
    tech_id = domains["Tech"]["id"]

    response = seeded_client.put(
        f"/api/domains/{tech_id}/mode", json={"overall_mode": "expert_review"}
    )
    assert response.status_code == 200
    assert response.json()["overall_mode"] == "expert_review"

    score = seeded_client.put(
        f"/api/domains/{tech_id}/scores", json={"objective_code": "E.1", "value": 100}
    )
    assert score.status_code == 204

    rollup = seeded_client.get(f"/api/domains/{tech_id}/rollup").json()
    rows = {row["code"]: row for row in rollup["objectives"]}
    assert rows["E"]["percentage"] == 25
    assert rollup["overall"] == 5
    assert seeded_client.get("/api/domains/999/rollup").status_code == 404


def test_create_domain(seeded_client):
    response = seeded_client.post("/api/domains", json={"name": "Data", "color_hex": "0EA5E9"})
    assert response.status_code == 201
    assert response.json()["color_hex"] == "#0EA5E9"
    assert seeded_client.post("/api/domains", json={"name": "tech"}).status_code == 409


def test_overview(seeded_client):
    student = create_student(seeded_client)
    seeded_client.put(
        f"/api/students/{student['id']}/progress", json={"objective_code": "D.1", "value": 100}
    )
    create_student(seeded_client, "Bea")

    body = seeded_client.get("/api/overview").json()
    assert body["title"] == "Overall"
    assert body["student_count"] == 2
    criteria = {c["code"]: c for c in body["criteria"]}
    assert criteria["D"]["average"] == 16
    assert criteria["D"]["status"] == "In Progress"
    assert body["overall"] == 3


def test_import_preview_and_import(seeded_client):
    csv_bytes = (
        "Full Name,Expertise Check,Learning Session\n"
        "Ada,Tech,Afternoon\n"
        ",Design,Morning\n"
        "Bea,Design (UX),Morning\n"
    ).encode("utf-8")
    files = {"file": ("roster.csv", csv_bytes, "text/csv")}

    preview = seeded_client.post("/api/imports/students/preview", files=files)
    assert preview.status_code == 200
    assert preview.json()["valid_rows"] == 2
    assert preview.json()["rows"][1]["reason"] == "missing name"

    imported = seeded_client.post(
        "/api/imports/students", files={"file": ("roster.csv", csv_bytes, "text/csv")}
    )
    assert imported.status_code == 200
    assert imported.json()["message"] == "Imported 2, skipped 1, failed 0."
    assert len(seeded_client.get("/api/students").json()) == 2


def test_import_rejects_missing_headers(seeded_client):
    files = {"file": ("roster.csv", b"Name,Session\nAda,Morning\n", "text/csv")}
    response = seeded_client.post("/api/imports/students", files=files)
    assert response.status_code == 400
    assert "Missing required headers" in response.json()["detail"]


def test_export_zip(seeded_client):
    create_student(seeded_client)
    response = seeded_client.get("/api/exports/csv")
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert "student_success_criteria_rollup.csv" in archive.namelist()
        assert len(archive.namelist()) == 10


def test_database_configuration_error_is_reported():
    def broken_session():
        raise ConfigurationError("Cannot open mysql database", config_key="DB_BACKEND")
        yield

    app = create_application()
    app.dependency_overrides[get_db_session] = broken_session
    response = TestClient(app).get("/api/students")

    assert response.status_code == 503
    assert response.json() == {"detail": "Configuration error. Please check your settings."}
