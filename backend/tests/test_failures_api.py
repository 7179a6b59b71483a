from conftest import students

ACTOR = {"X-Actor-Id": "admin-1"}


def _seed_failures(client, catalog) -> list[dict]:
    catalog.exam_period()
    catalog.venue("Room", 30)
    for code in ("BIG1", "BIG2"):
        unit = catalog.unit(code)
        klass = catalog.klass(f"Everyone {code}")
        catalog.enroll(unit, klass, students(code, 40))
    catalog.commit()
    response = client.post("/api/scheduling/batches", json={"semester_id": catalog.semester.id})
    return response.json()["failures"]


def test_list_get_and_filter_failures(client, catalog):
    failures = _seed_failures(client, catalog)

    listed = client.get("/api/failures", params={"semester_id": catalog.semester.id, "status": "pending"})
    searched = client.get("/api/failures", params={"search": "big2"})
    fetched = client.get(f"/api/failures/{failures[0]['id']}")
    by_reason = client.get("/api/failures", params={"reason_code": "STUDENT_CONFLICT"})

    assert listed.status_code == 200
    assert {item["id"] for item in listed.json()} == {item["id"] for item in failures}
    assert [item["snapshot"]["unit_code"] for item in searched.json()] == ["BIG2"]
    assert fetched.json()["conflict_details"]["reason_code"] == "NO_VENUE_CAPACITY"
    assert by_reason.json() == []


def test_missing_failure_returns_not_found_payload(client):
    response = client.get("/api/failures/unknown")

    assert response.status_code == 404
    assert response.json() == {"message": "Scheduling failure with id unknown not found", "details": {}}


def test_resolve_ignore_revert_flow(client, catalog):
    first, second = _seed_failures(client, catalog)

    resolved = client.post(f"/api/failures/{first['id']}/resolve", json={"notes": "booked the gym"}, headers=ACTOR)
    repeated = client.post(f"/api/failures/{first['id']}/resolve", headers=ACTOR)
    blocked = client.post(f"/api/failures/{first['id']}/ignore", headers=ACTOR)
    ignored = client.post(f"/api/failures/{second['id']}/ignore")
    reverted = client.post(f"/api/failures/{second['id']}/revert", json={"notes": "reopened"})

    assert resolved.status_code == 200
    assert resolved.json()["status"] == "resolved"
    assert resolved.json()["resolved_by_id"] == "admin-1"
    assert resolved.json()["resolution_notes"] == "booked the gym"
    assert repeated.status_code == 200
    assert repeated.json()["resolution_notes"] == "booked the gym"
    assert blocked.status_code == 409
    assert blocked.json()["details"] == {"current_status": "resolved", "action": "ignore"}
    assert ignored.json()["status"] == "ignored"
    assert reverted.json()["status"] == "pending"
    assert reverted.json()["resolution_notes"] == "reopened"


def test_statistics_reflect_triage(client, catalog):
    first, _ = _seed_failures(client, catalog)
    client.post(f"/api/failures/{first['id']}/ignore")

    stats = client.get("/api/failures/statistics", params={"semester_id": catalog.semester.id}).json()

    assert stats == {
        "total": 2,
        "pending": 1,
        "resolved": 0,
        "retried": 0,
        "ignored": 1,
        "by_reason": {"NO_VENUE_CAPACITY": 2},
    }


def test_retry_endpoint_schedules_after_capacity_added(client, catalog):
    first, second = _seed_failures(client, catalog)
    catalog.venue("Great Hall", 50)
    catalog.commit()

    response = client.post(
        "/api/failures/retry",
        json={"failure_ids": [first["id"], second["id"]], "notes": "new hall"},
        headers=ACTOR,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["batch"]["kind"] == "retry"
    outcomes = {item["failure_id"]: item for item in payload["outcomes"]}
    assert {item["outcome"] for item in outcomes.values()} == {"scheduled"}
    refreshed = client.get(f"/api/failures/{first['id']}").json()
    assert refreshed["status"] == "retried"
    assert refreshed["resolution_notes"].startswith("new hall")

    again = client.post("/api/failures/retry", json={"failure_ids": [first["id"]]}).json()
    assert again["batch"] is None
    assert again["outcomes"] == [
        {"failure_id": first["id"], "outcome": "already_retried", "assignment_id": None, "new_failure_id": None}
    ]


def test_retry_rejects_resolved_failure(client, catalog):
    first, _ = _seed_failures(client, catalog)
    client.post(f"/api/failures/{first['id']}/resolve")

    response = client.post("/api/failures/retry", json={"failure_ids": [first["id"]]})

    assert response.status_code == 409
    assert response.json()["details"]["action"] == "retry"


def test_delete_failure(client, catalog):
    first, _ = _seed_failures(client, catalog)

    deleted = client.delete(f"/api/failures/{first['id']}", headers=ACTOR)

    assert deleted.status_code == 204
    assert client.get(f"/api/failures/{first['id']}").status_code == 404
    assert client.delete(f"/api/failures/{first['id']}").status_code == 404
