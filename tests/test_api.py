import pytest

import main
from domain import TokenEngine
from store import StateStore


def create_doctor(client, **overrides):
    body = {"name": "Dr. Rao", "mode": "count", "limit": 2, "avg_time": 10}
    body.update(overrides)
    resp = client.post("/doctors", json=body)
    assert resp.status_code == 200
    return resp.json()


def test_create_and_list_doctors(client):
    doctor = create_doctor(
        client, mode="time", limit=None, start_time="09:00", end_time="17:00", buffer_time=2
    )
    assert doctor["max_patients"] == 40

    resp = client.get("/doctors")
    assert [d["id"] for d in resp.json()] == [doctor["id"]]


def test_create_doctor_bad_time(client):
    resp = client.post(
        "/doctors", json={"name": "Dr. X", "mode": "time", "start_time": "nine"}
    )
    assert resp.status_code == 400


def test_booking_flow(client):
    doctor = create_doctor(client)
    names = ["Asha", "Bilal", "Chen"]
    tokens = [
        client.post("/consultations/book", json={"name": n, "doctor_id": doctor["id"]}).json()
        for n in names
    ]
    assert [t["status"] for t in tokens] == ["allocated", "allocated", "waiting"]
    assert tokens[1]["estimated_slot"] == "9:10 AM"

    resp = client.post(f"/doctors/{doctor['id']}/tokens/1/complete")
    assert resp.json()["status"] == "completed"

    stats = client.get(f"/doctors/{doctor['id']}/stats").json()
    assert stats["completed"] == 1
    assert stats["allocated_count"] == 1
    assert stats["waiting_count"] == 1
    assert [p["status"] for p in stats["patients"]] == ["completed", "allocated", "waiting"]

    client.post(f"/doctors/{doctor['id']}/tokens/2/complete")
    resp = client.post("/consultations/book", json={"name": "Dev", "doctor_id": doctor["id"]})
    assert resp.status_code == 400
    assert "Session completed" in resp.json()["detail"]


def test_no_show_cancel_and_leave(client):
    doctor = create_doctor(client, limit=5)
    for n in ("Asha", "Bilal", "Chen"):
        client.post("/consultations/book", json={"name": n, "doctor_id": doctor["id"]})

    assert client.post(f"/doctors/{doctor['id']}/tokens/1/no-show").json()["status"] == "no-show"
    assert client.post(f"/doctors/{doctor['id']}/tokens/2/cancel").json()["status"] == "no-show"
    assert client.get("/session").json()["token"] == 3

    resp = client.post(f"/doctors/{doctor['id']}/tokens/3/leave")
    assert resp.json()["status"] == "no-show"
    assert client.get("/session").json() is None


def test_not_found_errors(client):
    doctor = create_doctor(client)
    assert client.post("/consultations/book", json={"name": "A", "doctor_id": 99}).status_code == 404
    assert client.post(f"/doctors/{doctor['id']}/tokens/7/complete").status_code == 404
    assert client.post("/doctors/99/tokens/1/no-show").status_code == 404
    assert client.get("/doctors/99/stats").status_code == 404
    assert client.delete("/doctors/99").status_code == 404


def test_no_active_doctor(client):
    resp = client.post("/consultations/book", json={"name": "Asha"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No active doctors available."


def test_delete_doctor(client):
    doctor = create_doctor(client)
    assert client.delete(f"/doctors/{doctor['id']}").status_code == 200
    assert client.get("/doctors").json() == []


def test_service_queue_endpoints(client):
    client.post("/queues/pharmacy/book", json={"name": "Esha"})
    client.post("/queues/pharmacy/book", json={"name": "Farid"})

    called = client.post("/queues/pharmacy/advance").json()
    assert (called["id"], called["status"]) == (1, "completed")

    stats = client.get("/queues/pharmacy").json()
    assert (stats["current"], stats["last"], stats["waiting"]) == (1, 2, 1)

    assert client.post("/queues/radiology/book", json={"name": "X"}).status_code == 400
    assert client.get("/queues/radiology").status_code == 400
    assert client.post("/queues/consultation/book", json={"name": "X"}).status_code == 400


def test_reset(client):
    create_doctor(client)
    assert client.post("/admin/reset").json() == {"detail": "State cleared"}
    assert client.get("/doctors").json() == []


def test_persistence_failure_is_reported(monkeypatch, tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{broken")
    monkeypatch.setattr(main, "engine", TokenEngine(StateStore(str(path))))

    from fastapi.testclient import TestClient

    client = TestClient(main.app, raise_server_exceptions=False)
    resp = client.get("/doctors")
    assert resp.status_code == 503


def test_docs_page(client):
    resp = client.get("/docs")
    assert resp.status_code == 200
    assert "QueueSense" in resp.text


@pytest.mark.parametrize("path", ["/doctors", "/queues/billing", "/session"])
def test_read_endpoints_on_empty_state(client, path):
    assert client.get(path).status_code == 200


def test_bad_clock_rejected_before_any_booking(client):
    resp = client.post(
        "/doctors", json={"name": "Dr. X", "mode": "count", "limit": 2, "start_time": "nine"}
    )
    assert resp.status_code == 400
    resp = client.post("/consultations/book", json={"name": "Asha"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No active doctors available."
