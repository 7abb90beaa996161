import json
import threading

import pytest

from domain import FacilityState, SessionMode, TokenEngine, TokenStatus
from store import PersistenceError, StateStore


def test_state_survives_reload_from_file(tmp_path):
    path = tmp_path / "state.json"
    engine = TokenEngine(StateStore(str(path)))
    doctor = engine.create_doctor("Dr. Rao", "count", limit=1)
    engine.book_consultation("Asha", doctor.id)
    engine.book_consultation("Bilal", doctor.id)
    engine.book_token("Esha", "pharmacy")

    reloaded = TokenEngine(StateStore(str(path)))
    restored = reloaded.get_doctor(doctor.id)
    assert restored.mode == SessionMode.COUNT
    assert [p.status for p in restored.patients] == [TokenStatus.ALLOCATED, TokenStatus.WAITING]
    assert reloaded.get_queue_stats("pharmacy")["last"] == 1
    assert json.loads(path.read_text())["doctors"][0]["patients"][1]["status"] == "waiting"


def test_missing_file_starts_empty(tmp_path):
    store = StateStore(str(tmp_path / "nested" / "state.json"))
    state = store.load()
    assert state.doctors == []
    assert set(state.queues) == {"pharmacy", "billing"}


def test_corrupt_file_raises(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    engine = TokenEngine(StateStore(str(path)))
    with pytest.raises(PersistenceError):
        engine.list_doctors()


def test_save_failure_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    engine = TokenEngine(StateStore(str(blocker / "state.json")))
    with pytest.raises(PersistenceError):
        engine.create_doctor("Dr. Rao", "count", limit=1)


def test_rollback_discards_changes():
    store = StateStore()
    state = store.begin()
    state.next_doctor_id = 10
    store.rollback()
    assert store.load().next_doctor_id == 1


def test_transaction_rolls_back_on_error():
    store = StateStore()
    with pytest.raises(RuntimeError):
        with store.transaction() as state:
            state.next_doctor_id = 10
            raise RuntimeError("boom")
    assert store.load().next_doctor_id == 1


def test_commit_persists_changes():
    store = StateStore()
    with store.transaction() as state:
        state.next_doctor_id = 5
    assert store.snapshot().next_doctor_id == 5


def test_nested_begin_is_refused():
    store = StateStore()
    store.begin()
    with pytest.raises(RuntimeError):
        store.begin()


def test_snapshot_is_a_copy():
    store = StateStore()
    store.save(FacilityState())
    store.snapshot().next_doctor_id = 99
    assert store.snapshot().next_doctor_id == 1


def test_concurrent_bookings_are_serialised(tmp_path):
    engine = TokenEngine(StateStore(str(tmp_path / "state.json")))
    doctor = engine.create_doctor("Dr. Rao", "count", limit=200)
    errors = []

    def book_many(worker):
        for i in range(20):
            try:
                engine.book_consultation(f"W{worker}-{i}", doctor.id)
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=book_many, args=(w,)) for w in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    patients = engine.get_doctor(doctor.id).patients
    assert [p.id for p in patients] == list(range(1, 161))
    assert all(p.status == TokenStatus.ALLOCATED for p in patients)


def test_other_threads_wait_for_open_transaction():
    store = StateStore()
    state = store.begin()
    seen = []

    def write():
        with store.transaction() as other:
            seen.append(other.next_doctor_id)

    worker = threading.Thread(target=write)
    worker.start()
    worker.join(timeout=0.2)
    assert worker.is_alive()

    state.next_doctor_id = 7
    store.commit()
    worker.join()
    assert seen == [7]
