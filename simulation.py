from domain import TokenEngine
from store import StateStore


def print_doctor(engine: TokenEngine, doctor_id: int) -> None:
    stats = engine.get_doctor_stats(doctor_id)
    print(
        f"\n{stats['name']}: {stats['allocated_count']} allocated, "
        f"{stats['waiting_count']} waiting, {stats['completed']} completed, "
        f"{stats['no_show']} no-show (max {stats['max_patients']})"
    )
    for p in stats["patients"]:
        print(f"    #{p.id} {p.name} status={p.status.value} slot={p.estimated_slot}")


def run_simulation() -> None:
    """
    Simulate one consultation session plus the pharmacy counter.

    Demonstrates:
    - Capacity derived from a working window.
    - Allocation vs waiting list in booking order.
    - A completion freeing exactly one slot.
    - No-shows promoting the next waiting patient.
    - The session closing once every slot is completed.
    """
    engine = TokenEngine(StateStore())

    d1 = engine.create_doctor(
        "Dr. Mehta", "time", start_time="09:00", end_time="17:00", avg_time=10, buffer_time=2
    )
    d2 = engine.create_doctor("Dr. Rao", "count", limit=2, start_time="09:00", avg_time=10)
    print("Doctors created:", d1.id, d2.id)
    print("Dr. Mehta capacity:", d1.max_patients)

    for name in ("Asha", "Bilal", "Chen"):
        booking = engine.book_consultation(name, d2.id)
        print(f"{name} -> token #{booking.id} {booking.status.value} at {booking.estimated_slot}")
    print_doctor(engine, d2.id)

    engine.mark_completed(d2.id, 1)
    print("\nAfter Asha completed:")
    print_doctor(engine, d2.id)

    engine.mark_no_show(d2.id, 2)
    print("\nAfter Bilal did not show up:")
    print_doctor(engine, d2.id)

    engine.mark_completed(d2.id, 3)
    try:
        engine.book_consultation("Dev", d2.id)
    except ValueError as exc:
        print("\nLate booking refused:", exc)

    engine.book_token("Esha", "pharmacy")
    engine.book_token("Farid", "pharmacy")
    called = engine.advance_queue("pharmacy")
    print("\nPharmacy now serving:", called.name if called else None)
    print("Pharmacy waiting:", engine.get_queue_stats("pharmacy")["waiting"])


if __name__ == "__main__":
    run_simulation()
