import threading

import pytest

from portrelay import ConnectionTable


def test_reserve_until_full():
    table = ConnectionTable(3)
    slots = [table.reserve(None, None) for _ in range(3)]

    assert all(slot is not None and slot.active for slot in slots)
    assert table.active_count() == 3
    assert table.reserve(None, None) is None


def test_reserve_takes_lowest_free_index():
    table = ConnectionTable(3)
    first, second, third = (table.reserve(None, None) for _ in range(3))

    table.release(second)
    replacement = table.reserve(None, None)

    assert replacement is not second
    assert table.active_slots() == [first, replacement, third]


def test_release_is_idempotent():
    table = ConnectionTable(2)
    slot = table.reserve(None, None)

    table.release(slot)
    table.release(slot)

    assert not slot.active
    assert table.active_count() == 0


def test_releasing_stale_slot_keeps_new_occupant():
    table = ConnectionTable(1)
    old = table.reserve(None, None)
    table.release(old)
    new = table.reserve(None, None)

    table.release(old)

    assert new.active
    assert table.active_slots() == [new]
    assert table.reserve(None, None) is None


def test_one_release_frees_exactly_one_reservation():
    table = ConnectionTable(5)
    slots = [table.reserve(None, None) for _ in range(5)]

    table.release(slots[2])

    assert table.reserve(None, None) is not None
    assert table.reserve(None, None) is None


def test_for_each_active_runs_without_lock():
    table = ConnectionTable(4)
    for _ in range(4):
        table.reserve(None, None)

    # release() takes the table lock; this would deadlock if it were held
    worker = threading.Thread(target=table.for_each_active, args=(table.release,), daemon=True)
    worker.start()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert table.active_count() == 0


def test_concurrent_reserve_never_exceeds_capacity():
    table = ConnectionTable(100)
    claimed = []
    lock = threading.Lock()

    def grab():
        for _ in range(50):
            slot = table.reserve(None, None)
            if slot is not None:
                with lock:
                    claimed.append(slot)

    threads = [threading.Thread(target=grab) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(claimed) == 100
    assert len(set(map(id, claimed))) == 100
    assert table.active_count() == 100


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        ConnectionTable(0)
