from conftest import open_counter
from walkin_queue.projections import QueueProjections


def test_service_queue_status_counts_and_current_serving(machine, coordinator, store):
    tickets = [machine.request(f"u{i}", "reg") for i in range(4)]
    open_counter(coordinator, "C1", number=1)
    open_counter(coordinator, "C2", number=2)
    machine.call_next("C1")
    machine.call_next("C2")
    machine.start("C1", tickets[0].ticket_id)

    status = QueueProjections(store).service_queue_status("reg")

    assert status.waiting_count == 2
    assert status.called_count == 1
    assert status.serving_count == 1
    assert status.current_serving == "REG-001"
    assert status.next_position == 3
    assert status.average_wait_time == round((15 + 20) / 2)


def test_empty_service_status(store):
    status = QueueProjections(store).service_queue_status("reg")
    assert status.to_dict() == {
        "service_id": "reg",
        "waiting_count": 0,
        "called_count": 0,
        "serving_count": 0,
        "current_serving": None,
        "next_position": None,
        "average_wait_time": None,
    }


def test_current_rank_moves_while_position_stays_frozen(machine, coordinator, store):
    tickets = [machine.request(f"u{i}", "reg") for i in range(3)]
    projections = QueueProjections(store)
    assert projections.current_rank(tickets[2].ticket_id) == 3

    machine.cancel("u0", tickets[0].ticket_id)
    open_counter(coordinator)
    machine.call_next("C1")

    assert projections.current_rank(tickets[2].ticket_id) == 1
    assert store.get_ticket(tickets[2].ticket_id).queue_position == 3
    assert projections.current_rank(tickets[1].ticket_id) is None


def test_active_entries_display_order(machine, coordinator, store):
    tickets = [machine.request(f"u{i}", "reg") for i in range(3)]
    open_counter(coordinator, "C1", number=1)
    open_counter(coordinator, "C2", number=2)
    machine.call_next("C1")
    machine.call_next("C2")
    machine.start("C2", tickets[1].ticket_id)

    entries = QueueProjections(store).active_entries("reg")
    assert [(t.queue_number, t.status) for t in entries] == [
        ("REG-002", "serving"),
        ("REG-001", "called"),
        ("REG-003", "waiting"),
    ]


def test_user_history_newest_first_with_paging(machine):
    first = machine.request("alice", "reg")
    machine.cancel("alice", first.ticket_id)
    second = machine.request("alice", "reg")
    third = machine.request("alice", "cli")

    history = QueueProjections(machine.store).user_history("alice", limit=2)
    assert history["total"] == 3
    assert [t.ticket_id for t in history["tickets"]] == [third.ticket_id, second.ticket_id]

    page2 = QueueProjections(machine.store).user_history("alice", limit=2, offset=2)
    assert [t.ticket_id for t in page2["tickets"]] == [first.ticket_id]


def test_counter_stats(machine, coordinator, clock, store):
    open_counter(coordinator)
    served = machine.request("alice", "reg")
    dropped = machine.request("bob", "reg")

    machine.call_next("C1")
    machine.start("C1", served.ticket_id)
    clock.advance(minutes=6)
    machine.complete("C1", served.ticket_id)
    machine.call_next("C1")
    machine.cancel("bob", dropped.ticket_id)

    stats = QueueProjections(store).counter_stats("C1")
    assert stats["completed"] == 1
    assert stats["cancelled"] == 1
    assert 6.0 <= stats["avg_service_time"] <= 6.1
    assert stats["min_service_time"] == stats["max_service_time"] == stats["avg_service_time"]
