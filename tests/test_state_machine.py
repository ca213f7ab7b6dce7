import pytest

from conftest import open_counter
from walkin_queue.errors import (
    CounterBusy,
    CounterMismatch,
    CounterNotFound,
    DuplicateActiveTicket,
    InvalidTransition,
    NoWaitingTickets,
    QueueFull,
    ServiceNotFound,
    SystemUnavailable,
    ValidationError,
)
from walkin_queue.models import MaintenanceMode, Service


def test_scenario_a_sequential_numbers_and_positions(machine):
    first = machine.request("alice", "reg")
    second = machine.request("bob", "reg")

    assert (first.queue_number, first.queue_position) == ("REG-001", 1)
    assert (second.queue_number, second.queue_position) == ("REG-002", 2)
    assert first.status == "waiting"
    assert second.estimated_wait_time == 10


def test_prefix_derived_from_name_when_not_configured(machine):
    assert machine.request("alice", "cli").queue_number == "CLI-001"


def test_scenario_b_call_claims_lowest_position(machine, coordinator):
    t1 = machine.request("alice", "reg")
    machine.request("bob", "reg")
    open_counter(coordinator)

    ticket, counter = machine.call_next("C1")

    assert ticket.ticket_id == t1.ticket_id
    assert ticket.status == "called"
    assert ticket.counter_id == "C1"
    assert ticket.called_at is not None
    assert counter.status == "busy"
    assert counter.current_serving_ticket == t1.ticket_id


def test_scenario_c_cancel_waiting_leaves_counter_alone(machine, coordinator):
    t1 = machine.request("alice", "reg")
    t2 = machine.request("bob", "reg")
    open_counter(coordinator)
    machine.call_next("C1")

    cancelled, holder = machine.cancel("bob", t2.ticket_id)

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at is not None
    assert holder is None
    counter = coordinator.get("C1")
    assert counter.status == "busy"
    assert counter.current_serving_ticket == t1.ticket_id


def test_scenario_d_start_and_complete_reopen_counter(machine, coordinator):
    t1 = machine.request("alice", "reg")
    open_counter(coordinator)
    machine.call_next("C1")

    serving, _ = machine.start("C1", t1.ticket_id)
    assert serving.status == "serving"
    assert serving.started_serving_at is not None

    done, counter = machine.complete("C1", t1.ticket_id)
    assert done.status == "completed"
    assert done.completed_at is not None
    assert counter.status == "open"
    assert counter.current_serving_ticket is None


def test_scenario_e_maintenance_blocks_only_admissions(machine, coordinator):
    waiting = machine.request("alice", "reg")
    open_counter(coordinator)
    maintenance = MaintenanceMode(enabled=True, message="Back at noon")

    with pytest.raises(SystemUnavailable) as exc:
        machine.request("bob", "reg", maintenance)
    assert exc.value.message == "Back at noon"

    ticket, _ = machine.call_next("C1")
    assert ticket.ticket_id == waiting.ticket_id
    machine.start("C1", ticket.ticket_id)
    done, _ = machine.complete("C1", ticket.ticket_id)
    assert done.status == "completed"


def test_duplicate_active_ticket_rejected_until_terminal(machine):
    first = machine.request("alice", "reg")
    with pytest.raises(DuplicateActiveTicket) as exc:
        machine.request("alice", "reg")
    assert exc.value.details["ticket_id"] == first.ticket_id

    # Another service is fine, and so is a new ticket once the first is cancelled.
    machine.request("alice", "cli")
    machine.cancel("alice", first.ticket_id)
    assert machine.request("alice", "reg").queue_number == "REG-002"


def test_call_next_orders_by_position_then_request_time(machine, coordinator, store):
    admitted = [machine.request(f"user{i}", "reg") for i in range(5)]
    machine.cancel("user1", admitted[1].ticket_id)
    open_counter(coordinator)

    order = []
    for _ in range(4):
        ticket, _ = machine.call_next("C1")
        order.append((ticket.queue_position, ticket.requested_at))
        machine.start("C1", ticket.ticket_id)
        machine.complete("C1", ticket.ticket_id)

    assert order == sorted(order)
    with pytest.raises(NoWaitingTickets):
        machine.call_next("C1")


def test_terminal_tickets_are_immutable(machine, coordinator):
    t1 = machine.request("alice", "reg")
    t2 = machine.request("bob", "reg")
    open_counter(coordinator)
    machine.call_next("C1")
    machine.start("C1", t1.ticket_id)
    machine.complete("C1", t1.ticket_id)
    machine.cancel("bob", t2.ticket_id)

    with pytest.raises(InvalidTransition):
        machine.cancel("alice", t1.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.start("C1", t1.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.complete("C1", t1.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.cancel("bob", t2.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.call("C1", t2.ticket_id)


def test_start_and_complete_require_the_holding_counter(machine, coordinator):
    t1 = machine.request("alice", "reg")
    open_counter(coordinator, "C1", number=1)
    open_counter(coordinator, "C2", number=2)
    machine.call_next("C1")

    with pytest.raises(CounterMismatch):
        machine.start("C2", t1.ticket_id)
    machine.start("C1", t1.ticket_id)
    with pytest.raises(CounterMismatch):
        machine.complete("C2", t1.ticket_id)
    assert machine.store.get_ticket(t1.ticket_id).status == "serving"


def test_complete_requires_serving(machine, coordinator):
    t1 = machine.request("alice", "reg")
    open_counter(coordinator)
    machine.call_next("C1")

    with pytest.raises(InvalidTransition):
        machine.complete("C1", t1.ticket_id)
    assert coordinator.get("C1").current_serving_ticket == t1.ticket_id


def test_call_guards(machine, coordinator):
    machine.request("alice", "reg")
    coordinator.register_counter("C1", service_id="reg", counter_number=1, status="closed")
    with pytest.raises(InvalidTransition):
        machine.call_next("C1")
    with pytest.raises(CounterNotFound):
        machine.call_next("nope")

    coordinator.set_status("C1", "open")
    machine.call_next("C1")
    machine.request("bob", "reg")
    with pytest.raises(CounterBusy):
        machine.call_next("C1")


def test_counter_on_break_can_still_call(machine, coordinator):
    machine.request("alice", "reg")
    coordinator.register_counter("C1", service_id="reg", counter_number=1, status="break")
    ticket, counter = machine.call_next("C1")
    assert ticket.status == "called"
    assert counter.status == "busy"


def test_explicit_call_requires_matching_service(machine, coordinator):
    clinic_ticket = machine.request("alice", "cli")
    open_counter(coordinator, "C1", service_id="reg")

    with pytest.raises(CounterMismatch):
        machine.call("C1", clinic_ticket.ticket_id)
    assert coordinator.get("C1").current_serving_ticket is None
    assert machine.store.get_ticket(clinic_ticket.ticket_id).status == "waiting"


def test_cancel_requires_owner(machine):
    ticket = machine.request("alice", "reg")
    with pytest.raises(InvalidTransition):
        machine.cancel("mallory", ticket.ticket_id)
    assert machine.store.get_ticket(ticket.ticket_id).status == "waiting"


def test_cancel_called_ticket_frees_counter(machine, coordinator):
    ticket = machine.request("alice", "reg")
    open_counter(coordinator)
    machine.call_next("C1")

    cancelled, counter = machine.cancel("alice", ticket.ticket_id)

    assert cancelled.status == "cancelled"
    assert counter.current_serving_ticket is None
    assert counter.status == "open"


def test_cannot_cancel_while_serving(machine, coordinator):
    ticket = machine.request("alice", "reg")
    open_counter(coordinator)
    machine.call_next("C1")
    machine.start("C1", ticket.ticket_id)

    with pytest.raises(InvalidTransition):
        machine.cancel("alice", ticket.ticket_id)


def test_unknown_or_inactive_service(machine, directory):
    with pytest.raises(ServiceNotFound):
        machine.request("alice", "missing")
    directory.put(Service(service_id="old", name="Archive", is_active=False))
    with pytest.raises(ServiceNotFound):
        machine.request("alice", "old")
    with pytest.raises(ServiceNotFound):
        machine.next_ticket_number("missing")


def test_missing_input_is_validation_error(machine):
    with pytest.raises(ValidationError):
        machine.request("", "reg")
    with pytest.raises(ValidationError):
        machine.request("alice", "")


def test_max_queue_size_limits_waiting_tickets(machine, directory, coordinator):
    directory.put(Service(service_id="small", name="Small Desk", max_queue_size=2))
    machine.request("a", "small")
    machine.request("b", "small")
    with pytest.raises(QueueFull):
        machine.request("c", "small")

    open_counter(coordinator, "S1", service_id="small")
    machine.call_next("S1")
    assert machine.request("c", "small").queue_position == 2


def test_numbering_restarts_each_day_but_position_counts_leftovers(machine, clock):
    machine.request("alice", "reg")
    machine.request("bob", "reg")
    assert machine.next_ticket_number("reg") == "REG-003"

    clock.advance(days=1)
    ticket = machine.request("carol", "reg")

    assert ticket.queue_number == "REG-001"
    assert ticket.queue_position == 3


def test_terminal_tickets_fail_with_invalid_transition_from_any_counter(machine, coordinator):
    open_counter(coordinator, "C1", number=1)
    open_counter(coordinator, "C2", number=2)
    open_counter(coordinator, "K1", service_id="cli", number=1)

    cancelled_while_waiting = machine.request("alice", "reg")
    machine.cancel("alice", cancelled_while_waiting.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.start("C1", cancelled_while_waiting.ticket_id)

    done = machine.request("bob", "reg")
    machine.call_next("C1")
    machine.start("C1", done.ticket_id)
    machine.complete("C1", done.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.complete("C2", done.ticket_id)

    clinic = machine.request("carol", "cli")
    machine.cancel("carol", clinic.ticket_id)
    with pytest.raises(InvalidTransition):
        machine.call("C1", clinic.ticket_id)
    assert coordinator.get("K1").current_serving_ticket is None
