from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from walkin_queue.errors import ValidationError
from walkin_queue.models import Service
from walkin_queue.sequencer import (
    estimated_wait_minutes,
    format_queue_number,
    next_queue_number,
    parse_suffix,
    position_for,
    queue_prefix,
    service_day,
)


def test_prefix_prefers_explicit_trimmed_uppercase():
    assert queue_prefix(Service(service_id="1", name="Registrar", queue_prefix="  reg ")) == "REG"


def test_prefix_falls_back_to_name_when_blank():
    assert queue_prefix(Service(service_id="1", name="Clinic", queue_prefix="   ")) == "CLI"
    assert queue_prefix(Service(service_id="1", name="x-ray")) == "X-R"


def test_prefix_requires_name_or_prefix():
    with pytest.raises(ValidationError):
        queue_prefix(Service(service_id="1", name="  "))


def test_format_pads_to_three_digits_and_widens():
    assert format_queue_number("REG", 1) == "REG-001"
    assert format_queue_number("REG", 42) == "REG-042"
    assert format_queue_number("REG", 1000) == "REG-1000"


def test_next_number_uses_highest_suffix_for_prefix():
    existing = ["REG-003", "REG-001", "CLI-009", "REG-junk", "REG-002"]
    assert next_queue_number("REG", existing) == "REG-004"
    assert next_queue_number("REG", []) == "REG-001"
    assert next_queue_number("REG", ["REG-999"]) == "REG-1000"


def test_parse_suffix_ignores_other_prefixes():
    assert parse_suffix("REG-007", "REG") == 7
    assert parse_suffix("XREG-007", "REG") is None
    assert parse_suffix("REG007", "REG") is None


def test_service_day_uses_operating_timezone():
    late_utc = datetime(2026, 10, 18, 23, 30, tzinfo=timezone.utc)
    assert service_day(late_utc, timezone.utc) == date(2026, 10, 18)
    assert service_day(late_utc, ZoneInfo("Asia/Manila")) == date(2026, 10, 19)


def test_position_and_linear_wait_estimate():
    assert position_for(0) == 1
    assert position_for(4) == 5
    assert estimated_wait_minutes(5, 3) == 15
