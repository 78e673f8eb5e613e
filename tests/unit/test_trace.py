"""Unit tests for request ID tracing."""

import pytest
import structlog

from image_gateway.gateway.middleware.trace import (
    REQUEST_ID_HEADER,
    RequestTimer,
    extract_or_generate_request_id,
    get_request_id,
    set_request_id,
)
from image_gateway.main import configure_logging


@pytest.fixture(autouse=True)
def clean_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


class TestRequestIds:
    """Generation and propagation."""

    def test_caller_id_reused(self):
        assert extract_or_generate_request_id({REQUEST_ID_HEADER: "abc"}) == "abc"

    def test_generated_ids_are_unique(self):
        first = extract_or_generate_request_id({})
        second = extract_or_generate_request_id({})

        assert first.startswith("req_")
        assert first != second

    def test_set_request_id_replaces_previous_context(self):
        structlog.contextvars.bind_contextvars(stale="value")

        set_request_id("req_1")

        assert get_request_id() == "req_1"
        assert structlog.contextvars.get_contextvars() == {"request_id": "req_1"}

    def test_log_events_carry_request_id(self, test_settings):
        configure_logging(test_settings)
        set_request_id("req_2")

        processors = structlog.get_config()["processors"]
        event = processors[0](None, "info", {"event": "Model run completed"})

        assert processors[0] is structlog.contextvars.merge_contextvars
        assert event["request_id"] == "req_2"


def test_request_timer():
    timer = RequestTimer()
    assert timer.total_ms is None

    timer.start().stop()
    assert timer.total_ms >= 0
