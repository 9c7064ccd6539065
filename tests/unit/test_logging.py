"""Tests for structured logging of gate decisions and ledger audit events."""

import orjson
import pytest
from structlog.testing import capture_logs

from savings_app.errors import TooSoon
from savings_app.logging.config import (
    _orjson_dumps,
    get_ledger_logger,
    get_relayer_logger,
    log_gate_decision,
    log_state_transition,
    stringify_wide_ints,
)


class TestLoggingHelpers:
    """Test the standardized log helpers."""

    def test_gate_pass_logged_at_debug(self):
        logger = get_relayer_logger("test")
        with capture_logs() as logs:
            log_gate_decision(logger, "interval", True, "0xp1", "Interval elapsed")

        assert logs == [{
            "event": "Gate passed",
            "log_level": "debug",
            "subsystem": "relayer",
            "gate_name": "interval",
            "gate_result": "PASS",
            "plan_id": "0xp1",
            "reason": "Interval elapsed",
        }]

    def test_gate_failure_carries_context(self):
        logger = get_relayer_logger("test")
        with capture_logs() as logs:
            log_gate_decision(logger, "active", False, "0xp1", "Plan cancelled",
                              context={"ledger_now": 5})

        assert logs[0]["log_level"] == "info"
        assert logs[0]["gate_result"] == "FAIL"
        assert logs[0]["context"] == {"ledger_now": 5}

    def test_state_transition(self):
        logger = get_ledger_logger("test")
        with capture_logs() as logs:
            log_state_transition(logger, "0xp1", "active", "cancelled", "cancel_plan")

        assert logs[0]["event"] == "State transition"
        assert logs[0]["audit_trail"] is True
        assert logs[0]["to_state"] == "cancelled"


class TestLedgerAuditTrail:
    """Ledger operations leave structured audit events."""

    def test_rejection_is_logged_with_code(self, harness):
        plan_id = harness.create_plan(amount=100)
        with capture_logs() as logs:
            with pytest.raises(TooSoon):
                harness.ledger.execute_plan(harness.relayer.address, plan_id)

        rejected = [entry for entry in logs if entry["event"] == "Ledger operation rejected"]
        assert rejected[0]["operation"] == "execute_plan"
        assert rejected[0]["error_code"] == "too_soon"

    def test_cancellation_logs_transition(self, harness):
        plan_id = harness.create_plan(amount=100)
        with capture_logs() as logs:
            harness.ledger.cancel_plan(harness.owner.address, plan_id)

        transitions = [entry for entry in logs if entry["event"] == "State transition"]
        assert transitions[0]["plan_id"] == plan_id
        assert transitions[0]["trigger"] == "cancel_plan"


class TestJsonRendering:
    """Token quantities survive JSON rendering."""

    def test_wide_ints_become_strings(self):
        event = {"event": "Plan executed", "amount": 10 ** 24, "height": 7,
                 "negative": -(2 ** 70), "flag": True}

        rendered = stringify_wide_ints(None, "info", dict(event))

        assert rendered["amount"] == str(10 ** 24)
        assert rendered["negative"] == str(-(2 ** 70))
        assert rendered["height"] == 7
        assert rendered["flag"] is True

    def test_uint64_boundary_left_as_int(self):
        rendered = stringify_wide_ints(None, "info", {"value": 2 ** 64 - 1})
        assert rendered["value"] == 2 ** 64 - 1

    def test_rendered_line_is_json(self):
        event = stringify_wide_ints(None, "info", {"event": "x", "amount": 10 ** 30})
        assert orjson.loads(_orjson_dumps(event)) == {"event": "x", "amount": str(10 ** 30)}
