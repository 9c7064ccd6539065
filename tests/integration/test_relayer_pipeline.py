"""
End-to-end tests: ledger node, relayer engine and local store together.

Covers multi-day execution, cancellation discovered mid-run, relayer restart
from the durable cursor and fee accounting.
"""

from dataclasses import replace

import pytest

from savings_app.config.defaults import get_default_config
from savings_app.engine import SavingsRelayerEngine
from savings_app.ledger.models import NotificationKind

DAY = 86400


@pytest.fixture
def config(temp_db):
    defaults = get_default_config()
    return replace(defaults, store=replace(defaults.store, db_path=temp_db))


def make_engine(config, client, clock):
    engine = SavingsRelayerEngine(config, client=client)
    engine.executor.clock = clock
    return engine


class TestRelayerPipeline:
    """Discovery, execution and accounting across several ticks."""

    def test_daily_plan_over_a_week(self, harness, relayer_client, config):
        harness.set_fee(base_fee=1, percent_fee_bps=100)
        plan_id = harness.create_plan(amount=10_000)
        engine = make_engine(config, relayer_client, harness.clock)

        for _ in range(7):
            harness.clock.advance(DAY)
            summary = engine.run_once()
            assert [e["outcome"] for e in summary["executions"]] == ["executed"]
        engine.executor.close()

        # 1 base + 1% of 10_000 per execution
        assert harness.ledger.relayer_credit(harness.relayer.address) == 7 * 101
        assert harness.ledger.savings_balance(harness.owner.address,
                                              harness.token.address) == 7 * (10_000 - 101)
        assert len(engine.cache.get_executions(plan_id)) == 7
        executed = harness.ledger.notifications(kind=NotificationKind.PLAN_EXECUTED)
        assert len(executed) == 7

        receipt = relayer_client.withdraw_relayer_credit()
        assert receipt.succeeded
        assert harness.token.balance_of(harness.relayer.address) == 7 * 101

    def test_repeated_ticks_within_interval_execute_once(self, harness, relayer_client,
                                                         config):
        harness.create_plan(amount=100)
        engine = make_engine(config, relayer_client, harness.clock)
        harness.clock.advance(DAY)

        first = engine.run_once()
        harness.clock.advance(DAY - 1)
        second = engine.run_once()
        engine.executor.close()

        assert len(first["executions"]) == 1
        assert second["executions"] == []
        assert harness.ledger.savings_balance(harness.owner.address,
                                              harness.token.address) == 100

    def test_cancellation_stops_execution(self, harness, relayer_client, config):
        plan_id = harness.create_plan(amount=100)
        engine = make_engine(config, relayer_client, harness.clock)
        engine.run_once()

        harness.ledger.cancel_plan(harness.owner.address, plan_id)
        harness.clock.advance(DAY)
        summary = engine.run_once()
        engine.executor.close()

        assert summary["executions"] == []
        assert not engine.cache.get_plan(plan_id).active
        assert engine.cache.get_executions(plan_id) == []

    def test_restart_resumes_from_cursor(self, harness, relayer_client, config):
        first_plan = harness.create_plan(amount=100)
        engine = make_engine(config, relayer_client, harness.clock)
        engine.run_once()
        engine.executor.close()
        cursor_after_first_run = engine.cursor.load()

        second_plan = harness.create_plan(amount=200)
        harness.clock.advance(DAY)
        restarted = make_engine(config, relayer_client, harness.clock)
        summary = restarted.run_once()
        restarted.executor.close()

        assert restarted.cursor.load() > cursor_after_first_run
        assert summary["plans_cached"] == 1
        assert {e["plan_id"] for e in summary["executions"]} == {first_plan, second_plan}

    def test_fee_policy_change_mid_run(self, harness, relayer_client, config):
        harness.set_fee(base_fee=5)
        harness.create_plan(amount=100)
        engine = make_engine(config, relayer_client, harness.clock)

        harness.clock.advance(DAY)
        engine.run_once()
        harness.set_fee(base_fee=7, fee_token=harness.other_token.address)
        harness.clock.advance(DAY)
        engine.run_once()
        engine.executor.close()

        # Second fee is in another token and is reported but not collected
        assert harness.ledger.relayer_credit(harness.relayer.address,
                                             harness.token.address) == 5
        assert harness.ledger.relayer_credit(harness.relayer.address,
                                             harness.other_token.address) == 0
        assert harness.ledger.savings_balance(harness.owner.address,
                                              harness.token.address) == 95 + 100
