"""Tests for due-plan execution."""

from dataclasses import replace
from unittest.mock import Mock

import pytest

from savings_app.errors import LedgerUnavailableError, ReceiptTimeoutError
from savings_app.ledger.node import METHOD_COSTS, ReceiptStatus, TxReceipt
from savings_app.persistence.plan_store import PlanCache
from savings_app.relayer.executor import ExecutionOutcome, PlanExecutor

DAY = 86400


@pytest.fixture
def cache(temp_db):
    return PlanCache(temp_db)


@pytest.fixture
def executor(harness, relayer_client, cache):
    executor = PlanExecutor(relayer_client, cache, max_workers=2, clock=harness.clock)
    yield executor
    executor.close()


def cached_plan(harness, cache, amount=100):
    plan_id = harness.create_plan(amount=amount)
    cache.upsert_plan(harness.ledger.get_plan(plan_id))
    return plan_id


class TestPlanExecutor:
    """Test execution passes against a live ledger."""

    def test_executes_due_plan_and_records_history(self, harness, executor, cache):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)

        [result] = executor.run_once()

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert cache.get_plan(plan_id).last_executed == harness.clock.now
        [record] = cache.get_executions(plan_id)
        assert record.tx_ref == result.tx_hash
        assert record.cost_paid == METHOD_COSTS["execute_plan"]
        assert executor.in_flight == frozenset()

    def test_nothing_due(self, harness, executor, cache):
        cached_plan(harness, cache)
        harness.clock.advance(DAY - 1)
        assert executor.run_once() == []

    def test_executes_each_due_plan(self, harness, executor, cache):
        ids = {cached_plan(harness, cache, amount) for amount in (100, 200, 300)}
        harness.clock.advance(DAY)

        results = executor.run_once()

        assert {r.plan_id for r in results} == ids
        assert all(r.outcome == ExecutionOutcome.EXECUTED for r in results)
        assert harness.ledger.savings_balance(harness.owner.address,
                                              harness.token.address) == 600

    def test_stale_cache_is_refreshed_not_submitted(self, harness, executor, cache):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        harness.ledger.execute_plan(harness.relayer.address, plan_id)
        height = harness.ledger.height

        [result] = executor.run_once()

        assert result.outcome == ExecutionOutcome.SKIPPED
        assert result.error == "too_soon"
        assert harness.ledger.height == height
        assert cache.get_plan(plan_id).last_executed == harness.clock.now
        assert cache.get_executions(plan_id) == []

    def test_cancelled_plan_is_skipped_and_cached_inactive(self, harness, executor, cache):
        plan_id = cached_plan(harness, cache)
        harness.ledger.cancel_plan(harness.owner.address, plan_id)
        harness.clock.advance(DAY)

        [result] = executor.run_once()

        assert result.outcome == ExecutionOutcome.SKIPPED
        assert result.error == "plan_inactive"
        assert not cache.get_plan(plan_id).active

    def test_plan_missing_on_ledger_is_skipped(self, harness, executor, cache):
        plan_id = cached_plan(harness, cache)
        cache.upsert_plan(replace(cache.get_plan(plan_id), id="0xunknown"))
        harness.clock.advance(DAY)

        results = {r.plan_id: r for r in executor.run_once()}

        assert results["0xunknown"].outcome == ExecutionOutcome.SKIPPED
        assert results["0xunknown"].error == "plan_not_found"
        assert results[plan_id].outcome == ExecutionOutcome.EXECUTED

    def test_rejected_execution_leaves_cache_untouched(self, harness, executor, cache):
        plan_id = cached_plan(harness, cache)
        harness.token.approve(harness.owner.address, harness.ledger.address, 0)
        before = cache.get_plan(plan_id)
        harness.clock.advance(DAY)

        [result] = executor.run_once()

        assert result.outcome == ExecutionOutcome.FAILED
        assert result.error == "transfer_rejected"
        assert result.tx_hash is not None
        assert cache.get_plan(plan_id) == before
        assert cache.get_executions(plan_id) == []

    def test_in_flight_plan_is_not_resubmitted(self, harness, executor, cache):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        assert executor._claim(plan_id)

        [result] = executor.run_once()

        assert result.outcome == ExecutionOutcome.IN_FLIGHT
        assert harness.ledger.get_plan(plan_id).last_executed == harness.clock.now - DAY


class TestExecutorFailures:
    """Transport failures are logged and retried on the next pass."""

    def make_executor(self, harness, cache, client):
        return PlanExecutor(client, cache, max_workers=1, clock=harness.clock)

    def test_ledger_outage_releases_claim(self, harness, cache):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        client = Mock()
        client.get_plan.side_effect = LedgerUnavailableError("down")
        executor = self.make_executor(harness, cache, client)

        [result] = executor.run_once()
        executor.close()

        assert result.outcome == ExecutionOutcome.FAILED
        assert plan_id not in executor.in_flight

    def test_receipt_timeout_reuses_transaction_id(self, harness, cache):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        live = harness.ledger.get_plan(plan_id)
        receipt = TxReceipt(tx_hash="0xabc", tx_id="unused", method="execute_plan",
                            status=ReceiptStatus.SUCCESS, height=9, cost_paid=1)

        client = Mock()
        client.get_plan.side_effect = [live, live, live.with_executed(harness.clock.now),
                                       live.with_executed(harness.clock.now)]
        client.current_time.return_value = harness.clock.now
        client.execute_plan.side_effect = [ReceiptTimeoutError("slow"), receipt]
        executor = self.make_executor(harness, cache, client)

        first = executor.run_once()
        second = executor.run_once()
        executor.close()

        assert first[0].outcome == ExecutionOutcome.FAILED
        assert second[0].outcome == ExecutionOutcome.EXECUTED
        first_tx_id = client.execute_plan.call_args_list[0].args[1]
        second_tx_id = client.execute_plan.call_args_list[1].args[1]
        assert first_tx_id == second_tx_id
        assert cache.get_executions(plan_id)[0].tx_ref == "0xabc"

    def test_landed_submission_is_not_replayed_next_interval(self, harness, relayer_client,
                                                             cache, monkeypatch):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        submit = relayer_client.execute_plan
        tx_ids = []

        def land_then_time_out(plan_id, tx_id=None):
            tx_ids.append(tx_id)
            receipt = submit(plan_id, tx_id)
            if len(tx_ids) == 1:
                raise ReceiptTimeoutError("slow", tx_hash=receipt.tx_hash)
            return receipt

        monkeypatch.setattr(relayer_client, "execute_plan", land_then_time_out)
        executor = self.make_executor(harness, cache, relayer_client)

        [first] = executor.run_once()
        landed_at = harness.clock.now
        [second] = executor.run_once()
        harness.clock.advance(DAY)
        [third] = executor.run_once()
        executor.close()

        assert first.outcome == ExecutionOutcome.FAILED
        assert second.outcome == ExecutionOutcome.SKIPPED
        assert second.error == "too_soon"
        assert third.outcome == ExecutionOutcome.EXECUTED
        assert tx_ids[0] != tx_ids[1]
        assert harness.ledger.get_plan(plan_id).last_executed == harness.clock.now
        history = cache.get_executions(plan_id)
        assert [record.executed_at for record in history] == [harness.clock.now, landed_at]
        assert executor._unconfirmed == {}

    def test_landed_submission_found_when_next_interval_is_due(self, harness,
                                                               relayer_client, cache,
                                                               monkeypatch):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        submit = relayer_client.execute_plan
        tx_ids = []

        def land_then_time_out(plan_id, tx_id=None):
            tx_ids.append(tx_id)
            receipt = submit(plan_id, tx_id)
            if len(tx_ids) == 1:
                raise ReceiptTimeoutError("slow", tx_hash=receipt.tx_hash)
            return receipt

        monkeypatch.setattr(relayer_client, "execute_plan", land_then_time_out)
        executor = self.make_executor(harness, cache, relayer_client)

        executor.run_once()
        harness.clock.advance(DAY)
        [result] = executor.run_once()
        executor.close()

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert tx_ids[0] != tx_ids[1]
        assert harness.ledger.savings_balance(harness.owner.address,
                                              harness.token.address) == 200
        assert len(cache.get_executions(plan_id)) == 2

    def test_cancelled_plan_drops_unconfirmed_submission(self, harness, cache):
        plan_id = cached_plan(harness, cache)
        harness.clock.advance(DAY)
        live = harness.ledger.get_plan(plan_id)

        client = Mock()
        client.get_plan.side_effect = [live, replace(live, active=False)]
        client.current_time.return_value = harness.clock.now
        client.execute_plan.side_effect = ReceiptTimeoutError("slow")
        executor = self.make_executor(harness, cache, client)

        executor.run_once()
        assert plan_id in executor._unconfirmed
        [result] = executor.run_once()
        executor.close()

        assert result.error == "plan_inactive"
        assert executor._unconfirmed == {}
        client.get_receipt.assert_not_called()

    def test_unexpected_error_fails_only_that_plan(self, harness, cache):
        broken = cached_plan(harness, cache, amount=100)
        healthy = cached_plan(harness, cache, amount=200)
        harness.clock.advance(DAY)
        plans = {plan_id: harness.ledger.get_plan(plan_id) for plan_id in (broken, healthy)}
        receipt = TxReceipt(tx_hash="0xabc", tx_id="unused", method="execute_plan",
                            status=ReceiptStatus.SUCCESS, height=9, cost_paid=1)

        def execute_plan(plan_id, tx_id=None):
            if plan_id == broken:
                raise KeyError("tx_hash")
            return receipt

        client = Mock()
        client.get_plan.side_effect = lambda plan_id: plans[plan_id]
        client.current_time.return_value = harness.clock.now
        client.execute_plan.side_effect = execute_plan
        executor = self.make_executor(harness, cache, client)

        results = {r.plan_id: r for r in executor.run_once()}
        executor.close()

        assert results[broken].outcome == ExecutionOutcome.FAILED
        assert results[broken].error == "KeyError"
        assert results[healthy].outcome == ExecutionOutcome.EXECUTED
        assert executor.in_flight == frozenset()
