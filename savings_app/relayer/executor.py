"""
Plan execution.

Each pass reads due plans from the cache, claims each one in an in-process
in-flight set, re-validates it against the live ledger, and submits the
execution on a bounded worker pool. A plan id stays claimed until its attempt
finishes, success or failure, so two overlapping passes never submit the same
plan twice. Failures are logged and left for the next pass.

An attempt that timed out waiting for its receipt is retried with the same
transaction id while the plan is still in the same eligibility window, so the
ledger deduplicates it if the first submission did land.
"""

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..errors import (
    ExecutionSubmissionError,
    LedgerError,
    ReceiptTimeoutError,
    SystemFailureError,
)
from ..ledger.models import Plan
from ..logging.config import get_relayer_logger, log_gate_decision
from ..persistence.plan_store import PlanCache
from .client import LedgerClient

logger = get_relayer_logger(__name__)


class ExecutionOutcome(str, Enum):
    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"
    IN_FLIGHT = "in_flight"


@dataclass
class ExecutionResult:
    plan_id: str
    outcome: ExecutionOutcome
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class _PendingSubmission:
    """An execution submitted for one eligibility window, receipt not yet seen."""
    tx_id: str
    last_executed: int
    tx_hash: Optional[str] = None


class PlanExecutor:
    """Submits executions for due plans."""

    def __init__(
        self,
        client: LedgerClient,
        cache: PlanCache,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time
    ):
        self.client = client
        self.cache = cache
        self.clock = clock
        self._pool = ThreadPoolExecutor(max_workers=max_workers,
                                        thread_name_prefix="plan-exec")
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        # Keyed by plan id; valid only while the plan's last_executed is unchanged
        self._unconfirmed: dict[str, _PendingSubmission] = {}

    @property
    def in_flight(self) -> frozenset[str]:
        with self._in_flight_lock:
            return frozenset(self._in_flight)

    def run_once(self) -> list[ExecutionResult]:
        """Evaluate every due plan once; returns after all attempts finish."""
        now = int(self.clock())
        due = self.cache.due_plans(now)
        if not due:
            logger.debug("No plans due", now=now)
            return []

        results: list[ExecutionResult] = []
        futures = []
        for plan in due:
            if not self._claim(plan.id):
                log_gate_decision(logger, "in_flight", False, plan.id,
                                  "Execution already in progress")
                results.append(ExecutionResult(plan.id, ExecutionOutcome.IN_FLIGHT))
                continue
            futures.append(self._pool.submit(self._execute_claimed, plan))

        results.extend(future.result() for future in futures)

        logger.info(
            "Execution pass complete",
            due=len(due),
            executed=sum(1 for r in results if r.outcome == ExecutionOutcome.EXECUTED),
            failed=sum(1 for r in results if r.outcome == ExecutionOutcome.FAILED),
            skipped=sum(1 for r in results if r.outcome == ExecutionOutcome.SKIPPED),
        )
        return results

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def _claim(self, plan_id: str) -> bool:
        with self._in_flight_lock:
            if plan_id in self._in_flight:
                return False
            self._in_flight.add(plan_id)
            return True

    def _release(self, plan_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(plan_id)

    def _execute_claimed(self, plan: Plan) -> ExecutionResult:
        try:
            return self._execute(plan)
        except ExecutionSubmissionError as e:
            logger.warning("Execution rejected by ledger", plan_id=plan.id,
                           tx_hash=e.tx_hash, error_code=e.error_code, error=str(e))
            return ExecutionResult(plan.id, ExecutionOutcome.FAILED, tx_hash=e.tx_hash,
                                   error=e.error_code)
        except (LedgerError, SystemFailureError) as e:
            logger.warning("Execution attempt failed", plan_id=plan.id,
                           error_type=type(e).__name__, error=str(e))
            return ExecutionResult(plan.id, ExecutionOutcome.FAILED, error=str(e))
        except Exception as e:
            logger.error("Unexpected error executing plan", plan_id=plan.id,
                         error_type=type(e).__name__, error=str(e), exc_info=True)
            return ExecutionResult(plan.id, ExecutionOutcome.FAILED, error=type(e).__name__)
        finally:
            self._release(plan.id)

    def _execute(self, plan: Plan) -> ExecutionResult:
        log_gate_decision(logger, "in_flight", True, plan.id, "Claimed for execution")

        live = self.client.get_plan(plan.id)
        pending = self._settle_pending(plan.id, live)
        if live is None:
            log_gate_decision(logger, "active", False, plan.id, "Plan missing on ledger")
            return ExecutionResult(plan.id, ExecutionOutcome.SKIPPED, error="plan_not_found")

        if not live.active:
            log_gate_decision(logger, "active", False, plan.id, "Plan cancelled on ledger")
            self.cache.upsert_plan(live)
            return ExecutionResult(plan.id, ExecutionOutcome.SKIPPED, error="plan_inactive")
        log_gate_decision(logger, "active", True, plan.id, "Plan active on ledger")

        ledger_now = self.client.current_time()
        if not live.is_due(ledger_now):
            log_gate_decision(
                logger, "interval", False, plan.id, "Interval not elapsed on ledger",
                context={"ledger_now": ledger_now, "next_eligible_at": live.next_eligible_at},
            )
            self._unconfirmed.pop(plan.id, None)
            if live.last_executed != plan.last_executed:
                self.cache.upsert_plan(live)
            return ExecutionResult(plan.id, ExecutionOutcome.SKIPPED, error="too_soon")
        log_gate_decision(logger, "interval", True, plan.id, "Interval elapsed",
                          context={"ledger_now": ledger_now})

        if pending is None:
            pending = _PendingSubmission(uuid.uuid4().hex, live.last_executed)
            self._unconfirmed[plan.id] = pending
        try:
            receipt = self.client.execute_plan(plan.id, pending.tx_id)
        except ReceiptTimeoutError as e:
            pending.tx_hash = e.tx_hash
            raise
        self._unconfirmed.pop(plan.id, None)

        if not receipt.succeeded:
            raise ExecutionSubmissionError(receipt.error_message or "Execution failed",
                                           plan_id=plan.id, error_code=receipt.error_code,
                                           tx_hash=receipt.tx_hash)

        refreshed = self.client.get_plan(plan.id)
        if refreshed is not None:
            self.cache.upsert_plan(refreshed)
            executed_at = refreshed.last_executed
        else:
            executed_at = ledger_now
            self.cache.mark_executed(plan.id, executed_at)

        self.cache.append_execution(plan.id, executed_at, receipt.tx_hash, receipt.cost_paid)
        logger.info("Plan execution confirmed", plan_id=plan.id, tx_hash=receipt.tx_hash,
                    height=receipt.height, cost_paid=receipt.cost_paid)
        return ExecutionResult(plan.id, ExecutionOutcome.EXECUTED, tx_hash=receipt.tx_hash)

    def _settle_pending(self, plan_id: str,
                        live: Optional[Plan]) -> Optional[_PendingSubmission]:
        """
        Return the unconfirmed submission still safe to resubmit, if any.

        A pending ``tx_id`` is reused only for the eligibility window it was
        created in. Once the ledger shows a newer ``last_executed``, or the
        plan is gone or cancelled, the entry is dropped; if its submission
        turns out to have landed, the execution is recorded then.
        """
        pending = self._unconfirmed.get(plan_id)
        if pending is None:
            return None
        if live is not None and live.active and live.last_executed == pending.last_executed:
            return pending

        landed = (live is not None and pending.tx_hash is not None
                  and live.last_executed != pending.last_executed)
        if landed:
            receipt = self.client.get_receipt(pending.tx_hash)
            if receipt is not None and receipt.succeeded:
                self.cache.append_execution(plan_id, live.last_executed, receipt.tx_hash,
                                            receipt.cost_paid)
                logger.info("Late receipt recorded", plan_id=plan_id,
                            tx_hash=receipt.tx_hash, executed_at=live.last_executed)
        del self._unconfirmed[plan_id]
        return None
