"""Relayer-side cache of discovered plans and their execution history."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from ..ledger.models import Plan
from .database import SQLiteDatabase


@dataclass
class ExecutionRecord:
    """One successful execution observed by the relayer."""
    id: int
    plan_id: str
    executed_at: int
    tx_ref: str
    cost_paid: int
    recorded_at: str


class PlanCache:
    """
    SQLite-backed mirror of plans the relayer has discovered.

    The ledger stays authoritative; this cache only decides which plans are
    worth re-validating. Plan upserts are idempotent by id and execution
    history is unique by transaction reference, so replaying a discovery
    window or an execution result never duplicates rows.
    """

    def __init__(self, db_path: str = "data/relayer.db"):
        self.db = SQLiteDatabase(db_path)
        self.logger = self.db.logger
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self.db.write("init_schema") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS plans (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    token TEXT NOT NULL,
                    amount_per_interval TEXT NOT NULL,
                    interval INTEGER NOT NULL,
                    last_executed INTEGER NOT NULL,
                    active INTEGER NOT NULL,
                    created_at INTEGER NOT NULL DEFAULT 0,
                    created_height INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS executions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    plan_id TEXT NOT NULL,
                    executed_at INTEGER NOT NULL,
                    tx_ref TEXT NOT NULL UNIQUE,
                    cost_paid TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_plans_due ON plans(active, last_executed)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_plans_owner ON plans(owner)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_executions_plan_id ON executions(plan_id)
            """)

    def upsert_plan(self, plan: Plan) -> None:
        """Insert or overwrite a plan with the ledger's current view of it."""
        with self.db.write("upsert_plan") as conn:
            conn.execute("""
                INSERT INTO plans (
                    id, owner, token, amount_per_interval, interval,
                    last_executed, active, created_at, created_height, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    owner = excluded.owner,
                    token = excluded.token,
                    amount_per_interval = excluded.amount_per_interval,
                    interval = excluded.interval,
                    last_executed = excluded.last_executed,
                    active = excluded.active,
                    created_at = excluded.created_at,
                    created_height = excluded.created_height,
                    updated_at = excluded.updated_at
            """, (
                plan.id,
                plan.owner,
                plan.token,
                str(plan.amount_per_interval),
                plan.interval,
                plan.last_executed,
                1 if plan.active else 0,
                plan.created_at,
                plan.created_height,
                _utc_now(),
            ))

        self.logger.debug("Plan cached", plan_id=plan.id, active=plan.active,
                          last_executed=plan.last_executed)

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self.db.read("get_plan") as conn:
            row = conn.execute("SELECT * FROM plans WHERE id = ?", (plan_id,)).fetchone()
        return self._row_to_plan(row) if row else None

    def list_plans(self, active_only: bool = False) -> list[Plan]:
        query = "SELECT * FROM plans"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY created_height, id"
        with self.db.read("list_plans") as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_plan(row) for row in rows]

    def due_plans(self, now: int, limit: Optional[int] = None) -> list[Plan]:
        """Active plans whose interval has elapsed at ``now``, oldest eligibility first."""
        query = """
            SELECT * FROM plans
            WHERE active = 1 AND last_executed + interval <= ?
            ORDER BY last_executed + interval, id
        """
        params: tuple[Any, ...] = (now,)
        if limit is not None:
            query += " LIMIT ?"
            params = (now, limit)
        with self.db.read("due_plans") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_plan(row) for row in rows]

    def mark_executed(self, plan_id: str, timestamp: int) -> bool:
        """Advance a cached plan's ``last_executed``; never moves it backwards."""
        with self.db.write("mark_executed") as conn:
            cursor = conn.execute("""
                UPDATE plans SET
                    last_executed = MAX(last_executed, ?),
                    updated_at = ?
                WHERE id = ?
            """, (timestamp, _utc_now(), plan_id))
            return cursor.rowcount > 0

    def append_execution(self, plan_id: str, timestamp: int, tx_ref: str,
                         cost_paid: int) -> bool:
        """
        Record a successful execution.

        Returns:
            False when ``tx_ref`` is already recorded
        """
        with self.db.write("append_execution") as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO executions (
                    plan_id, executed_at, tx_ref, cost_paid, recorded_at
                ) VALUES (?, ?, ?, ?, ?)
            """, (plan_id, timestamp, tx_ref, str(cost_paid), _utc_now()))
            inserted = cursor.rowcount > 0

        if inserted:
            self.logger.info("Execution recorded", plan_id=plan_id, tx_ref=tx_ref,
                             executed_at=timestamp, cost_paid=cost_paid)
        return inserted

    def get_executions(self, plan_id: Optional[str] = None,
                       limit: int = 100) -> list[ExecutionRecord]:
        """Execution history, newest first."""
        with self.db.read("get_executions") as conn:
            if plan_id is None:
                rows = conn.execute("""
                    SELECT * FROM executions ORDER BY executed_at DESC, id DESC LIMIT ?
                """, (limit,)).fetchall()
            else:
                rows = conn.execute("""
                    SELECT * FROM executions WHERE plan_id = ?
                    ORDER BY executed_at DESC, id DESC LIMIT ?
                """, (plan_id, limit)).fetchall()

        return [
            ExecutionRecord(
                id=row["id"],
                plan_id=row["plan_id"],
                executed_at=row["executed_at"],
                tx_ref=row["tx_ref"],
                cost_paid=int(row["cost_paid"]),
                recorded_at=row["recorded_at"],
            )
            for row in rows
        ]

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics."""
        with self.db.read("get_stats") as conn:
            total_plans = conn.execute("SELECT COUNT(*) FROM plans").fetchone()[0]
            active_plans = conn.execute(
                "SELECT COUNT(*) FROM plans WHERE active = 1"
            ).fetchone()[0]
            total_executions = conn.execute("SELECT COUNT(*) FROM executions").fetchone()[0]
            cost_rows = conn.execute("SELECT cost_paid FROM executions").fetchall()

        return {
            "total_plans": total_plans,
            "active_plans": active_plans,
            "cancelled_plans": total_plans - active_plans,
            "total_executions": total_executions,
            "total_cost_paid": sum(int(row[0]) for row in cost_rows),
        }

    @staticmethod
    def _row_to_plan(row) -> Plan:
        """Convert database row to Plan object."""
        return Plan(
            id=row["id"],
            owner=row["owner"],
            token=row["token"],
            amount_per_interval=int(row["amount_per_interval"]),
            interval=row["interval"],
            last_executed=row["last_executed"],
            active=bool(row["active"]),
            created_at=row["created_at"],
            created_height=row["created_height"],
        )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
