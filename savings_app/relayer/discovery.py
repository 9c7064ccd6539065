"""
Plan discovery.

Scans ledger notifications in bounded windows starting after the durable
cursor, re-reads every mentioned plan from the ledger and caches it. The
cursor is saved only after the whole window has been cached, so a crash
re-scans the window and the idempotent upserts absorb the repeat.
"""

from dataclasses import dataclass

from ..ledger.models import NotificationKind
from ..logging.config import get_relayer_logger
from ..persistence.cursor import ProgressCursor
from ..persistence.plan_store import PlanCache
from .client import LedgerClient

logger = get_relayer_logger(__name__)

_DISCOVERY_KINDS = (NotificationKind.PLAN_CREATED, NotificationKind.PLAN_CANCELLED)


@dataclass
class DiscoveryResult:
    """Outcome of one discovery window."""
    from_height: int
    to_height: int
    plans_cached: int = 0
    plans_missing: int = 0
    caught_up: bool = True

    @property
    def scanned(self) -> bool:
        return self.to_height >= self.from_height


class PlanDiscovery:
    """Feeds the plan cache from ledger notifications."""

    def __init__(self, client: LedgerClient, cache: PlanCache, cursor: ProgressCursor,
                 max_window: int = 5000):
        if max_window <= 0:
            raise ValueError("max_window must be positive")
        self.client = client
        self.cache = cache
        self.cursor = cursor
        self.max_window = max_window

    def run_once(self) -> DiscoveryResult:
        """Process one window ``[cursor + 1, min(cursor + max_window, head)]``."""
        last_scanned = self.cursor.load()
        head = self.client.current_height()
        start = last_scanned + 1

        if head < start:
            logger.debug("Discovery up to date", cursor=last_scanned, head=head)
            return DiscoveryResult(from_height=start, to_height=last_scanned)

        end = min(last_scanned + self.max_window, head)
        notifications = [
            n for n in self.client.get_notifications(start, end)
            if n.kind in _DISCOVERY_KINDS
        ]

        plan_ids: list[str] = []
        for notification in notifications:
            plan_id = notification.plan_id
            if plan_id and plan_id not in plan_ids:
                plan_ids.append(plan_id)

        result = DiscoveryResult(from_height=start, to_height=end, caught_up=end >= head)
        for plan_id in plan_ids:
            plan = self.client.get_plan(plan_id)
            if plan is None:
                logger.warning("Notified plan not found on ledger", plan_id=plan_id)
                result.plans_missing += 1
                continue
            self.cache.upsert_plan(plan)
            result.plans_cached += 1

        self.cursor.save(end)

        logger.info(
            "Discovery window processed",
            from_height=start,
            to_height=end,
            head=head,
            notifications=len(notifications),
            plans_cached=result.plans_cached,
            plans_missing=result.plans_missing,
        )
        return result

    def run_until_caught_up(self, max_windows: int = 100) -> list[DiscoveryResult]:
        """Process consecutive windows until the cursor reaches the head."""
        results = []
        for _ in range(max_windows):
            result = self.run_once()
            results.append(result)
            if result.caught_up:
                break
        return results
