"""
Relayer persistence: plan cache, execution history and the discovery cursor.
"""

from .cursor import ProgressCursor
from .database import SQLiteDatabase
from .plan_store import ExecutionRecord, PlanCache

__all__ = ["PlanCache", "ExecutionRecord", "ProgressCursor", "SQLiteDatabase"]
