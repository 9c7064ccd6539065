"""
Ledger data models for savings plans, policies and notifications.

This module defines immutable records owned by the ledger. Quantities are
integers in token base units; timestamps are integer seconds of ledger time.
Wire dictionaries carry quantities as decimal strings so that values beyond
64 bits survive JSON transport.
"""

import hashlib
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class PlanState(str, Enum):
    """Plan lifecycle states. CANCELLED is terminal."""
    ACTIVE = "active"
    CANCELLED = "cancelled"


class NotificationKind(str, Enum):
    """Notifications emitted by committed ledger operations."""
    PLAN_CREATED = "plan_created"
    PLAN_EXECUTED = "plan_executed"
    PLAN_CANCELLED = "plan_cancelled"
    CREDIT_WITHDRAWN = "credit_withdrawn"


# Keys whose values are integer quantities on the wire
QUANTITY_KEYS = frozenset({
    "amount_per_interval", "interval", "last_executed", "created_at",
    "created_height", "amount_saved", "yield_amount", "fee", "amount",
    "height", "timestamp", "cost_paid", "yield_rate_bps", "base_fee",
    "percent_fee_bps", "version", "balance", "expected_version",
})


def encode_quantities(data: dict[str, Any]) -> dict[str, Any]:
    """Stringify integer quantities for wire transport."""
    return {
        key: str(value) if key in QUANTITY_KEYS and isinstance(value, int)
        and not isinstance(value, bool) else value
        for key, value in data.items()
    }


def decode_quantities(data: dict[str, Any]) -> dict[str, Any]:
    """Parse decimal-string quantities back into integers."""
    return {
        key: int(value) if key in QUANTITY_KEYS and isinstance(value, str) else value
        for key, value in data.items()
    }


def derive_plan_id(owner: str, token: str, height: int) -> str:
    """Deterministic plan id from (owner, token, creation height)."""
    digest = hashlib.sha256(
        f"{owner.lower()}:{token.lower()}:{height}".encode()
    ).hexdigest()
    return "0x" + digest


@dataclass(frozen=True)
class Plan:
    """A recurring authorized transfer into ledger custody."""

    id: str
    owner: str
    token: str
    amount_per_interval: int
    interval: int                   # Seconds between eligible executions
    last_executed: int              # Creation time until first execution
    active: bool = True
    created_at: int = 0
    created_height: int = 0

    @property
    def state(self) -> PlanState:
        return PlanState.ACTIVE if self.active else PlanState.CANCELLED

    @property
    def next_eligible_at(self) -> int:
        return self.last_executed + self.interval

    def is_due(self, now: int) -> bool:
        """True when the plan is active and its interval has elapsed."""
        return self.active and now >= self.next_eligible_at

    def with_executed(self, timestamp: int) -> "Plan":
        return replace(self, last_executed=timestamp)

    def with_cancelled(self) -> "Plan":
        return replace(self, active=False)

    def to_dict(self) -> dict[str, Any]:
        return encode_quantities({
            "id": self.id,
            "owner": self.owner,
            "token": self.token,
            "amount_per_interval": self.amount_per_interval,
            "interval": self.interval,
            "last_executed": self.last_executed,
            "active": self.active,
            "created_at": self.created_at,
            "created_height": self.created_height,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Plan":
        values = decode_quantities(data)
        return cls(
            id=values["id"],
            owner=values["owner"],
            token=values["token"],
            amount_per_interval=values["amount_per_interval"],
            interval=values["interval"],
            last_executed=values["last_executed"],
            active=bool(values.get("active", True)),
            created_at=values.get("created_at", 0),
            created_height=values.get("created_height", 0),
        )


@dataclass(frozen=True)
class TokenPolicy:
    """Per-token configuration set by the ledger administrator."""
    token: str
    yield_rate_bps: int = 0         # Annualized
    allowed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return encode_quantities({
            "token": self.token,
            "yield_rate_bps": self.yield_rate_bps,
            "allowed": self.allowed,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenPolicy":
        values = decode_quantities(data)
        return cls(token=values["token"], yield_rate_bps=values["yield_rate_bps"],
                   allowed=bool(values["allowed"]))


@dataclass(frozen=True)
class FeePolicy:
    """Global execution fee policy; ``version`` increases on every write."""
    fee_token: str
    base_fee: int = 0
    percent_fee_bps: int = 0
    active: bool = False
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return encode_quantities({
            "fee_token": self.fee_token,
            "base_fee": self.base_fee,
            "percent_fee_bps": self.percent_fee_bps,
            "active": self.active,
            "version": self.version,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeePolicy":
        values = decode_quantities(data)
        return cls(
            fee_token=values["fee_token"],
            base_fee=values["base_fee"],
            percent_fee_bps=values["percent_fee_bps"],
            active=bool(values["active"]),
            version=values.get("version", 0),
        )


@dataclass(frozen=True)
class Notification:
    """A notification emitted by a committed ledger operation."""
    kind: NotificationKind
    height: int
    timestamp: int
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def plan_id(self) -> Optional[str]:
        return self.payload.get("plan_id")

    def to_dict(self) -> dict[str, Any]:
        data = encode_quantities({"height": self.height, "timestamp": self.timestamp})
        data["kind"] = self.kind.value
        data["payload"] = encode_quantities(self.payload)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        return cls(
            kind=NotificationKind(data["kind"]),
            height=int(data["height"]),
            timestamp=int(data["timestamp"]),
            payload=decode_quantities(data.get("payload", {})),
        )
