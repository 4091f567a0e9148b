"""Shared data models for cost estimation and the budget ledger."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Operation(str, Enum):
    """Kind of provider call a transaction was recorded for."""
    CHAT = "chat"
    COMPLETION = "completion"
    TEST = "test"


@dataclass(frozen=True)
class CostEstimate:
    """Estimated or actual cost of a single call, in USD."""
    input_cost: float
    output_cost: float
    total_cost: float
    input_tokens: int
    output_tokens: int
    model: str
    provider: str
    cached_input_cost: float = 0.0
    cached_input_tokens: int = 0
    currency: str = "USD"


@dataclass(frozen=True)
class Transaction:
    """
    Record of a single spend event.

    Never mutated after recording; only appended, filtered or pruned.
    """
    id: str
    timestamp: str  # ISO-8601, UTC
    provider: str
    model: str
    cost: float
    input_tokens: int
    output_tokens: int
    operation: str = Operation.CHAT.value

    def __post_init__(self):
        datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))  # ValueError if malformed

    @property
    def at(self) -> datetime:
        parsed = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @property
    def date(self) -> str:
        return self.at.strftime("%Y-%m-%d")

    @property
    def month(self) -> str:
        return self.at.strftime("%Y-%m")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        return cls(
            id=str(data["id"]),
            timestamp=str(data["timestamp"]),
            provider=str(data["provider"]),
            model=str(data["model"]),
            cost=float(data["cost"]),
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            operation=str(data.get("operation", Operation.CHAT.value)),
        )


@dataclass
class BudgetUsage:
    """
    Running totals plus the transaction log.

    `daily_spent` is an incremental counter reset on day rollover.
    `monthly_spent` is always recomputed from `transactions` on read.
    """
    daily_spent: float
    monthly_spent: float
    last_reset: str  # YYYY-MM-DD
    transactions: list[Transaction] = field(default_factory=list)
    currency: str = "USD"

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily_spent": self.daily_spent,
            "monthly_spent": self.monthly_spent,
            "last_reset": self.last_reset,
            "currency": self.currency,
            "transactions": [t.to_dict() for t in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], today: str) -> BudgetUsage:
        return cls(
            daily_spent=float(data.get("daily_spent") or 0.0),
            monthly_spent=float(data.get("monthly_spent") or 0.0),
            last_reset=str(data.get("last_reset") or today),
            transactions=[Transaction.from_dict(t) for t in data.get("transactions") or []],
        )


@dataclass
class BudgetCheck:
    """Result of a pre-flight budget check."""
    allowed: bool
    current_usage: BudgetUsage
    reason: Optional[str] = None


@dataclass
class SpendBreakdown:
    """Aggregated spend for one provider, model or day."""
    key: str
    cost: float
    count: int


@dataclass
class SpendingStats:
    """Aggregate spend statistics over the whole transaction log."""
    total_spent: float
    transaction_count: int
    average_per_transaction: float
    top_providers: list[SpendBreakdown]
    top_models: list[SpendBreakdown]
    daily_trend: list[SpendBreakdown]


@dataclass
class TransactionExport:
    """Transactions sorted by timestamp plus a summary."""
    transactions: list[Transaction]
    total_cost: float
    total_transactions: int
    date_from: str
    date_to: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "transactions": [t.to_dict() for t in self.transactions],
            "summary": {
                "total_cost": self.total_cost,
                "total_transactions": self.total_transactions,
                "date_range": {"from": self.date_from, "to": self.date_to},
            },
        }
