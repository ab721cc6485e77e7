"""Balance adjustment ledger kept on a reconciliation's summary."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

BALANCE_ADJUSTMENT = "balance_adjustment"


@dataclass(frozen=True)
class BalanceAdjustment:
    """A single ad-hoc correction. Recorded, never edited."""

    amount: Decimal
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    type: str = BALANCE_ADJUSTMENT

    def to_dict(self) -> dict[str, Any]:
        # Amounts are stored as strings so the JSON column keeps exact cents
        return {
            "type": self.type,
            "amount": str(self.amount),
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BalanceAdjustment:
        return cls(
            amount=Decimal(str(data["amount"])),
            reason=data["reason"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            type=data.get("type", BALANCE_ADJUSTMENT),
        )


def adjustments_of(summary: dict[str, Any] | None) -> list[dict[str, Any]]:
    """Return a copy of the adjustment entries recorded so far."""
    if not summary:
        return []
    return list(summary.get("adjustments") or [])


def append_adjustment(summary: dict[str, Any] | None, adjustment: BalanceAdjustment) -> dict[str, Any]:
    """Return a new summary with ``adjustment`` appended.

    The caller must assign the result back to the JSON column; mutating the
    stored dict in place is not tracked by SQLAlchemy.
    """
    updated = dict(summary or {})
    updated["adjustments"] = [*adjustments_of(summary), adjustment.to_dict()]
    return updated


def fold_adjustments(
    summary: dict[str, Any] | None,
    extra: Iterable[BalanceAdjustment] = (),
) -> list[dict[str, Any]]:
    """Recorded adjustments followed by ``extra``, in order."""
    return [*adjustments_of(summary), *(adjustment.to_dict() for adjustment in extra)]


def adjustments_total(entries: Iterable[dict[str, Any]]) -> Decimal:
    return sum((Decimal(str(entry["amount"])) for entry in entries), Decimal("0.00"))
