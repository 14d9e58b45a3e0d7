"""
Receivables Calculator - derives a day's ledger snapshot values.

Pure arithmetic; the repository supplies the inputs.

FORMULAS (per driver, per day):
- settlement cash contribution     = max(0, net value - cash deposited)
- settlement cylinder contribution = per size, max(0, refill qty - deposits)
- day change  = sum of contributions of that day's settlements
                + opening balances seeded for that day (onboarding only)
- day total   = previous snapshot total + day change (previous = 0 if none)

Overpayment and over-deposit are floored per settlement, before the day's
sum, so one settlement's excess never offsets another settlement's debt.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Balances:
    cash_cents: int = 0
    cylinders: int = 0


@dataclass(frozen=True)
class SettlementContribution:
    settlement_id: int | None
    net_value_cents: int
    cash_deposited_cents: int
    refill_by_size: dict[str, int] = field(default_factory=dict)
    deposits_by_size: dict[str, int] = field(default_factory=dict)

    @property
    def cash_cents(self) -> int:
        return max(0, self.net_value_cents - self.cash_deposited_cents)

    @property
    def cylinders_by_size(self) -> dict[str, int]:
        owed = {}
        for size, qty in self.refill_by_size.items():
            shortfall = qty - self.deposits_by_size.get(size, 0)
            if shortfall > 0:
                owed[size] = shortfall
        return owed


@dataclass(frozen=True)
class DayChanges:
    cash_cents: int = 0
    cylinders_by_size: dict[str, int] = field(default_factory=dict)
    opening_cash_cents: int = 0
    opening_cylinders: int = 0

    @property
    def cylinders(self) -> int:
        return sum(self.cylinders_by_size.values())


@dataclass(frozen=True)
class SnapshotValues:
    cash_receivables_change_cents: int
    cylinder_receivables_change: int
    total_cash_receivables_cents: int
    total_cylinder_receivables: int
    cylinder_changes_by_size: dict[str, int] = field(default_factory=dict)
    opening_cash_cents: int = 0
    opening_cylinders: int = 0


def aggregate_day(
    contributions: list[SettlementContribution],
    *,
    opening_cash_cents: int = 0,
    opening_cylinders: int = 0,
) -> DayChanges:
    cash = 0
    by_size: dict[str, int] = {}
    for contribution in contributions:
        cash += contribution.cash_cents
        for size, qty in contribution.cylinders_by_size.items():
            by_size[size] = by_size.get(size, 0) + qty
    return DayChanges(
        cash_cents=cash,
        cylinders_by_size=by_size,
        opening_cash_cents=opening_cash_cents,
        opening_cylinders=opening_cylinders,
    )


def compute(previous: Balances | None, changes: DayChanges) -> SnapshotValues:
    previous = previous or Balances()
    cash_change = changes.cash_cents + changes.opening_cash_cents
    cylinder_change = changes.cylinders + changes.opening_cylinders
    return SnapshotValues(
        cash_receivables_change_cents=cash_change,
        cylinder_receivables_change=cylinder_change,
        total_cash_receivables_cents=previous.cash_cents + cash_change,
        total_cylinder_receivables=previous.cylinders + cylinder_change,
        cylinder_changes_by_size=dict(changes.cylinders_by_size),
        opening_cash_cents=changes.opening_cash_cents,
        opening_cylinders=changes.opening_cylinders,
    )
