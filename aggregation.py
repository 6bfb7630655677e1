from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from filters import LedgerEntry
from models import EntryType, PaymentMethod
from money import check_minor_range
from periods import GROUPING_MONTH, normalize_grouping, period_key_for
from schemas import (
    CategoryTotal,
    CurrencyTotal,
    GroupTotal,
    PaymentMethodTotals,
    ReportNet,
    ReportSection,
)

CATEGORY_ORPHAN_KEY = "orphan"
CATEGORY_ORPHAN_LABEL = "Uncategorized"
CATEGORY_UNKNOWN_LABEL = "Unknown Category"


def _accumulate(totals: dict, key, amount: int) -> None:
    totals[key] = check_minor_range(totals[key] + amount)


def currency_totals(values: Mapping[str, int]) -> list[CurrencyTotal]:
    return [
        CurrencyTotal(currency_code=code, total_minor=values[code])
        for code in sorted(values)
    ]


def net_by_currency(
    earnings: Mapping[str, int], spending: Mapping[str, int]
) -> dict[str, int]:
    net: dict[str, int] = {}
    for code in set(earnings) | set(spending):
        net[code] = check_minor_range(earnings.get(code, 0) - spending.get(code, 0))
    return net


def net_totals(entries: Iterable[LedgerEntry]) -> dict[str, int]:
    """Signed per-currency sum: income adds, expense subtracts."""
    totals: dict[str, int] = defaultdict(int)
    for entry in entries:
        sign = 1 if entry.type == EntryType.income else -1
        _accumulate(totals, entry.currency_code, sign * entry.amount_minor)
    return dict(totals)


class _SectionTotals:
    def __init__(self) -> None:
        self.by_currency: dict[str, int] = defaultdict(int)
        self.groups: dict[tuple[str, str], int] = defaultdict(int)
        self.categories: dict[Optional[int], dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )

    def add(self, entry: LedgerEntry, period_key: str) -> None:
        currency = entry.currency_code
        _accumulate(self.by_currency, currency, entry.amount_minor)
        _accumulate(self.groups, (period_key, currency), entry.amount_minor)
        _accumulate(self.categories[entry.category_id], currency, entry.amount_minor)

    def to_section(self, category_names: Mapping[int, str]) -> ReportSection:
        groups = [
            GroupTotal(period_key=period_key, currency_code=currency, total_minor=total)
            for (period_key, currency), total in sorted(self.groups.items())
        ]
        categories = []
        for category_id in sorted(
            self.categories, key=lambda v: (v is not None, v or 0)
        ):
            if category_id is None:
                key = CATEGORY_ORPHAN_KEY
                label = CATEGORY_ORPHAN_LABEL
            else:
                key = f"category:{category_id}"
                label = (category_names.get(category_id) or "").strip()
                label = label or CATEGORY_UNKNOWN_LABEL
            categories.append(
                CategoryTotal(
                    category_id=category_id,
                    category_key=key,
                    category_label=label,
                    by_currency=currency_totals(self.categories[category_id]),
                )
            )
        return ReportSection(
            by_currency=currency_totals(self.by_currency),
            groups=groups,
            categories=categories,
        )


@dataclass
class AggregateResult:
    earnings: ReportSection
    spending: ReportSection
    net: ReportNet
    payment_methods: PaymentMethodTotals
    earnings_by_currency: dict[str, int]
    spending_by_currency: dict[str, int]


def aggregate(
    entries: Iterable[LedgerEntry],
    grouping: str = GROUPING_MONTH,
    category_names: Optional[Mapping[int, str]] = None,
) -> AggregateResult:
    grouping = normalize_grouping(grouping)
    names = category_names or {}
    earnings = _SectionTotals()
    spending = _SectionTotals()
    by_method: dict[PaymentMethod, dict[str, int]] = {
        PaymentMethod.cash: defaultdict(int),
        PaymentMethod.card: defaultdict(int),
    }

    for entry in entries:
        period_key = period_key_for(entry.transaction_date_utc, grouping)
        if entry.type == EntryType.income:
            earnings.add(entry, period_key)
        else:
            spending.add(entry, period_key)
            method = entry.payment_method or PaymentMethod.cash
            _accumulate(by_method[method], entry.currency_code, entry.amount_minor)

    earned = dict(earnings.by_currency)
    spent = dict(spending.by_currency)
    return AggregateResult(
        earnings=earnings.to_section(names),
        spending=spending.to_section(names),
        net=ReportNet(by_currency=currency_totals(net_by_currency(earned, spent))),
        payment_methods=PaymentMethodTotals(
            cash=currency_totals(by_method[PaymentMethod.cash]),
            card=currency_totals(by_method[PaymentMethod.card]),
        ),
        earnings_by_currency=earned,
        spending_by_currency=spent,
    )
