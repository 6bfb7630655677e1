"""Orphan-spend monitoring for reports.

An orphan is an entry without an active category. The monitor never fails a
report; it only produces warnings when the configured thresholds are met.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from filters import LedgerEntry
from models import EntryType
from periods import ReportPeriod, month_key_for
from schemas import (
    WARNING_ORPHAN_COUNT_EXCEEDED,
    WARNING_ORPHAN_SPENDING_EXCEEDED,
    CapStatus,
    LedgerWarning,
)

DEFAULT_ORPHAN_COUNT_THRESHOLD = 5
DEFAULT_ORPHAN_SPENDING_THRESHOLD_BPS = 500

TRIGGER_MONTH_SPEND = "MONTH_SPEND"
TRIGGER_MONTH_CAP = "MONTH_CAP"

ORPHAN_COUNT_MESSAGE = (
    "Uncategorized entries reached the configured threshold for the selected period."
)
ORPHAN_SPENDING_MESSAGE = (
    "Uncategorized spending reached the configured threshold for one or more months."
)


@dataclass(frozen=True)
class OrphanThresholds:
    count: int = DEFAULT_ORPHAN_COUNT_THRESHOLD
    spending_bps: int = DEFAULT_ORPHAN_SPENDING_THRESHOLD_BPS

    @classmethod
    def from_values(
        cls, count: Optional[int], spending_bps: Optional[int]
    ) -> "OrphanThresholds":
        """Non-positive or missing values fall back to the defaults."""
        return cls(
            count=count if count and count > 0 else DEFAULT_ORPHAN_COUNT_THRESHOLD,
            spending_bps=(
                spending_bps
                if spending_bps and spending_bps > 0
                else DEFAULT_ORPHAN_SPENDING_THRESHOLD_BPS
            ),
        )


def ratio_bps(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return (part * 10_000) // whole


def _meets(part: int, whole: int, threshold_bps: int) -> bool:
    return whole > 0 and part * 10_000 >= threshold_bps * whole


def evaluate_orphans(
    entries: Iterable[LedgerEntry],
    period: ReportPeriod,
    thresholds: OrphanThresholds,
    cap_status: Sequence[CapStatus] = (),
) -> list[LedgerWarning]:
    warnings: list[LedgerWarning] = []
    orphan_count = 0
    orphan_spend: dict[tuple[str, str], int] = defaultdict(int)
    month_spend: dict[tuple[str, str], int] = defaultdict(int)

    for entry in entries:
        if entry.is_orphan:
            orphan_count += 1
        if entry.type != EntryType.expense:
            continue
        key = (month_key_for(entry.transaction_date_utc), entry.currency_code)
        month_spend[key] += entry.amount_minor
        if entry.is_orphan:
            orphan_spend[key] += entry.amount_minor

    if orphan_count >= thresholds.count:
        warnings.append(
            LedgerWarning(
                code=WARNING_ORPHAN_COUNT_EXCEEDED,
                message=ORPHAN_COUNT_MESSAGE,
                details={
                    "period_from_utc": period.from_utc,
                    "period_to_utc": period.to_utc,
                    "orphan_count": orphan_count,
                    "threshold": thresholds.count,
                },
            )
        )

    caps = {(item.month_key, item.currency_code): item for item in cap_status}
    for key in sorted(orphan_spend):
        spent = orphan_spend[key]
        if spent == 0:
            continue
        total = month_spend[key]
        cap = caps.get(key)
        cap_amount = cap.cap_amount_minor if cap is not None else 0

        triggered_by = []
        if _meets(spent, total, thresholds.spending_bps):
            triggered_by.append(TRIGGER_MONTH_SPEND)
        if _meets(spent, cap_amount, thresholds.spending_bps):
            triggered_by.append(TRIGGER_MONTH_CAP)
        if not triggered_by:
            continue

        month_key, currency_code = key
        warnings.append(
            LedgerWarning(
                code=WARNING_ORPHAN_SPENDING_EXCEEDED,
                message=ORPHAN_SPENDING_MESSAGE,
                details={
                    "month_key": month_key,
                    "currency_code": currency_code,
                    "orphan_spend_minor": spent,
                    "month_spend_minor": total,
                    "cap_amount_minor": cap_amount or None,
                    "threshold_bps": thresholds.spending_bps,
                    "triggered_by": triggered_by,
                    "ratio_to_month_spend_bps": ratio_bps(spent, total),
                    "ratio_to_cap_bps": ratio_bps(spent, cap_amount),
                },
            )
        )
    return warnings
