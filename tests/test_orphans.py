from datetime import datetime

from filters import LedgerEntry
from models import EntryType
from orphans import (
    DEFAULT_ORPHAN_COUNT_THRESHOLD,
    DEFAULT_ORPHAN_SPENDING_THRESHOLD_BPS,
    OrphanThresholds,
    evaluate_orphans,
)
from periods import resolve_period
from schemas import CapStatus

FEBRUARY = resolve_period("monthly", month_key="2026-02")


def _entry(entry_id, type, amount, category_id=None, currency="USD") -> LedgerEntry:
    return LedgerEntry(
        id=entry_id,
        type=type,
        amount_minor=amount,
        currency_code=currency,
        transaction_date_utc=datetime(2026, 2, entry_id),
        category_id=category_id,
    )


def test_fully_orphaned_spend_raises_one_spending_warning() -> None:
    entries = [
        _entry(1, EntryType.income, 12000),
        _entry(2, EntryType.expense, 3000),
    ]

    warnings = evaluate_orphans(entries, FEBRUARY, OrphanThresholds())

    assert len(warnings) == 1
    warning = warnings[0]
    assert warning.code == "ORPHAN_SPENDING_THRESHOLD_EXCEEDED"
    assert warning.details["orphan_spend_minor"] == 3000
    assert warning.details["month_spend_minor"] == 3000
    assert warning.details["ratio_to_month_spend_bps"] == 10000
    assert warning.details["triggered_by"] == ["MONTH_SPEND"]
    assert warning.details["cap_amount_minor"] is None


def test_count_threshold_is_met_or_exceeded() -> None:
    entries = [_entry(i, EntryType.income, 100) for i in range(1, 6)]

    warnings = evaluate_orphans(entries, FEBRUARY, OrphanThresholds(count=5))

    assert [w.code for w in warnings] == ["ORPHAN_COUNT_THRESHOLD_EXCEEDED"]
    assert warnings[0].details == {
        "period_from_utc": "2026-02-01T00:00:00Z",
        "period_to_utc": "2026-02-28T23:59:59.999999999Z",
        "orphan_count": 5,
        "threshold": 5,
    }
    assert evaluate_orphans(entries[:4], FEBRUARY, OrphanThresholds(count=5)) == []


def test_small_orphan_share_stays_quiet() -> None:
    entries = [
        _entry(1, EntryType.expense, 100),
        _entry(2, EntryType.expense, 9900, category_id=4),
    ]

    assert evaluate_orphans(entries, FEBRUARY, OrphanThresholds(spending_bps=500)) == []


def test_cap_share_can_trigger_the_spending_warning() -> None:
    entries = [
        _entry(1, EntryType.expense, 100),
        _entry(2, EntryType.expense, 9900, category_id=4),
    ]
    caps = [
        CapStatus(
            month_key="2026-02",
            currency_code="USD",
            cap_amount_minor=1000,
            spend_total_minor=10000,
            overspend_minor=9000,
            is_exceeded=True,
        )
    ]

    warnings = evaluate_orphans(entries, FEBRUARY, OrphanThresholds(), caps)

    assert len(warnings) == 1
    assert warnings[0].details["triggered_by"] == ["MONTH_CAP"]
    assert warnings[0].details["ratio_to_cap_bps"] == 1000
    assert warnings[0].details["ratio_to_month_spend_bps"] == 100


def test_spending_is_evaluated_per_currency() -> None:
    entries = [
        _entry(1, EntryType.expense, 100, currency="EUR"),
        _entry(2, EntryType.expense, 9900, category_id=4, currency="USD"),
    ]

    warnings = evaluate_orphans(entries, FEBRUARY, OrphanThresholds())

    assert [w.details["currency_code"] for w in warnings] == ["EUR"]


def test_non_positive_thresholds_fall_back_to_defaults() -> None:
    thresholds = OrphanThresholds.from_values(0, -1)

    assert thresholds.count == DEFAULT_ORPHAN_COUNT_THRESHOLD == 5
    assert thresholds.spending_bps == DEFAULT_ORPHAN_SPENDING_THRESHOLD_BPS == 500
    assert OrphanThresholds.from_values(2, 1500) == OrphanThresholds(2, 1500)
