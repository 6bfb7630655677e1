from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidBalanceScope, InvalidDateRange
from fx_rates import FxConverter, FxSnapshotStore, RateKind
from models import EntryType
from schemas import BalanceRequest, CategoryIn, EntryIn
from services import BalanceService, CategoryService, EntryService


def _add(session: Session, type: EntryType, amount: int, currency: str, when: datetime, **kwargs):
    EntryService(session).add(
        EntryIn(
            type=type,
            amount_minor=amount,
            currency_code=currency,
            transaction_date_utc=when,
            **kwargs,
        )
    )


def _seed(session: Session) -> int:
    food = CategoryService(session).create(CategoryIn(name="Food"))
    _add(session, EntryType.income, 10000, "USD", datetime(2026, 1, 15))
    _add(session, EntryType.expense, 2500, "USD", datetime(2026, 2, 3), category_id=food.id)
    _add(session, EntryType.expense, 400, "EUR", datetime(2026, 2, 9), category_id=food.id)
    _add(session, EntryType.income, 1000, "EUR", datetime(2026, 3, 2))
    return food.id


def _nets(view) -> dict[str, int]:
    return {row.currency_code: row.net_minor for row in view.by_currency}


def test_default_scope_returns_lifetime_and_range() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)

        balance = BalanceService(session).compute(
            BalanceRequest(date_from="2026-02-01", date_to="2026-02-28")
        ).balance

        assert balance.scope == "both"
        assert _nets(balance.lifetime) == {"EUR": 600, "USD": 7500}
        assert _nets(balance.range) == {"EUR": -400, "USD": -2500}
        assert balance.lifetime_converted is None


def test_scope_selects_views() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        service = BalanceService(session)

        lifetime = service.compute(BalanceRequest(scope="lifetime")).balance
        assert lifetime.range is None
        assert _nets(lifetime.lifetime) == {"EUR": 600, "USD": 7500}

        open_range = service.compute(
            BalanceRequest(scope="range", date_from="2026-02-05")
        ).balance
        assert open_range.lifetime is None
        assert _nets(open_range.range) == {"EUR": 600}

        with pytest.raises(InvalidBalanceScope):
            service.compute(BalanceRequest(scope="monthly"))
        with pytest.raises(InvalidDateRange):
            service.compute(BalanceRequest(date_from="2026-03-01", date_to="2026-02-01"))


def test_filters_apply_to_both_views() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        food_id = _seed(session)

        balance = BalanceService(session).compute(
            BalanceRequest(category_id=food_id, date_from="2026-02-05")
        ).balance

        assert _nets(balance.lifetime) == {"EUR": -400, "USD": -2500}
        assert _nets(balance.range) == {"EUR": -400}


def test_converted_balance_warns_once_on_estimates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        store = FxSnapshotStore(session)
        store.save("frankfurter", "EUR", "USD", "1.20", date(2026, 1, 1), RateKind.estimate)
        service = BalanceService(
            session, fx_converter=FxConverter(store), today=date(2026, 3, 10)
        )

        result = service.compute(
            BalanceRequest(date_from="2026-02-01", date_to="2026-02-28", convert_to="USD")
        )

        assert result.balance.lifetime_converted.net_minor == 7500 + 720
        assert result.balance.range_converted.net_minor == -2500 - 480
        assert result.balance.range_converted.used_estimate_rate is True
        assert [w.code for w in result.warnings] == ["FX_ESTIMATE_USED"]
        assert result.warnings[0].details["views"] == {
            "lifetime": "2026-03-10",
            "range": "2026-02-28",
        }


def test_authoritative_rates_produce_no_warning() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _seed(session)
        store = FxSnapshotStore(session)
        store.save("frankfurter", "EUR", "USD", "1.00", date(2026, 3, 10), RateKind.authoritative)
        service = BalanceService(
            session, fx_converter=FxConverter(store), today=date(2026, 3, 10)
        )

        result = service.compute(BalanceRequest(scope="lifetime", convert_to="USD"))

        assert result.balance.lifetime_converted.net_minor == 8100
        assert result.balance.lifetime_converted.used_estimate_rate is False
        assert result.warnings == []
