from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import (
    CategoryNotFound,
    EntryNotFound,
    InvalidAmount,
    InvalidAmountPrecision,
    InvalidCardId,
    InvalidCurrencyCode,
    InvalidPaymentMethod,
    LabelNotFound,
    NameConflict,
    SettingsNotFound,
)
from filters import EntryFilter
from models import EntryLabel, EntryType, PaymentMethod
from schemas import CategoryIn, EntryIn, LabelIn, SettingsIn
from services import CategoryService, EntryService, LabelService, SettingsService


def _entry_in(**overrides) -> EntryIn:
    values = dict(
        type=EntryType.expense,
        amount="12.50",
        currency_code="usd",
        transaction_date_utc=datetime(2026, 2, 5, 12, 0),
    )
    values.update(overrides)
    return EntryIn(**values)


def test_add_parses_amounts_and_normalizes_inputs() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        labels = LabelService(session)
        b = labels.create(LabelIn(name="b"))
        a = labels.create(LabelIn(name="a"))
        aware = datetime(2026, 2, 5, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        result = EntryService(session).add(
            _entry_in(transaction_date_utc=aware, label_ids=[b.id, a.id, b.id])
        )

        assert result.entry.amount_minor == 1250
        assert result.entry.currency_code == "USD"
        assert result.entry.transaction_date_utc == datetime(2026, 2, 5, 12, 0)
        assert result.entry.label_ids == sorted([a.id, b.id])
        assert result.entry.category_id is None


def test_add_rejects_invalid_amounts_and_references() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = EntryService(session)
        with pytest.raises(InvalidAmountPrecision):
            service.add(_entry_in(amount="12.5", currency_code="JPY"))
        with pytest.raises(InvalidAmount):
            service.add(_entry_in(amount="-3"))
        with pytest.raises(InvalidAmount):
            service.add(_entry_in(amount="0.00"))
        with pytest.raises(InvalidAmount):
            service.add(_entry_in(amount=None))
        with pytest.raises(InvalidAmount):
            service.add(_entry_in(amount="1.00", amount_minor=200))
        with pytest.raises(InvalidCurrencyCode):
            service.add(_entry_in(currency_code="U1D"))
        with pytest.raises(CategoryNotFound):
            service.add(_entry_in(category_id=42))
        with pytest.raises(LabelNotFound):
            service.add(_entry_in(label_ids=[7]))
        assert service.list() == []


def test_soft_deleted_entries_disappear_from_reads() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = EntryService(session)
        entry = service.add(_entry_in()).entry
        service.soft_delete(entry.id)

        with pytest.raises(EntryNotFound):
            service.get(entry.id)
        with pytest.raises(EntryNotFound):
            service.soft_delete(entry.id)
        assert service.list() == []


def test_category_names_are_unique_case_insensitively() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session)
        food = categories.create(CategoryIn(name="Food"))
        with pytest.raises(NameConflict):
            categories.create(CategoryIn(name=" food "))

        renamed = categories.rename(food.id, "Groceries")
        assert renamed.name == "Groceries"
        categories.delete(food.id)
        assert categories.create(CategoryIn(name="Groceries")).id != food.id


def test_deleting_a_category_orphans_its_entries() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        food = CategoryService(session).create(CategoryIn(name="Food"))
        entries = EntryService(session)
        first = entries.add(_entry_in(category_id=food.id)).entry
        entries.add(_entry_in(category_id=food.id))

        result = CategoryService(session).delete(food.id)

        assert result.orphaned_entries == 2
        assert entries.get(first.id).category_id is None
        assert entries.get(first.id).is_orphan
        with pytest.raises(CategoryNotFound):
            CategoryService(session).delete(food.id)
        assert CategoryService(session).list_all() == []


def test_deleting_a_label_detaches_links_but_keeps_entries() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        trip = LabelService(session).create(LabelIn(name="Trip"))
        with pytest.raises(NameConflict):
            LabelService(session).create(LabelIn(name="TRIP"))
        entries = EntryService(session)
        entry = entries.add(_entry_in(label_ids=[trip.id])).entry

        result = LabelService(session).delete(trip.id)

        assert result.detached_links == 1
        assert entries.get(entry.id).label_ids == ()
        assert entries.list(EntryFilter.build(label_ids=[trip.id])) == []
        links = session.scalars(select(EntryLabel)).all()
        assert len(links) == 1
        assert links[0].deleted_at is not None


def test_settings_upsert_falls_back_to_default_thresholds() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = SettingsService(session)
        with pytest.raises(SettingsNotFound):
            service.get()
        assert service.thresholds().count == 5

        saved = service.upsert(
            SettingsIn(
                default_currency_code="eur",
                display_timezone="Europe/Berlin",
                orphan_count_threshold=0,
                orphan_spending_threshold_bps=1200,
            )
        )

        assert saved.default_currency_code == "EUR"
        assert saved.orphan_count_threshold == 5
        assert saved.orphan_spending_threshold_bps == 1200
        assert service.thresholds().spending_bps == 1200


def test_payment_details_are_normalized_by_entry_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = EntryService(session)

        expense = service.add(_entry_in()).entry
        assert expense.payment_method == PaymentMethod.cash
        assert expense.payment_card_id is None

        card = service.add(_entry_in(payment_method="card", payment_card_id=3)).entry
        assert card.payment_method == PaymentMethod.card
        assert card.payment_card_id == 3

        income = service.add(_entry_in(type=EntryType.income)).entry
        assert income.payment_method is None

        with pytest.raises(InvalidPaymentMethod):
            service.add(_entry_in(type=EntryType.income, payment_method="cash"))
        with pytest.raises(InvalidPaymentMethod):
            service.add(_entry_in(type=EntryType.income, payment_card_id=3))
        with pytest.raises(InvalidPaymentMethod):
            service.add(_entry_in(payment_card_id=3))
        with pytest.raises(InvalidPaymentMethod):
            service.add(_entry_in(payment_method="card"))
        with pytest.raises(InvalidCardId):
            service.add(_entry_in(payment_method="card", payment_card_id=0))
        assert len(service.list()) == 3
