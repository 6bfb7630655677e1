from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EntryType(str, Enum):
    income = "income"
    expense = "expense"


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    entries: Mapped[list["Entry"]] = relationship("Entry", back_populates="category")


class Label(Base, TimestampMixin):
    __tablename__ = "labels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class EntryLabel(Base):
    __tablename__ = "entry_labels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("entries.id"), nullable=False)
    label_id: Mapped[int] = mapped_column(ForeignKey("labels.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    entry: Mapped["Entry"] = relationship("Entry", back_populates="label_links")
    label: Mapped["Label"] = relationship("Label")

    __table_args__ = (
        Index("ix_entry_labels_entry_active", "entry_id", "deleted_at"),
        Index("ix_entry_labels_label_active", "label_id", "deleted_at"),
    )


class Entry(Base, TimestampMixin):
    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[EntryType] = mapped_column(SAEnum(EntryType), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    transaction_date_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    note: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SAEnum(PaymentMethod)
    )
    payment_card_id: Mapped[Optional[int]] = mapped_column(Integer)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="entries"
    )
    label_links: Mapped[list["EntryLabel"]] = relationship(
        "EntryLabel", back_populates="entry"
    )

    __table_args__ = (
        Index("ix_entries_deleted_date", "deleted_at", "transaction_date_utc"),
        Index("ix_entries_category", "category_id"),
        Index("ix_entries_type_date", "type", "transaction_date_utc"),
        CheckConstraint("amount_minor > 0", name="ck_entries_amount_positive"),
        CheckConstraint("length(currency_code) = 3", name="ck_entries_currency"),
    )


class MonthlyCap(Base, TimestampMixin):
    __tablename__ = "monthly_caps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)

    __table_args__ = (
        UniqueConstraint("month_key", name="uq_monthly_caps_month"),
        CheckConstraint("amount_minor > 0", name="ck_monthly_caps_amount_positive"),
    )


class MonthlyCapChange(Base):
    __tablename__ = "monthly_cap_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    old_amount_minor: Mapped[Optional[int]] = mapped_column(BigInteger)
    new_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_monthly_cap_changes_month_changed", "month_key", "changed_at"),
    )


class LedgerSettings(Base, TimestampMixin):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    default_currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    display_timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    orphan_count_threshold: Mapped[int] = mapped_column(
        Integer, nullable=False, default=5
    )
    orphan_spending_threshold_bps: Mapped[int] = mapped_column(
        Integer, nullable=False, default=500
    )
    onboarding_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_settings_singleton"),
        CheckConstraint(
            "orphan_spending_threshold_bps BETWEEN 0 AND 10000",
            name="ck_settings_orphan_bps_range",
        ),
    )


class FxRateSnapshot(Base):
    __tablename__ = "fx_rate_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(String(40), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    quote_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[str] = mapped_column(String(40), nullable=False)
    rate_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_estimate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "provider",
            "base_currency",
            "quote_currency",
            "rate_date",
            "is_estimate",
            name="uq_fx_rate_snapshot_key",
        ),
    )
