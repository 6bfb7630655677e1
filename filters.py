from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from errors import InvalidCategoryId, InvalidLabelId, InvalidLabelMode, InvalidPaymentMethod
from models import EntryType, PaymentMethod

LABEL_MODE_ANY = "any"
LABEL_MODE_ALL = "all"
LABEL_MODE_NONE = "none"
LABEL_MODES = (LABEL_MODE_ANY, LABEL_MODE_ALL, LABEL_MODE_NONE)


@dataclass(frozen=True)
class LedgerEntry:
    """Read-only snapshot of an active entry as the store hands it out."""

    id: int
    type: EntryType
    amount_minor: int
    currency_code: str
    transaction_date_utc: datetime
    category_id: Optional[int] = None
    label_ids: tuple[int, ...] = ()
    note: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_card_id: Optional[int] = None

    @property
    def is_orphan(self) -> bool:
        return self.category_id is None


def normalize_label_mode(mode: Optional[str]) -> str:
    normalized = (mode or "").strip().lower()
    if not normalized:
        return LABEL_MODE_ANY
    if normalized not in LABEL_MODES:
        raise InvalidLabelMode(f"Unsupported label mode: {mode}")
    return normalized


def normalize_label_ids(label_ids: Optional[Iterable[int]]) -> tuple[int, ...]:
    unique: set[int] = set()
    for label_id in label_ids or ():
        if label_id <= 0:
            raise InvalidLabelId(f"Invalid label id: {label_id}")
        unique.add(label_id)
    return tuple(sorted(unique))


def validate_category_id(category_id: Optional[int]) -> Optional[int]:
    if category_id is not None and category_id <= 0:
        raise InvalidCategoryId(f"Invalid category id: {category_id}")
    return category_id


def normalize_payment_method(value: Optional[str]) -> Optional[PaymentMethod]:
    if isinstance(value, PaymentMethod):
        return value
    normalized = (value or "").strip().lower()
    if not normalized:
        return None
    try:
        return PaymentMethod(normalized)
    except ValueError as exc:
        raise InvalidPaymentMethod(f"Unsupported payment method: {value}") from exc


def labels_match(entry_labels: Iterable[int], requested: Sequence[int], mode: str) -> bool:
    if not requested:
        return True
    have = set(entry_labels)
    wanted = set(requested)
    if mode == LABEL_MODE_ALL:
        return wanted <= have
    if mode == LABEL_MODE_NONE:
        return have.isdisjoint(wanted)
    return not have.isdisjoint(wanted)


@dataclass(frozen=True)
class EntryFilter:
    type: Optional[EntryType] = None
    category_id: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    label_ids: tuple[int, ...] = field(default_factory=tuple)
    label_mode: str = LABEL_MODE_ANY
    payment_method: Optional[PaymentMethod] = None

    @classmethod
    def build(
        cls,
        *,
        type: Optional[EntryType] = None,
        category_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        label_ids: Optional[Iterable[int]] = None,
        label_mode: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> "EntryFilter":
        return cls(
            type=type,
            category_id=validate_category_id(category_id),
            start=start,
            end=end,
            label_ids=normalize_label_ids(label_ids),
            label_mode=normalize_label_mode(label_mode),
            payment_method=normalize_payment_method(payment_method),
        )

    def matches_labels(self, entry: LedgerEntry) -> bool:
        return labels_match(entry.label_ids, self.label_ids, self.label_mode)

    def matches(self, entry: LedgerEntry) -> bool:
        if self.type is not None and entry.type != self.type:
            return False
        if self.category_id is not None and entry.category_id != self.category_id:
            return False
        if self.start is not None and entry.transaction_date_utc < self.start:
            return False
        if self.end is not None and entry.transaction_date_utc >= self.end:
            return False
        if (
            self.payment_method is not None
            and entry.payment_method != self.payment_method
        ):
            return False
        return self.matches_labels(entry)

    def apply(self, entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
        return [entry for entry in entries if self.matches(entry)]


def sort_entries(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    return sorted(
        entries,
        key=lambda e: (
            e.transaction_date_utc,
            e.type.value,
            e.currency_code,
            e.amount_minor,
            e.id,
        ),
    )
