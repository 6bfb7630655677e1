from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from aggregation import aggregate, currency_totals, net_totals
from caps import CapService
from config import get_settings
from errors import (
    CategoryNotFound,
    EntryNotFound,
    InvalidAmount,
    InvalidBalanceScope,
    InvalidCardId,
    InvalidPaymentMethod,
    LabelNotFound,
    LedgerValidationError,
    NameConflict,
    SettingsNotFound,
)
from filters import EntryFilter, LedgerEntry, normalize_label_ids, sort_entries
from fx_rates import FxConverter
from models import (
    Category,
    Entry,
    EntryLabel,
    EntryType,
    Label,
    LedgerSettings,
    PaymentMethod,
    utcnow,
)
from money import check_minor_range, normalize_currency_code, parse_amount
from orphans import OrphanThresholds, evaluate_orphans
from periods import ReportPeriod, normalize_grouping, resolve_bounds, resolve_period
from schemas import (
    WARNING_FX_ESTIMATE_USED,
    BalanceRequest,
    BalanceResult,
    BalanceView,
    BalanceViews,
    CapChangeOut,
    CategoryDeleteResult,
    CategoryIn,
    ConvertedBalanceView,
    ConvertedSummary,
    CurrencyNet,
    EntryAddResult,
    EntryIn,
    EntryOut,
    LabelDeleteResult,
    LabelIn,
    LedgerWarning,
    PeriodOut,
    Report,
    ReportRequest,
    ReportResult,
    SettingsIn,
)

logger = logging.getLogger(__name__)

BALANCE_SCOPE_LIFETIME = "lifetime"
BALANCE_SCOPE_RANGE = "range"
BALANCE_SCOPE_BOTH = "both"
BALANCE_SCOPES = (BALANCE_SCOPE_LIFETIME, BALANCE_SCOPE_RANGE, BALANCE_SCOPE_BOTH)


def _to_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _clean_name(name: str, what: str) -> str:
    clean = (name or "").strip()
    if not clean:
        raise LedgerValidationError(f"{what} name cannot be empty")
    return clean


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.deleted_at.is_(None))
            .order_by(Category.name, Category.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.deleted_at is not None:
            raise CategoryNotFound("Category not found")
        return category

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(
            Category.deleted_at.is_(None),
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise NameConflict("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = _clean_name(data.name, "Category")
        self._ensure_unique(name)
        category = Category(name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def rename(self, category_id: int, name: str) -> Category:
        category = self.get(category_id)
        clean = _clean_name(name, "Category")
        self._ensure_unique(clean, exclude_id=category.id)
        category.name = clean
        self.session.commit()
        return category

    def delete(self, category_id: int) -> CategoryDeleteResult:
        category = self.get(category_id)
        result = self.session.execute(
            update(Entry)
            .where(Entry.category_id == category.id, Entry.deleted_at.is_(None))
            .values(category_id=None, updated_at=utcnow())
        )
        category.deleted_at = utcnow()
        self.session.commit()
        orphaned = result.rowcount or 0
        logger.info(f"category_deleted: id={category.id} orphaned_entries={orphaned}")
        return CategoryDeleteResult(category_id=category.id, orphaned_entries=orphaned)

    def names_by_id(self) -> dict[int, str]:
        rows = self.session.execute(
            select(Category.id, Category.name).where(Category.deleted_at.is_(None))
        ).all()
        return {row.id: row.name for row in rows}


class LabelService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Label]:
        stmt = (
            select(Label).where(Label.deleted_at.is_(None)).order_by(Label.name, Label.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, label_id: int) -> Label:
        label = self.session.get(Label, label_id)
        if not label or label.deleted_at is not None:
            raise LabelNotFound(f"Label {label_id} not found")
        return label

    def create(self, data: LabelIn) -> Label:
        name = _clean_name(data.name, "Label")
        existing = self.session.scalar(
            select(Label).where(
                Label.deleted_at.is_(None), func.lower(Label.name) == name.lower()
            )
        )
        if existing:
            raise NameConflict("Label already exists")
        label = Label(name=name)
        self.session.add(label)
        self.session.commit()
        self.session.refresh(label)
        return label

    def delete(self, label_id: int) -> LabelDeleteResult:
        label = self.get(label_id)
        now = utcnow()
        result = self.session.execute(
            update(EntryLabel)
            .where(EntryLabel.label_id == label.id, EntryLabel.deleted_at.is_(None))
            .values(deleted_at=now)
        )
        label.deleted_at = now
        self.session.commit()
        detached = result.rowcount or 0
        logger.info(f"label_deleted: id={label.id} detached_links={detached}")
        return LabelDeleteResult(label_id=label.id, detached_links=detached)


class EntryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _amount_minor(self, data: EntryIn, currency_code: str) -> int:
        if data.amount is not None:
            parsed = parse_amount(data.amount, currency_code)
            if parsed <= 0:
                raise InvalidAmount("Amount must be positive")
            if data.amount_minor is not None and data.amount_minor != parsed:
                raise InvalidAmount("amount and amount_minor disagree")
            return parsed
        if data.amount_minor is None:
            raise InvalidAmount("Either amount or amount_minor is required")
        return check_minor_range(data.amount_minor)

    @staticmethod
    def _payment(data: EntryIn) -> tuple[Optional[PaymentMethod], Optional[int]]:
        """Income carries no payment details; expenses default to cash."""
        method, card_id = data.payment_method, data.payment_card_id
        if card_id is not None and card_id <= 0:
            raise InvalidCardId(f"Invalid card id: {card_id}")
        if data.type == EntryType.income:
            if method is not None or card_id is not None:
                raise InvalidPaymentMethod("Payment method is not allowed for income entries")
            return None, None
        method = method or PaymentMethod.cash
        if method == PaymentMethod.cash and card_id is not None:
            raise InvalidPaymentMethod("A card cannot be used with the cash payment method")
        if method == PaymentMethod.card and card_id is None:
            raise InvalidPaymentMethod("A card is required for the card payment method")
        return method, card_id

    def add(self, data: EntryIn) -> EntryAddResult:
        currency_code = normalize_currency_code(data.currency_code)
        amount_minor = self._amount_minor(data, currency_code)
        payment_method, payment_card_id = self._payment(data)
        if data.category_id is not None:
            CategoryService(self.session).get(data.category_id)
        label_ids = normalize_label_ids(data.label_ids)
        labels = LabelService(self.session)
        for label_id in label_ids:
            labels.get(label_id)

        entry = Entry(
            type=data.type,
            amount_minor=amount_minor,
            currency_code=currency_code,
            transaction_date_utc=_to_naive_utc(data.transaction_date_utc),
            category_id=data.category_id,
            note=data.note,
            payment_method=payment_method,
            payment_card_id=payment_card_id,
        )
        entry.label_links = [EntryLabel(label_id=label_id) for label_id in label_ids]
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        logger.info(
            f"entry_added: id={entry.id} type={entry.type.value} "
            f"amount_minor={entry.amount_minor} currency={entry.currency_code}"
        )

        warnings: list[LedgerWarning] = []
        warning = CapService(self.session).exceeded_warning(
            entry.type, entry.currency_code, entry.transaction_date_utc
        )
        if warning is not None:
            warnings.append(warning)
        return EntryAddResult(entry=self.to_out(self.get(entry.id)), warnings=warnings)

    def _active_query(self):
        return (
            select(Entry)
            .options(selectinload(Entry.label_links), selectinload(Entry.category))
            .where(Entry.deleted_at.is_(None))
        )

    @staticmethod
    def _snapshot(entry: Entry) -> LedgerEntry:
        category_id = entry.category_id
        if entry.category is not None and entry.category.deleted_at is not None:
            category_id = None
        label_ids = tuple(
            sorted(link.label_id for link in entry.label_links if link.deleted_at is None)
        )
        return LedgerEntry(
            id=entry.id,
            type=entry.type,
            amount_minor=entry.amount_minor,
            currency_code=entry.currency_code,
            transaction_date_utc=entry.transaction_date_utc,
            category_id=category_id,
            label_ids=label_ids,
            note=entry.note,
            payment_method=entry.payment_method,
            payment_card_id=entry.payment_card_id,
        )

    @staticmethod
    def to_out(entry: LedgerEntry) -> EntryOut:
        return EntryOut(
            id=entry.id,
            type=entry.type,
            amount_minor=entry.amount_minor,
            currency_code=entry.currency_code,
            transaction_date_utc=entry.transaction_date_utc,
            category_id=entry.category_id,
            label_ids=list(entry.label_ids),
            note=entry.note,
            payment_method=entry.payment_method,
            payment_card_id=entry.payment_card_id,
        )

    def get(self, entry_id: int) -> LedgerEntry:
        entry = self.session.scalar(self._active_query().where(Entry.id == entry_id))
        if not entry:
            raise EntryNotFound("Entry not found")
        return self._snapshot(entry)

    def list(self, filters: Optional[EntryFilter] = None) -> list[LedgerEntry]:
        """Active entries matching the filter, in deterministic order."""
        filters = filters or EntryFilter()
        stmt = self._active_query().order_by(Entry.transaction_date_utc, Entry.id)
        if filters.type is not None:
            stmt = stmt.where(Entry.type == filters.type)
        if filters.category_id is not None:
            stmt = stmt.where(Entry.category_id == filters.category_id)
        if filters.start is not None:
            stmt = stmt.where(Entry.transaction_date_utc >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(Entry.transaction_date_utc < filters.end)
        if filters.payment_method is not None:
            stmt = stmt.where(Entry.payment_method == filters.payment_method)
        snapshots = (self._snapshot(entry) for entry in self.session.scalars(stmt).all())
        return sort_entries(filters.apply(snapshots))

    def soft_delete(self, entry_id: int) -> None:
        entry = self.session.get(Entry, entry_id)
        if not entry or entry.deleted_at is not None:
            raise EntryNotFound("Entry not found")
        entry.deleted_at = utcnow()
        self.session.commit()
        logger.info(f"entry_deleted: id={entry.id}")


class SettingsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self) -> LedgerSettings:
        settings = self.session.get(LedgerSettings, 1)
        if settings is None:
            raise SettingsNotFound("Settings have not been initialized")
        return settings

    def upsert(self, data: SettingsIn) -> LedgerSettings:
        thresholds = OrphanThresholds.from_values(
            data.orphan_count_threshold, data.orphan_spending_threshold_bps
        )
        timezone_name = (data.display_timezone or "").strip() or get_settings().timezone
        settings = self.session.get(LedgerSettings, 1)
        if settings is None:
            settings = LedgerSettings(id=1)
            self.session.add(settings)
        settings.default_currency_code = normalize_currency_code(
            data.default_currency_code
        )
        settings.display_timezone = timezone_name
        settings.orphan_count_threshold = thresholds.count
        settings.orphan_spending_threshold_bps = thresholds.spending_bps
        settings.onboarding_completed_at = (
            _to_naive_utc(data.onboarding_completed_at)
            if data.onboarding_completed_at
            else None
        )
        self.session.commit()
        self.session.refresh(settings)
        return settings

    def thresholds(self) -> OrphanThresholds:
        try:
            settings = self.get()
        except SettingsNotFound:
            return OrphanThresholds()
        return OrphanThresholds.from_values(
            settings.orphan_count_threshold, settings.orphan_spending_threshold_bps
        )


def _fx_estimate_warning(target: str, as_of_by_view: dict[str, date]) -> LedgerWarning:
    return LedgerWarning(
        code=WARNING_FX_ESTIMATE_USED,
        message="Estimated FX rates were used for at least one conversion.",
        details={
            "target_currency": target,
            "views": {view: as_of.isoformat() for view, as_of in as_of_by_view.items()},
        },
    )


class ReportService:
    def __init__(
        self, session: Session, fx_converter: Optional[FxConverter] = None
    ) -> None:
        self.session = session
        self.fx_converter = fx_converter

    def _converter(self) -> FxConverter:
        if self.fx_converter is None:
            self.fx_converter = FxConverter.from_settings(self.session)
        return self.fx_converter

    @staticmethod
    def _period_out(period: ReportPeriod) -> PeriodOut:
        return PeriodOut(
            scope=period.scope,
            month_key=period.month_key,
            from_utc=period.from_utc,
            to_utc=period.to_utc,
            month_keys=period.month_keys,
        )

    def generate(self, request: ReportRequest) -> ReportResult:
        period = resolve_period(
            request.scope,
            month_key=request.month_key,
            date_from=request.date_from,
            date_to=request.date_to,
        )
        grouping = normalize_grouping(request.grouping)
        filters = EntryFilter.build(
            category_id=request.category_id,
            start=period.start,
            end=period.end,
            label_ids=request.label_ids,
            label_mode=request.label_mode,
            payment_method=request.payment_method,
        )
        target = (
            normalize_currency_code(request.convert_to) if request.convert_to else None
        )

        entries = EntryService(self.session).list(filters)
        totals = aggregate(
            entries, grouping, CategoryService(self.session).names_by_id()
        )
        statuses, changes = CapService(self.session).status_for_months(period.month_keys)
        thresholds = SettingsService(self.session).thresholds()
        warnings = evaluate_orphans(entries, period, thresholds, statuses)

        converted = None
        if target is not None:
            as_of = period.last_day
            converter = self._converter()
            earned = converter.convert(totals.earnings_by_currency, target, as_of)
            spent = converter.convert(totals.spending_by_currency, target, as_of)
            used_estimate = earned.used_estimate_rate or spent.used_estimate_rate
            converted = ConvertedSummary(
                target_currency=target,
                earnings_minor=earned.amount_minor,
                spending_minor=spent.amount_minor,
                net_minor=check_minor_range(earned.amount_minor - spent.amount_minor),
                used_estimate_rate=used_estimate,
            )
            if used_estimate:
                warnings.append(_fx_estimate_warning(target, {"report": as_of}))

        report = Report(
            period=self._period_out(period),
            grouping=grouping,
            earnings=totals.earnings,
            spending=totals.spending,
            net=totals.net,
        payment_methods=totals.payment_methods,
            converted=converted,
            cap_status=statuses,
            cap_changes=[CapChangeOut.model_validate(change) for change in changes],
        )
        logger.info(
            f"report_generated: scope={period.scope} from={period.from_utc} "
            f"entries={len(entries)} warnings={len(warnings)}"
        )
        return ReportResult(report=report, warnings=warnings)


class BalanceService:
    def __init__(
        self,
        session: Session,
        fx_converter: Optional[FxConverter] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.fx_converter = fx_converter
        self.today = today

    def _converter(self) -> FxConverter:
        if self.fx_converter is None:
            self.fx_converter = FxConverter.from_settings(self.session)
        return self.fx_converter

    def _today(self) -> date:
        return self.today or utcnow().date()

    @staticmethod
    def normalize_scope(scope: Optional[str]) -> str:
        normalized = (scope or "").strip().lower()
        if not normalized:
            return BALANCE_SCOPE_BOTH
        if normalized not in BALANCE_SCOPES:
            raise InvalidBalanceScope(f"Unsupported balance scope: {scope}")
        return normalized

    def _view(
        self, filters: EntryFilter, target: Optional[str], as_of: date
    ) -> tuple[BalanceView, Optional[ConvertedBalanceView]]:
        net = net_totals(EntryService(self.session).list(filters))
        view = BalanceView(
            by_currency=[
                CurrencyNet(currency_code=row.currency_code, net_minor=row.total_minor)
                for row in currency_totals(net)
            ]
        )
        if target is None:
            return view, None
        result = self._converter().convert(net, target, as_of)
        return view, ConvertedBalanceView(
            target_currency=target,
            net_minor=result.amount_minor,
            used_estimate_rate=result.used_estimate_rate,
        )

    def compute(self, request: BalanceRequest) -> BalanceResult:
        scope = self.normalize_scope(request.scope)
        start, end = resolve_bounds(request.date_from, request.date_to)
        base = EntryFilter.build(
            category_id=request.category_id,
            label_ids=request.label_ids,
            label_mode=request.label_mode,
        )
        target = (
            normalize_currency_code(request.convert_to) if request.convert_to else None
        )

        views = BalanceViews(scope=scope)
        estimated: dict[str, date] = {}
        today = self._today()
        if scope in (BALANCE_SCOPE_LIFETIME, BALANCE_SCOPE_BOTH):
            views.lifetime, views.lifetime_converted = self._view(base, target, today)
            if views.lifetime_converted and views.lifetime_converted.used_estimate_rate:
                estimated[BALANCE_SCOPE_LIFETIME] = today
        if scope in (BALANCE_SCOPE_RANGE, BALANCE_SCOPE_BOTH):
            # Open-ended ranges convert at today's rate, bounded ones at their last day.
            range_as_of = today
            bounded = EntryFilter(
                category_id=base.category_id,
                start=start,
                end=end,
                label_ids=base.label_ids,
                label_mode=base.label_mode,
            )
            if end is not None:
                range_as_of = (end - timedelta(microseconds=1)).date()
            views.range, views.range_converted = self._view(bounded, target, range_as_of)
            if views.range_converted and views.range_converted.used_estimate_rate:
                estimated[BALANCE_SCOPE_RANGE] = range_as_of

        warnings: list[LedgerWarning] = []
        if estimated and target is not None:
            warnings.append(_fx_estimate_warning(target, estimated))
        return BalanceResult(balance=views, warnings=warnings)
