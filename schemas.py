from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import EntryType, PaymentMethod

WARNING_CAP_EXCEEDED = "CAP_EXCEEDED"
WARNING_ORPHAN_COUNT_EXCEEDED = "ORPHAN_COUNT_THRESHOLD_EXCEEDED"
WARNING_ORPHAN_SPENDING_EXCEEDED = "ORPHAN_SPENDING_THRESHOLD_EXCEEDED"
WARNING_FX_ESTIMATE_USED = "FX_ESTIMATE_USED"


class LedgerWarning(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)


class LabelIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)


class EntryIn(BaseModel):
    type: EntryType
    amount_minor: Optional[int] = Field(default=None, gt=0)
    amount: Optional[str] = Field(default=None, max_length=40)
    currency_code: str = Field(..., min_length=3, max_length=3)
    transaction_date_utc: datetime
    category_id: Optional[int] = None
    label_ids: list[int] = Field(default_factory=list)
    note: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[PaymentMethod] = None
    payment_card_id: Optional[int] = None


class CapAmountIn(BaseModel):
    amount_minor: int
    currency_code: str


class CapSetIn(CapAmountIn):
    month_key: str


class SettingsIn(BaseModel):
    default_currency_code: str
    display_timezone: str = "UTC"
    orphan_count_threshold: int = 0
    orphan_spending_threshold_bps: int = Field(default=0, le=10_000)
    onboarding_completed_at: Optional[datetime] = None


class ReportRequest(BaseModel):
    scope: Optional[str] = None
    month_key: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    grouping: Optional[str] = None
    category_id: Optional[int] = None
    label_ids: list[int] = Field(default_factory=list)
    label_mode: Optional[str] = None
    payment_method: Optional[str] = None
    convert_to: Optional[str] = None


class BalanceRequest(BaseModel):
    scope: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    category_id: Optional[int] = None
    label_ids: list[int] = Field(default_factory=list)
    label_mode: Optional[str] = None
    convert_to: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class LabelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class CategoryDeleteResult(BaseModel):
    category_id: int
    orphaned_entries: int


class LabelDeleteResult(BaseModel):
    label_id: int
    detached_links: int


class EntryOut(BaseModel):
    id: int
    type: EntryType
    amount_minor: int
    currency_code: str
    transaction_date_utc: datetime
    category_id: Optional[int] = None
    label_ids: list[int] = Field(default_factory=list)
    note: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_card_id: Optional[int] = None


class EntryAddResult(BaseModel):
    entry: EntryOut
    warnings: list[LedgerWarning] = Field(default_factory=list)


class CapOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    month_key: str
    amount_minor: int
    currency_code: str
    created_at: datetime
    updated_at: datetime


class CapChangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    month_key: str
    old_amount_minor: Optional[int] = None
    new_amount_minor: int
    currency_code: str
    changed_at: datetime


class CapSetResult(BaseModel):
    cap: CapOut
    change: CapChangeOut


class CapStatus(BaseModel):
    month_key: str
    currency_code: str
    cap_amount_minor: int
    spend_total_minor: int
    overspend_minor: int
    is_exceeded: bool


class SettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    default_currency_code: str
    display_timezone: str
    orphan_count_threshold: int
    orphan_spending_threshold_bps: int
    onboarding_completed_at: Optional[datetime] = None


class CurrencyTotal(BaseModel):
    currency_code: str
    total_minor: int


class GroupTotal(BaseModel):
    period_key: str
    currency_code: str
    total_minor: int


class CategoryTotal(BaseModel):
    category_id: Optional[int] = None
    category_key: str
    category_label: str
    by_currency: list[CurrencyTotal] = Field(default_factory=list)


class ReportSection(BaseModel):
    by_currency: list[CurrencyTotal] = Field(default_factory=list)
    groups: list[GroupTotal] = Field(default_factory=list)
    categories: list[CategoryTotal] = Field(default_factory=list)


class ReportNet(BaseModel):
    by_currency: list[CurrencyTotal] = Field(default_factory=list)


class PaymentMethodTotals(BaseModel):
    cash: list[CurrencyTotal] = Field(default_factory=list)
    card: list[CurrencyTotal] = Field(default_factory=list)


class PeriodOut(BaseModel):
    scope: str
    month_key: Optional[str] = None
    from_utc: str
    to_utc: str
    month_keys: list[str] = Field(default_factory=list)


class ConvertedSummary(BaseModel):
    target_currency: str
    earnings_minor: int
    spending_minor: int
    net_minor: int
    used_estimate_rate: bool


class Report(BaseModel):
    period: PeriodOut
    grouping: str
    earnings: ReportSection
    spending: ReportSection
    net: ReportNet
    payment_methods: PaymentMethodTotals = Field(default_factory=PaymentMethodTotals)
    converted: Optional[ConvertedSummary] = None
    cap_status: list[CapStatus] = Field(default_factory=list)
    cap_changes: list[CapChangeOut] = Field(default_factory=list)


class ReportResult(BaseModel):
    report: Report
    warnings: list[LedgerWarning] = Field(default_factory=list)


class CurrencyNet(BaseModel):
    currency_code: str
    net_minor: int


class BalanceView(BaseModel):
    by_currency: list[CurrencyNet] = Field(default_factory=list)


class ConvertedBalanceView(BaseModel):
    target_currency: str
    net_minor: int
    used_estimate_rate: bool


class BalanceViews(BaseModel):
    scope: str
    lifetime: Optional[BalanceView] = None
    range: Optional[BalanceView] = None
    lifetime_converted: Optional[ConvertedBalanceView] = None
    range_converted: Optional[ConvertedBalanceView] = None


class BalanceResult(BaseModel):
    balance: BalanceViews
    warnings: list[LedgerWarning] = Field(default_factory=list)
