import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from errors import CapNotFound, InvalidCapAmount
from models import Entry, EntryType, MonthlyCap, MonthlyCapChange, utcnow
from money import check_minor_range, normalize_currency_code
from periods import month_key_for, month_window, normalize_month_key
from schemas import WARNING_CAP_EXCEEDED, CapSetIn, CapStatus, LedgerWarning

logger = logging.getLogger(__name__)


def cap_status(
    month_key: str, currency_code: str, cap_amount_minor: int, spend_total_minor: int
) -> CapStatus:
    overspend = max(0, spend_total_minor - cap_amount_minor)
    return CapStatus(
        month_key=month_key,
        currency_code=currency_code,
        cap_amount_minor=cap_amount_minor,
        spend_total_minor=spend_total_minor,
        overspend_minor=overspend,
        is_exceeded=spend_total_minor > cap_amount_minor,
    )


class CapService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def set(self, data: CapSetIn) -> tuple[MonthlyCap, MonthlyCapChange]:
        month_key = normalize_month_key(data.month_key)
        if data.amount_minor <= 0:
            raise InvalidCapAmount("Cap amount must be positive")
        check_minor_range(data.amount_minor)
        currency_code = normalize_currency_code(data.currency_code)

        cap = self.session.scalar(
            select(MonthlyCap)
            .where(MonthlyCap.month_key == month_key)
            .with_for_update()
        )
        now = utcnow()
        old_amount: Optional[int] = None
        if cap is None:
            cap = MonthlyCap(
                month_key=month_key,
                amount_minor=data.amount_minor,
                currency_code=currency_code,
                created_at=now,
                updated_at=now,
            )
            self.session.add(cap)
        else:
            old_amount = cap.amount_minor
            cap.amount_minor = data.amount_minor
            cap.currency_code = currency_code
            cap.updated_at = now

        change = MonthlyCapChange(
            month_key=month_key,
            old_amount_minor=old_amount,
            new_amount_minor=data.amount_minor,
            currency_code=currency_code,
            changed_at=now,
        )
        self.session.add(change)
        self.session.commit()
        self.session.refresh(cap)
        self.session.refresh(change)
        logger.info(
            f"cap_set: month={month_key} old={old_amount} "
            f"new={data.amount_minor} currency={currency_code}"
        )
        return cap, change

    def show(self, month_key: str) -> MonthlyCap:
        key = normalize_month_key(month_key)
        cap = self.session.scalar(select(MonthlyCap).where(MonthlyCap.month_key == key))
        if cap is None:
            raise CapNotFound(f"No cap set for {key}")
        return cap

    def history(self, month_key: str) -> list[MonthlyCapChange]:
        key = normalize_month_key(month_key)
        stmt = (
            select(MonthlyCapChange)
            .where(MonthlyCapChange.month_key == key)
            .order_by(MonthlyCapChange.changed_at, MonthlyCapChange.id)
        )
        return list(self.session.scalars(stmt).all())

    def expense_total(self, month_key: str, currency_code: str) -> int:
        start, end = month_window(month_key)
        total = self.session.execute(
            select(func.coalesce(func.sum(Entry.amount_minor), 0)).where(
                Entry.deleted_at.is_(None),
                Entry.type == EntryType.expense,
                Entry.currency_code == normalize_currency_code(currency_code),
                Entry.transaction_date_utc >= start,
                Entry.transaction_date_utc < end,
            )
        ).scalar_one()
        return check_minor_range(int(total or 0))

    def status_for_months(
        self, month_keys: Iterable[str]
    ) -> tuple[list[CapStatus], list[MonthlyCapChange]]:
        """Cap status and change history for each month; ignores report filters."""
        keys = sorted({normalize_month_key(key) for key in month_keys})
        if not keys:
            return [], []

        caps = self.session.scalars(
            select(MonthlyCap)
            .where(MonthlyCap.month_key.in_(keys))
            .order_by(MonthlyCap.month_key)
        ).all()
        statuses = [
            cap_status(
                cap.month_key,
                cap.currency_code,
                cap.amount_minor,
                self.expense_total(cap.month_key, cap.currency_code),
            )
            for cap in caps
        ]
        changes = self.session.scalars(
            select(MonthlyCapChange)
            .where(MonthlyCapChange.month_key.in_(keys))
            .order_by(
                MonthlyCapChange.month_key,
                MonthlyCapChange.changed_at,
                MonthlyCapChange.id,
            )
        ).all()
        return statuses, list(changes)

    def exceeded_warning(
        self, type: EntryType, currency_code: str, transaction_date_utc: datetime
    ) -> Optional[LedgerWarning]:
        if type != EntryType.expense:
            return None
        month_key = month_key_for(transaction_date_utc)
        cap = self.session.scalar(
            select(MonthlyCap).where(MonthlyCap.month_key == month_key)
        )
        if cap is None or cap.currency_code != currency_code:
            return None

        status = cap_status(
            month_key,
            cap.currency_code,
            cap.amount_minor,
            self.expense_total(month_key, cap.currency_code),
        )
        if not status.is_exceeded:
            return None
        return LedgerWarning(
            code=WARNING_CAP_EXCEEDED,
            message=f"Monthly cap exceeded for {month_key}",
            details=status.model_dump(),
        )
