class LedgerError(Exception):
    """Base class for every named ledger condition."""


class LedgerValidationError(LedgerError, ValueError):
    """Bad request: never retried, surfaced verbatim to the caller."""


class InvalidAmount(LedgerValidationError):
    pass


class InvalidAmountPrecision(LedgerValidationError):
    pass


class AmountOverflow(LedgerValidationError):
    pass


class InvalidCurrencyCode(LedgerValidationError):
    pass


class InvalidDateRange(LedgerValidationError):
    pass


class InvalidMonthKey(LedgerValidationError):
    pass


class InvalidLabelMode(LedgerValidationError):
    pass


class InvalidReportScope(LedgerValidationError):
    pass


class InvalidReportGrouping(LedgerValidationError):
    pass


class InvalidBalanceScope(LedgerValidationError):
    pass


class InvalidCategoryId(LedgerValidationError):
    pass


class InvalidLabelId(LedgerValidationError):
    pass


class InvalidPaymentMethod(LedgerValidationError):
    pass


class InvalidCardId(LedgerValidationError):
    pass


class InvalidCapAmount(LedgerValidationError):
    pass


class InvalidFxRate(LedgerValidationError):
    pass


class NameConflict(LedgerValidationError):
    pass


class NotFound(LedgerError, LookupError):
    """Nothing to show, as opposed to a bad request."""


class CapNotFound(NotFound):
    pass


class CategoryNotFound(NotFound):
    pass


class LabelNotFound(NotFound):
    pass


class EntryNotFound(NotFound):
    pass


class SettingsNotFound(NotFound):
    pass


class FXRateUnavailable(LedgerError):
    """No rate snapshot of any kind exists for a requested conversion."""
