"""Error types raised by the scheduler and its collaborators."""


class DailyRequestsError(Exception):
    """Base class for all errors raised by this package."""


class AccountNotFound(DailyRequestsError):
    """The requested account does not exist."""

    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account with ID {account_id} not found")


class InvalidDateFormat(DailyRequestsError):
    """A start or target date string could not be parsed."""

    def __init__(self, value: str, expected: str):
        self.value = value
        self.expected = expected
        super().__init__(f"Invalid date '{value}': expected {expected}")


class DateBeforeStart(DailyRequestsError):
    """The target date falls before the account's start date."""

    def __init__(self, start_date: str, target_date: str):
        self.start_date = start_date
        self.target_date = target_date
        super().__init__(
            f"Target date {target_date} is before account start date {start_date}"
        )


class UpstreamLookupFailure(DailyRequestsError):
    """A storage read failed while computing daily requests."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause}")


class StorageError(DailyRequestsError):
    """A storage operation failed."""


class NotFoundError(StorageError):
    """A referenced record does not exist."""
