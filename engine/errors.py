from __future__ import annotations


class TrackerError(Exception):
    pass


class DataUnavailable(TrackerError):
    """No bars for a ticker in this window. The orders are retried next tick."""

    def __init__(self, ticker: str, reason: str = "no data") -> None:
        super().__init__(f"{ticker}: {reason}")
        self.ticker = ticker
        self.reason = reason


class TransientNetworkError(DataUnavailable):
    pass


class PermanentNetworkError(TrackerError):
    def __init__(self, ticker: str, reason: str) -> None:
        super().__init__(f"{ticker}: {reason}")
        self.ticker = ticker
        self.reason = reason


class MalformedRecord(TrackerError):
    def __init__(self, bucket: str, record: object, reason: str) -> None:
        super().__init__(f"{bucket}: {reason}")
        self.bucket = bucket
        self.record = record
        self.reason = reason


class PersistenceFailure(TrackerError):
    def __init__(self, bucket: str, cause: Exception) -> None:
        super().__init__(f"{bucket}: {cause}")
        self.bucket = bucket
        self.cause = cause
