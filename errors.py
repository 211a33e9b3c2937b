class SyncError(Exception):
    """Base class for everything the sync engine raises."""


class RemoteUnavailable(SyncError):
    """Transport failure, timeout or server error. Retry at the next cycle."""

    def __init__(self, message, rate_limited=False):
        super().__init__(message)
        self.rate_limited = rate_limited


class InvalidParameter(SyncError):
    """Contract error. Never retried."""


class ZoneRevoked(SyncError):
    """The secondary store zone no longer exists."""


class PropagationPartialFailure(SyncError):
    """One or more status chunks failed; the ledger already holds them for retry."""

    def __init__(self, failed_ids=None, rate_limited=False):
        super().__init__("Story status sync failed")
        self.failed_ids = list(failed_ids or [])
        self.rate_limited = rate_limited
