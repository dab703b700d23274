class BankError(RuntimeError):
    """A stream can no longer produce trustworthy output."""


class BankConfigurationError(BankError):
    """Raised for an invalid BankArgument (e.g. a window holding fewer than 2 scans)."""


class NonMonotonicTimestampError(BankError):
    """Raised when a scan is older than the newest scan already in the window."""
