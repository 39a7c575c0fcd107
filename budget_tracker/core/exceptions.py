class AppError(Exception):
    """Base class for every application error."""
    pass


class ConfigurationError(AppError):
    """Missing or incomplete configuration (e.g. no API key for an exchange)."""
    pass


class DataSourceError(AppError):
    """Exchange API failure (connection, unexpected status, undecodable body)."""
    is_transient = False

    def __init__(self, message: str, exchange: str = "", code=None):
        super().__init__(message)
        self.exchange = exchange
        self.code = code


class AuthenticationError(DataSourceError):
    """The exchange rejected the credentials or the signature."""
    pass


class TransientSourceError(DataSourceError):
    """Errors that end a sync cycle quietly; the next tick is the retry."""
    is_transient = True


class RateLimitError(TransientSourceError):
    """The exchange answered with its rate-limit code."""
    pass


class RetentionWindowError(TransientSourceError):
    """The requested time window is older than the exchange keeps history."""
    pass


class SyncTimeoutError(TransientSourceError):
    """The cycle deadline passed or a request timed out."""
    pass


class MalformedRecordError(AppError):
    """A single exchange record could not be decoded."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class DataDestinationError(AppError):
    """Persistence failure."""
    pass


class NotFoundError(AppError):
    """Requested row does not exist."""
    pass
