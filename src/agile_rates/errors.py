"""Error types raised by the rate pipeline."""


class RatesError(Exception):
    """Base exception for rate pipeline errors."""
    pass


class NetworkError(RatesError):
    """Transport failure talking to the tariff API (timeout, connection, non-2xx)."""
    pass


class ParseError(RatesError):
    """The tariff API returned a payload that could not be decoded."""
    pass


class PersistenceError(RatesError):
    """The rate store failed to read or write."""
    pass


class ConfigError(RatesError):
    """Settings file or environment contained an invalid value."""
    pass
