"""Error taxonomy shared by the loader, indicator engine, and pipeline runner."""


class EthquakeError(Exception):
    """Base class for all errors raised by ethquake."""


class ConfigError(EthquakeError):
    """Strategy descriptor missing, unparseable, disabled, or invalid."""


class LoadError(EthquakeError):
    """Strategy entry missing or not implementing the strategy contract."""


class IndicatorError(EthquakeError, ValueError):
    """Indicator computation cannot proceed with the given samples."""


class InsufficientData(IndicatorError):
    """Fewer samples than the indicator period."""


class UnreliableData(IndicatorError):
    """Enough samples to compute, too few to trust (EMA warm-up)."""


class DataError(EthquakeError):
    """Market-data provider response was malformed, empty, or unreachable."""


class ExecutionError(EthquakeError):
    """Failure while deciding, executing, or persisting a trade."""
