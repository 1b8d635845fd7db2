class ForecastError(Exception):
    """Base class for every error raised by the forecasting pipeline"""


class DataFormatError(ForecastError):
    """Input file is missing required columns or holds unparseable values"""


class InsufficientDataError(ForecastError):
    """Requested date window is not fully covered by the available data"""


class DomainError(ForecastError):
    """A transform was applied outside its mathematical domain, e.g. log of a non-positive value"""


class InvalidSpecError(ForecastError):
    """Malformed model orders, or orders the series is too short to estimate"""


class NonConvergenceError(ForecastError):
    """The likelihood optimizer did not converge"""
