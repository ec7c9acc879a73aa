"""Error taxonomy of the market feature pipeline."""

from datetime import date
from typing import Optional


class PipelineError(Exception):
    """Base class for every domain error raised by the pipeline."""


class FormatError(PipelineError):
    """Input file or payload has a shape no parser understands. Not retried."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class InsufficientDataError(PipelineError):
    """Too few bars for the requested computation."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class RateLimitExceededError(PipelineError):
    """The provider's request budget is used up; the caller decides when to retry."""

    def __init__(self, message: str, provider: str, retry_after: float = 0.0):
        super().__init__(message)
        self.provider = provider
        self.retry_after = retry_after


class ProviderError(PipelineError):
    """The provider answered with an error payload or an embedded rate-limit note."""

    def __init__(self, message: str, symbol: Optional[str] = None, response_data: Optional[dict] = None):
        super().__init__(message)
        self.symbol = symbol
        self.response_data = response_data or {}


class EmptyTrainingSetError(PipelineError):
    """`train` was called with no feature vectors."""


class NoValidDataAfterCleaningError(PipelineError):
    """Every training row was removed by cleaning."""

    def __init__(self, message: str, removed: int = 0):
        super().__init__(message)
        self.removed = removed


class ModelNotTrainedError(PipelineError):
    """No model in memory and no artifact on disk."""


class PredictionNotFoundError(PipelineError):
    """No stored prediction matches the requested symbol and target date."""

    def __init__(self, symbol: str, target_date: date):
        super().__init__(f"No prediction stored for {symbol} on {target_date}")
        self.symbol = symbol
        self.target_date = target_date
