"""Unified exception hierarchy for history-insights."""


class HistoryInsightsError(Exception):
    """Base exception for all history-insights errors."""


# Providers
class ProviderError(HistoryInsightsError):
    """Base exception for language-model provider operations."""


class ProviderUnavailableError(ProviderError):
    """No usable backend is configured, reachable or initialized."""


class QuotaExceededError(ProviderError):
    """The provider rejected the call because a rate or quota limit was hit."""


class InputTooLongError(ProviderError):
    """The rendered prompt exceeds what the model can accept."""


class ProviderRequestError(ProviderError):
    """Any other failed provider call (timeouts, server errors, bad payloads)."""


class RetriesExhaustedError(ProviderError):
    """A retryable failure persisted through every allowed attempt."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


# Responses
class ResponseParseError(HistoryInsightsError):
    """A provider response could not be repaired into the expected structure."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


# Analysis runs
class AnalysisCancelledError(HistoryInsightsError):
    """The run was cancelled by the user."""


class AnalysisInProgressError(HistoryInsightsError):
    """A run was requested while another one is still active."""


# Persistence
class PersistenceError(HistoryInsightsError):
    """Failed to read or write persisted state."""


# Browser
class BrowserError(HistoryInsightsError):
    """Base exception for browser history operations."""


class BrowserHistoryReadError(BrowserError):
    """Failed to read browser history."""
