"""Exception hierarchy for calendar aggregation and feed handling.

Feed errors are caught at the ingestion boundary and degrade to an empty event
set for the affected subscription. Validation and authorization errors are the
only ones surfaced to API callers.
"""

from typing import Optional


class FlowCalError(Exception):
    """Base exception for all flowcal errors."""


class FeedError(FlowCalError):
    """Base exception for external feed problems.

    Carries the feed URL so log lines and validation messages can name it.
    """

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FeedFetchError(FeedError):
    """The feed could not be downloaded."""


class FeedURLError(FeedFetchError):
    """The feed URL is not an absolute http(s) URL.

    Raised before any network activity takes place.
    """


class FeedNetworkError(FeedFetchError):
    """DNS, connection or TLS failure while fetching a feed."""


class FeedTimeoutError(FeedFetchError):
    """The feed server did not respond in time."""


class FeedHTTPError(FeedFetchError):
    """The feed server answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, url: Optional[str] = None):
        super().__init__(message, url)
        self.status_code = status_code


class FeedParseError(FeedError):
    """The downloaded body is not a usable iCalendar document."""


class SubscriptionValidationError(FlowCalError):
    """A candidate subscription URL failed validation.

    Should result in HTTP 400 Bad Request with ``reason`` as the message.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FeedAuthorizationError(FlowCalError):
    """The outbound feed token does not match the user.

    Should result in HTTP 401 Unauthorized response.
    """
