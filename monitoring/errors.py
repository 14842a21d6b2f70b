"""
Monitor Exceptions
"""

TRANSIENT_STATUS_CODES = (408, 429)


class MonitorError(Exception):
    """Base class for monitoring failures."""


class FetchError(MonitorError):
    """
    A page could not be retrieved: timeout, transport failure, or a
    terminal HTTP status outside 2xx/3xx.
    """

    def __init__(self, message, status_code=None, url=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url

    @property
    def transient(self):
        # No status means timeout or connection failure
        if self.status_code is None:
            return True
        return self.status_code in TRANSIENT_STATUS_CODES or 500 <= self.status_code < 600

    def __str__(self):
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


class ParseError(MonitorError):
    """Page content was empty or unusable."""


class PersistenceError(MonitorError):
    """A store write or query failed."""


class NotifyError(MonitorError):
    """The notification transport failed for one recipient."""

    def __init__(self, message, recipient=None):
        super().__init__(message)
        self.recipient = recipient
