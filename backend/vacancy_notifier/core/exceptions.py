"""Error taxonomy shared by the HH client, the stores and the delivery sink.

Rate-limit refusals are not exceptions: a limiter returns ``False`` and
the caller defers the work.
"""


class APIError(Exception):
    """Base class for HeadHunter API failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientAPIError(APIError):
    """Network failure, 5xx or 429 that outlived the client's retries."""


class TerminalAPIError(APIError):
    """4xx (other than 429) or an unparseable response; retrying will not help."""


class StorageError(Exception):
    """Seen-set, vacancy cache, filter or subscriber store failure."""


class DeliveryError(Exception):
    """The delivery sink could not push a message to the subscriber."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
