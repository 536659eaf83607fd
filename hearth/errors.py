from typing import Optional


class HearthError(Exception):
    """Base class for errors raised by the asset cache."""


class InvalidInput(HearthError):
    pass


class FetchError(HearthError):
    """A remote fetch did not produce usable bytes.

    ``kind`` is one of the ``FetchError.*`` constants. ``url`` carries the
    post-redirect URL when the request got far enough to learn it.
    """

    BAD_STATUS = "bad_status"
    TIMEOUT = "timeout"
    TOO_LARGE = "too_large"
    EMPTY = "empty"
    NETWORK = "network"
    CANCELLED = "cancelled"
    NOT_HTML = "not_html"
    NOT_IMAGE = "not_image"

    def __init__(
        self,
        kind: str,
        message: str = "",
        status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        self.kind = kind
        self.status = status
        self.url = url
        detail = message or kind
        if status is not None:
            detail = f"{detail} (HTTP {status})"
        super().__init__(detail)


class DecodeError(HearthError):
    pass


class WriteError(HearthError):
    pass


class ResolutionFailed(HearthError):
    pass


class ProviderError(HearthError):
    pass
