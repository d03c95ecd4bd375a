"""
Error kinds raised by the composition pipeline.

Every error aborts the whole composition. Drivers (HTTP service, CLI) catch
``CompositionError`` at the top level and turn it into a single user-facing
message.
"""


class CompositionError(Exception):
    """Base error for a failed composition"""


class MissingParameterError(CompositionError):
    """Token parameter absent or not in ``{collectionId}-{tokenId}`` form"""


class FetchError(CompositionError):
    """Token-data API unreachable or returned a non-success status"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(CompositionError):
    """Token-data body is not in the expected document shape"""


class ImageLoadError(CompositionError):
    """One referenced image failed to load or decode"""

    def __init__(self, url: str, reason: str = ""):
        message = f"Failed to load image at {_short(url)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.url = url
        self.reason = reason


class EmptyCompositionError(CompositionError):
    """Token tree has no drawable image"""


class ExportBlockedError(CompositionError):
    """A drawn image did not allow anonymous cross-origin use"""

    def __init__(self, urls: list[str]):
        super().__init__(
            f"Export blocked by cross-origin restrictions on {len(urls)} image(s)"
        )
        self.urls = urls


class MalformedTreeError(CompositionError):
    """Token tree deeper than the configured bound"""


class CompositionInProgressError(CompositionError):
    """A composition with the same key is already running"""


def _short(url: str, limit: int = 120) -> str:
    # data: URLs can be megabytes long
    if len(url) <= limit:
        return url
    return url[:limit] + "..."
