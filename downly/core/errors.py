"""Error taxonomy for the media acquisition pipeline.

Every failure that leaves a service is one of these. Routes never build
status codes themselves; the exception handler in ``downly.main`` reads
``status_code`` from the error.
"""

from typing import Optional


class MediaError(Exception):
    """Base class for pipeline errors"""
    status_code = 500

    def __init__(self, message: str, *, detail: Optional[str] = None, partial: bool = False):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.partial = partial

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class ValidationError(MediaError):
    """Bad or missing input, correctable by the user"""
    status_code = 400


class ProvisionError(MediaError):
    """A tool binary could not be located, downloaded or validated"""
    status_code = 503


class ExtractionError(MediaError):
    """yt-dlp failed to inspect or download the source.

    ``partial`` is set when the process failed after it had already
    produced output, so the caller holds a truncated result.
    """
    status_code = 502


class TranscodeError(MediaError):
    """ffmpeg failed to remux or re-encode an artifact"""
    status_code = 500


class MediaTimeoutError(MediaError, TimeoutError):
    """A process produced no data within its time bound"""
    status_code = 504


class StorageFullError(MediaError):
    """The temp artifact directory is over its disk budget"""
    status_code = 507


class TransferAborted(Exception):
    """A response body failed after its status line was sent.

    Not a ``MediaError``, so no exception handler turns it into a
    response: the server drops the connection and the client never sees
    a clean end of stream.
    """

    def __init__(self, filename: str, sent: int):
        super().__init__(f"Transfer of {filename} aborted after {sent} bytes")
        self.filename = filename
        self.sent = sent
