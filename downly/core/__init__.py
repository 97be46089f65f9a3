from .errors import (
    ExtractionError,
    MediaError,
    MediaTimeoutError,
    ProvisionError,
    StorageFullError,
    TranscodeError,
    TransferAborted,
    ValidationError,
)
from .result import Outcome, attempt

__all__ = [
    "ExtractionError",
    "MediaError",
    "MediaTimeoutError",
    "Outcome",
    "ProvisionError",
    "StorageFullError",
    "TranscodeError",
    "TransferAborted",
    "ValidationError",
    "attempt",
]
