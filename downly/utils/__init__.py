from .filename import build_download_filename, generic_download_filename, sanitize_content_id, sanitize_filename
from .hash import hash_stable

__all__ = [
    "build_download_filename",
    "generic_download_filename",
    "hash_stable",
    "sanitize_content_id",
    "sanitize_filename",
]
