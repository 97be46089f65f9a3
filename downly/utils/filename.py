import re
import unicodedata

_CONTENT_ID_UNSAFE = re.compile(r'[^\w\-.\s]')


def sanitize_filename(name: str, max_length: int = 200) -> str:
    """Sanitize filename for cross-platform compatibility"""
    name = unicodedata.normalize("NFKC", name)
    name = re.sub(r'[\\/:*?"<>|]', '_', name)

    windows_reserved = {
        'CON', 'PRN', 'AUX', 'NUL',
        'COM1', 'COM2', 'COM3', 'COM4', 'COM5', 'COM6', 'COM7', 'COM8', 'COM9',
        'LPT1', 'LPT2', 'LPT3', 'LPT4', 'LPT5', 'LPT6', 'LPT7', 'LPT8', 'LPT9'
    }
    if name.upper() in windows_reserved:
        name = f"_{name}"

    return name[:max_length].strip()


def sanitize_content_id(content_id) -> str:
    """Map every character outside word chars, hyphen, dot and whitespace to '_'"""
    if content_id is None:
        return ""
    return _CONTENT_ID_UNSAFE.sub("_", str(content_id))


def build_download_filename(product: str, content_id, ext: str) -> str:
    """<product>_<sanitized id or "id">.<ext>"""
    base = sanitize_content_id(content_id) or "id"
    return sanitize_filename(f"{product}_{base}.{ext}")


def generic_download_filename(product: str, audio_only: bool) -> str:
    return f"{product}_audio.mp3" if audio_only else f"{product}_video.mp4"
