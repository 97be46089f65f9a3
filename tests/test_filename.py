from downly.utils.filename import (
    build_download_filename,
    generic_download_filename,
    sanitize_content_id,
    sanitize_filename,
)
from downly.utils.urls import safe_url_for_log


def test_content_id_sanitization():
    assert sanitize_content_id("abc/def:123") == "abc_def_123"
    assert sanitize_content_id("keep-this.id v2") == "keep-this.id v2"
    assert sanitize_content_id(7312345678901234) == "7312345678901234"
    assert sanitize_content_id(None) == ""


def test_download_filename():
    assert build_download_filename("Downly", "abc/def:123", "mp4") == "Downly_abc_def_123.mp4"
    assert build_download_filename("Downly", None, "mp3") == "Downly_id.mp3"
    assert build_download_filename("Downly", "", "mp4") == "Downly_id.mp4"


def test_generic_filename():
    assert generic_download_filename("Downly", audio_only=True) == "Downly_audio.mp3"
    assert generic_download_filename("Downly", audio_only=False) == "Downly_video.mp4"


def test_sanitize_filename_reserved_and_length():
    assert sanitize_filename("CON") == "_CON"
    assert sanitize_filename('a<b>c"d') == "a_b_c_d"
    assert len(sanitize_filename("x" * 500)) == 200


def test_safe_url_for_log_drops_query():
    assert safe_url_for_log("https://www.tiktok.com/@u/video/1?token=secret") == "https://www.tiktok.com/@u/video/1"
