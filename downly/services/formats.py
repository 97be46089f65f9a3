import re
from typing import Any, Dict, Iterable, List, Optional
from downly.models.internal import (
    EncodingDescriptor,
    MediaInfo,
    OperationRequest,
    Platform,
    QualityTier,
)

TIER_CEILINGS = ((1080, "1080p"), (720, "720p"), (360, "360p"))
_HEIGHT_LABEL = re.compile(r"(\d+)p")

def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None

def height_of(encoding: EncodingDescriptor) -> int:
    """Known height, or one parsed from a label like '720p'; 0 when unknown"""
    if encoding.height:
        return encoding.height
    if encoding.resolution:
        match = _HEIGHT_LABEL.search(encoding.resolution)
        if match:
            return int(match.group(1))
    return 0

class FormatResolver:
    """Turn a yt-dlp metadata dump into selectable encodings"""

    @staticmethod
    def resolve(payload: Dict[str, Any], platform: Platform) -> MediaInfo:
        content_id = payload.get("id")
        content_id = str(content_id) if content_id is not None else None

        encodings = FormatResolver.encodings(payload.get("formats"), platform)

        return MediaInfo(
            title=payload.get("title") or "",
            thumbnail=FormatResolver.thumbnail(payload, platform),
            encodings=tuple(encodings),
            tiers=tuple(FormatResolver.derive_tiers(encodings)),
            content_id=content_id,
        )

    @staticmethod
    def describe(raw: Dict[str, Any]) -> EncodingDescriptor:
        width = _int_or_none(raw.get("width"))
        height = _int_or_none(raw.get("height"))

        resolution = raw.get("resolution")
        if not resolution and height:
            resolution = f"{height}p"
        if not resolution and width and height:
            resolution = f"{width}x{height}"

        fps = raw.get("fps")
        return EncodingDescriptor(
            id=str(raw["format_id"]),
            container=raw.get("ext"),
            resolution=resolution or None,
            width=width,
            height=height,
            fps=float(fps) if isinstance(fps, (int, float)) else None,
            filesize=_int_or_none(raw.get("filesize")) or _int_or_none(raw.get("filesize_approx")),
            vcodec=raw.get("vcodec"),
            acodec=raw.get("acodec"),
            note=raw.get("format_note"),
        )

    @staticmethod
    def encodings(raw_formats: Any, platform: Platform) -> List[EncodingDescriptor]:
        """Usable encodings, unique by id, tallest first"""
        if not isinstance(raw_formats, list):
            return []

        seen = set()
        result = []
        for raw in raw_formats:
            if not isinstance(raw, dict) or not raw.get("format_id"):
                continue
            encoding = FormatResolver.describe(raw)
            if not encoding.has_video:
                continue
            if platform.requires_muxed and not encoding.has_audio:
                continue
            if encoding.id in seen:
                continue
            seen.add(encoding.id)
            result.append(encoding)

        # sorted() is stable, so equal heights keep yt-dlp's order
        return sorted(result, key=height_of, reverse=True)

    @staticmethod
    def thumbnail(payload: Dict[str, Any], platform: Platform) -> Optional[str]:
        """Largest listed thumbnail, then the single one, then the platform default"""
        thumbnails = payload.get("thumbnails")
        if isinstance(thumbnails, list):
            candidates = [
                t for t in thumbnails
                if isinstance(t, dict) and t.get("url")
            ]
            if candidates:
                best = max(
                    candidates,
                    key=lambda t: (_int_or_none(t.get("width")) or 0) * (_int_or_none(t.get("height")) or 0),
                )
                return best["url"]

        if payload.get("thumbnail"):
            return payload["thumbnail"]

        content_id = payload.get("id")
        return platform.default_thumbnail(str(content_id) if content_id else None)

    @staticmethod
    def derive_tiers(encodings: Iterable[EncodingDescriptor]) -> List[QualityTier]:
        """best / 1080p / 720p / 360p, deduplicated by encoding id"""
        ranked = sorted(
            ((height_of(e), e) for e in encodings if height_of(e) > 0),
            key=lambda pair: pair[0],
            reverse=True,
        )
        if not ranked:
            return []

        def pick(ceiling: int):
            for height, encoding in ranked:
                if height <= ceiling:
                    return height, encoding
            return ranked[-1]

        height, encoding = ranked[0]
        tiers = [QualityTier(label="best", format_id=encoding.id, height=height)]
        for ceiling, label in TIER_CEILINGS:
            height, encoding = pick(ceiling)
            tiers.append(QualityTier(label=label, format_id=encoding.id, height=height))

        seen = set()
        unique = []
        for tier in tiers:
            if tier.format_id in seen:
                continue
            seen.add(tier.format_id)
            unique.append(tier)
        return unique

class FormatDecision:
    """Make format decisions"""

    @staticmethod
    def decide(request: OperationRequest) -> str:
        """yt-dlp -f expression for a download request"""
        if request.output.audio_only:
            return "bestaudio/best"

        if request.platform.streams_directly:
            # Prefer pre-merged formats when piping to stdout
            return f"{request.format_id}/best[height<=1080]/best"

        return f"{request.format_id}+bestaudio/best"
