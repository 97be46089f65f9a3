from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional


class Platform(str, Enum):
    """Source platform of a URL"""
    TIKTOK = "tiktok"
    FACEBOOK = "facebook"
    YOUTUBE = "youtube"

    @classmethod
    def from_url(cls, url: str) -> "Platform":
        """Infer the platform from a URL, TikTok being the default"""
        lowered = url.lower()
        if "facebook.com" in lowered or "fb.watch" in lowered:
            return cls.FACEBOOK
        if "youtube.com" in lowered or "youtu.be" in lowered:
            return cls.YOUTUBE
        return cls.TIKTOK

    @property
    def referer(self) -> str:
        return {
            Platform.TIKTOK: "https://www.tiktok.com/",
            Platform.FACEBOOK: "https://www.facebook.com/",
            Platform.YOUTUBE: "https://www.youtube.com/",
        }[self]

    @property
    def accepts_cookie(self) -> bool:
        """Private content needs the user's session cookie"""
        return self is Platform.FACEBOOK

    @property
    def requires_muxed(self) -> bool:
        """Separate audio can't be merged server-side, so formats must carry both tracks"""
        return self is Platform.TIKTOK

    @property
    def streams_directly(self) -> bool:
        """Video downloads are piped from yt-dlp stdout instead of a temp file"""
        return self is Platform.YOUTUBE

    def default_thumbnail(self, content_id: Optional[str]) -> Optional[str]:
        if self is Platform.YOUTUBE and content_id:
            return f"https://i.ytimg.com/vi/{content_id}/hqdefault.jpg"
        return None


class OutputKind(str, Enum):
    """Requested container; MP3 is the audio-only mode"""
    MP4 = "mp4"
    MP3 = "mp3"

    @property
    def audio_only(self) -> bool:
        return self is OutputKind.MP3

    @property
    def media_type(self) -> str:
        return "audio/mpeg" if self is OutputKind.MP3 else "video/mp4"


@dataclass(frozen=True)
class ToolSpec:
    """An external executable the pipeline provisions and runs"""
    name: str
    urls: Dict[str, str]
    binary_names: Dict[str, str] = field(default_factory=dict)
    install_dir: Optional[str] = None

    def binary_name(self, os_key: str) -> str:
        return self.binary_names.get(os_key, self.name)

    def url_for(self, os_key: str) -> Optional[str]:
        return self.urls.get(os_key)


@dataclass(frozen=True)
class ToolHandle:
    """A provisioned tool binary on disk"""
    name: str
    path: Path
    validated: bool = True


@dataclass(frozen=True)
class OperationRequest:
    """Internal operation request (separated from HTTP concerns)"""
    url: str
    platform: Platform
    cookie: Optional[str] = None
    format_id: Optional[str] = None
    output: OutputKind = OutputKind.MP4

    @property
    def cookie_header(self) -> Optional[str]:
        if self.cookie and self.platform.accepts_cookie:
            return self.cookie
        return None


@dataclass(frozen=True)
class EncodingDescriptor:
    """One downloadable stream variant"""
    id: str
    container: Optional[str] = None
    resolution: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    filesize: Optional[int] = None
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    note: Optional[str] = None

    @property
    def has_video(self) -> bool:
        return bool(self.vcodec) and self.vcodec != "none"

    @property
    def has_audio(self) -> bool:
        return bool(self.acodec) and self.acodec != "none"


@dataclass(frozen=True)
class QualityTier:
    """Coarse quality bucket mapped onto one encoding"""
    label: str
    format_id: str
    height: int


@dataclass(frozen=True)
class MediaInfo:
    title: str
    thumbnail: Optional[str]
    encodings: tuple[EncodingDescriptor, ...]
    tiers: tuple[QualityTier, ...]
    content_id: Optional[str] = None


class ArtifactPurpose(str, Enum):
    INPUT = "in"
    OUTPUT = "out"


@dataclass(frozen=True)
class TempArtifact:
    """Scratch file owned by one request"""
    path: Path
    purpose: ArtifactPurpose
    created_at: float


@dataclass(frozen=True)
class TransferMetadata:
    """What the HTTP layer needs to describe a delivered body"""
    filename: str
    media_type: str
