from typing import List, Optional

from pydantic import BaseModel

from downly.models.internal import MediaInfo


class EncodingInfo(BaseModel):
    """Single selectable encoding"""
    formatId: str
    ext: Optional[str] = None
    resolution: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    filesize: Optional[int] = None
    vcodec: Optional[str] = None
    acodec: Optional[str] = None
    formatNote: Optional[str] = None


class TierInfo(BaseModel):
    label: str
    formatId: str
    height: int


class InspectResponse(BaseModel):
    """Inspection response"""
    title: str
    thumbnail: Optional[str] = None
    formats: List[EncodingInfo] = []
    tiers: List[TierInfo] = []

    @classmethod
    def from_media_info(cls, info: MediaInfo) -> "InspectResponse":
        return cls(
            title=info.title,
            thumbnail=info.thumbnail,
            formats=[
                EncodingInfo(
                    formatId=e.id,
                    ext=e.container,
                    resolution=e.resolution,
                    width=e.width,
                    height=e.height,
                    fps=e.fps,
                    filesize=e.filesize,
                    vcodec=e.vcodec,
                    acodec=e.acodec,
                    formatNote=e.note,
                )
                for e in info.encodings
            ],
            tiers=[
                TierInfo(label=t.label, formatId=t.format_id, height=t.height)
                for t in info.tiers
            ],
        )
