from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from downly.core.errors import ValidationError
from downly.models.internal import OperationRequest, OutputKind, Platform

class InspectRequest(BaseModel):
    url: Optional[str] = Field(None, description="Video URL")
    platform: Optional[Platform] = Field(None, description="Source platform, inferred from the URL when omitted")
    cookie: Optional[str] = Field(None, description="Cookie header for private content (facebook only)")

    def _common(self) -> tuple[str, Platform, Optional[str]]:
        url = (self.url or "").strip()
        if not url:
            raise ValidationError("Missing url")
        platform = self.platform or Platform.from_url(url)
        cookie = (self.cookie or "").strip() or None
        return url, platform, cookie

    def to_operation(self) -> OperationRequest:
        url, platform, cookie = self._common()
        return OperationRequest(url=url, platform=platform, cookie=cookie)

class DownloadRequest(InspectRequest):
    model_config = ConfigDict(populate_by_name=True)

    format_id: Optional[str] = Field(None, alias="formatId", description="Encoding id returned by /inspect")
    output: Optional[str] = Field("mp4", description="Output container: mp4, or mp3 for audio only")

    def to_operation(self) -> OperationRequest:
        """Convert to operation request"""
        url, platform, cookie = self._common()
        format_id = (self.format_id or "").strip()
        if not format_id:
            raise ValidationError("Missing formatId")

        # Anything other than mp3 falls back to video
        output = OutputKind.MP3 if (self.output or "").lower() == "mp3" else OutputKind.MP4

        return OperationRequest(
            url=url,
            platform=platform,
            cookie=cookie,
            format_id=format_id,
            output=output,
        )
