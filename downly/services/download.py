"""Download operation: extractor, optional transcoder, then transfer.

YouTube video is piped straight from yt-dlp's stdout. Everything else is
downloaded into a temp artifact first (so yt-dlp can merge separate
audio), passed through ffmpeg, and streamed from disk.
"""

import logging
from pathlib import Path
from typing import Optional

from downly.config.settings import ProcessConfig, config
from downly.core.errors import ExtractionError, TranscodeError
from downly.core.result import Outcome, attempt
from downly.models.internal import (
    ArtifactPurpose,
    OperationRequest,
    TempArtifact,
    TransferMetadata,
)
from downly.services.artifacts import TempArtifactManager, new_request_id
from downly.services.commands import ExtractorCommands, TranscoderCommands
from downly.services.formats import FormatDecision
from downly.services.orchestrator import ProcessOrchestrator
from downly.services.provisioner import EXTRACTOR, TRANSCODER
from downly.services.transfer import Delivery, FileSource, StreamingTransfer
from downly.utils.filename import build_download_filename, generic_download_filename
from downly.utils.urls import safe_url_for_log

logger = logging.getLogger(__name__)


class DownloadService:
    """Media download service"""

    def __init__(
        self,
        orchestrator: ProcessOrchestrator,
        artifacts: TempArtifactManager,
        product: str = config.api.product_name,
        process_config: ProcessConfig = config.process,
    ):
        self.orchestrator = orchestrator
        self.artifacts = artifacts
        self.product = product
        self.config = process_config

    async def lookup_filename(self, request: OperationRequest, format_str: str) -> Outcome[str]:
        """Name the download after the content id. Best effort: callers fall back on failure."""
        async def _lookup() -> str:
            meta = await self.orchestrator.inspect(
                ExtractorCommands.lookup(request, format_str),
                timeout=self.config.lookup_timeout,
            )
            return build_download_filename(self.product, meta.get("id"), request.output.value)

        return await attempt(_lookup)

    async def download(self, request: OperationRequest) -> Delivery:
        format_str = FormatDecision.decide(request)
        safe_url = safe_url_for_log(request.url)
        logger.info(f"Format decided: {format_str} for {safe_url}")

        lookup = await self.lookup_filename(request, format_str)
        if not lookup.ok:
            logger.info(f"Filename lookup failed for {safe_url}: {lookup.error}")
        filename = lookup.unwrap_or(generic_download_filename(self.product, request.output.audio_only))
        metadata = TransferMetadata(filename=filename, media_type=request.output.media_type)

        # yt-dlp finds ffmpeg on PATH by itself, so a missing download is not fatal here
        ffmpeg = await self.orchestrator.provisioner.try_ensure(TRANSCODER)
        ffmpeg_location = ffmpeg.value.path if ffmpeg.ok else None

        if request.platform.streams_directly and not request.output.audio_only:
            logger.info(f"Streaming {safe_url} from yt-dlp stdout")
            stream = await self.orchestrator.stream(
                EXTRACTOR,
                ExtractorCommands.stream_to_stdout(request, format_str, ffmpeg_location),
            )
            return await StreamingTransfer.deliver(stream, metadata)

        return await self._download_via_file(request, format_str, ffmpeg_location, metadata)

    async def _download_via_file(
        self,
        request: OperationRequest,
        format_str: str,
        ffmpeg_location: Optional[Path],
        metadata: TransferMetadata,
    ) -> Delivery:
        request_id = new_request_id()
        source = self.artifacts.allocate(
            request_id, ArtifactPurpose.INPUT, "m4a" if request.output.audio_only else "mp4"
        )
        target = self.artifacts.allocate(request_id, ArtifactPurpose.OUTPUT, request.output.value)
        artifacts = [source, target]

        try:
            await self.orchestrator.run(
                EXTRACTOR,
                ExtractorCommands.download_to_file(request, format_str, source.path, ffmpeg_location),
                timeout=self.config.extract_timeout,
            )
            if not source.path.exists():
                raise ExtractionError("yt-dlp finished without producing a file")

            final = await self._transcode(request, source, target)
            file_source = FileSource(final.path, chunk_size=self.config.chunk_size)
        except BaseException:
            self.artifacts.release(artifacts)
            raise

        logger.info(f"Serving {final.path.name} ({file_source.size / 1024 / 1024:.1f} MB)")

        # Delete once the transfer finished or was cancelled
        return await StreamingTransfer.deliver(
            file_source,
            metadata,
            on_complete=lambda: self.artifacts.release(artifacts),
        )

    async def _transcode(
        self,
        request: OperationRequest,
        source: TempArtifact,
        target: TempArtifact,
    ) -> TempArtifact:
        """Return the artifact to serve"""
        if request.output.audio_only:
            await self.orchestrator.run(
                TRANSCODER,
                TranscoderCommands.to_mp3(source.path, target.path),
                timeout=self.config.transcode_timeout,
            )
            if not target.path.exists():
                raise TranscodeError("ffmpeg finished without producing an mp3")
            self.artifacts.release_after([source])
            return target

        # Remux is an optimisation; the merged yt-dlp output is playable as is
        remux = await attempt(
            self.orchestrator.run,
            TRANSCODER,
            TranscoderCommands.remux_mp4(source.path, target.path),
            timeout=self.config.transcode_timeout,
        )
        if remux.ok and target.path.exists():
            self.artifacts.release_after([source])
            return target

        logger.warning(f"Remux failed, serving merged file as is: {remux.error}")
        self.artifacts.release([target])
        return source
