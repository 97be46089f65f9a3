from pathlib import Path
import pytest
from downly.config.settings import ProcessConfig, StorageConfig
from downly.core.errors import ExtractionError, ProvisionError, TranscodeError
from downly.core.result import Outcome
from downly.models.internal import OperationRequest, OutputKind, Platform
from downly.services.artifacts import TempArtifactManager
from downly.services.download import DownloadService
from downly.services.orchestrator import error_class_for
from downly.services.provisioner import EXTRACTOR, TRANSCODER


class OfflineProvisioner:
    async def try_ensure(self, name):
        return Outcome.failure(ProvisionError(f"{name} unavailable"))


class ChunkSource:
    def __init__(self, *chunks):
        self.chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.chunks:
            raise StopAsyncIteration
        return self.chunks.pop(0)

    async def aclose(self):
        self.closed = True


class FakeOrchestrator:
    """Writes files where yt-dlp and ffmpeg would"""

    def __init__(self, metadata=None, failing=(), produce=True):
        self.provisioner = OfflineProvisioner()
        self.metadata = metadata
        self.failing = failing
        self.produce = produce
        self.calls = []
        self.streams = []

    async def inspect(self, args, timeout=None):
        if self.metadata is None:
            raise ExtractionError("lookup failed")
        return self.metadata

    async def run(self, tool, args, timeout=None):
        self.calls.append((tool, args))
        if tool in self.failing:
            raise error_class_for(tool)(f"{tool} exited with code 1")
        if not self.produce:
            return ""
        if tool == EXTRACTOR:
            Path(args[args.index("-o") + 1]).write_bytes(b"merged")
        else:
            source = Path(args[args.index("-i") + 1])
            Path(args[-1]).write_bytes(b"converted:" + source.read_bytes())
        return ""

    async def stream(self, tool, args):
        self.calls.append((tool, args))
        source = ChunkSource(b"live ", b"bytes")
        self.streams.append(source)
        return source


def make_service(tmp_path, orchestrator):
    artifacts = TempArtifactManager(directory=tmp_path, storage_config=StorageConfig(release_delay=0))
    return DownloadService(orchestrator, artifacts, product="Downly", process_config=ProcessConfig())


def request(platform=Platform.TIKTOK, output=OutputKind.MP4):
    return OperationRequest(
        url="https://www.tiktok.com/@someone/video/7312345678901234567",
        platform=platform,
        format_id="h264_720p",
        output=output,
    )


async def drain(delivery):
    return b"".join([chunk async for chunk in delivery.body])


@pytest.mark.asyncio
async def test_video_download_is_remuxed_and_cleaned_up(tmp_path):
    orchestrator = FakeOrchestrator(metadata={"id": "abc/def:123"})
    service = make_service(tmp_path, orchestrator)

    delivery = await service.download(request())

    assert delivery.headers["Content-Disposition"].startswith('attachment; filename="Downly_abc_def_123.mp4"')
    assert delivery.media_type == "video/mp4"
    assert await drain(delivery) == b"converted:merged"
    assert [tool for tool, _ in orchestrator.calls] == [EXTRACTOR, TRANSCODER]

    await service.artifacts.aclose()
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_failed_lookup_uses_generic_filename(tmp_path):
    service = make_service(tmp_path, FakeOrchestrator(metadata=None))

    delivery = await service.download(request())

    assert 'filename="Downly_video.mp4"' in delivery.headers["Content-Disposition"]
    await delivery.aclose()


@pytest.mark.asyncio
async def test_failed_remux_serves_merged_file(tmp_path):
    service = make_service(tmp_path, FakeOrchestrator(metadata={"id": "1"}, failing=(TRANSCODER,)))

    delivery = await service.download(request())

    assert await drain(delivery) == b"merged"
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_audio_is_converted_to_mp3(tmp_path):
    orchestrator = FakeOrchestrator(metadata={"id": "clip"})
    service = make_service(tmp_path, orchestrator)

    delivery = await service.download(request(output=OutputKind.MP3))

    assert delivery.media_type == "audio/mpeg"
    assert 'filename="Downly_clip.mp3"' in delivery.headers["Content-Disposition"]
    assert await drain(delivery) == b"converted:merged"
    extractor_args = orchestrator.calls[0][1]
    assert extractor_args[extractor_args.index("-f") + 1] == "bestaudio/best"
    assert "--merge-output-format" not in extractor_args


@pytest.mark.asyncio
async def test_failed_mp3_conversion_fails_the_request(tmp_path):
    service = make_service(tmp_path, FakeOrchestrator(failing=(TRANSCODER,)))

    with pytest.raises(TranscodeError):
        await service.download(request(output=OutputKind.MP3))

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_extractor_failure_releases_artifacts(tmp_path):
    service = make_service(tmp_path, FakeOrchestrator(failing=(EXTRACTOR,)))

    with pytest.raises(ExtractionError):
        await service.download(request())

    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_missing_output_file(tmp_path):
    service = make_service(tmp_path, FakeOrchestrator(produce=False))

    with pytest.raises(ExtractionError, match="without producing a file"):
        await service.download(request())


@pytest.mark.asyncio
async def test_youtube_video_streams_from_stdout(tmp_path):
    orchestrator = FakeOrchestrator(metadata={"id": "dQw4w9WgXcQ"})
    service = make_service(tmp_path, orchestrator)

    delivery = await service.download(request(platform=Platform.YOUTUBE))

    assert "Content-Length" not in delivery.headers
    assert await drain(delivery) == b"live bytes"
    assert orchestrator.streams[0].closed
    tool, args = orchestrator.calls[0]
    assert tool == EXTRACTOR
    assert args[args.index("-o") + 1] == "-"
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_youtube_audio_goes_through_file(tmp_path):
    orchestrator = FakeOrchestrator(metadata={"id": "dQw4w9WgXcQ"})
    service = make_service(tmp_path, orchestrator)

    delivery = await service.download(request(platform=Platform.YOUTUBE, output=OutputKind.MP3))

    assert await drain(delivery) == b"converted:merged"
    assert orchestrator.streams == []
