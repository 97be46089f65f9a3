from pathlib import Path
from typing import List, Optional
from downly.config.settings import config
from downly.models.internal import OperationRequest, Platform

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/125.0.0.0 Safari/537.36"
)

class ExtractorCommands:
    """Build yt-dlp argument vectors (without the binary itself)"""

    @staticmethod
    def common(request: OperationRequest) -> List[str]:
        """Flags shared by every yt-dlp call"""
        args = [
            '--no-playlist',
            '--retries', str(config.process.retries),
            '--geo-bypass',
            '--add-header', f'User-Agent:{USER_AGENT}',
            '--add-header', f'Referer:{request.platform.referer}',
        ]

        if request.cookie_header:
            args.extend(['--add-header', f'Cookie:{request.cookie_header}'])

        if request.platform is Platform.YOUTUBE:
            args.extend([
                '--force-ipv4',
                '--socket-timeout', str(config.process.socket_timeout),
                '--concurrent-fragments', '8',
            ])

        return args

    @staticmethod
    def inspect(request: OperationRequest) -> List[str]:
        """Dump metadata for every format as one JSON document"""
        return ['-J', request.url] + ExtractorCommands.common(request)

    @staticmethod
    def lookup(request: OperationRequest, format_str: str) -> List[str]:
        """Metadata for the selected format only, used to name the download"""
        return ['-J', request.url, '-f', format_str] + ExtractorCommands.common(request)

    @staticmethod
    def download_to_file(
        request: OperationRequest,
        format_str: str,
        output_path: Path,
        ffmpeg_location: Optional[Path] = None
    ) -> List[str]:
        """Download (and merge) the selected format into ``output_path``"""
        args = [
            request.url,
            '-f', format_str,
            '-o', str(output_path),
            '--no-part',
            '--quiet',
            '--no-warnings',
        ]

        if not request.output.audio_only:
            args.extend(['--merge-output-format', 'mp4'])

        args.extend(ExtractorCommands.common(request))

        if ffmpeg_location:
            args.extend(['--ffmpeg-location', str(ffmpeg_location)])

        return args

    @staticmethod
    def stream_to_stdout(
        request: OperationRequest,
        format_str: str,
        ffmpeg_location: Optional[Path] = None
    ) -> List[str]:
        """Write the selected format to stdout"""
        args = [
            request.url,
            '-f', format_str,
            '-o', '-',
            '--no-part',
            # Keep stdout clean for binary output
            '--quiet',
            '--no-warnings',
            '--no-progress',
        ]
        args.extend(ExtractorCommands.common(request))

        if ffmpeg_location:
            args.extend(['--ffmpeg-location', str(ffmpeg_location)])

        return args

class TranscoderCommands:
    """Build ffmpeg argument vectors"""

    @staticmethod
    def _base(source: Path) -> List[str]:
        return ['-hide_banner', '-loglevel', 'error', '-y', '-i', str(source)]

    @staticmethod
    def remux_mp4(source: Path, target: Path) -> List[str]:
        """Copy video, re-encode audio to AAC, move the index to the front"""
        return TranscoderCommands._base(source) + [
            '-c:v', 'copy',
            '-c:a', 'aac',
            '-b:a', '160k',
            '-movflags', '+faststart',
            str(target),
        ]

    @staticmethod
    def to_mp3(source: Path, target: Path) -> List[str]:
        return TranscoderCommands._base(source) + [
            '-vn',
            '-c:a', 'libmp3lame',
            '-q:a', '0',
            str(target),
        ]
