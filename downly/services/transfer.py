import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol
from urllib.parse import quote

import aiofiles

from downly.config.settings import config
from downly.core.errors import MediaError, TransferAborted
from downly.models.internal import TransferMetadata

logger = logging.getLogger(__name__)


class ByteSource(Protocol):
    def __aiter__(self) -> AsyncIterator[bytes]: ...

    async def __anext__(self) -> bytes: ...

    async def aclose(self) -> None: ...


class FileSource:
    """Async byte iterator over a finished artifact"""

    def __init__(self, path: Path, chunk_size: int = config.process.chunk_size):
        self.path = path
        self.chunk_size = chunk_size
        self.size = os.path.getsize(path)
        self._file = None
        self._closed = False

    def __aiter__(self) -> "FileSource":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        if self._file is None:
            self._file = await aiofiles.open(self.path, "rb")

        chunk = await self._file.read(self.chunk_size)
        if not chunk:
            await self.aclose()
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._file is not None:
            await self._file.close()


@dataclass
class Delivery:
    """A response body ready for StreamingResponse"""
    body: AsyncIterator[bytes]
    headers: Dict[str, str]
    media_type: str
    content_length: Optional[int] = None
    closer: Optional[Callable[[], Awaitable[None]]] = None

    async def aclose(self) -> None:
        """Release the source even if the body was never iterated"""
        await self.body.aclose()
        if self.closer is not None:
            await self.closer()


def content_disposition(filename: str) -> str:
    # Header values must stay latin-1; the full name travels in filename*
    safe_filename = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    safe_filename = safe_filename.replace('"', '\\"')
    return f"attachment; filename=\"{safe_filename}\"; filename*=UTF-8''{quote(filename)}"


class StreamingTransfer:
    """Adapt a byte source into an HTTP response body"""

    @staticmethod
    async def deliver(
        source: ByteSource,
        metadata: TransferMetadata,
        on_complete: Optional[Callable[[], object]] = None,
    ) -> Delivery:
        """
        Pull the first chunk before handing the body over.
        An error before any byte is raised here, so the route can still answer
        with an error status; afterwards errors only cut the body short.
        """
        completed = False

        def finish():
            nonlocal completed
            if completed:
                return
            completed = True
            if on_complete is not None:
                on_complete()

        async def close():
            await source.aclose()
            finish()

        try:
            first = await source.__anext__()
        except StopAsyncIteration:
            first = b""
        except BaseException:
            await close()
            raise

        async def generate():
            sent = 0
            try:
                if first:
                    yield first
                    sent += len(first)
                async for chunk in source:
                    yield chunk
                    sent += len(chunk)
                logger.info(f"Delivered {metadata.filename} ({sent} bytes)")
            except (MediaError, OSError) as e:
                # Status line already went out; abort so the body never looks complete
                logger.warning(f"Transfer of {metadata.filename} truncated after {sent} bytes: {e}")
                raise TransferAborted(metadata.filename, sent) from e
            finally:
                await close()

        size = getattr(source, "size", None)
        headers = {
            "Content-Disposition": content_disposition(metadata.filename),
            "X-Content-Type-Options": "nosniff",
            "Cache-Control": "no-store",
            "X-Download-Response": "1",
        }
        if size is not None:
            headers["Content-Length"] = str(size)

        return Delivery(
            body=generate(),
            headers=headers,
            media_type=metadata.media_type,
            content_length=size,
            closer=close,
        )
