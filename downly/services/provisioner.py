"""Locate, download and validate the yt-dlp and ffmpeg binaries.

Handles are memoized per provisioner instance. A per-tool lock makes the
first caller do the work while concurrent callers wait and reuse its
result, and downloads land in a temp file that is renamed into place, so
separate processes sharing a cache directory never see a half-written
binary.
"""

import asyncio
import logging
import os
import shutil
import sys
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Callable, Dict, List, Optional

import aiofiles
import httpx

from downly.config.settings import ToolsConfig, config
from downly.core.errors import ProvisionError
from downly.core.result import Outcome, attempt
from downly.models.internal import ToolHandle, ToolSpec
from downly.services.commands import USER_AGENT
from downly.utils.paths import candidate_dirs, first_writable_dir

logger = logging.getLogger(__name__)

EXTRACTOR = "yt-dlp"
TRANSCODER = "ffmpeg"

PE_MAGIC = b"MZ"
ELF_MAGIC = b"\x7fELF"
MACHO_MAGICS = (
    b"\xfe\xed\xfa\xce",  # 32-bit
    b"\xce\xfa\xed\xfe",
    b"\xfe\xed\xfa\xcf",  # 64-bit
    b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",  # fat
    b"\xca\xfe\xba\xbf",
)


def current_os() -> str:
    """Key used for platform-specific URLs and binary names"""
    if sys.platform.startswith("win"):
        return "win32"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def has_valid_header(header: bytes, os_key: str) -> bool:
    """Check the first bytes of an executable against the format of ``os_key``"""
    if os_key == "win32":
        return header.startswith(PE_MAGIC)
    if os_key == "darwin":
        return header[:4] in MACHO_MAGICS
    return header.startswith(ELF_MAGIC)


def build_tools(tools_config: ToolsConfig = config.tools) -> Dict[str, ToolSpec]:
    return {
        EXTRACTOR: ToolSpec(
            name=EXTRACTOR,
            urls=dict(tools_config.extractor_urls),
            binary_names={"win32": "yt-dlp.exe"},
            install_dir=tools_config.cache_dir,
        ),
        TRANSCODER: ToolSpec(
            name=TRANSCODER,
            urls=dict(tools_config.transcoder_urls),
            binary_names={"win32": "ffmpeg.exe"},
            install_dir=tools_config.cache_dir,
        ),
    }


def default_client_factory() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=config.tools.download_timeout,
        headers={"User-Agent": USER_AGENT},
    )


class BinaryProvisioner:
    """Resolve tool names to validated binaries on disk"""

    def __init__(
        self,
        tools: Optional[Dict[str, ToolSpec]] = None,
        client_factory: Callable[[], httpx.AsyncClient] = default_client_factory,
        cache_dirs: Optional[List[Path]] = None,
        os_key: Optional[str] = None,
        max_redirects: int = config.tools.max_redirects,
        use_system_binaries: bool = config.tools.use_system_binaries,
    ):
        self.tools = tools if tools is not None else build_tools()
        self.os_key = os_key or current_os()
        self.max_redirects = max_redirects
        self.use_system_binaries = use_system_binaries
        self._client_factory = client_factory
        self._cache_dirs = cache_dirs if cache_dirs is not None else candidate_dirs("bin")
        self._handles: Dict[str, ToolHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def cached(self, name: str) -> Optional[ToolHandle]:
        return self._handles.get(name)

    def invalidate(self, name: str) -> None:
        """Forget a handle so the next ensure() re-validates the binary"""
        if self._handles.pop(name, None) is not None:
            logger.warning(f"Discarded cached {name} binary")

    async def ensure(self, name: str) -> ToolHandle:
        handle = self._handles.get(name)
        if handle is not None:
            return handle

        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            # Another caller may have finished while we waited
            handle = self._handles.get(name)
            if handle is not None:
                return handle

            spec = self.tools.get(name)
            if spec is None:
                raise ProvisionError(f"Unknown tool {name}")

            handle = await self._resolve(spec)
            self._handles[name] = handle
            logger.info(f"{name} ready at {handle.path}")
            return handle

    async def try_ensure(self, name: str) -> Outcome[ToolHandle]:
        return await attempt(self.ensure, name)

    async def _resolve(self, spec: ToolSpec) -> ToolHandle:
        binary_name = spec.binary_name(self.os_key)

        if self.use_system_binaries:
            found = shutil.which(binary_name)
            if found and await self._is_valid(Path(found)):
                return ToolHandle(name=spec.name, path=Path(found))

        candidates = ([Path(spec.install_dir)] if spec.install_dir else []) + self._cache_dirs
        directory = first_writable_dir(candidates)
        if directory is None:
            raise ProvisionError(
                f"No writable cache directory for {spec.name}",
                detail=", ".join(str(c) for c in candidates),
            )

        destination = directory / binary_name
        if destination.exists():
            if await self._is_valid(destination):
                return ToolHandle(name=spec.name, path=destination)
            logger.warning(f"{destination} failed header check, downloading again")
            try:
                self._remove(destination)
            except OSError as e:
                raise ProvisionError(f"Cannot remove invalid {spec.name} binary", detail=str(e)) from e

        await self._download(spec, destination)
        return ToolHandle(name=spec.name, path=destination)

    async def _download(self, spec: ToolSpec, destination: Path) -> None:
        url = spec.url_for(self.os_key)
        if not url:
            raise ProvisionError(f"No download URL for {spec.name} on {self.os_key}")

        partial = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.part")
        logger.info(f"Downloading {spec.name} from {url}")

        try:
            async with self._client_factory() as client:
                response = await self._follow(client, url)
                try:
                    async with aiofiles.open(partial, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)
                finally:
                    await response.aclose()

            os.chmod(partial, 0o755)

            if not await self._is_valid(partial):
                raise ProvisionError(f"Downloaded {spec.name} is not a valid {self.os_key} executable")

            os.replace(partial, destination)
        except httpx.HTTPError as e:
            raise ProvisionError(f"Failed to download {spec.name}", detail=str(e)) from e
        except OSError as e:
            raise ProvisionError(f"Failed to install {spec.name}", detail=str(e)) from e
        finally:
            self._remove(partial)

    async def _follow(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """GET ``url`` following at most ``max_redirects`` hops; returns an open streaming response"""
        for _ in range(self.max_redirects + 1):
            response = await client.send(client.build_request("GET", url), stream=True)

            if response.is_redirect:
                location = response.headers.get("location")
                await response.aclose()
                if not location:
                    raise ProvisionError(f"Redirect without location from {url}")
                url = str(response.url.join(location))
                continue

            if not response.is_success:
                await response.aclose()
                raise ProvisionError(f"Binary download failed with HTTP {response.status_code}", detail=url)

            return response

        raise ProvisionError(f"Too many redirects (>{self.max_redirects})", detail=url)

    async def _is_valid(self, path: Path) -> bool:
        try:
            async with aiofiles.open(path, "rb") as f:
                header = await f.read(4)
        except OSError:
            return False
        return has_valid_header(header, self.os_key)

    @staticmethod
    def _remove(path: Path) -> None:
        with suppress(FileNotFoundError):
            path.unlink()
