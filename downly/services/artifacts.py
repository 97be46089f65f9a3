import asyncio
import logging
import os
import random
import string
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from downly.config.settings import StorageConfig, config
from downly.core.errors import StorageFullError
from downly.core.result import Outcome
from downly.models.internal import ArtifactPurpose, TempArtifact
from downly.utils.paths import candidate_dirs, first_writable_dir

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id() -> str:
    """Millisecond timestamp plus a random base36 suffix"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=8))
    return f"{int(time.time() * 1000)}_{suffix}"


class TempArtifactManager:
    """Allocate per-request scratch files and delete them exactly once"""

    def __init__(self, directory: Optional[Path] = None, storage_config: StorageConfig = config.storage):
        self.config = storage_config
        self._directory = directory
        self._pending: Dict[asyncio.Task, List[TempArtifact]] = {}

    @property
    def directory(self) -> Path:
        if self._directory is None:
            found = first_writable_dir(candidate_dirs("downloads", self.config.downloads_dir))
            if found is None:
                raise StorageFullError("No writable directory for downloads")
            self._directory = found
        return self._directory

    def allocate(self, request_id: str, purpose: ArtifactPurpose, ext: str) -> TempArtifact:
        """Reserve a unique path; the file itself is created by the tool writing it"""
        directory = self.directory
        self.enforce_quota()
        return TempArtifact(
            path=directory / f"{request_id}_{purpose.value}.{ext}",
            purpose=purpose,
            created_at=time.time(),
        )

    def release(self, artifacts: Iterable[TempArtifact]) -> List[Outcome[Path]]:
        """Delete artifacts. Never raises; an already missing file counts as released."""
        outcomes = []
        for artifact in artifacts:
            try:
                artifact.path.unlink()
                logger.debug(f"Removed {artifact.path}")
                outcomes.append(Outcome.success(artifact.path))
            except FileNotFoundError:
                outcomes.append(Outcome.success(artifact.path))
            except OSError as e:
                logger.warning(f"Failed to remove {artifact.path}: {e}")
                outcomes.append(Outcome.failure(e))
        return outcomes

    def release_after(self, artifacts: Iterable[TempArtifact], delay: Optional[float] = None) -> asyncio.Task:
        """Delete artifacts after a grace delay, for files nothing is reading any more"""
        artifacts = list(artifacts)
        delay = self.config.release_delay if delay is None else delay

        async def _later():
            await asyncio.sleep(delay)
            return self.release(artifacts)

        task = asyncio.create_task(_later())
        self._pending[task] = artifacts
        task.add_done_callback(lambda t: self._pending.pop(t, None))
        return task

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete leftovers older than ``stale_after`` (crashes, killed workers)"""
        now = now or time.time()
        removed = 0
        for entry in self._entries():
            try:
                if now - entry.stat().st_mtime < self.config.stale_after:
                    continue
                entry.unlink()
                removed += 1
            except OSError:
                continue
        if removed:
            logger.info(f"Swept {removed} stale artifacts from {self.directory}")
        return removed

    def usage(self) -> int:
        total = 0
        for entry in self._entries():
            try:
                total += entry.stat().st_size
            except OSError:
                continue
        return total

    def enforce_quota(self) -> None:
        if not self.config.max_bytes:
            return
        if self.usage() < self.config.max_bytes:
            return
        self.sweep()
        if self.usage() >= self.config.max_bytes:
            raise StorageFullError(
                "Download storage is full, try again later",
                detail=f"{self.config.max_bytes} bytes budget",
            )

    def _entries(self) -> List[Path]:
        try:
            with os.scandir(self.directory) as it:
                return [Path(e.path) for e in it if e.is_file(follow_symlinks=False)]
        except OSError:
            return []

    async def aclose(self) -> None:
        """Run pending delayed deletions now (shutdown)"""
        pending = list(self._pending.items())
        self._pending.clear()
        for task, artifacts in pending:
            task.cancel()
            self.release(artifacts)
