"""Spawn yt-dlp and ffmpeg and expose their output.

Bounded calls (``run``/``inspect``) capture the whole output. Streaming
calls return a ``ProcessStream`` right after the child starts; the stream
owns the child for its whole life and moves through

    STARTING -> STREAMING -> COMPLETED | FAILED | TIMED_OUT | KILLED

releasing the pump task, stderr drain, pipes and process handle once, on
whichever terminal transition happens first.
"""

import asyncio
import json
import logging
from collections import deque
from contextlib import suppress
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Type, Union

from downly.config.settings import ProcessConfig, config
from downly.core.errors import (
    ExtractionError,
    MediaError,
    MediaTimeoutError,
    ProvisionError,
    TranscodeError,
)
from downly.services.provisioner import EXTRACTOR, TRANSCODER, BinaryProvisioner

logger = logging.getLogger(__name__)

STDERR_MAX_LINES = 50
STDERR_MAX_CHARS = 500
KILL_GRACE_SECONDS = 5.0


class CompletedProcess(NamedTuple):
    """Subprocess result"""
    returncode: int
    stdout: bytes
    stderr: bytes


class SubprocessExecutor:
    """Execute subprocess with consistent error handling"""

    @staticmethod
    async def run(
        cmd: List[str],
        timeout: float,
        capture_stderr: bool = True
    ) -> CompletedProcess:
        """
        Run subprocess with timeout and proper cleanup.
        Prevents process leaks and ensures consistent error handling.
        """
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE if capture_stderr else asyncio.subprocess.DEVNULL,
            stdin=asyncio.subprocess.DEVNULL
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout
            )

            return CompletedProcess(
                returncode=process.returncode,
                stdout=stdout,
                stderr=stderr if capture_stderr else b""
            )

        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise


def stderr_tail(stderr: Union[bytes, List[str]]) -> str:
    """Last part of a tool's stderr, for error messages"""
    if isinstance(stderr, bytes):
        text = stderr.decode(errors="replace")
    else:
        text = "\n".join(stderr)
    return text.strip()[-STDERR_MAX_CHARS:]


def error_class_for(tool: str) -> Type[MediaError]:
    return TranscodeError if tool == TRANSCODER else ExtractionError


class ProcessState(Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"

    @property
    def terminal(self) -> bool:
        return self not in (ProcessState.STARTING, ProcessState.STREAMING)


_EOF = object()


class ProcessStream:
    """Async byte iterator over a child's stdout.

    A pump task reads stdout into a bounded queue, so at most
    ``queue_depth`` chunks are held in memory and the pipe fills up
    (stalling the child) when the consumer is slow. The first-byte
    deadline is counted from spawn and enforced by the pump, independent
    of how fast the consumer pulls.
    """

    def __init__(
        self,
        tool: str,
        process: asyncio.subprocess.Process,
        command: List[str],
        first_byte_timeout: float,
        chunk_size: int,
        queue_depth: int,
    ):
        loop = asyncio.get_running_loop()
        self.tool = tool
        self.process = process
        self.command = command
        self.started_at = loop.time()
        self.state = ProcessState.STARTING
        self.returncode: Optional[int] = None
        self.bytes_read = 0
        self.first_byte_timeout = first_byte_timeout
        self.chunk_size = chunk_size

        self._deadline = self.started_at + first_byte_timeout
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_depth)
        self._stderr_lines: deque = deque(maxlen=STDERR_MAX_LINES)
        self._finished = False
        self._released = False
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._pump_task = asyncio.create_task(self._pump())

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stderr(self) -> str:
        return stderr_tail(list(self._stderr_lines))

    def __aiter__(self) -> "ProcessStream":
        return self

    async def __anext__(self) -> bytes:
        if self._finished:
            raise StopAsyncIteration

        item = await self._queue.get()

        if item is _EOF:
            self._finished = True
            await self._release()
            raise StopAsyncIteration

        if isinstance(item, BaseException):
            self._finished = True
            await self._release()
            raise item

        return item

    async def __aenter__(self) -> "ProcessStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel the stream: kill the child if it is still running and release everything"""
        self._finished = True
        if not self.state.terminal:
            self._kill()
            self._transition(ProcessState.KILLED)
        await self._release()

    def _transition(self, state: ProcessState) -> bool:
        if self.state.terminal:
            return False
        logger.debug(f"{self.tool}[{self.pid}] {self.state.value} -> {state.value}")
        self.state = state
        return True

    def _kill(self) -> None:
        if self.process.returncode is None:
            with suppress(ProcessLookupError):
                self.process.kill()

    async def _drain_stderr(self) -> None:
        """Drain stderr to prevent buffer deadlock"""
        pending = b""
        while True:
            data = await self.process.stderr.read(4096)
            if not data:
                break
            *lines, pending = (pending + data).split(b"\n")
            for line in lines:
                self._stderr_lines.append(line.decode(errors="replace").rstrip())
            # Progress bars can emit long runs without newlines
            pending = pending[-STDERR_MAX_CHARS:]
        if pending:
            self._stderr_lines.append(pending.decode(errors="replace").rstrip())

    async def _read_first(self) -> bytes:
        remaining = max(self._deadline - asyncio.get_running_loop().time(), 0)
        return await asyncio.wait_for(self.process.stdout.read(self.chunk_size), timeout=remaining)

    async def _pump(self) -> None:
        stdout = self.process.stdout
        try:
            while True:
                if self.bytes_read == 0:
                    try:
                        chunk = await self._read_first()
                    except asyncio.TimeoutError:
                        self._kill()
                        self._transition(ProcessState.TIMED_OUT)
                        logger.warning(f"{self.tool}[{self.pid}] produced no data in {self.first_byte_timeout:.0f}s, killed")
                        await self._queue.put(MediaTimeoutError(
                            f"{self.tool} produced no data within {self.first_byte_timeout:.0f}s"
                        ))
                        return
                else:
                    chunk = await stdout.read(self.chunk_size)

                if not chunk:
                    break

                if self.bytes_read == 0:
                    self._transition(ProcessState.STREAMING)
                self.bytes_read += len(chunk)
                await self._queue.put(chunk)

            self.returncode = await self.process.wait()
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stderr_task, timeout=KILL_GRACE_SECONDS)

            if self.returncode != 0:
                self._transition(ProcessState.FAILED)
                error_cls = error_class_for(self.tool)
                await self._queue.put(error_cls(
                    f"{self.tool} exited with code {self.returncode}",
                    detail=self.stderr or None,
                    partial=self.bytes_read > 0,
                ))
            else:
                self._transition(ProcessState.COMPLETED)
                await self._queue.put(_EOF)

        except OSError as e:
            self._kill()
            self._transition(ProcessState.FAILED)
            await self._queue.put(error_class_for(self.tool)(
                f"Reading {self.tool} output failed",
                detail=str(e),
                partial=self.bytes_read > 0,
            ))

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True

        for task in (self._pump_task, self._stderr_task):
            if not task.done():
                task.cancel()
            with suppress(asyncio.CancelledError, OSError):
                await task

        self._kill()
        try:
            # Drains whatever is left in the pipes so their transports close
            await asyncio.wait_for(self.process.communicate(), timeout=KILL_GRACE_SECONDS)
        except (asyncio.TimeoutError, OSError):
            logger.warning(f"{self.tool}[{self.pid}] did not exit cleanly")
        if self.returncode is None:
            self.returncode = self.process.returncode

        elapsed = asyncio.get_running_loop().time() - self.started_at
        logger.info(
            f"{self.tool}[{self.pid}] {self.state.value} after {elapsed:.1f}s, "
            f"{self.bytes_read} bytes, exit {self.returncode}"
        )


class ProcessOrchestrator:
    """Provision tools on demand and run them"""

    def __init__(self, provisioner: BinaryProvisioner, process_config: ProcessConfig = config.process):
        self.provisioner = provisioner
        self.config = process_config

    async def _command(self, tool: str, args: List[str]) -> List[str]:
        handle = await self.provisioner.ensure(tool)
        return [str(handle.path), *args]

    def _unusable(self, tool: str, error: OSError) -> ProvisionError:
        # The cached binary can't be executed; the next call provisions again
        self.provisioner.invalidate(tool)
        return ProvisionError(f"Cannot execute {tool}", detail=str(error))

    async def run(self, tool: str, args: List[str], timeout: Optional[float] = None) -> str:
        """Run to completion and return stdout"""
        timeout = timeout or self.config.inspect_timeout
        cmd = await self._command(tool, args)

        try:
            result = await SubprocessExecutor.run(cmd, timeout=timeout)
        except asyncio.TimeoutError:
            raise MediaTimeoutError(f"{tool} did not finish within {timeout:.0f}s")
        except OSError as e:
            raise self._unusable(tool, e) from e

        if result.returncode != 0:
            raise error_class_for(tool)(
                f"{tool} exited with code {result.returncode}",
                detail=stderr_tail(result.stderr) or None,
            )

        return result.stdout.decode(errors="replace")

    async def inspect(self, args: List[str], timeout: Optional[float] = None) -> Dict[str, Any]:
        """Run yt-dlp with a JSON dump flag and parse its output"""
        output = await self.run(EXTRACTOR, args, timeout=timeout)
        try:
            payload = json.loads(output)
        except json.JSONDecodeError as e:
            raise ExtractionError("Failed to parse yt-dlp metadata", detail=str(e)) from e

        if not isinstance(payload, dict):
            raise ExtractionError("Unexpected yt-dlp metadata shape")
        return payload

    async def stream(self, tool: str, args: List[str]) -> ProcessStream:
        """Spawn and return a live stream without waiting for output"""
        cmd = await self._command(tool, args)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL
            )
        except OSError as e:
            raise self._unusable(tool, e) from e

        return ProcessStream(
            tool,
            process,
            cmd,
            first_byte_timeout=self.config.first_byte_timeout,
            chunk_size=self.config.chunk_size,
            queue_depth=self.config.queue_depth,
        )
