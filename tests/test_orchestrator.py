import asyncio
import sys
from pathlib import Path
import pytest
from downly.config.settings import ProcessConfig
from downly.core.errors import (
    ExtractionError,
    MediaTimeoutError,
    ProvisionError,
    TranscodeError,
    TransferAborted,
)
from downly.models.internal import ToolHandle, TransferMetadata
from downly.services.orchestrator import ProcessOrchestrator, ProcessState, stderr_tail
from downly.services.provisioner import EXTRACTOR, TRANSCODER
from downly.services.transfer import StreamingTransfer


class PythonProvisioner:
    """Hands out the running interpreter as every tool"""

    def __init__(self, path=sys.executable):
        self.path = Path(path)
        self.invalidated = []

    async def ensure(self, name):
        return ToolHandle(name=name, path=self.path)

    def invalidate(self, name):
        self.invalidated.append(name)


def make_orchestrator(first_byte_timeout=2.0, provisioner=None):
    process_config = ProcessConfig(first_byte_timeout=first_byte_timeout, chunk_size=1024, queue_depth=2)
    return ProcessOrchestrator(provisioner or PythonProvisioner(), process_config)


def script(source):
    return ["-c", source]


async def collect(stream):
    data = b""
    async for chunk in stream:
        data += chunk
    return data


@pytest.mark.asyncio
async def test_stream_completes():
    orchestrator = make_orchestrator()
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys; sys.stdout.buffer.write(b'x' * 200000); sys.stdout.flush()"
    ))

    data = await collect(stream)

    assert data == b"x" * 200000
    assert stream.state is ProcessState.COMPLETED
    assert stream.returncode == 0
    assert stream.bytes_read == 200000


@pytest.mark.asyncio
async def test_stream_times_out_without_first_byte():
    orchestrator = make_orchestrator(first_byte_timeout=0.5)
    stream = await orchestrator.stream(EXTRACTOR, script("import time; time.sleep(30)"))

    with pytest.raises(MediaTimeoutError):
        await collect(stream)

    assert stream.state is ProcessState.TIMED_OUT
    assert stream.process.returncode is not None
    assert stream.bytes_read == 0


@pytest.mark.asyncio
async def test_slow_transfer_after_first_byte_is_not_a_timeout():
    orchestrator = make_orchestrator(first_byte_timeout=0.5)
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys, time\n"
        "sys.stdout.buffer.write(b'a'); sys.stdout.flush()\n"
        "time.sleep(1.2)\n"
        "sys.stdout.buffer.write(b'b'); sys.stdout.flush()\n"
    ))

    assert await collect(stream) == b"ab"
    assert stream.state is ProcessState.COMPLETED


@pytest.mark.asyncio
async def test_stream_failure_after_output_is_partial():
    orchestrator = make_orchestrator()
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys\n"
        "sys.stdout.write('abc'); sys.stdout.flush()\n"
        "sys.stderr.write('ERROR: Unsupported URL\\n')\n"
        "sys.exit(3)\n"
    ))

    received = []
    with pytest.raises(ExtractionError) as excinfo:
        async for chunk in stream:
            received.append(chunk)

    assert b"".join(received) == b"abc"
    assert excinfo.value.partial is True
    assert "Unsupported URL" in excinfo.value.detail
    assert stream.state is ProcessState.FAILED
    assert stream.returncode == 3


@pytest.mark.asyncio
async def test_stream_failure_without_output():
    orchestrator = make_orchestrator()
    stream = await orchestrator.stream(TRANSCODER, script("import sys; sys.exit(1)"))

    with pytest.raises(TranscodeError) as excinfo:
        await collect(stream)

    assert excinfo.value.partial is False


@pytest.mark.asyncio
async def test_cancel_kills_process():
    orchestrator = make_orchestrator()
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys, time\n"
        "sys.stdout.buffer.write(b'chunk'); sys.stdout.flush()\n"
        "time.sleep(30)\n"
    ))

    assert await stream.__anext__() == b"chunk"
    await stream.aclose()

    assert stream.state is ProcessState.KILLED
    assert stream.process.returncode is not None
    # Closing twice is harmless
    await stream.aclose()
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()


@pytest.mark.asyncio
async def test_cancel_after_completion_keeps_state():
    orchestrator = make_orchestrator()
    async with await orchestrator.stream(EXTRACTOR, script("print('done')")) as stream:
        await collect(stream)

    assert stream.state is ProcessState.COMPLETED


@pytest.mark.asyncio
async def test_stream_drops_oversized_stderr():
    orchestrator = make_orchestrator()
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys; sys.stderr.write('x' * 100000); sys.exit(2)"
    ))

    with pytest.raises(ExtractionError) as excinfo:
        await collect(stream)

    assert len(excinfo.value.detail) <= 500


@pytest.mark.asyncio
async def test_run_returns_stdout():
    orchestrator = make_orchestrator()
    assert await orchestrator.run(EXTRACTOR, script("print('hello')")) == "hello\n"


@pytest.mark.asyncio
async def test_run_maps_exit_codes():
    orchestrator = make_orchestrator()

    with pytest.raises(ExtractionError, match="exited with code 2") as excinfo:
        await orchestrator.run(EXTRACTOR, script("import sys; sys.stderr.write('bad url'); sys.exit(2)"))
    assert excinfo.value.detail == "bad url"

    with pytest.raises(TranscodeError):
        await orchestrator.run(TRANSCODER, script("import sys; sys.exit(1)"))


@pytest.mark.asyncio
async def test_run_timeout():
    orchestrator = make_orchestrator()

    with pytest.raises(MediaTimeoutError):
        await orchestrator.run(EXTRACTOR, script("import time; time.sleep(30)"), timeout=0.5)


@pytest.mark.asyncio
async def test_unexecutable_binary_is_invalidated(tmp_path):
    provisioner = PythonProvisioner(tmp_path / "missing-binary")
    orchestrator = make_orchestrator(provisioner=provisioner)

    with pytest.raises(ProvisionError):
        await orchestrator.run(EXTRACTOR, ["--version"])
    with pytest.raises(ProvisionError):
        await orchestrator.stream(EXTRACTOR, ["--version"])

    assert provisioner.invalidated == [EXTRACTOR, EXTRACTOR]


@pytest.mark.asyncio
async def test_inspect_parses_json():
    orchestrator = make_orchestrator()
    payload = await orchestrator.inspect(script(
        "import json; print(json.dumps({'id': 'abc', 'title': 'clip', 'formats': []}))"
    ))
    assert payload == {"id": "abc", "title": "clip", "formats": []}


@pytest.mark.asyncio
async def test_inspect_rejects_bad_output():
    orchestrator = make_orchestrator()

    with pytest.raises(ExtractionError, match="Failed to parse"):
        await orchestrator.inspect(script("print('not json')"))
    with pytest.raises(ExtractionError, match="Unexpected"):
        await orchestrator.inspect(script("print('[1, 2]')"))


@pytest.mark.asyncio
async def test_streams_are_independent():
    orchestrator = make_orchestrator()
    streams = [
        await orchestrator.stream(EXTRACTOR, script(f"print('{i}' * 10)"))
        for i in range(3)
    ]

    results = await asyncio.gather(*(collect(s) for s in streams))

    assert [r.strip() for r in results] == [b"0" * 10, b"1" * 10, b"2" * 10]


def test_stderr_tail():
    assert stderr_tail(b"  warning\nERROR: boom \n") == "warning\nERROR: boom"
    assert stderr_tail(["a", "b"]) == "a\nb"
    assert len(stderr_tail(b"y" * 1000)) == 500


@pytest.mark.asyncio
async def test_slow_consumer_holds_back_the_reader():
    orchestrator = make_orchestrator()
    chunk_size = orchestrator.config.chunk_size
    queue_depth = orchestrator.config.queue_depth
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys; sys.stdout.buffer.write(b'x' * (4 * 1024 * 1024)); sys.stdout.flush()"
    ))

    try:
        await stream.__anext__()
        await asyncio.sleep(0.5)

        assert stream.bytes_read <= (queue_depth + 2) * chunk_size
        assert stream.state is ProcessState.STREAMING
    finally:
        await stream.aclose()

    assert stream.process.returncode is not None


@pytest.mark.asyncio
async def test_failure_mid_stream_aborts_delivery():
    orchestrator = make_orchestrator()
    stream = await orchestrator.stream(EXTRACTOR, script(
        "import sys\n"
        "sys.stdout.buffer.write(b'abc'); sys.stdout.flush()\n"
        "sys.exit(1)\n"
    ))
    metadata = TransferMetadata(filename="Downly_abc.mp4", media_type="video/mp4")

    delivery = await StreamingTransfer.deliver(stream, metadata)
    received = []
    with pytest.raises(TransferAborted):
        async for chunk in delivery.body:
            received.append(chunk)

    assert b"".join(received) == b"abc"
    assert stream.state is ProcessState.FAILED
