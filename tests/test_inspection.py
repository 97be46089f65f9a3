import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from downly.core.state import state
from downly.models.internal import OperationRequest, Platform
from downly.services.inspection import InspectService

PAYLOAD = {
    "id": "7312345678901234567",
    "title": "A clip",
    "thumbnail": "https://example.com/t.jpg",
    "formats": [
        {"format_id": "play", "height": 720, "vcodec": "h264", "acodec": "aac", "ext": "mp4"},
        {"format_id": "silent", "height": 1080, "vcodec": "h264", "acodec": "none", "ext": "mp4"},
    ],
}


class CountingOrchestrator:
    def __init__(self):
        self.calls = []

    async def inspect(self, args, timeout=None):
        self.calls.append(args)
        return PAYLOAD


class MemoryRedis:
    def __init__(self, broken=False):
        self.data = {}
        self.broken = broken

    async def get(self, key):
        if self.broken:
            raise RedisConnectionError("down")
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        if self.broken:
            raise RedisConnectionError("down")
        self.data[key] = value


@pytest.fixture
def redis():
    original = state.redis
    state.redis = MemoryRedis()
    yield state.redis
    state.redis = original


def tiktok(cookie=None):
    return OperationRequest(url="https://www.tiktok.com/@u/video/7312345678901234567", platform=Platform.TIKTOK, cookie=cookie)


@pytest.mark.asyncio
async def test_inspect_filters_and_tiers():
    response = await InspectService(CountingOrchestrator()).inspect(tiktok())

    assert response.title == "A clip"
    assert [f.formatId for f in response.formats] == ["play"]
    assert [(t.label, t.formatId) for t in response.tiers] == [("best", "play")]


@pytest.mark.asyncio
async def test_inspect_is_cached(redis):
    orchestrator = CountingOrchestrator()
    service = InspectService(orchestrator)

    first = await service.inspect(tiktok())
    second = await service.inspect(tiktok())

    assert first == second
    assert len(orchestrator.calls) == 1
    assert len(redis.data) == 1


@pytest.mark.asyncio
async def test_cookie_requests_bypass_cache(redis):
    orchestrator = CountingOrchestrator()
    service = InspectService(orchestrator)
    request = OperationRequest(url="https://www.facebook.com/watch/?v=1", platform=Platform.FACEBOOK, cookie="c_user=1")

    await service.inspect(request)
    await service.inspect(request)

    assert len(orchestrator.calls) == 2
    assert redis.data == {}
    assert "Cookie:c_user=1" in orchestrator.calls[0]


@pytest.mark.asyncio
async def test_broken_cache_is_ignored(redis):
    redis.broken = True
    orchestrator = CountingOrchestrator()

    response = await InspectService(orchestrator).inspect(tiktok())

    assert response.title == "A clip"
    assert len(orchestrator.calls) == 1
