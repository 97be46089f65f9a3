import logging
from redis.exceptions import RedisError
from downly.models.internal import OperationRequest
from downly.models.response import InspectResponse
from downly.services.commands import ExtractorCommands
from downly.services.formats import FormatResolver
from downly.services.orchestrator import ProcessOrchestrator
from downly.infra.redis import get_redis
from downly.utils.hash import hash_stable

logger = logging.getLogger(__name__)

INSPECT_CACHE_TTL = 300

class InspectService:
    """Media inspection service"""

    def __init__(self, orchestrator: ProcessOrchestrator):
        self.orchestrator = orchestrator

    @staticmethod
    def cache_key(request: OperationRequest):
        # Cookie-bearing requests may expose private formats, never share them
        if request.cookie_header:
            return None
        return f"inspect:{request.platform.value}:{hash_stable(request.url)}"

    async def inspect(self, request: OperationRequest) -> InspectResponse:
        """
        Fetch media information with Redis caching.
        Reduces load from repeated requests for same URL.
        """
        cache_key = self.cache_key(request)
        redis = get_redis()

        if redis and cache_key:
            try:
                cached = await redis.get(cache_key)
                if cached:
                    return InspectResponse.model_validate_json(cached)
            except RedisError as e:
                logger.debug(f"Inspect cache read failed: {e}")

        payload = await self.orchestrator.inspect(ExtractorCommands.inspect(request))
        info = FormatResolver.resolve(payload, request.platform)
        response = InspectResponse.from_media_info(info)

        if redis and cache_key:
            try:
                await redis.setex(cache_key, INSPECT_CACHE_TTL, response.model_dump_json())
            except RedisError as e:
                logger.debug(f"Inspect cache write failed: {e}")

        return response
