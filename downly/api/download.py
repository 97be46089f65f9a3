import functools
import anyio
from typing import Awaitable, Callable, Optional
from fastapi import APIRouter, Request, Depends
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send
from downly.api.deps import get_download_service
from downly.models.request import DownloadRequest
from downly.services.download import DownloadService
from downly.services.transfer import Delivery
from downly.core.logging import log_info
from downly.infra.rate_limit import download_rate_limiter
from downly.infra.concurrency import concurrency_limiter, release_download_slot
from downly.utils.urls import safe_url_for_log

router = APIRouter()

class DeliveryResponse(StreamingResponse):
    """StreamingResponse that releases its source however the response ends"""

    def __init__(self, delivery: Delivery, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        super().__init__(
            delivery.body,
            media_type=delivery.media_type,
            headers=delivery.headers,
        )
        self.delivery = delivery
        self.on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Also covers a client that left before the body was started
            with anyio.CancelScope(shield=True):
                await self.delivery.aclose()
                if self.on_close is not None:
                    await self.on_close()

@router.post("/download", dependencies=[Depends(download_rate_limiter)])
async def download_media(
    request: Request,
    download_request: DownloadRequest,
    service: DownloadService = Depends(get_download_service),
):
    """Download media, streamed back as an attachment"""
    # The slot is taken only once the request is known to be valid
    operation = download_request.to_operation()
    await concurrency_limiter(request)

    try:
        log_info(
            request,
            f"Starting download of {safe_url_for_log(operation.url)} "
            f"({operation.platform.value}, format {operation.format_id}, {operation.output.value})"
        )
        delivery = await service.download(operation)
    except BaseException:
        await release_download_slot(request)
        raise

    return DeliveryResponse(delivery, on_close=functools.partial(release_download_slot, request))
