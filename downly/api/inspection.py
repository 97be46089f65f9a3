from fastapi import APIRouter, Request, Depends
from downly.api.deps import get_inspect_service
from downly.models.request import InspectRequest
from downly.models.response import InspectResponse
from downly.services.inspection import InspectService
from downly.core.logging import log_info
from downly.infra.rate_limit import inspect_rate_limiter
from downly.utils.urls import safe_url_for_log

router = APIRouter()

@router.post("/inspect", response_model=InspectResponse, dependencies=[Depends(inspect_rate_limiter)])
async def inspect_media(
    request: Request,
    inspect_request: InspectRequest,
    service: InspectService = Depends(get_inspect_service),
):
    """List the encodings and quality tiers of a URL"""
    operation = inspect_request.to_operation()

    log_info(request, f"Inspecting {safe_url_for_log(operation.url)} ({operation.platform.value})")
    response = await service.inspect(operation)
    log_info(request, f"Found {len(response.formats)} formats for '{response.title}'")
    return response
