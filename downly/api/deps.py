from fastapi import Depends
from downly.core.state import state
from downly.services.download import DownloadService
from downly.services.inspection import InspectService
from downly.services.orchestrator import ProcessOrchestrator

def get_orchestrator() -> ProcessOrchestrator:
    return state.pipeline()

def get_inspect_service(orchestrator: ProcessOrchestrator = Depends(get_orchestrator)) -> InspectService:
    return InspectService(orchestrator)

def get_download_service(orchestrator: ProcessOrchestrator = Depends(get_orchestrator)) -> DownloadService:
    return DownloadService(orchestrator, state.storage())
