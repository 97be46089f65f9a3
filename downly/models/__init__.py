from .internal import EncodingDescriptor, OperationRequest, OutputKind, Platform, TempArtifact, ToolHandle, ToolSpec
from .request import DownloadRequest, InspectRequest
from .response import InspectResponse

__all__ = [
    "DownloadRequest",
    "EncodingDescriptor",
    "InspectRequest",
    "InspectResponse",
    "OperationRequest",
    "OutputKind",
    "Platform",
    "TempArtifact",
    "ToolHandle",
    "ToolSpec",
]
