from dataclasses import dataclass
from typing import Optional
from redis.asyncio import Redis
from downly.services.artifacts import TempArtifactManager
from downly.services.orchestrator import ProcessOrchestrator
from downly.services.provisioner import BinaryProvisioner

@dataclass
class RuntimeState:
    """Centralized runtime state"""
    redis: Optional[Redis] = None
    provisioner: Optional[BinaryProvisioner] = None
    orchestrator: Optional[ProcessOrchestrator] = None
    artifacts: Optional[TempArtifactManager] = None

    def pipeline(self) -> ProcessOrchestrator:
        """Build the provisioner and orchestrator on first use"""
        if self.orchestrator is None:
            self.provisioner = self.provisioner or BinaryProvisioner()
            self.orchestrator = ProcessOrchestrator(self.provisioner)
        return self.orchestrator

    def storage(self) -> TempArtifactManager:
        if self.artifacts is None:
            self.artifacts = TempArtifactManager()
        return self.artifacts

state = RuntimeState()
