"""Orchestrator package - coordinates upload workflows."""
from .core import UploadOrchestrator
from .parallel import PartUploadCoordinator
from .session import UploadSessionController

__all__ = ["UploadOrchestrator", "PartUploadCoordinator", "UploadSessionController"]
