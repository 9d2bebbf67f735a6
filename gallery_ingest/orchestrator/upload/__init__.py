from .coordinator import UploadOrchestrator
from .progress import ProgressTracker

__all__ = ["UploadOrchestrator", "ProgressTracker"]
