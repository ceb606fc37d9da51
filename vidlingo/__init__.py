"""vidlingo: durable media translation pipeline."""

from .contracts import OutputOptions, RunInput, RunResult
from .execute import ActivityExecutor
from .models import ProgressSnapshot, Run, RunDescription, RunStatus
from .orchestrator import PipelineOrchestrator
from .persistence import get_repository
from .progress import get_progress_publisher
from .registry import RunRegistry
from .stages import PIPELINE_STAGES, StageDefinition, build_stages

__version__ = "0.1.0"
__all__ = [
    "ActivityExecutor",
    "OutputOptions",
    "PIPELINE_STAGES",
    "PipelineOrchestrator",
    "ProgressSnapshot",
    "Run",
    "RunDescription",
    "RunInput",
    "RunRegistry",
    "RunResult",
    "RunStatus",
    "StageDefinition",
    "build_stages",
    "get_progress_publisher",
    "get_repository",
]
