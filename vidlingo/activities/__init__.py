"""Pipeline activities: the protocol and its default implementation."""

from .base import ActivityContext, PipelineActivities, TempFileScope

__all__ = ["ActivityContext", "PipelineActivities", "TempFileScope"]
