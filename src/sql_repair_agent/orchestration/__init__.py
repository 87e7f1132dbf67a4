"""
Orchestration Package
Provides the generation / execution / repair pipeline
"""
from .cancellation import CancellationToken
from .pipeline import (
    RepairPipeline,
    PipelineBuilder,
    create_pipeline,
)

__all__ = [
    "CancellationToken",
    "RepairPipeline",
    "PipelineBuilder",
    "create_pipeline",
]
