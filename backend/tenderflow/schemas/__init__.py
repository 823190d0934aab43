"""Pydantic v2 schemas package."""

from tenderflow.schemas.batch import (
    BatchContext,
    BatchEvent,
    BatchRunRequest,
    FileUploadResponse,
    MergedArtifact,
    MergedOutputs,
    MergedRunData,
    ProgressLookupRequest,
    ProgressLookupResponse,
    ProgressRecord,
    SegmentRequest,
    SegmentResponse,
    UnitResult,
    WorkUnit,
)

__all__ = [
    "BatchContext",
    "BatchEvent",
    "BatchRunRequest",
    "FileUploadResponse",
    "MergedArtifact",
    "MergedOutputs",
    "MergedRunData",
    "ProgressLookupRequest",
    "ProgressLookupResponse",
    "ProgressRecord",
    "SegmentRequest",
    "SegmentResponse",
    "UnitResult",
    "WorkUnit",
]
