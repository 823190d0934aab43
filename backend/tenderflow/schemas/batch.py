"""Pydantic v2 schemas for batch generation: units, results, progress, artifact."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Units of work and their results
# ---------------------------------------------------------------------------

class WorkUnit(BaseModel):
    """One top-level section of the outline, submitted as a single request."""
    title: str
    content: str  # heading line + body, trimmed

    model_config = {"frozen": True}


class UnitResult(BaseModel):
    """Canonical per-unit result, always fully populated."""
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str = ""


class BatchContext(BaseModel):
    """Inputs shared by every unit of one run."""
    prior_result: str = ""  # tender requirements parsed by the previous stage
    company_profile: str = ""
    user_requirement: str = ""
    api_key: str = ""


# ---------------------------------------------------------------------------
# Persisted progress
# ---------------------------------------------------------------------------

class ProgressRecord(BaseModel):
    """Completed-unit state for one fingerprint.

    Serialized with the wire names ``completedBatches`` / ``totalBatches`` so
    records stay readable by older clients.
    """
    completed_units: list[UnitResult] = Field(default_factory=list, alias="completedBatches")
    total_units: int = Field(ge=0, alias="totalBatches")
    timestamp: int = 0  # epoch milliseconds

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_counts(self) -> "ProgressRecord":
        if len(self.completed_units) > self.total_units:
            raise ValueError(
                f"completedBatches ({len(self.completed_units)}) exceeds "
                f"totalBatches ({self.total_units})"
            )
        return self

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Merged artifact — mirrors the backend's blocking workflow response
# ---------------------------------------------------------------------------

class MergedOutputs(BaseModel):
    content: list[UnitResult] = Field(default_factory=list)


class MergedRunData(BaseModel):
    id: str
    workflow_id: str = "merged"
    status: str = "succeeded"
    outputs: MergedOutputs
    elapsed_time: float = 0.0
    total_tokens: int = 0
    total_steps: int = 0
    created_at: int = 0  # epoch seconds
    finished_at: int = 0


class MergedArtifact(BaseModel):
    """Final document: every unit result in outline order plus run metadata."""
    workflow_run_id: str
    task_id: str
    data: MergedRunData

    @property
    def units(self) -> list[UnitResult]:
        return self.data.outputs.content


# ---------------------------------------------------------------------------
# Batch event model — for SSE streaming
# ---------------------------------------------------------------------------

class BatchEvent(BaseModel):
    """An event emitted while a batch run is in progress."""
    event_type: str  # progress, chunk, error, complete
    current: int | None = None
    total: int | None = None
    label: str | None = None
    index: int | None = None  # 0-based unit index (chunk events)
    title: str | None = None
    chunk: str | None = None
    error: str | None = None
    result: dict[str, Any] | None = None  # merged artifact (complete only)


# ---------------------------------------------------------------------------
# API request/response models
# ---------------------------------------------------------------------------

class SegmentRequest(BaseModel):
    outline: str


class SegmentResponse(BaseModel):
    total: int
    units: list[WorkUnit]


class ProgressLookupRequest(BaseModel):
    outline: str
    prior_result: str = ""
    company_profile: str = ""
    user_requirement: str = ""


class ProgressLookupResponse(BaseModel):
    key: str
    record: ProgressRecord | None = None


class BatchRunRequest(ProgressLookupRequest):
    """Start or resume a batch run."""
    api_key: str | None = None  # falls back to WORKFLOW_API_KEY
    resume: bool = True

    def to_context(self, default_api_key: str = "") -> BatchContext:
        return BatchContext(
            prior_result=self.prior_result,
            company_profile=self.company_profile,
            user_requirement=self.user_requirement,
            api_key=self.api_key or default_api_key,
        )


class FileUploadResponse(BaseModel):
    id: str
    filename: str
    file_type: str
    category: str  # document | image | audio | video | custom
