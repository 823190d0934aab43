"""Process-wide engine singletons, used as FastAPI dependencies.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from tenderflow.services.batch_orchestrator import BatchOrchestrator
from tenderflow.services.kv_store import build_kv_store
from tenderflow.services.progress_store import ProgressStore
from tenderflow.services.unit_executor import StreamingUnitExecutor
from tenderflow.services.workflow_client import WorkflowClient


@lru_cache
def get_workflow_client() -> WorkflowClient:
    return WorkflowClient()


@lru_cache
def get_progress_store() -> ProgressStore:
    return ProgressStore(build_kv_store())


@lru_cache
def get_executor() -> StreamingUnitExecutor:
    return StreamingUnitExecutor(get_workflow_client())


def get_orchestrator() -> BatchOrchestrator:
    return BatchOrchestrator(get_executor(), get_progress_store())
