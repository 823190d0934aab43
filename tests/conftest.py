"""Pytest configuration helpers.

Puts ``backend/`` on ``sys.path`` so tests can import ``tenderflow`` without
an install, and provides a scripted stand-in for the workflow backend.
"""
import json
import os
import sys

import httpx
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tenderflow.schemas.batch import BatchContext  # noqa: E402
from tenderflow.services.kv_store import MemoryKeyValueStore  # noqa: E402
from tenderflow.services.progress_store import ProgressStore  # noqa: E402
from tenderflow.services.unit_executor import StreamingUnitExecutor  # noqa: E402
from tenderflow.services.workflow_client import WorkflowClient  # noqa: E402

BASE_URL = "http://workflow.test/v1"


def sse(*events):
    """Encode events as the backend's blank-line-delimited ``data:`` frames."""
    return "".join(f"data: {json.dumps(e, ensure_ascii=False)}\n\n" for e in events).encode("utf-8")


def chunk(text):
    return {"event": "text_chunk", "data": {"text": text}}


def finished(outputs=None, error=None, total_tokens=None):
    data = {"status": "failed" if error else "succeeded", "outputs": outputs}
    if error:
        data["error"] = error
    if total_tokens is not None:
        data["total_tokens"] = total_tokens
    return {"event": "workflow_finished", "data": data}


class FakeWorkflowBackend:
    """MockTransport handler that replays a scripted response per unit heading.

    Unscripted units answer with a single chunk ``"<heading> body"`` and an
    empty finish event.
    """

    def __init__(self):
        self.requests = []
        self.headers = []
        self.scripts = {}

    def script(self, heading, *events, status=200, body=None):
        self.scripts[heading] = (status, body if body is not None else sse(*events))

    @property
    def submitted_headings(self):
        return [r["inputs"]["outline_content"].split("\n", 1)[0] for r in self.requests]

    def __call__(self, request):
        payload = json.loads(request.content)
        self.requests.append(payload)
        self.headers.append(dict(request.headers))
        heading = payload["inputs"]["outline_content"].split("\n", 1)[0]
        if heading in self.scripts:
            status, body = self.scripts[heading]
        else:
            status, body = 200, sse(
                {"event": "workflow_started", "task_id": "t-1", "workflow_run_id": "r-1"},
                chunk(f"{heading} body"),
                finished(),
            )
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})


def make_client(handler):
    return WorkflowClient(
        BASE_URL,
        user="tester",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def backend():
    return FakeWorkflowBackend()


@pytest.fixture
def executor(backend):
    return StreamingUnitExecutor(
        make_client(backend), user_requirements_key="user_requirements", callback_timeout=0.5,
    )


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def progress_store(kv):
    return ProgressStore(kv, key_prefix="batchSubmit_")


@pytest.fixture
def context():
    return BatchContext(
        prior_result="Tender requires ISO 9001.",
        company_profile="ACME Ltd, 20 years of experience.",
        user_requirement="Formal tone.",
        api_key="app-test-key",
    )
