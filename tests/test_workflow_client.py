import asyncio
import json

import httpx
import pytest

from conftest import make_client
from tenderflow.exceptions import WorkflowError
from tenderflow.services.workflow_client import get_file_category, get_file_type


def _json_backend(status, payload, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload)
    return handler


def test_blocking_run_unwraps_text_output():
    seen = []
    client = make_client(_json_backend(200, {"data": {"outputs": {"text": "parsed tender"}}}, seen))

    result = asyncio.run(client.run_workflow("k", {"tender_documents": "..."}))

    assert result == "parsed tender"
    body = json.loads(seen[0].content)
    assert body["response_mode"] == "blocking"
    assert str(seen[0].url) == "http://workflow.test/v1/workflows/run"


def test_blocking_run_returns_structured_outputs():
    outputs = {"content": [{"title": "A", "content": "a"}]}
    client = make_client(_json_backend(200, {"data": {"outputs": outputs}}))

    assert asyncio.run(client.run_workflow("k", {})) == outputs


def test_blocking_run_raises_reported_error():
    client = make_client(_json_backend(200, {"data": {"error": "node crashed", "outputs": None}}))

    with pytest.raises(WorkflowError, match="node crashed"):
        asyncio.run(client.run_workflow("k", {}))


def test_blocking_run_http_error_prefers_message():
    client = make_client(_json_backend(429, {"message": "rate limited"}))

    with pytest.raises(WorkflowError, match="rate limited") as exc_info:
        asyncio.run(client.run_workflow("k", {}))
    assert exc_info.value.status_code == 429
    assert exc_info.value.retriable is True


def test_missing_api_key_is_rejected_before_any_request():
    seen = []
    client = make_client(_json_backend(200, {}, seen))

    with pytest.raises(WorkflowError, match="API key"):
        asyncio.run(client.run_workflow("", {}))
    assert seen == []


def test_upload_file_returns_id():
    seen = []
    client = make_client(_json_backend(201, {"id": "file-123"}, seen))

    upload_id = asyncio.run(client.upload_file("k", "tender.pdf", b"%PDF-1.7"))

    assert upload_id == "file-123"
    assert str(seen[0].url) == "http://workflow.test/v1/files/upload"
    assert b'name="type"\r\n\r\nPDF' in seen[0].content


def test_upload_file_without_id_fails():
    client = make_client(_json_backend(200, {"data": {}}))

    with pytest.raises(WorkflowError, match="no file id"):
        asyncio.run(client.upload_file("k", "notes.txt", b"x"))


@pytest.mark.parametrize(
    "filename,file_type,category",
    [
        ("tender.PDF", "PDF", "document"),
        ("legacy.doc", "DOCX", "document"),
        ("deck.ppt", "PPTX", "document"),
        ("stamp.jpeg", "JPEG", "image"),
        ("briefing.m4a", "M4A", "audio"),
        ("site-visit.mov", "MOV", "video"),
        ("archive.zip", "TXT", "document"),
        ("README", "TXT", "document"),
    ],
)
def test_file_type_helpers(filename, file_type, category):
    assert get_file_type(filename) == file_type
    assert get_file_category(file_type) == category


def test_unknown_category_is_custom():
    assert get_file_category("BIN") == "custom"
