"""HTTP client for the Dify-compatible workflow backend.

Wraps ``POST /workflows/run`` in both response modes plus file upload.
Status checks happen here; decoding the event stream is the executor's job.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from tenderflow.config import get_settings
from tenderflow.exceptions import WorkflowError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# File type helpers (backend upload API expects these labels)
# ---------------------------------------------------------------------------

_FILE_TYPES: dict[str, str] = {
    "TXT": "TXT", "MD": "MD", "MARKDOWN": "MARKDOWN", "PDF": "PDF", "HTML": "HTML",
    "XLSX": "XLSX", "XLS": "XLS", "CSV": "CSV", "DOCX": "DOCX", "DOC": "DOCX",
    "EML": "EML", "MSG": "MSG", "PPTX": "PPTX", "PPT": "PPTX", "XML": "XML",
    "EPUB": "EPUB",
    "JPG": "JPG", "JPEG": "JPEG", "PNG": "PNG", "GIF": "GIF", "WEBP": "WEBP", "SVG": "SVG",
    "MP3": "MP3", "M4A": "M4A", "WAV": "WAV", "WEBM": "WEBM", "AMR": "AMR",
    "MP4": "MP4", "MOV": "MOV", "MPEG": "MPEG", "MPGA": "MPGA",
}

_FILE_CATEGORIES: dict[str, set[str]] = {
    "document": {
        "TXT", "MD", "MARKDOWN", "PDF", "HTML", "XLSX", "XLS", "DOCX", "CSV",
        "EML", "MSG", "PPTX", "PPT", "XML", "EPUB",
    },
    "image": {"JPG", "JPEG", "PNG", "GIF", "WEBP", "SVG"},
    "audio": {"MP3", "M4A", "WAV", "WEBM", "AMR"},
    "video": {"MP4", "MOV", "MPEG", "MPGA"},
}


def get_file_type(filename: str) -> str:
    """Map a filename extension to the backend's file type label (TXT fallback)."""
    ext = filename.rsplit(".", 1)[-1].upper() if "." in filename else ""
    return _FILE_TYPES.get(ext, "TXT")


def get_file_category(file_type: str) -> str:
    for category, types in _FILE_CATEGORIES.items():
        if file_type.upper() in types:
            return category
    return "custom"


def _mask_key(key: str) -> str:
    """Mask an API key for safe logging: show first 8 and last 4 chars."""
    if len(key) <= 16:
        return "***"
    return f"{key[:8]}...{key[-4:]}"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class WorkflowClient:
    """Thin async wrapper over the workflow backend.

    Pass ``http_client`` to share a connection pool or to inject a mock
    transport; otherwise one is created lazily and owned by this instance.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        user: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.WORKFLOW_BASE_URL).rstrip("/")
        self.user = user or settings.WORKFLOW_USER
        self.timeout = float(timeout or settings.WORKFLOW_TIMEOUT)
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def run_url(self) -> str:
        return f"{self.base_url}/workflows/run"

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
            )
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        if not api_key:
            raise WorkflowError("Workflow API key is not configured", retriable=False)
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _body(self, inputs: dict[str, Any], response_mode: str) -> dict[str, Any]:
        return {"inputs": inputs, "response_mode": response_mode, "user": self.user}

    # -- streaming ---------------------------------------------------------

    @asynccontextmanager
    async def stream_workflow(
        self, api_key: str, inputs: dict[str, Any],
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Run the workflow in streaming mode; yields an async iterator of lines.

        Raises ``WorkflowError`` for non-2xx responses and for transport
        failures, including those that happen while the caller reads lines.
        """
        headers = self._headers(api_key)
        body = self._body(inputs, "streaming")
        logger.info("Streaming workflow run url=%s key=%s", self.run_url, _mask_key(api_key))

        try:
            async with self._get_client().stream(
                "POST", self.run_url, headers=headers, json=body,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._status_error(response)
                yield response.aiter_lines()
        except httpx.HTTPError as e:
            logger.error("Workflow stream transport error: %s", e)
            raise WorkflowError(f"Workflow request failed: {e}", retriable=True) from e

    # -- blocking ----------------------------------------------------------

    async def run_workflow(self, api_key: str, inputs: dict[str, Any]) -> Any:
        """Run the workflow in blocking mode and unwrap its outputs.

        Returns ``data.outputs.text`` when present, else ``data.outputs``,
        else ``data``, else the whole response body.
        """
        headers = self._headers(api_key)
        body = self._body(inputs, "blocking")
        logger.info("Blocking workflow run url=%s key=%s", self.run_url, _mask_key(api_key))

        try:
            response = await self._get_client().post(self.run_url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise WorkflowError(f"Workflow request failed: {e}", retriable=True) from e

        if response.status_code >= 400:
            raise self._status_error(response)

        payload = _json_or_empty(response)
        data = payload.get("data") if isinstance(payload.get("data"), dict) else None
        if data and data.get("error"):
            raise WorkflowError(str(data["error"]), status_code=response.status_code)

        outputs = data.get("outputs") if data else None
        if isinstance(outputs, dict) and outputs.get("text"):
            return outputs["text"]
        if outputs:
            return outputs
        if data:
            return data
        if payload.get("outputs"):
            return payload["outputs"]
        return payload

    # -- upload ------------------------------------------------------------

    async def upload_file(
        self,
        api_key: str,
        filename: str,
        content: bytes,
        file_type: str | None = None,
    ) -> str:
        """Upload a file for use as a workflow input; returns the upload id."""
        if not api_key:
            raise WorkflowError("Workflow API key is not configured", retriable=False)
        file_type = file_type or get_file_type(filename)
        try:
            response = await self._get_client().post(
                f"{self.base_url}/files/upload",
                headers={"Authorization": f"Bearer {api_key}"},
                data={"user": self.user, "type": file_type},
                files={"file": (filename, content)},
            )
        except httpx.HTTPError as e:
            raise WorkflowError(f"File upload failed: {e}", retriable=True) from e

        if response.status_code >= 400:
            raise WorkflowError(
                f"File upload failed: {response.status_code}", status_code=response.status_code,
            )
        payload = _json_or_empty(response)
        nested = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        upload_id = payload.get("id") or nested.get("id")
        if not upload_id:
            raise WorkflowError("File upload failed: no file id returned", status_code=response.status_code)
        logger.info("Uploaded %s (%s) -> %s", filename, file_type, upload_id)
        return str(upload_id)

    @staticmethod
    def _status_error(response: httpx.Response) -> WorkflowError:
        payload = _json_or_empty(response)
        nested = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        message = payload.get("message") or nested.get("error") or f"API call failed: {response.status_code}"
        logger.error("Workflow backend returned HTTP %d: %s", response.status_code, message)
        return WorkflowError(
            str(message),
            status_code=response.status_code,
            retriable=response.status_code in _RETRIABLE_STATUS,
        )


_RETRIABLE_STATUS = {408, 429, 500, 502, 503, 504}


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
