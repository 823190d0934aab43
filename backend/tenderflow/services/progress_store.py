"""Durable batch progress, keyed by a fingerprint of the run inputs.

Every operation here is best-effort: persistence only buys resumability, so a
storage failure is logged and counted but never interrupts the run that
triggered it.

The fingerprint is a 32-bit string hash (multiplier 31 over UTF-16 code
units, rendered in base 36). It is not cryptographic; a collision would make
one run pick up another run's progress. Keys written by earlier clients use
the same algorithm, so changing it orphans every stored record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from tenderflow.config import get_settings
from tenderflow.schemas.batch import ProgressRecord, UnitResult
from tenderflow.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def string_hash(text: str) -> str:
    """Stable 32-bit hash of *text*, base 36. Empty input hashes to ``"0"``."""
    if not text:
        return "0"
    raw = text.encode("utf-16-le", errors="surrogatepass")
    h = 0
    for i in range(0, len(raw), 2):
        code_unit = raw[i] | (raw[i + 1] << 8)
        h = (h * 31 + code_unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def compute_progress_key(
    outline: str | None,
    prior_result: str | None = "",
    company_profile: str | None = "",
    user_requirement: str | None = "",
    *,
    prefix: str | None = None,
) -> str:
    """Fingerprint the four run inputs, order-sensitive, into a storage key."""
    if prefix is None:
        prefix = get_settings().PROGRESS_KEY_PREFIX
    combined = (outline or "") + (prior_result or "") + (company_profile or "") + (user_requirement or "")
    return f"{prefix}{string_hash(combined)}"


class ProgressStore:
    """Save, load and clear ``ProgressRecord``s in a key/value store."""

    def __init__(
        self,
        kv: KeyValueStore,
        key_prefix: str | None = None,
        io_timeout: float | None = None,
    ):
        settings = get_settings()
        self.kv = kv
        self.key_prefix = key_prefix if key_prefix is not None else settings.PROGRESS_KEY_PREFIX
        self.io_timeout = io_timeout if io_timeout is not None else settings.PROGRESS_IO_TIMEOUT
        # One worker keeps async saves and clears in submission order.
        self._io = ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress-io")
        self._timeouts = 0
        self._save_failures = 0
        self._load_failures = 0
        self._clear_failures = 0
        self._discarded_records = 0

    def compute_key(
        self,
        outline: str | None,
        prior_result: str | None = "",
        company_profile: str | None = "",
        user_requirement: str | None = "",
    ) -> str:
        return compute_progress_key(
            outline, prior_result, company_profile, user_requirement, prefix=self.key_prefix,
        )

    def save(self, key: str, completed_units: Sequence[UnitResult], total_units: int) -> None:
        try:
            record = ProgressRecord(
                completed_units=list(completed_units),
                total_units=total_units,
                timestamp=int(time.time() * 1000),
            )
            self.kv.set(key, record.to_json())
            logger.debug("Saved progress %s: %d/%d", key, len(completed_units), total_units)
        except Exception:
            self._save_failures += 1
            logger.warning("Failed to save batch progress for %s", key, exc_info=True)

    def load(self, key: str) -> ProgressRecord | None:
        try:
            raw = self.kv.get(key)
        except Exception:
            self._load_failures += 1
            logger.warning("Failed to read batch progress for %s", key, exc_info=True)
            return None
        if not raw:
            return None
        try:
            return ProgressRecord.model_validate_json(raw)
        except ValidationError as e:
            self._discarded_records += 1
            logger.warning("Ignoring malformed batch progress for %s: %s", key, e)
            return None

    def clear(self, key: str) -> None:
        try:
            self.kv.remove(key)
        except Exception:
            self._clear_failures += 1
            logger.warning("Failed to clear batch progress for %s", key, exc_info=True)

    # -- async variants ---------------------------------------------------
    #
    # The key/value clients are blocking. Called from the event loop, each
    # operation runs on the store's worker thread and is abandoned after
    # ``io_timeout`` seconds; an abandoned operation counts as a failure.

    async def save_async(self, key: str, completed_units: Sequence[UnitResult], total_units: int) -> None:
        if not await self._offload("save", key, self.save, key, list(completed_units), total_units):
            self._save_failures += 1

    async def load_async(self, key: str) -> ProgressRecord | None:
        done, record = await self._offload_result("load", key, self.load, key)
        if not done:
            self._load_failures += 1
        return record

    async def clear_async(self, key: str) -> None:
        if not await self._offload("clear", key, self.clear, key):
            self._clear_failures += 1

    async def _offload(self, op: str, key: str, fn: Callable[..., Any], *args: Any) -> bool:
        done, _ = await self._offload_result(op, key, fn, *args)
        return done

    async def _offload_result(self, op: str, key: str, fn: Callable[..., Any], *args: Any) -> tuple[bool, Any]:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._io, fn, *args)
        try:
            return True, await asyncio.wait_for(future, timeout=self.io_timeout)
        except asyncio.TimeoutError:
            self._timeouts += 1
            logger.warning("Batch progress %s for %s timed out after %.1fs", op, key, self.io_timeout)
            return False, None

    def get_metrics(self) -> dict[str, Any]:
        """Failure counters; non-zero values mean resume guarantees are degraded."""
        return {
            "save_failures": self._save_failures,
            "load_failures": self._load_failures,
            "clear_failures": self._clear_failures,
            "discarded_records": self._discarded_records,
            "timeouts": self._timeouts,
        }
