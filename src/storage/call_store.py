"""Keyed call-state persistence with an on-disk mirror."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote, unquote

from pydantic import ValidationError

from storage.models import CallRecord

LOGGER = logging.getLogger(__name__)


class CallStoreError(Exception):
    status_code: int = 503
    default_detail = "Call store operation failed."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class CallStore:
    """In-memory index of call records mirrored to one JSON file per call.

    Upserts are last-writer-wins per call identifier. Every write replaces the
    record's file atomically, so :meth:`load` after a restart sees either the old
    or the new record, never a torn one.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)
        self._lock = asyncio.Lock()
        self._records: dict[str, CallRecord] = {}

    async def load(self) -> int:
        """Re-hydrate the index from disk. Returns the number of records loaded."""

        records = await asyncio.to_thread(self._read_all)
        async with self._lock:
            self._records = records
        LOGGER.info("Loaded %d call record(s) from %s", len(records), self._dir)
        return len(records)

    async def get_call(self, call_sid: str) -> CallRecord | None:
        async with self._lock:
            record = self._records.get(call_sid)
            return record.model_copy() if record else None

    async def save_call(
        self,
        call_sid: str,
        *,
        transcript: str | None = None,
        account_number: str | None = None,
    ) -> CallRecord:
        """Create or overwrite the record for ``call_sid``.

        Fields left as ``None`` keep their stored value.
        """

        if not call_sid:
            raise CallStoreError("call_sid is required")

        async with self._lock:
            existing = self._records.get(call_sid)
            if existing is None:
                record = CallRecord(call_sid=call_sid, transcript=transcript, account_number=account_number)
            else:
                record = existing.model_copy(
                    update={
                        "transcript": transcript if transcript is not None else existing.transcript,
                        "account_number": (
                            account_number if account_number is not None else existing.account_number
                        ),
                        "last_update": datetime.now(timezone.utc),
                    }
                )
            try:
                await asyncio.to_thread(self._write, record)
            except OSError as exc:
                LOGGER.exception("Failed to persist call %s", call_sid)
                raise CallStoreError(str(exc)) from exc
            self._records[call_sid] = record
            return record.model_copy()

    def _path_for(self, call_sid: str) -> Path:
        return self._dir / f"{quote(call_sid, safe='')}.json"

    def _write(self, record: CallRecord) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".call-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(record.model_dump_json())
            os.replace(tmp_name, self._path_for(record.call_sid))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_all(self) -> dict[str, CallRecord]:
        records: dict[str, CallRecord] = {}
        if not self._dir.is_dir():
            return records
        for path in sorted(self._dir.glob("*.json")):
            try:
                record = CallRecord.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                LOGGER.warning("Skipping unreadable call record %s: %s", path.name, exc)
                continue
            if record.call_sid != unquote(path.stem):
                LOGGER.warning("Call record %s does not match its file name; skipping", path.name)
                continue
            records[record.call_sid] = record
        return records
