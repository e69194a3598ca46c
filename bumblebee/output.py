"""NDJSON emission of inventory records, findings and diagnostics.

Records and findings go to the records writer; diagnostics go to the
diagnostics writer. Package records are deduplicated within a run by their
record_id. Findings are not deduplicated separately: they follow their
package record, which is already deduplicated.
"""

from __future__ import annotations

import dataclasses
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from bumblebee.model import (
    RECORD_TYPE_DIAGNOSTIC,
    RECORD_TYPE_FINDING,
    RECORD_TYPE_PACKAGE,
    RECORD_TYPE_SCAN_SUMMARY,
    Diagnostic,
    Finding,
    Record,
    ScanSummary,
)

__all__ = ["SinkStats", "Emitter"]

# Characters escaped so emitted JSON is safe to embed in HTML contexts.
_HTML_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class _Writer(Protocol):
    def write(self, data: str) -> Any: ...


@dataclass
class SinkStats:
    """Best-effort sink-side delivery counters."""

    http_batches_attempted: int = 0
    http_batches_succeeded: int = 0
    http_batches_failed: int = 0
    http_last_status: int = 0


def _encode(obj: dict[str, Any]) -> str:
    text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text + "\n"


def _rfc3339_now() -> str:
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S")
    fraction = f"{now.microsecond:06d}".rstrip("0")
    if fraction:
        stamp += "." + fraction
    return stamp + "Z"


class Emitter:
    """Writes one JSON object per line to the records and diagnostics writers.

    Writers need a ``write(str)`` method. A records writer with ``close()``
    is closed by :meth:`close`; one with ``stats()`` feeds :meth:`sink_stats`.
    """

    def __init__(self, records: _Writer, diags: _Writer, run_id: str) -> None:
        self._records = records
        self._diags = diags
        self._run_id = run_id
        self._lock = threading.Lock()
        self._seen: set[str] = set()
        self.records_emitted = 0
        self.duplicates = 0
        self.diagnostics = 0

    def observe_package(self, record: Record) -> tuple[Record, bool]:
        """Canonicalize a package record and reserve its dedup slot.

        Returns the canonical record and whether it is new for this run.
        """
        with self._lock:
            record = dataclasses.replace(
                record,
                record_type=record.record_type or RECORD_TYPE_PACKAGE,
                lifecycle_scripts=list(record.lifecycle_scripts),
            )
            if not record.record_id:
                record.record_id = record.stable_id()
            key = record.dedup_key()
            if key in self._seen:
                self.duplicates += 1
                return record, False
            self._seen.add(key)
            return record, True

    def emit_observed_package(self, record: Record) -> None:
        """Write a package record already reserved via observe_package."""
        with self._lock:
            self.records_emitted += 1
            self._records.write(_encode(record.to_dict()))

    def emit(self, record: Record) -> bool:
        """Write a record unless an identical one was already written.

        Returns True when written, False when suppressed as a duplicate.
        """
        record, new = self.observe_package(record)
        if not new:
            return False
        self.emit_observed_package(record)
        return True

    def emit_finding(self, finding: Finding) -> None:
        """Write one finding record to the records writer."""
        with self._lock:
            finding = dataclasses.replace(
                finding, record_type=finding.record_type or RECORD_TYPE_FINDING
            )
            if not finding.record_id:
                finding.record_id = finding.stable_id()
            self._records.write(_encode(finding.to_dict()))

    def emit_summary(self, summary: ScanSummary) -> None:
        """Write a scan_summary record to the records writer."""
        with self._lock:
            summary = dataclasses.replace(
                summary,
                record_type=summary.record_type or RECORD_TYPE_SCAN_SUMMARY,
                roots=list(summary.roots),
                counts=dict(summary.counts),
            )
            if not summary.record_id:
                summary.record_id = summary.stable_id()
            self._records.write(_encode(summary.to_dict()))

    def diag(self, level: str, path: str, msg: str) -> None:
        """Write a diagnostic; failures to write it are ignored."""
        with self._lock:
            self.diagnostics += 1
            d = Diagnostic(
                record_type=RECORD_TYPE_DIAGNOSTIC,
                run_id=self._run_id,
                time=_rfc3339_now(),
                level=level,
                path=path,
                message=msg,
            )
            d.record_id = d.stable_id()
            try:
                self._diags.write(_encode(d.to_dict()))
            except (OSError, ValueError):
                pass

    def close(self) -> None:
        """Close the records writer if it can be closed; diagnostics stay open."""
        closer = getattr(self._records, "close", None)
        if callable(closer):
            closer()

    def sink_stats(self) -> SinkStats:
        """Transport counters from the records writer, if it reports any."""
        stats = getattr(self._records, "stats", None)
        if callable(stats):
            return stats()
        return SinkStats()