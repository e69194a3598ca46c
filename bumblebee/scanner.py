"""Orchestration of a read-only package inventory scan.

Configured roots are walked, matching files are dispatched to ecosystem
scanners on a pool of worker threads, an optional time bound is applied,
and records are written through the supplied emitter. Every accepted
package record is also matched against an optional exposure catalog.
"""

from __future__ import annotations

import dataclasses
import errno
import functools
import os
import queue
import threading
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass, field

from bumblebee import yarn
from bumblebee.exposure import Catalog
from bumblebee.model import (
    ECOSYSTEM_NPM,
    FINDING_TYPE_PACKAGE_EXPOSURE,
    RECORD_TYPE_FINDING,
    ROOT_KIND_UNKNOWN,
    Finding,
    Record,
)
from bumblebee.output import Emitter
from bumblebee.walk import DEFAULT_EXCLUDES, Options, SkipDir, walk

__all__ = [
    "Root",
    "Config",
    "Result",
    "run",
    "new_root_kind_lookup",
    "is_expected_access_error",
    "is_missing_path_error",
]

_DEFAULT_CONCURRENCY = 4
_QUEUE_SIZE = 256
_PUT_POLL = 0.05
_CREDENTIAL_FILES = frozenset({".env", ".envrc"})


@dataclass(frozen=True)
class Root:
    """A path to walk and the root kind stamped on records found under it."""

    path: str
    kind: str


@dataclass
class Config:
    """Scan configuration; ``max_duration`` is in seconds, 0 for unbounded.

    An empty ``ecosystems`` enables every ecosystem.
    """

    emitter: Emitter
    profile: str = ""
    roots: list[Root] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)
    ecosystems: Collection[str] = frozenset()
    max_file_size: int = 0
    max_duration: float = 0.0
    concurrency: int = 0
    catalog: Catalog | None = None
    findings_only: bool = False
    base_record: Record = field(default_factory=Record)


@dataclass
class Result:
    """Aggregate counters of one scan; ``duration`` is in seconds."""

    files_considered: int = 0
    records_emitted: int = 0
    package_records_suppressed: int = 0
    findings_emitted: int = 0
    duplicates: int = 0
    diagnostics: int = 0
    timed_out: bool = False
    duration: float = 0.0


def is_expected_access_error(err: BaseException | None) -> bool:
    """Report whether err is a routine permission denial (EACCES or EPERM)."""
    if err is None:
        return False
    if isinstance(err, PermissionError):
        return True
    return isinstance(err, OSError) and err.errno in (errno.EACCES, errno.EPERM)


def is_missing_path_error(err: BaseException | None) -> bool:
    """Report whether err means the path does not exist (ENOENT)."""
    if err is None:
        return False
    if isinstance(err, FileNotFoundError):
        return True
    return isinstance(err, OSError) and err.errno == errno.ENOENT


def new_root_kind_lookup(roots: list[Root]) -> Callable[[str], str]:
    """Map a path to the kind of the longest configured root containing it.

    Paths outside every root, and the empty path, map to the unknown kind.
    """
    cleaned = [Root(os.path.abspath(r.path), r.kind) for r in roots if r.path]

    def lookup(path: str) -> str:
        if not path:
            return ROOT_KIND_UNKNOWN
        target = os.path.abspath(path)
        best_len = -1
        best = ROOT_KIND_UNKNOWN
        for root in cleaned:
            prefix = root.path if root.path.endswith(os.sep) else root.path + os.sep
            if target == root.path or target.startswith(prefix):
                if len(root.path) > best_len:
                    best_len = len(root.path)
                    best = root.kind
        return best

    return lookup


class _State:
    """Counters and the first emit failure, shared across worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.findings = 0
        self.suppressed = 0
        self.error: BaseException | None = None

    def add_finding(self) -> None:
        with self._lock:
            self.findings += 1

    def add_suppressed(self) -> None:
        with self._lock:
            self.suppressed += 1

    def set_error(self, exc: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = exc

    def failed(self) -> bool:
        with self._lock:
            return self.error is not None


def run(config: Config) -> Result:
    """Execute one scan and return its counters.

    The first failure to write a record stops the scan and is raised once
    the workers have finished.
    """
    concurrency = config.concurrency if config.concurrency >= 1 else _DEFAULT_CONCURRENCY
    start = time.monotonic()
    deadline = start + config.max_duration if config.max_duration > 0 else None
    emitter = config.emitter
    base = dataclasses.replace(
        config.base_record,
        profile=config.profile,
        lifecycle_scripts=list(config.base_record.lifecycle_scripts),
    )
    root_kind_for = new_root_kind_lookup(config.roots)
    state = _State()

    def expired() -> bool:
        return deadline is not None and time.monotonic() >= deadline

    def halted() -> bool:
        return expired() or state.failed()

    def emit(record: Record) -> None:
        record = dataclasses.replace(record, lifecycle_scripts=list(record.lifecycle_scripts))
        kind = root_kind_for(record.source_file)
        if kind != ROOT_KIND_UNKNOWN:
            record.root_kind = kind
        elif not record.root_kind:
            record.root_kind = ROOT_KIND_UNKNOWN
        if not record.profile:
            record.profile = config.profile
        record, written = emitter.observe_package(record)
        if config.findings_only:
            if written:
                state.add_suppressed()
        elif written:
            try:
                emitter.emit_observed_package(record)
            except Exception as exc:
                state.set_error(exc)
                return
        if not written:
            # An identical earlier record already produced its findings.
            return
        if config.catalog is None:
            return
        for match in config.catalog.match_all(record):
            entry = match.entry
            finding = Finding(
                record_type=RECORD_TYPE_FINDING,
                schema_version=base.schema_version,
                scanner_name=base.scanner_name,
                scanner_version=base.scanner_version,
                run_id=base.run_id,
                scan_time=base.scan_time,
                endpoint=base.endpoint,
                profile=config.profile,
                finding_type=FINDING_TYPE_PACKAGE_EXPOSURE,
                severity=entry.severity,
                catalog_id=entry.id,
                catalog_name=entry.name,
                ecosystem=record.ecosystem,
                package_name=record.package_name,
                normalized_name=record.normalized_name,
                version=record.version,
                root_kind=record.root_kind,
                project_path=record.project_path,
                source_type=record.source_type,
                source_file=record.source_file,
                confidence=record.confidence,
                evidence=f"exact name+version match (version={match.version})",
            )
            try:
                emitter.emit_finding(finding)
            except Exception as exc:
                state.set_error(exc)
                break
            state.add_finding()

    yarn_scanner = yarn.Scanner(max_file_size=config.max_file_size, emit=emit, diag=emitter.diag)

    jobs: queue.Queue[tuple[str, Callable[[], None]] | None] = queue.Queue(maxsize=_QUEUE_SIZE)

    def worker() -> None:
        while True:
            item = jobs.get()
            if item is None:
                return
            path, task = item
            if halted():
                continue
            try:
                task()
            except Exception as exc:
                emitter.diag("error", path, str(exc))

    threads = [threading.Thread(target=worker, daemon=True) for _ in range(concurrency)]
    for thread in threads:
        thread.start()

    def send(path: str, task: Callable[[], None]) -> bool:
        if halted():
            return False
        while True:
            try:
                jobs.put((path, task), timeout=_PUT_POLL)
                return True
            except queue.Full:
                if expired():
                    return False

    def enabled(ecosystem: str) -> bool:
        return not config.ecosystems or ecosystem in config.ecosystems

    def on_error(path: str, err: BaseException) -> None:
        level = "warn"
        if is_expected_access_error(err):
            level = "debug"
        elif is_missing_path_error(err):
            level = "info"
        emitter.diag(level, path, str(err))

    files_considered = 0

    def visit(path: str, entry) -> None:
        nonlocal files_considered
        if halted():
            raise SkipDir
        if entry.is_dir():
            return
        name = entry.name
        if name in _CREDENTIAL_FILES:
            return
        files_considered += 1
        if enabled(ECOSYSTEM_NPM) and yarn.is_lockfile(name):
            send(path, functools.partial(yarn_scanner.scan_lockfile, path, base))

    try:
        walk(
            Options(
                roots=[r.path for r in config.roots],
                excludes=[*DEFAULT_EXCLUDES, *config.excludes],
                on_error=on_error,
            ),
            visit,
        )
    finally:
        for _ in threads:
            jobs.put(None)
        for thread in threads:
            thread.join()

    result = Result(
        files_considered=files_considered,
        records_emitted=emitter.records_emitted,
        package_records_suppressed=state.suppressed,
        findings_emitted=state.findings,
        duplicates=emitter.duplicates,
        diagnostics=emitter.diagnostics,
        timed_out=expired(),
        duration=time.monotonic() - start,
    )
    if state.error is not None:
        raise state.error
    return result