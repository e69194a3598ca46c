"""Inventory record schema emitted by the scanner."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any

SCHEMA_VERSION = "0.1.0"
SCANNER_NAME = "bumblebee"

RECORD_TYPE_PACKAGE = "package"
RECORD_TYPE_FINDING = "finding"
RECORD_TYPE_SCAN_SUMMARY = "scan_summary"
RECORD_TYPE_DIAGNOSTIC = "diagnostic"

SCAN_STATUS_COMPLETE = "complete"
SCAN_STATUS_PARTIAL = "partial"
SCAN_STATUS_ERROR = "error"

# Profiles determine which roots are scanned and which records are emitted.
PROFILE_BASELINE = "baseline"
PROFILE_PROJECT = "project"
PROFILE_DEEP = "deep"

FINDING_TYPE_PACKAGE_EXPOSURE = "package_exposure"

ECOSYSTEM_NPM = "npm"
ECOSYSTEM_PYPI = "pypi"
ECOSYSTEM_GO = "go"
ECOSYSTEM_RUBYGEMS = "rubygems"
ECOSYSTEM_PACKAGIST = "packagist"
ECOSYSTEM_MCP = "mcp"
ECOSYSTEM_EDITOR_EXTENSION = "editor-extension"
ECOSYSTEM_BROWSER_EXTENSION = "browser-extension"
ECOSYSTEM_HOMEBREW = "homebrew"

_SUPPORTED_ECOSYSTEMS: tuple[str, ...] = (
    ECOSYSTEM_NPM,
    ECOSYSTEM_PYPI,
    ECOSYSTEM_GO,
    ECOSYSTEM_RUBYGEMS,
    ECOSYSTEM_PACKAGIST,
    ECOSYSTEM_MCP,
    ECOSYSTEM_EDITOR_EXTENSION,
    ECOSYSTEM_BROWSER_EXTENSION,
    ECOSYSTEM_HOMEBREW,
)

# Root kinds classify why a scan root is being walked.
ROOT_KIND_GLOBAL_PACKAGE = "global_package_root"
ROOT_KIND_USER_PACKAGE = "user_package_root"
ROOT_KIND_PROJECT = "project_root"
ROOT_KIND_EDITOR_EXTENSION = "editor_extension_root"
ROOT_KIND_BROWSER_EXTENSION = "browser_extension_root"
ROOT_KIND_MCP_CONFIG = "mcp_config_root"
ROOT_KIND_HOMEBREW = "homebrew_root"
ROOT_KIND_DEEP_HOME = "deep_home_root"
ROOT_KIND_UNKNOWN = "unknown"


def supported_ecosystems() -> list[str]:
    """Return the emitted ecosystem values, in canonical order."""
    return list(_SUPPORTED_ECOSYSTEMS)


def is_supported_ecosystem(ecosystem: str) -> bool:
    """Report whether ecosystem is a recognized emitted value."""
    return ecosystem in _SUPPORTED_ECOSYSTEMS


def _format_bool(value: bool | None) -> str:
    """Render a possibly-absent boolean as used in identity tuples."""
    if value is None:
        return ""
    return "true" if value else "false"


def _join(parts: list[str]) -> str:
    return "\x1e".join(parts)


def _stable_id(record_type: str, parts: list[str]) -> str:
    canonical = record_type + "\x00" + _join(parts)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{record_type}:{digest}"


def _set_if(out: dict[str, Any], key: str, value: Any) -> None:
    """Add key only when value is non-empty (JSON omitempty semantics)."""
    if value:
        out[key] = value


@dataclass
class Endpoint:
    """Identity of the host on which the scan ran."""

    hostname: str = ""
    os: str = ""
    arch: str = ""
    username: str = ""
    uid: str = ""
    device_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "hostname": self.hostname,
            "os": self.os,
            "arch": self.arch,
            "username": self.username,
            "uid": self.uid,
        }
        _set_if(out, "device_id", self.device_id)
        return out


@dataclass
class Record:
    """One discovered package observation."""

    record_type: str = ""
    record_id: str = ""
    schema_version: str = ""
    scanner_name: str = ""
    scanner_version: str = ""
    run_id: str = ""
    scan_time: str = ""
    endpoint: Endpoint = field(default_factory=Endpoint)
    profile: str = ""
    ecosystem: str = ""
    package_name: str = ""
    normalized_name: str = ""
    version: str = ""
    project_path: str = ""
    root_kind: str = ""
    install_scope: str = ""
    package_manager: str = ""
    source_type: str = ""
    source_file: str = ""
    direct_dependency: bool | None = None
    has_lifecycle_scripts: bool = False
    lifecycle_scripts: list[str] = field(default_factory=list)
    confidence: str = ""
    requested_spec: str = ""
    server_name: str = ""

    def stable_id(self) -> str:
        """Canonical record_id for a package record."""
        return _stable_id(
            RECORD_TYPE_PACKAGE,
            [
                self.profile,
                self.ecosystem,
                self.normalized_name,
                self.version,
                self.project_path,
                self.root_kind,
                self.install_scope,
                self.package_manager,
                self.source_type,
                self.source_file,
                _format_bool(self.direct_dependency),
                _format_bool(self.has_lifecycle_scripts),
                _join(sorted(self.lifecycle_scripts)),
                self.confidence,
                self.requested_spec,
                self.server_name,
            ],
        )

    def dedup_key(self) -> str:
        """Identity used to collapse duplicate observations within a run."""
        return self.stable_id()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "record_type": self.record_type,
            "record_id": self.record_id,
            "schema_version": self.schema_version,
            "scanner_name": self.scanner_name,
            "scanner_version": self.scanner_version,
            "run_id": self.run_id,
            "scan_time": self.scan_time,
            "endpoint": self.endpoint.to_dict(),
            "profile": self.profile,
            "ecosystem": self.ecosystem,
            "package_name": self.package_name,
            "normalized_name": self.normalized_name,
            "version": self.version,
        }
        _set_if(out, "project_path", self.project_path)
        _set_if(out, "root_kind", self.root_kind)
        _set_if(out, "install_scope", self.install_scope)
        _set_if(out, "package_manager", self.package_manager)
        out["source_type"] = self.source_type
        out["source_file"] = self.source_file
        if self.direct_dependency is not None:
            out["direct_dependency"] = self.direct_dependency
        out["has_lifecycle_scripts"] = self.has_lifecycle_scripts
        _set_if(out, "lifecycle_scripts", list(self.lifecycle_scripts))
        out["confidence"] = self.confidence
        _set_if(out, "requested_spec", self.requested_spec)
        _set_if(out, "server_name", self.server_name)
        return out


@dataclass
class Finding:
    """An exposure-catalog match against a discovered package."""

    record_type: str = ""
    record_id: str = ""
    schema_version: str = ""
    scanner_name: str = ""
    scanner_version: str = ""
    run_id: str = ""
    scan_time: str = ""
    endpoint: Endpoint = field(default_factory=Endpoint)
    profile: str = ""
    finding_type: str = ""
    severity: str = ""
    catalog_id: str = ""
    catalog_name: str = ""
    ecosystem: str = ""
    package_name: str = ""
    normalized_name: str = ""
    version: str = ""
    root_kind: str = ""
    project_path: str = ""
    source_type: str = ""
    source_file: str = ""
    confidence: str = ""
    evidence: str = ""

    def stable_id(self) -> str:
        """Canonical record_id for a finding record."""
        return _stable_id(
            RECORD_TYPE_FINDING,
            [
                self.profile,
                self.finding_type,
                self.catalog_id,
                self.ecosystem,
                self.normalized_name,
                self.version,
                self.root_kind,
                self.project_path,
                self.source_type,
                self.source_file,
                self.confidence,
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "record_type": self.record_type,
            "record_id": self.record_id,
            "schema_version": self.schema_version,
            "scanner_name": self.scanner_name,
            "scanner_version": self.scanner_version,
            "run_id": self.run_id,
            "scan_time": self.scan_time,
            "endpoint": self.endpoint.to_dict(),
            "profile": self.profile,
            "finding_type": self.finding_type,
        }
        _set_if(out, "severity", self.severity)
        out["catalog_id"] = self.catalog_id
        _set_if(out, "catalog_name", self.catalog_name)
        out["ecosystem"] = self.ecosystem
        out["package_name"] = self.package_name
        out["normalized_name"] = self.normalized_name
        out["version"] = self.version
        _set_if(out, "root_kind", self.root_kind)
        _set_if(out, "project_path", self.project_path)
        out["source_type"] = self.source_type
        out["source_file"] = self.source_file
        out["confidence"] = self.confidence
        _set_if(out, "evidence", self.evidence)
        return out


@dataclass
class SummaryRoot:
    """One scanned root: its path and the kind that drove its inclusion."""

    path: str = ""
    kind: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "kind": self.kind}


@dataclass
class ScanSummary:
    """Per-run terminator record emitted after all package records."""

    record_type: str = ""
    record_id: str = ""
    schema_version: str = ""
    scanner_name: str = ""
    scanner_version: str = ""
    run_id: str = ""
    scan_time: str = ""
    end_time: str = ""
    endpoint: Endpoint = field(default_factory=Endpoint)
    profile: str = ""
    status: str = ""
    roots: list[SummaryRoot] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    package_records_emitted: int = 0
    package_records_suppressed: int = 0
    findings_emitted: int = 0
    duplicates: int = 0
    diagnostics_count: int = 0
    files_considered: int = 0
    timed_out: bool = False
    duration_ms: int = 0
    http_batches_attempted: int = 0
    http_batches_succeeded: int = 0
    http_batches_failed: int = 0
    http_last_status: int = 0
    error: str = ""

    def _canonical_counts(self) -> str:
        return _join([f"{key}\x1f{self.counts[key]}" for key in sorted(self.counts)])

    def stable_id(self) -> str:
        """Canonical record_id for a scan summary record."""
        root_parts = [f"{root.path}\x1f{root.kind}" for root in self.roots]
        return _stable_id(
            RECORD_TYPE_SCAN_SUMMARY,
            [
                self.profile,
                self.status,
                self.scan_time,
                self.end_time,
                _join(root_parts),
                self._canonical_counts(),
                str(self.package_records_emitted),
                str(self.package_records_suppressed),
                str(self.findings_emitted),
                str(self.duplicates),
                str(self.diagnostics_count),
                str(self.files_considered),
                _format_bool(self.timed_out),
                str(self.duration_ms),
                str(self.http_batches_attempted),
                str(self.http_batches_succeeded),
                str(self.http_batches_failed),
                str(self.http_last_status),
                self.error,
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "record_type": self.record_type,
            "record_id": self.record_id,
            "schema_version": self.schema_version,
            "scanner_name": self.scanner_name,
            "scanner_version": self.scanner_version,
            "run_id": self.run_id,
            "scan_time": self.scan_time,
            "end_time": self.end_time,
            "endpoint": self.endpoint.to_dict(),
            "profile": self.profile,
            "status": self.status,
        }
        _set_if(out, "roots", [root.to_dict() for root in self.roots])
        _set_if(out, "counts", dict(self.counts))
        out["package_records_emitted"] = self.package_records_emitted
        _set_if(out, "package_records_suppressed", self.package_records_suppressed)
        out["findings_emitted"] = self.findings_emitted
        out["duplicates"] = self.duplicates
        out["diagnostics_count"] = self.diagnostics_count
        out["files_considered"] = self.files_considered
        out["timed_out"] = self.timed_out
        out["duration_ms"] = self.duration_ms
        _set_if(out, "http_batches_attempted", self.http_batches_attempted)
        _set_if(out, "http_batches_succeeded", self.http_batches_succeeded)
        _set_if(out, "http_batches_failed", self.http_batches_failed)
        _set_if(out, "http_last_status", self.http_last_status)
        _set_if(out, "error", self.error)
        return out


@dataclass
class Diagnostic:
    """A scanner-side error or skipped-file event."""

    record_type: str = ""
    record_id: str = ""
    run_id: str = ""
    time: str = ""
    level: str = ""
    path: str = ""
    message: str = ""

    def stable_id(self) -> str:
        """Canonical record_id for a diagnostic record."""
        return _stable_id(RECORD_TYPE_DIAGNOSTIC, [self.level, self.path, self.message])

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "record_type": self.record_type,
            "record_id": self.record_id,
            "run_id": self.run_id,
            "time": self.time,
            "level": self.level,
        }
        _set_if(out, "path", self.path)
        out["message"] = self.message
        return out