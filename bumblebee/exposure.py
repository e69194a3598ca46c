"""Operator-supplied package exposure catalogs and exact-version matching.

A catalog lists (ecosystem, package, versions) tuples whose presence on an
endpoint is the signal of interest, typically taken from a supply-chain
compromise advisory. A package record matches an entry when the ecosystem
and normalized name are equal and the record's version equals one of the
entry's versions.
"""

from __future__ import annotations

import dataclasses
import json
import os
import stat
from dataclasses import dataclass, field
from typing import Any

from bumblebee import normalize
from bumblebee.model import SCHEMA_VERSION, Record

__all__ = [
    "CatalogError",
    "Entry",
    "Match",
    "Catalog",
    "load",
    "load_file",
    "parse",
]


class CatalogError(ValueError):
    """Raised when an exposure catalog cannot be read or is invalid."""


@dataclass
class Entry:
    """One exposure catalog item.

    ``id``, ``ecosystem``, ``package`` and ``versions`` are required.
    ``name`` and ``severity`` are free-form labels echoed onto findings.
    """

    id: str = ""
    ecosystem: str = ""
    package: str = ""
    versions: list[str] = field(default_factory=list)
    name: str = ""
    severity: str = ""
    normalized: str = field(default="", init=False, repr=False, compare=False)


@dataclass(frozen=True)
class Match:
    """A matched catalog entry and the version string that matched."""

    entry: Entry
    version: str


class Catalog:
    """A parsed exposure catalog; read-only once built."""

    def __init__(self, schema_version: str = "", entries: list[Entry] | None = None) -> None:
        self.schema_version = schema_version
        self.entries: list[Entry] = list(entries or [])
        self._index: dict[tuple[str, str], list[Entry]] = {}
        for entry in self.entries:
            self._index.setdefault((entry.ecosystem, entry.normalized), []).append(entry)

    def match(self, record: Record) -> tuple[Entry | None, str]:
        """Return the first matching entry and version, or (None, "")."""
        hits = self.match_all(record)
        if not hits:
            return None, ""
        return hits[0].entry, hits[0].version

    def match_all(self, record: Record) -> list[Match]:
        """Return every matching entry, in catalog load order."""
        candidates = self._index.get((record.ecosystem, record.normalized_name), [])
        return [
            Match(entry=entry, version=record.version)
            for entry in candidates
            if record.version in entry.versions
        ]

    def __len__(self) -> int:
        return len(self.entries)


def load(path: str | os.PathLike[str], max_size: int = 0) -> Catalog:
    """Load a catalog from a file, or merge every *.json file in a directory.

    Directory mode is non-recursive, loads files in name order and requires
    all files to agree on schema_version. ``max_size`` applies per file.
    """
    try:
        info = os.stat(path)
    except OSError as exc:
        raise CatalogError(f"read exposure catalog: {exc}") from exc
    if not stat.S_ISDIR(info.st_mode):
        return load_file(path, max_size)
    return _load_dir(os.fspath(path), max_size)


def _load_dir(path: str, max_size: int) -> Catalog:
    try:
        with os.scandir(path) as it:
            # is_dir() follows symlinks, so a symlink to a directory is
            # skipped; dangling links fall through and fail by name.
            names = sorted(
                entry.name
                for entry in it
                if entry.name.lower().endswith(".json") and not _is_dir(entry)
            )
    except OSError as exc:
        raise CatalogError(f"read exposure catalog dir {path}: {exc}") from exc

    combined: list[Entry] = []
    schema_version = ""
    first_source = ""
    for name in names:
        sub = os.path.join(path, name)
        try:
            catalog = load_file(sub, max_size)
        except CatalogError as exc:
            raise CatalogError(f"exposure catalog {sub}: {exc}") from exc
        if not schema_version:
            schema_version = catalog.schema_version
            first_source = sub
        elif catalog.schema_version and catalog.schema_version != schema_version:
            raise CatalogError(
                f"exposure catalog {sub} declares schema_version "
                f"{catalog.schema_version!r} which conflicts with "
                f"{schema_version!r} from {first_source}"
            )
        combined.extend(catalog.entries)
    if not schema_version:
        return Catalog()
    return _build(schema_version, combined)


def _is_dir(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_dir()
    except OSError:
        return False


def load_file(path: str | os.PathLike[str], max_size: int = 0) -> Catalog:
    """Read and parse a single JSON catalog file.

    ``max_size`` bounds the file size in bytes; 0 or less means unbounded.
    """
    try:
        info = os.stat(path)
    except OSError as exc:
        raise CatalogError(f"read exposure catalog: {exc}") from exc
    if not stat.S_ISREG(info.st_mode):
        raise CatalogError("read exposure catalog: not a regular file")
    if max_size > 0 and info.st_size > max_size:
        raise CatalogError(
            f"exposure catalog {os.fspath(path)} exceeds max size {max_size} bytes "
            f"(file is {info.st_size})"
        )
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise CatalogError(f"read exposure catalog: {exc}") from exc
    return parse(data)


def parse(data: bytes | str) -> Catalog:
    """Build a catalog from raw JSON.

    The root must be an object carrying both ``schema_version`` and
    ``entries``. Empty or whitespace-only input yields an empty catalog.
    """
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CatalogError(f"parse exposure catalog: {exc}") from exc
    else:
        text = data
    trimmed = text.strip()
    if not trimmed:
        return Catalog()
    if not trimmed.startswith("{"):
        raise CatalogError(
            "parse exposure catalog: root must be a JSON object with "
            "'schema_version' and 'entries' keys"
        )
    try:
        raw = json.loads(trimmed)
    except json.JSONDecodeError as exc:
        raise CatalogError(f"parse exposure catalog: {exc}") from exc
    if not isinstance(raw, dict):
        raise CatalogError("parse exposure catalog: root must be a JSON object")
    if "schema_version" not in raw:
        raise CatalogError("parse exposure catalog: missing required field 'schema_version'")
    if "entries" not in raw:
        raise CatalogError("parse exposure catalog: missing required field 'entries'")

    schema_version = _string_field(raw, "schema_version", "catalog")
    raw_entries = raw["entries"]
    if raw_entries is None:
        raw_entries = []
    if not isinstance(raw_entries, list):
        raise CatalogError("parse exposure catalog: 'entries' must be an array")
    entries = [_entry_from_json(item, i) for i, item in enumerate(raw_entries)]

    _validate_schema_version(schema_version)
    return _build(schema_version, entries)


def _string_field(obj: dict[str, Any], key: str, where: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CatalogError(f"parse exposure catalog: {where} field {key!r} must be a string")
    return value


def _entry_from_json(item: Any, index: int) -> Entry:
    if item is None:
        return Entry()
    if not isinstance(item, dict):
        raise CatalogError(f"parse exposure catalog: entry {index} must be an object")
    where = f"entry {index}"
    versions = item.get("versions")
    if versions is None:
        versions = []
    if not isinstance(versions, list) or not all(isinstance(v, str) for v in versions):
        raise CatalogError(
            f"parse exposure catalog: {where} field 'versions' must be an array of strings"
        )
    return Entry(
        id=_string_field(item, "id", where),
        ecosystem=_string_field(item, "ecosystem", where),
        package=_string_field(item, "package", where),
        versions=list(versions),
        name=_string_field(item, "name", where),
        severity=_string_field(item, "severity", where),
    )


def _build(schema_version: str, entries: list[Entry]) -> Catalog:
    built: list[Entry] = []
    for i, entry in enumerate(entries):
        if not entry.id:
            raise CatalogError(f"catalog entry {i}: missing id")
        if not entry.ecosystem:
            raise CatalogError(f"catalog entry {entry.id!r}: missing ecosystem")
        if not entry.package:
            raise CatalogError(f"catalog entry {entry.id!r}: missing package")
        if not entry.versions:
            raise CatalogError(
                f"catalog entry {entry.id!r}: at least one version is required "
                "(v0.1 only supports exact-version matching)"
            )
        copy = dataclasses.replace(entry, versions=list(entry.versions))
        copy.normalized = _normalize_name(entry.ecosystem, entry.package)
        built.append(copy)
    return Catalog(schema_version, built)


def _validate_schema_version(version: str) -> None:
    version = version.strip()
    if not version:
        raise CatalogError(
            f"exposure catalog schema_version is required (supported: {SCHEMA_VERSION!r})"
        )
    if version != SCHEMA_VERSION:
        raise CatalogError(
            f"unsupported exposure catalog schema_version {version!r} "
            f"(supported: {SCHEMA_VERSION!r})"
        )


def _normalize_name(ecosystem: str, name: str) -> str:
    if ecosystem == "pypi":
        return normalize.pypi(name)
    if ecosystem == "npm":
        return normalize.npm(name)
    return name.strip().lower()