"""Scanner for yarn.lock files (Yarn Classic v1 and Yarn Berry v2+).

Both formats are indentation based; Berry adds a leading ``__metadata``
block. Entry headers are top-level lines ending in ``:`` that list one or
more ``name@spec`` descriptors, followed by indented ``version`` lines.
"""

from __future__ import annotations

import dataclasses
import json
import os
import stat
from collections.abc import Callable
from dataclasses import dataclass

from bumblebee import normalize
from bumblebee.model import ECOSYSTEM_NPM, Record

__all__ = [
    "ECOSYSTEM",
    "Scanner",
    "is_lockfile",
    "name_from_yarn_header",
    "parse_yarn_lock",
]

ECOSYSTEM = ECOSYSTEM_NPM

_MAX_LINE = 4 * 1024 * 1024
_DEP_SECTIONS = (
    "dependencies",
    "devDependencies",
    "optionalDependencies",
    "peerDependencies",
)

DiagFunc = Callable[[str, str, str], None]


def is_lockfile(base: str) -> bool:
    """Report whether a file basename is a yarn lockfile."""
    return base == "yarn.lock"


@dataclass
class Scanner:
    """Emits one npm package record per yarn.lock entry."""

    max_file_size: int = 0
    emit: Callable[[Record], None] = lambda record: None
    diag: DiagFunc | None = None

    def scan_lockfile(self, path: str, base: Record) -> None:
        """Parse the lockfile at path and emit a record per resolved entry."""
        data = self._read_bounded(path)
        project_path = os.path.dirname(path)
        directs = _load_direct_deps(
            os.path.join(project_path, "package.json"), self.max_file_size, self.diag
        )
        for name, version in parse_yarn_lock(data):
            if not name or not version:
                continue
            record = dataclasses.replace(
                base,
                lifecycle_scripts=list(base.lifecycle_scripts),
                ecosystem=ECOSYSTEM,
                package_name=name,
                normalized_name=normalize.npm(name),
                version=version,
                project_path=project_path,
                package_manager="yarn",
                source_type="yarn-lockfile",
                source_file=path,
                confidence="high",
            )
            if directs is not None:
                record.direct_dependency = name in directs
            self.emit(record)

    def _read_bounded(self, path: str) -> bytes:
        with open(path, "rb") as fh:
            info = os.fstat(fh.fileno())
            if not stat.S_ISREG(info.st_mode):
                raise OSError("not a regular file")
            if self.max_file_size > 0 and info.st_size > self.max_file_size:
                if self.diag is not None:
                    self.diag(
                        "warn",
                        path,
                        f"skipping: size {info.st_size} exceeds max {self.max_file_size}",
                    )
                raise OSError(f"file {path} exceeds max size {self.max_file_size}")
            return fh.read()


def _load_direct_deps(path: str, max_size: int, diag: DiagFunc | None) -> set[str] | None:
    """Names in any top-level dependency section of a sibling package.json.

    Returns None when the file is missing, oversized or unusable; read and
    parse failures of an existing file are reported through diag.
    """
    try:
        info = os.stat(path)
    except OSError:
        return None
    if not stat.S_ISREG(info.st_mode):
        return None
    if max_size > 0 and info.st_size > max_size:
        if diag is not None:
            diag(
                "warn",
                path,
                "skipping direct-dependency resolution: package.json exceeds max file size",
            )
        return None
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        if diag is not None:
            diag("warn", path, f"read package.json for direct-dependency resolution: {exc}")
        return None
    try:
        return _dependency_names(data)
    except ValueError as exc:
        if diag is not None:
            diag("warn", path, f"parse package.json for direct-dependency resolution: {exc}")
        return None


def _dependency_names(data: bytes) -> set[str]:
    doc = json.loads(data.decode("utf-8"))
    if doc is None:
        return set()
    if not isinstance(doc, dict):
        raise ValueError("package.json root must be a JSON object")
    names: set[str] = set()
    for section in _DEP_SECTIONS:
        deps = doc.get(section)
        if deps is None:
            continue
        if not isinstance(deps, dict) or not all(isinstance(v, str) for v in deps.values()):
            raise ValueError(f"{section} must be an object of strings")
        names.update(deps)
    return names


def parse_yarn_lock(data: bytes | str) -> list[tuple[str, str]]:
    """Return (name, version) for every complete entry, in file order."""
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    out: list[tuple[str, str]] = []
    name: str | None = None
    version = ""

    for raw in text.split("\n"):
        if raw.endswith("\r"):
            raw = raw[:-1]
        if len(raw) >= _MAX_LINE:
            break
        if raw.startswith("#") or not raw.strip():
            continue
        if not raw.startswith((" ", "\t")):
            if not raw.endswith(":"):
                continue
            if name and version:
                out.append((name, version))
            name, version = None, ""
            header_name = name_from_yarn_header(raw[:-1])
            if header_name != "__metadata":
                name = header_name
            continue
        if name is None:
            continue
        line = raw.strip()
        if line.startswith("version ") or line.startswith("version:"):
            version = _unquote(_trim_field(line, "version"))
    if name and version:
        out.append((name, version))
    return out


def _trim_field(line: str, key: str) -> str:
    if line.startswith(key):
        line = line[len(key):]
    value = line.strip()
    if value.startswith(":"):
        value = value[1:]
    return value.strip()


def name_from_yarn_header(header: str) -> str:
    """Extract the package name from a lockfile entry header.

    Only the first descriptor counts; descriptors are separated by ", "
    and commas inside a leading quoted region are ignored.
    """
    header = header.strip()
    if header and header[0] in "\"'":
        quote = header[0]
        end = -1
        i = 1
        while i < len(header):
            c = header[i]
            if c == "\\" and i + 1 < len(header):
                i += 2
                continue
            if c == quote:
                end = i
                break
            i += 1
        header = header[1:end] if end > 0 else header.strip("\"'")
    sep = header.find(", ")
    if sep >= 0:
        header = header[:sep]
    header = header.strip().strip("\"'")
    if header.startswith("@"):
        slash = header.find("/")
        if slash >= 0:
            at = header.find("@", slash)
            if at >= 0:
                return header[:at]
        return header
    at = header.find("@")
    if at >= 0:
        return header[:at]
    return header


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value