"""Bounded, safety-aware filesystem walker.

The walker visits entries under configured roots, applying:

* exclude-directory matching by basename or by trailing path components
* no descent into directory symlinks
* loop protection via visited device/inode tracking

It never opens files itself; visitors decide what to read.
"""

from __future__ import annotations

import itertools
import os
import stat
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

__all__ = ["DEFAULT_EXCLUDES", "SkipDir", "Options", "walk"]

_CREDENTIAL_DIRS = (
    ".git", ".hg", ".svn", ".ssh", ".gnupg", ".aws", ".azure",
    ".config/gcloud", ".kube", ".docker",
)

# macOS Library subtrees that are TCC-protected, OS-managed or irrelevant.
_LIBRARY_SUBDIRS = (
    "Caches",
    *(
        f"Application Support/{browser}"
        for browser in (
            "Google/Chrome", "Chromium", "Firefox", "BraveSoftware",
            "Microsoft Edge", "Vivaldi", "Arc",
        )
    ),
    "Safari", "Containers", "ContainerManager", "Daemon Containers",
    "Group Containers", "Mail", "Messages", "Suggestions", "Trial", "Weather",
    "Metadata", "Biome", "PersonalizationPortrait", "CoreFollowUp", "HomeKit",
    "Mobile Documents", "CloudStorage", "com.apple.aiml.instrumentation",
    "IdentityServices", "Keychains", "Cookies", "HTTPStorages", "WebKit",
    "Autosave Information", "Saved Application State", "DoNotDisturb",
    "DuetExpertCenter", "IntelligencePlatform", "Photos", "Sharing",
    "Shortcuts", "StatusKit", "Accounts", "Assistant", "CallServices",
    "com.apple.icloud.searchpartyd", "FaceTime", "Family", "FrontBoard",
    "Reminders", "Springboard", "Sync Services", "Voice Trigger",
)

# Large OS-managed media libraries.
_MEDIA_LIBRARIES = (
    "Movies/TV", "Music/Music",
    "Pictures/Photos Library.photoslibrary", "Pictures/Photo Booth Library",
)

# Generic caches, build/dependency cache trees and Bazel layouts.
_CACHE_DIRS = (
    ".cache", ".npm/_cacache", ".pnpm-store", ".yarn/cache", ".gradle", ".m2",
    ".ivy2", ".sbt", "__pycache__", ".pytest_cache", ".mypy_cache",
    ".ruff_cache", ".tox", ".venv-cache", ".nox", ".terraform",
    "node_modules/.cache",
    "bazel-cache", "bazel-out", "bazel-bin", "bazel-testlogs", ".bazel-cache",
    ".cache/bazel",
)

# Editor remote-server runtime/state/log subtrees; extensions/ stays scannable.
_EDITOR_SERVERS = (
    ".vscode-server", ".vscode-server-insiders", ".cursor-server", ".windsurf-server",
)
_EDITOR_SERVER_SUBDIRS = ("data", "bin", "cli", "logs")

# Sensitive/credential directories and high-cost caches. Entries holding a
# "/" match any path that ends in that component sequence.
DEFAULT_EXCLUDES: list[str] = [
    *_CREDENTIAL_DIRS,
    *(f"Library/{name}" for name in _LIBRARY_SUBDIRS),
    *_MEDIA_LIBRARIES,
    *_CACHE_DIRS,
    *(
        f"{server}/{sub}"
        for server, sub in itertools.product(_EDITOR_SERVERS, _EDITOR_SERVER_SUBDIRS)
    ),
]


class SkipDir(Exception):
    """Raised by a visitor to skip a directory subtree.

    Raised for a file, it skips the remaining entries of the file's directory.
    """


@dataclass
class Options:
    """Walk configuration; ``on_error`` receives non-fatal errors."""

    roots: list[str] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)
    on_error: Callable[[str, BaseException], None] | None = None


@dataclass(frozen=True)
class _DirEntry:
    name: str
    path: str
    dir: bool
    symlink: bool

    def is_dir(self) -> bool:
        return self.dir

    def is_symlink(self) -> bool:
        return self.symlink


Visitor = Callable[[str, _DirEntry], None]
# Returns True when the entry's subtree (or, for a file, the rest of its
# directory) should be skipped.
_Handler = Callable[[str, "_DirEntry | None", "BaseException | None"], bool]


def walk(options: Options, visit: Visitor) -> None:
    """Traverse every root, calling ``visit(path, entry)`` for each entry.

    Excluded directories are skipped entirely. Errors never stop the walk;
    they are passed to ``options.on_error``.
    """
    excludes = _normalize_excludes(options.excludes)
    seen: set[str] = set()
    for root in options.roots:
        _walk_one(os.path.normpath(root), excludes, seen, options.on_error, visit)


def _walk_one(
    root: str,
    excludes: set[str],
    seen: set[str],
    on_error: Callable[[str, BaseException], None] | None,
    visit: Visitor,
) -> None:
    def handle(path: str, entry: _DirEntry | None, err: BaseException | None) -> bool:
        if err is not None:
            if on_error is not None:
                on_error(path, err)
            return entry is not None and entry.is_dir()
        assert entry is not None
        if entry.is_dir():
            if _is_excluded(path, entry.name, excludes):
                return True
            try:
                if stat.S_ISLNK(os.lstat(path).st_mode):
                    return True
            except OSError:
                pass
            key = _dir_key(path)
            if key is not None:
                if key in seen:
                    return True
                seen.add(key)
        try:
            visit(path, entry)
        except SkipDir:
            return True
        except Exception as exc:  # visitor failures are reported, never fatal
            if on_error is not None:
                on_error(path, exc)
        return False

    _walk_tree(root, handle)


def _walk_tree(root: str, handle: _Handler) -> None:
    try:
        info = os.lstat(root)
    except OSError as exc:
        handle(root, None, exc)
        return
    root_entry = _DirEntry(
        name=os.path.basename(root) or root,
        path=root,
        dir=stat.S_ISDIR(info.st_mode),
        symlink=stat.S_ISLNK(info.st_mode),
    )
    if handle(root, root_entry, None) or not root_entry.is_dir():
        return
    children = _read_dir(root_entry, handle)
    if children is None:
        return
    stack: list[Iterator[_DirEntry]] = [iter(children)]
    while stack:
        child = next(stack[-1], None)
        if child is None:
            stack.pop()
            continue
        skip = handle(child.path, child, None)
        if child.is_dir():
            if skip:
                continue
            grandchildren = _read_dir(child, handle)
            if grandchildren is not None:
                stack.append(iter(grandchildren))
        elif skip:
            stack.pop()


def _read_dir(entry: _DirEntry, handle: _Handler) -> list[_DirEntry] | None:
    try:
        with os.scandir(entry.path) as it:
            raw = sorted(it, key=lambda e: e.name)
        return [
            _DirEntry(
                name=e.name,
                path=os.path.join(entry.path, e.name),
                dir=e.is_dir(follow_symlinks=False),
                symlink=e.is_symlink(),
            )
            for e in raw
        ]
    except OSError as exc:
        handle(entry.path, entry, exc)
        return None


def _dir_key(path: str) -> str | None:
    """Identity of a directory for loop detection: device and inode on POSIX."""
    if os.name != "posix":
        return path
    try:
        info = os.stat(path)
    except OSError:
        return None
    return f"{info.st_dev}:{info.st_ino}"


def _normalize_excludes(excludes: list[str]) -> set[str]:
    return {os.path.normpath(x.strip()) for x in excludes if x.strip()}


def _is_excluded(full_path: str, base: str, excludes: set[str]) -> bool:
    if base in excludes:
        return True
    cleaned = os.path.normpath(full_path)
    return any(
        os.sep in ex and cleaned.endswith(os.sep + ex) for ex in excludes
    )