import os

from bumblebee.walk import DEFAULT_EXCLUDES, Options, SkipDir, walk


def _write(path, body="{}"):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(body)


def _file_collector(seen):
    def visit(path, entry):
        if not entry.is_dir():
            seen.append(path)

    return visit


def test_default_excludes_cover_protected_macos_library_paths(tmp_path):
    protected = [
        "Library/ContainerManager",
        "Library/Daemon Containers",
        "Library/DoNotDisturb",
        "Library/DuetExpertCenter",
        "Library/IntelligencePlatform",
        "Library/Photos",
        "Library/Sharing",
        "Library/Shortcuts",
        "Library/StatusKit",
    ]
    root = str(tmp_path)
    for rel in protected:
        _write(os.path.join(root, *rel.split("/"), "inside.json"))
    control = os.path.join(root, "Library", "Python", "keep.json")
    _write(control)

    seen = []
    walk(Options(roots=[root], excludes=list(DEFAULT_EXCLUDES)), _file_collector(seen))
    assert seen == [control]


def test_walk_skips_excluded_library_subtrees(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "Library", "ContainerManager", "deep", "secret.json"))
    _write(os.path.join(root, "Library", "StatusKit", "x"))
    _write(os.path.join(root, "code", "proj", "package-lock.json"))

    seen = []
    walk(Options(roots=[root], excludes=list(DEFAULT_EXCLUDES)), _file_collector(seen))

    leaked = [
        p for p in seen if os.path.basename(os.path.dirname(p)) in ("deep", "StatusKit")
    ]
    assert leaked == []
    assert seen == [os.path.join(root, "code", "proj", "package-lock.json")]


def test_basename_exclude_prunes_subtree(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "a", ".git", "config"))
    _write(os.path.join(root, "a", "keep.txt"))
    seen = []
    walk(Options(roots=[root], excludes=[".git"]), _file_collector(seen))
    assert seen == [os.path.join(root, "a", "keep.txt")]


def test_entries_visited_in_name_order(tmp_path):
    root = str(tmp_path)
    for name in ("c.txt", "a.txt", "b.txt"):
        _write(os.path.join(root, name))
    seen = []
    walk(Options(roots=[root]), _file_collector(seen))
    assert [os.path.basename(p) for p in seen] == ["a.txt", "b.txt", "c.txt"]


def test_missing_root_reports_error_once(tmp_path):
    missing = str(tmp_path / "does-not-exist")
    errors = []
    visited = []
    walk(
        Options(roots=[missing], on_error=lambda p, e: errors.append((p, e))),
        lambda p, d: visited.append(p),
    )
    assert visited == []
    assert len(errors) == 1
    assert errors[0][0] == missing
    assert isinstance(errors[0][1], FileNotFoundError)


def test_skipdir_on_directory_skips_subtree(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "skipme", "inner.txt"))
    _write(os.path.join(root, "other", "kept.txt"))
    seen = []

    def visit(path, entry):
        if entry.is_dir() and entry.name == "skipme":
            raise SkipDir()
        if not entry.is_dir():
            seen.append(path)

    walk(Options(roots=[root]), visit)
    assert seen == [os.path.join(root, "other", "kept.txt")]


def test_skipdir_on_file_skips_remaining_siblings(tmp_path):
    root = str(tmp_path)
    for name in ("a.txt", "b.txt", "c.txt"):
        _write(os.path.join(root, "d", name))
    _write(os.path.join(root, "z.txt"))
    visited = []

    def visit(path, entry):
        visited.append((path, entry.is_dir()))
        if entry.name == "b.txt":
            raise SkipDir()

    walk(Options(roots=[root]), visit)
    assert visited == [
        (root, True),
        (os.path.join(root, "d"), True),
        (os.path.join(root, "d", "a.txt"), False),
        (os.path.join(root, "d", "b.txt"), False),
        (os.path.join(root, "z.txt"), False),
    ]


def test_visitor_error_goes_to_on_error_and_walk_continues(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "bad.txt"))
    _write(os.path.join(root, "good.txt"))
    errors = []
    seen = []

    def visit(path, entry):
        if entry.is_dir():
            return
        seen.append(entry.name)
        if entry.name == "bad.txt":
            raise ValueError("boom")

    walk(Options(roots=[root], on_error=lambda p, e: errors.append((p, e))), visit)
    assert seen == ["bad.txt", "good.txt"]
    assert len(errors) == 1
    assert errors[0][0] == os.path.join(root, "bad.txt")
    assert isinstance(errors[0][1], ValueError)


def test_file_root_is_visited(tmp_path):
    path = str(tmp_path / ".claude.json")
    _write(path)
    visited = []
    walk(Options(roots=[path]), lambda p, d: visited.append((p, d.name, d.is_dir())))
    assert visited == [(path, ".claude.json", False)]


def test_directory_symlink_is_not_descended(tmp_path):
    root = str(tmp_path)
    target = os.path.join(root, "target")
    _write(os.path.join(target, "file.txt"))
    link = os.path.join(root, "link")
    os.symlink(target, link)
    visited = []
    walk(Options(roots=[root]), lambda p, d: visited.append((p, d.is_dir())))
    paths = [p for p, _ in visited]
    assert os.path.join(target, "file.txt") in paths
    assert (link, False) in visited
    assert not any(p.startswith(link + os.sep) for p in paths)


def test_overlapping_roots_visit_files_once(tmp_path):
    root = str(tmp_path)
    _write(os.path.join(root, "proj", "yarn.lock"))
    seen = []
    walk(Options(roots=[root, root]), _file_collector(seen))
    assert seen == [os.path.join(root, "proj", "yarn.lock")]