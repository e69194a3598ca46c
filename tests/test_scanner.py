import errno
import io
import json
import os
import threading

import pytest

from bumblebee import exposure
from bumblebee.model import (
    ECOSYSTEM_GO,
    FINDING_TYPE_PACKAGE_EXPOSURE,
    PROFILE_BASELINE,
    PROFILE_DEEP,
    PROFILE_PROJECT,
    RECORD_TYPE_DIAGNOSTIC,
    RECORD_TYPE_FINDING,
    RECORD_TYPE_PACKAGE,
    ROOT_KIND_DEEP_HOME,
    ROOT_KIND_PROJECT,
    ROOT_KIND_UNKNOWN,
    ROOT_KIND_USER_PACKAGE,
    SCANNER_NAME,
    SCHEMA_VERSION,
    Record,
)
from bumblebee.output import Emitter
from bumblebee.scanner import (
    Config,
    Root,
    is_expected_access_error,
    is_missing_path_error,
    new_root_kind_lookup,
    run,
)

EVIL_LOCK = """# yarn lockfile v1

evil@^1.2.0:
  version "1.2.3"

safe@^9.0.0:
  version "9.9.9"
"""

FOO_LOCK = """foo@^1.0.0:
  version "1.0.0"
"""


def write_file(path, body):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)


def base_record(run_id):
    return Record(
        schema_version=SCHEMA_VERSION,
        scanner_name=SCANNER_NAME,
        scanner_version="test",
        run_id=run_id,
        scan_time="2024-01-01T00:00:00Z",
    )


def lines(buf):
    return [json.loads(line) for line in buf.getvalue().splitlines() if line.strip()]


def test_finding_emitted_on_catalog_match(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", EVIL_LOCK)
    cat = exposure.parse(
        '{"schema_version":"0.1.0","entries":['
        '{"id":"adv-evil","name":"evil@1.2.3 backdoor","ecosystem":"npm",'
        '"package":"evil","versions":["1.2.3"],"severity":"critical"}]}'
    )
    stdout, stderr = io.StringIO(), io.StringIO()
    em = Emitter(stdout, stderr, "run-find")
    res = run(
        Config(
            emitter=em,
            profile=PROFILE_DEEP,
            roots=[Root(str(root), ROOT_KIND_DEEP_HOME)],
            max_file_size=1 << 20,
            concurrency=2,
            catalog=cat,
            base_record=base_record("run-find"),
        )
    )
    assert res.findings_emitted == 1
    out = lines(stdout)
    findings = [o for o in out if o["record_type"] == RECORD_TYPE_FINDING]
    pkgs = [o for o in out if o["record_type"] == RECORD_TYPE_PACKAGE]
    assert len(findings) == 1
    f = findings[0]
    assert f["record_id"].startswith("finding:")
    assert f["catalog_id"] == "adv-evil"
    assert f["catalog_name"] == "evil@1.2.3 backdoor"
    assert f["normalized_name"] == "evil"
    assert f["version"] == "1.2.3"
    assert f["severity"] == "critical"
    assert f["finding_type"] == FINDING_TYPE_PACKAGE_EXPOSURE
    assert f["profile"] == PROFILE_DEEP
    assert f["root_kind"] == ROOT_KIND_DEEP_HOME
    assert f["run_id"] == "run-find"
    assert "exact name+version" in f["evidence"]
    assert len(pkgs) >= 2


def test_findings_only_suppresses_packages_but_keeps_findings(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", EVIL_LOCK)
    cat = exposure.parse(
        '{"schema_version":"0.1.0","entries":['
        '{"id":"adv-evil","ecosystem":"npm","package":"evil","versions":["1.2.3"]}]}'
    )
    stdout, stderr = io.StringIO(), io.StringIO()
    em = Emitter(stdout, stderr, "run-find")
    res = run(
        Config(
            emitter=em,
            profile=PROFILE_DEEP,
            roots=[Root(str(root), ROOT_KIND_DEEP_HOME)],
            max_file_size=1 << 20,
            concurrency=2,
            catalog=cat,
            findings_only=True,
            base_record=base_record("run-find"),
        )
    )
    assert res.records_emitted == 0
    assert res.package_records_suppressed == 2
    assert res.findings_emitted == 1
    types = [o["record_type"] for o in lines(stdout)]
    assert RECORD_TYPE_PACKAGE not in types
    assert types == [RECORD_TYPE_FINDING]


def test_finding_emitted_per_catalog_entry_when_overlapping(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", 'evil@^1.0.0:\n  version "1.2.3"\n')
    cat_dir = tmp_path / "catalogs"
    cat_dir.mkdir()
    (cat_dir / "adv-a.json").write_text(
        '{"schema_version":"0.1.0","entries":[{"id":"adv-a","name":"campaign A",'
        '"ecosystem":"npm","package":"evil","versions":["1.2.3"],"severity":"critical"}]}'
    )
    (cat_dir / "adv-b.json").write_text(
        '{"schema_version":"0.1.0","entries":[{"id":"adv-b","name":"campaign B",'
        '"ecosystem":"npm","package":"evil","versions":["1.2.3"],"severity":"high"}]}'
    )
    cat = exposure.load(str(cat_dir), 0)
    stdout = io.StringIO()
    em = Emitter(stdout, io.StringIO(), "run-overlap")
    res = run(
        Config(
            emitter=em,
            profile=PROFILE_DEEP,
            roots=[Root(str(root), ROOT_KIND_DEEP_HOME)],
            max_file_size=1 << 20,
            concurrency=2,
            catalog=cat,
            base_record=base_record("run-overlap"),
        )
    )
    assert res.findings_emitted == 2
    findings = [o for o in lines(stdout) if o["record_type"] == RECORD_TYPE_FINDING]
    assert len(findings) == 2
    assert len({f["record_id"] for f in findings}) == 2
    assert {f["catalog_id"] for f in findings} == {"adv-a", "adv-b"}


def test_no_finding_without_catalog(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", 'evil@^1.0.0:\n  version "1.2.3"\n')
    stdout = io.StringIO()
    em = Emitter(stdout, io.StringIO(), "r")
    res = run(
        Config(
            emitter=em,
            profile=PROFILE_PROJECT,
            roots=[Root(str(root), ROOT_KIND_PROJECT)],
            max_file_size=1 << 20,
            concurrency=1,
        )
    )
    assert res.findings_emitted == 0
    types = [o["record_type"] for o in lines(stdout)]
    assert types == [RECORD_TYPE_PACKAGE]


def test_root_kind_stamped_on_records(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", FOO_LOCK)
    stdout = io.StringIO()
    em = Emitter(stdout, io.StringIO(), "r")
    run(
        Config(
            emitter=em,
            profile=PROFILE_BASELINE,
            roots=[Root(str(root), ROOT_KIND_USER_PACKAGE)],
            max_file_size=1 << 20,
            concurrency=1,
        )
    )
    out = lines(stdout)
    assert len(out) == 1
    rec = out[0]
    assert rec["root_kind"] == ROOT_KIND_USER_PACKAGE
    assert rec["profile"] == PROFILE_BASELINE
    assert rec["record_id"].startswith("package:")
    assert rec["package_name"] == "foo"


def test_end_to_end_scan(tmp_path):
    root = tmp_path / "scan"
    lock = 'lodash@^4.17.0:\n  version "4.17.21"\n'
    write_file(root / "proj" / "yarn.lock", lock)
    write_file(root / "dup" / "yarn.lock", lock)
    write_file(root / "proj" / "notes.txt", "hello")
    write_file(root / ".ssh" / "yarn.lock", lock)
    write_file(root / "proj" / ".env", "SECRET=nope")

    stdout, stderr = io.StringIO(), io.StringIO()
    em = Emitter(stdout, stderr, "runtest")
    res = run(
        Config(
            emitter=em,
            profile=PROFILE_PROJECT,
            roots=[Root(str(root), ROOT_KIND_PROJECT)],
            max_file_size=5 * 1024 * 1024,
            concurrency=2,
            base_record=base_record("runtest"),
        )
    )
    records = lines(stdout)
    assert all(r["record_type"] == RECORD_TYPE_PACKAGE for r in records)
    sources = sorted(r["source_file"] for r in records)
    assert sources == sorted(
        [str(root / "dup" / "yarn.lock"), str(root / "proj" / "yarn.lock")]
    )
    assert all(r["source_type"] == "yarn-lockfile" for r in records)
    assert res.records_emitted == len(records) == 2
    assert res.files_considered == 3
    assert res.diagnostics == 0
    assert res.timed_out is False
    assert stderr.getvalue() == ""


def test_missing_root_is_info_level_diagnostic(tmp_path):
    missing = tmp_path / "does-not-exist"
    stderr = io.StringIO()
    em = Emitter(io.StringIO(), stderr, "r")
    run(
        Config(
            emitter=em,
            profile=PROFILE_PROJECT,
            roots=[Root(str(missing), ROOT_KIND_PROJECT)],
            max_file_size=1 << 20,
            concurrency=1,
        )
    )
    diags = [d for d in lines(stderr) if "does-not-exist" in d.get("path", "")]
    assert len(diags) >= 1
    assert all(d["level"] == "info" for d in diags)
    assert all(d["record_type"] == RECORD_TYPE_DIAGNOSTIC for d in diags)


def test_unreadable_lockfile_reports_error_diagnostic(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", FOO_LOCK * 100)
    stdout, stderr = io.StringIO(), io.StringIO()
    em = Emitter(stdout, stderr, "r")
    run(
        Config(
            emitter=em,
            profile=PROFILE_PROJECT,
            roots=[Root(str(root), ROOT_KIND_PROJECT)],
            max_file_size=10,
            concurrency=1,
        )
    )
    levels = sorted(d["level"] for d in lines(stderr))
    assert levels == ["error", "warn"]
    assert stdout.getvalue() == ""


def test_symlink_loop_safety(tmp_path):
    a = tmp_path / "a"
    b = a / "b"
    b.mkdir(parents=True)
    os.symlink(str(a), str(b / "loop"))
    write_file(a / "yarn.lock", FOO_LOCK)
    em = Emitter(io.StringIO(), io.StringIO(), "r")
    outcome = {}

    def target():
        outcome["result"] = run(
            Config(
                emitter=em,
                profile=PROFILE_PROJECT,
                roots=[Root(str(tmp_path), ROOT_KIND_PROJECT)],
                max_file_size=1 << 20,
                max_duration=5.0,
                concurrency=2,
            )
        )

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(10)
    assert not thread.is_alive()
    assert em.records_emitted >= 1
    assert outcome["result"].records_emitted == em.records_emitted


def test_ecosystem_filter_prunes_dispatch(tmp_path):
    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", FOO_LOCK)
    stdout = io.StringIO()
    em = Emitter(stdout, io.StringIO(), "r")
    res = run(
        Config(
            emitter=em,
            profile=PROFILE_PROJECT,
            roots=[Root(str(root), ROOT_KIND_PROJECT)],
            ecosystems={ECOSYSTEM_GO},
            max_file_size=1 << 20,
            concurrency=2,
        )
    )
    assert res.records_emitted == 0
    assert res.files_considered == 1
    assert '"ecosystem":"npm"' not in stdout.getvalue()


def test_emit_failure_is_raised(tmp_path):
    class FailingWriter:
        def write(self, data):
            raise OSError("disk full")

    root = tmp_path / "scan"
    write_file(root / "proj" / "yarn.lock", FOO_LOCK)
    em = Emitter(FailingWriter(), io.StringIO(), "r")
    with pytest.raises(OSError, match="disk full"):
        run(
            Config(
                emitter=em,
                profile=PROFILE_PROJECT,
                roots=[Root(str(root), ROOT_KIND_PROJECT)],
                max_file_size=1 << 20,
                concurrency=1,
            )
        )


def test_root_kind_lookup_prefers_longest_root(tmp_path):
    outer = tmp_path / "a"
    inner = outer / "b"
    lookup = new_root_kind_lookup(
        [Root(str(outer), ROOT_KIND_PROJECT), Root(str(inner), ROOT_KIND_USER_PACKAGE), Root("", "x")]
    )
    assert lookup(str(inner / "c" / "yarn.lock")) == ROOT_KIND_USER_PACKAGE
    assert lookup(str(outer / "x")) == ROOT_KIND_PROJECT
    assert lookup(str(outer)) == ROOT_KIND_PROJECT
    assert lookup(str(tmp_path / "ab")) == ROOT_KIND_UNKNOWN
    assert lookup("") == ROOT_KIND_UNKNOWN


def test_access_error_classification():
    assert is_expected_access_error(PermissionError("denied")) is True
    assert is_expected_access_error(OSError(errno.EPERM, "not permitted")) is True
    assert is_expected_access_error(FileNotFoundError("gone")) is False
    assert is_expected_access_error(None) is False


def test_missing_path_error_classification():
    assert is_missing_path_error(FileNotFoundError("gone")) is True
    assert is_missing_path_error(OSError(errno.ENOENT, "no such file")) is True
    assert is_missing_path_error(PermissionError("denied")) is False
    assert is_missing_path_error(None) is False