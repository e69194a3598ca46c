# bumblebee

A read-only package inventory library. It walks a set of filesystem roots,
finds `yarn.lock` files, and emits one NDJSON record for each package they
resolve. Records can be checked against an exposure catalog that you supply.
Each hit becomes a `finding` record on the same stream.

The scanner only reads files. Credential directories (`.ssh`, `.aws`,
`.gnupg`, ...), large caches and protected macOS `Library` subtrees are
excluded by default (`bumblebee.walk.DEFAULT_EXCLUDES`). Directory symlinks
are never followed. Files named `.env` or `.envrc` are never dispatched.

It has no runtime dependencies beyond the standard library.

## Modules

- `bumblebee.model`: the record schema. This covers the dataclasses
  `Endpoint`, `Record`, `Finding`, `ScanSummary`, `SummaryRoot` and
  `Diagnostic`, each with `to_dict()`, and `stable_id()` on the record
  types. It also holds constants for record types, profiles, ecosystems and
  root kinds, plus `supported_ecosystems()` and `is_supported_ecosystem()`.
- `bumblebee.normalize`: `npm(name)` and `pypi(name)` name normalization.
- `bumblebee.endpoint`: `current(device_id)` returns an `Endpoint` for this
  host. It fills in hostname, OS, architecture, username and uid.
- `bumblebee.exposure`: exposure catalogs. It provides `parse`,
  `load_file`, `load`, `Catalog`, `Entry`, `Match` and `CatalogError`.
- `bumblebee.walk`: the bounded filesystem walker. It provides
  `walk(options, visit)`, `Options`, `SkipDir` and `DEFAULT_EXCLUDES`.
- `bumblebee.yarn`: the `yarn.lock` parser and `Scanner`. It covers Yarn
  Classic and Berry.
- `bumblebee.output`: `Emitter`, which writes NDJSON records and
  diagnostics, and `SinkStats`.
- `bumblebee.httpsink`: `HTTPSink`, a batching HTTP(S) records writer.
- `bumblebee.scanner`: `run(config)`, which performs a scan. It also
  provides `Config`, `Root`, `Result` and `new_root_kind_lookup`.

## Running a scan

```python
import sys

from bumblebee import endpoint, exposure, model, scanner
from bumblebee.output import Emitter

emitter = Emitter(sys.stdout, sys.stderr, "run-1")
result = scanner.run(
    scanner.Config(
        emitter=emitter,
        profile=model.PROFILE_PROJECT,
        roots=[scanner.Root("/home/alice/code", model.ROOT_KIND_PROJECT)],
        max_file_size=5 * 1024 * 1024,
        max_duration=300,          # seconds; 0 means unbounded
        concurrency=4,             # worker threads; below 1 means 4
        catalog=exposure.load("catalogs/", 1 << 20),
        base_record=model.Record(
            schema_version=model.SCHEMA_VERSION,
            scanner_name=model.SCANNER_NAME,
            run_id="run-1",
            endpoint=endpoint.current(""),
        ),
    )
)
emitter.close()
print(result.records_emitted, result.findings_emitted, result.timed_out)
```

Each record receives the `root_kind` of the longest configured root that
contains its source file. The `profile` comes from the config.

- `ecosystems` limits dispatch to the listed ecosystems. Leave it empty to
  enable all of them.
- `findings_only=True` still evaluates every package record against the
  catalog but writes only the findings. Suppressed records are counted in
  `Result.package_records_suppressed`.
- `excludes` adds to `DEFAULT_EXCLUDES`. An exclude matches a directory by
  basename. An exclude containing a path separator matches any path that
  ends in those components.

Walk errors are reported as diagnostics. A permission denial is reported at
level `debug`, a missing path at `info`, and anything else at `warn`. A
scanner failure on a file is reported at level `error`. If writing a record
fails, the scan stops and `run` raises that error once the workers have
finished.

## What it produces

Every line on the records stream is a JSON object with a `record_type`:

- `package`: one observed package, with its ecosystem, name, normalized
  name, version, source file, root kind and so on.
- `finding`: an exact `(ecosystem, normalized name, version)` match
  against an exposure catalog entry. One finding is written for every
  matching entry.
- `scan_summary`: written by `Emitter.emit_summary(model.ScanSummary(...))`.

Diagnostics go to the diagnostics writer as `diagnostic` records. They are
never mixed into the records stream.

Package records are deduplicated within an emitter by `record_id`. This id
is a SHA-256 over the record's identity fields, so the same package seen
from the same source gets the same id across runs and hosts.
`Emitter.records_emitted`, `duplicates` and `diagnostics` count what
happened.

## Exposure catalogs

A catalog is a JSON object:

```json
{
  "schema_version": "0.1.0",
  "entries": [
    {
      "id": "adv-evil",
      "name": "evil@1.2.3 backdoor",
      "ecosystem": "npm",
      "package": "evil",
      "versions": ["1.2.3"],
      "severity": "critical"
    }
  ]
}
```

- `schema_version` and `entries` are required. Only `0.1.0` is accepted.
- Each entry needs `id`, `ecosystem`, `package` and at least one version.
- Matching is by exact version only.
- Catalog package names are normalized per ecosystem. PyPI names use
  PEP 503 rules and npm names are lower-cased, so `"Requests"` matches
  `requests`.
- Empty or whitespace-only input is an empty catalog.
- `load(path, max_size)` also accepts a directory. Every `*.json` file
  directly inside it is loaded in name order and merged, and all of them
  must agree on `schema_version`. `max_size` applies to each file; 0 means
  unbounded.
- Invalid input raises `CatalogError`.

```python
from bumblebee import exposure, model

catalog = exposure.load("catalogs/", 1 << 20)
record = model.Record(ecosystem="npm", normalized_name="evil", version="1.2.3")
for hit in catalog.match_all(record):
    print(hit.entry.id, hit.version)
entry, version = catalog.match(record)   # first hit, or (None, "")
```

## Name normalization

```python
from bumblebee import normalize

normalize.pypi("zope.interface")        # "zope-interface"
normalize.npm("@TanStack/Query-Core")   # "@tanstack/query-core"
```

## HTTP delivery

`HTTPSink` can be passed to `Emitter` as the records writer. It buffers
lines and POSTs them in batches as `application/x-ndjson`.

```python
from bumblebee.httpsink import HTTPAuth, HTTPConfig, HTTPSink
from bumblebee.output import Emitter

sink = HTTPSink(HTTPConfig(
    url="https://ingest.example.com/records",
    auth=HTTPAuth(mode="bearer", token="token"),
    batch_size=500,
    gzip=True,
))
emitter = Emitter(sink, sys.stderr, "run-1")
...
emitter.close()          # flushes the last batch
print(emitter.sink_stats())
```

- The default batch size is 500 and the default timeout is 30 seconds.
- `auth.mode` is `none`, `bearer` or `hmac-sha256`.
  - With `hmac-sha256`, the header `X-Inventory-Signature` (or
    `hmac_header`) carries `sha256=<hex>` over the body.
  - If `timestamp_header` is set, that header carries the unix seconds and
    the signature covers `"<seconds>.<body>"`.
- With `gzip=True` the body is compressed and sent with
  `Content-Encoding: gzip`. The signature covers the compressed bytes.
- Plain `http://` is refused for hosts other than loopback unless
  `allow_insecure=True`.
- A failed delivery or a non-2xx response raises `HTTPSinkError`. The
  error is remembered and raised again by later writes and by `close`.
- `stats()` reports the batches attempted, succeeded and failed, and the
  last status code.

## What it does not do

- It ships no command-line tool. Scans are run from Python through
  `bumblebee.scanner.run`.
- `yarn.lock` is the only package source it reads. It does not scan npm or
  pnpm lockfiles, `node_modules`, Python site-packages, Go, Ruby, Composer
  or Homebrew metadata, MCP configs, or editor and browser extensions, even
  though `bumblebee.model` names those ecosystems.
- `run` does not write a `scan_summary`. Build one from the `Result` and
  write it with `Emitter.emit_summary` if your receiver needs it.