# iacscan

The engine of an infrastructure-as-code scanner. It finds the files to scan,
loads security queries from a directory tree, runs them over the parsed
documents through a query compiler you supply, turns their results into
vulnerabilities with stable similarity IDs, and summarises a scan by severity.

iacscan has no runtime dependencies and works on Python 3.10 or later.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `iacscan.model`: the data model. `FileKind`, `Severity` and `IssueType`
  enums; the dataclasses `FileMetadata`, `QueryMetadata`, `Vulnerability`,
  `CodeLine`, `VulnerabilityLines`, `QueryConfig`, `ResolvedFile` and
  `ResolvedFiles`; `FileMetadatas`, a list with `to_map()` (file id to
  metadata) and `combine()` (gathers the non-empty documents, tagging each with
  `id` and `file`); `Documents`, with `to_json()` and `from_json()` using the
  key `"document"`; and `Extensions`, a dict with `include(ext)` and
  `matched_files_regex()`.
- `iacscan.summary`: `create_summary(counters, vulnerabilities, scan_id)`
  groups vulnerabilities by query ID into `VulnerableQuery` entries, counts
  them per severity in a `SeveritySummary`, and orders the queries from HIGH
  to INFO, then by query name. `Counters`, `Times` and `Summary` are the other
  report types.
- `iacscan.similarity`: `compute_similarity_id(base_paths, file_path,
  query_id, search_key, search_value)` returns the SHA-256 hex digest of a
  finding. The file path is taken relative to the first base path it contains.
  `standardize_to_relative_path(base_path, path)` does that step on its own
  and raises `ValueError` when the path cannot be made relative.
- `iacscan.vulnerability_builder`: `default_vulnerability_builder(ctx,
  tracker, v, detector)` turns one raw query result into a `Vulnerability`.
  It merges in the query metadata, applies `override` entries selected by
  `overrideKey`, asks the line detector for the line, and computes the
  similarity ID. Also here: `map_key_to_string`, `must_map_key_to_string`,
  `merge_with_metadata`, the `Tracker` and `LineDetector` protocols,
  `PreparedQuery`, `QueryContext`, `NoResultError` and `InvalidResultError`.
- `iacscan.query_source`: `FilesystemSource(source, types)` walks a query
  directory tree. It reads `query.rego` and `metadata.json` from each query
  directory and filters by platform type and by a `QuerySelectionFilter`
  (`IncludeQueries` take precedence over `ExcludeQueries`).
  `get_query_library(platform)` reads the platform's `library.rego`. Helpers:
  `list_supported_platforms()`, `get_path_to_library()`, `read_query()`,
  `read_metadata()` and `get_platform()`.
- `iacscan.inspector`: `new_inspector(...)` loads the selected queries and
  compiles each one through a `QueryCompiler`. `Inspector.inspect(scan_id,
  files, base_scan_paths, platforms, progress)` runs the queries of the given
  platforms and returns the vulnerabilities. Queries that fail are kept in
  `get_failed_queries()`, and results whose similarity ID is in
  `exclude_results` are dropped. `len_queries_by_plat()`,
  `enable_coverage_report()`, `get_coverage_report()` and `contains()` are
  also provided.
- `iacscan.provider`: `FileSystemSourceProvider(paths, excludes)` walks the
  scan paths and skips excluded files and directories. It passes directories
  that hold a `Chart.yaml` to a resolver sink, then passes each file with a
  supported extension or name to a sink. `get_exclude_paths()` expands glob
  patterns. `NotSupportedFileError` is raised for an unsupported file.
- `iacscan.service`: `Service` ties together a source provider, parser,
  optional resolver, inspector, storage and tracker. `start_scan(scan_id)`
  runs a whole scan and returns the errors it met. `sink()` and
  `resolver_sink()` turn files into stored `FileMetadata`, and `get_content()`
  reads a stream of at most about 5 MB, raising `FileSizeLimitError` past it.

## Example

```python
from iacscan.model import Severity
from iacscan.similarity import compute_similarity_id
from iacscan.summary import Counters, create_summary

sid = compute_similarity_id(
    ["my/test"], "my/test/main.tf", "query-id", "Resources.Bucket", ""
)
print(len(sid))  # 64

summary = create_summary(Counters(scanned_files=1), [], "scan-1")
print(summary.severity_summary.severity_counters[Severity.HIGH])  # 0
print(summary.severity_summary.total_counter)  # 0
```

## What it does not do

iacscan is a library with no command-line program. It has no policy
evaluator of its own: query compilation and evaluation come from the
`QueryCompiler` you pass to `new_inspector`. It also ships no file parsers, no
template resolver, no line detector and no result storage. `Service` takes
these as objects you provide, matching the protocols described in
`iacscan.service` and `iacscan.vulnerability_builder`. It writes no reports.
`create_summary` returns the summary as dataclasses.