"""Running compiled queries over scanned documents and collecting their findings."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .model import FileMetadata, QueryMetadata, Vulnerability
from .model import FileMetadatas
from .query_source import QueriesSource, QuerySelectionFilter
from .vulnerability_builder import (
    UNDETECTED_VULNERABILITY_LINE,
    InvalidResultError,
    LineDetector,
    NoResultError,
    PreparedQuery,
    QueryContext,
    Tracker,
    default_vulnerability_builder,
)

logger = logging.getLogger(__name__)

REGO_QUERY = "result = data.Cx.CxPolicy"
UNSAFE_BUILTINS = frozenset({"http.send", "opa.runtime"})

VulnerabilityBuilder = Callable[[QueryContext, Tracker, Any, LineDetector], Vulnerability]
ProgressCallback = Callable[[float], None]


class QueryCompiler(Protocol):
    """Compiles and evaluates policy queries.

    A compiler evaluates REGO_QUERY and must refuse the builtins in UNSAFE_BUILTINS.
    ``evaluate`` returns a result set: a list of binding maps, where the binding
    ``"result"`` holds the list of findings. It raises TimeoutError when the
    evaluation exceeds ``timeout`` seconds.
    """

    def compile(self, query: QueryMetadata, common_library: str, platform_library: str) -> Any: ...

    def evaluate(
        self, compiled: Any, payload: dict[str, Any], timeout: float, trace: bool
    ) -> list[dict[str, Any]]: ...

    def coverage(self, compiled: Any, query: QueryMetadata) -> Any: ...


def contains(platforms: Iterable[str], platform: str) -> bool:
    """Return True if a query of ``platform`` runs for the selected platforms."""
    if platform == "common":
        return True
    if platform == "k8s":
        platform = "kubernetes"
    wanted = platform.casefold()
    return any(candidate.casefold() == wanted for candidate in platforms)


@dataclass
class Inspector:
    """Compiled queries and everything needed to run them over scanned files."""

    queries: list[PreparedQuery]
    compiler: QueryCompiler
    tracker: Tracker
    detector: LineDetector
    vulnerability_builder: VulnerabilityBuilder = default_vulnerability_builder
    exclude_results: dict[str, bool] = field(default_factory=dict)
    query_exec_timeout: float = 60.0
    failed_queries: dict[str, Exception] = field(default_factory=dict)
    coverage_enabled: bool = False
    coverage_report: Any = None

    def inspect(
        self,
        scan_id: str,
        files: Iterable[FileMetadata],
        base_scan_paths: Iterable[str],
        platforms: Iterable[str],
        progress: Optional[ProgressCallback] = None,
    ) -> list[Vulnerability]:
        """Run every query of the given platforms over the files.

        Queries that fail are recorded in ``failed_queries`` and skipped.
        ``progress`` is called once per query that starts.
        """
        logger.debug("Inspector.inspect()")
        metadatas = FileMetadatas(files)
        combined = metadatas.combine()
        combined.to_json()
        file_map = metadatas.to_map()
        base_paths = list(base_scan_paths)

        vulnerabilities: list[Vulnerability] = []
        for query in self._queries_by_plat(list(platforms)):
            if progress is not None:
                progress(1.0)
            ctx = QueryContext(
                scan_id=scan_id,
                files=file_map,
                query=query,
                payload=combined,
                base_scan_paths=base_paths,
            )
            try:
                found = self._run(ctx)
            except Exception as exc:  # noqa: BLE001 - a failing query must not stop the scan
                logger.error(
                    "Inspector. query executed with error, query=%s scanID=%s: %s",
                    query.metadata.query,
                    scan_id,
                    exc,
                )
                self.failed_queries[query.metadata.query] = exc
                continue
            vulnerabilities.extend(found)
            self.tracker.track_query_execution(query.metadata.aggregation)
        return vulnerabilities

    def len_queries_by_plat(self, platforms: Iterable[str]) -> int:
        """Count the queries that run for the platforms, reporting each to the tracker."""
        selected = list(platforms)
        count = 0
        for query in self.queries:
            if contains(selected, query.metadata.platform):
                self.tracker.track_query_executing(query.metadata.aggregation)
                count += 1
        return count

    def enable_coverage_report(self) -> None:
        """Collect a coverage report while evaluating queries."""
        self.coverage_enabled = True

    def get_coverage_report(self) -> Any:
        """Return the coverage report of the last evaluated query."""
        return self.coverage_report

    def get_failed_queries(self) -> dict[str, Exception]:
        """Return the failed queries mapped to their errors."""
        return self.failed_queries

    def _queries_by_plat(self, platforms: list[str]) -> list[PreparedQuery]:
        return [q for q in self.queries if contains(platforms, q.metadata.platform)]

    def _run(self, ctx: QueryContext) -> list[Vulnerability]:
        documents = ctx.payload.documents if ctx.payload is not None else []
        payload = {"document": documents}
        trace = self.coverage_enabled
        try:
            results = self.compiler.evaluate(
                ctx.query.compiled, payload, self.query_exec_timeout, trace
            )
        except TimeoutError as exc:
            raise TimeoutError(f"query executing timeout exited: {exc}") from exc
        except Exception as exc:
            raise RuntimeError(f"failed to evaluate query: {exc}") from exc

        if trace:
            try:
                self.coverage_report = self.compiler.coverage(ctx.query.compiled, ctx.query.metadata)
            except Exception as exc:
                raise RuntimeError(f"failed to parse coverage module: {exc}") from exc

        logger.debug(
            "Inspector executed with result %r, query=%s scanID=%s",
            results,
            ctx.query.metadata.query,
            ctx.scan_id,
        )
        return self._decode(ctx, results)

    def _decode(self, ctx: QueryContext, results: list[dict[str, Any]]) -> list[Vulnerability]:
        if not results:
            raise NoResultError()
        bindings = results[0]
        if "result" not in bindings:
            raise NoResultError()
        items = bindings["result"]
        if not isinstance(items, list):
            raise InvalidResultError()

        name = ctx.query.metadata.query
        vulnerabilities: list[Vulnerability] = []
        failed_detect_line = False
        for item in items:
            try:
                vulnerability = self.vulnerability_builder(ctx, self.tracker, item, self.detector)
            except Exception as exc:  # noqa: BLE001 - one bad item must not drop the rest
                logger.error("Inspector can't save vulnerability, query=%s: %s", name, exc)
                self.failed_queries.setdefault(name, exc)
                continue

            if vulnerability.line == UNDETECTED_VULNERABILITY_LINE:
                failed_detect_line = True

            if vulnerability.similarity_id in self.exclude_results:
                logger.debug("Excluding result SimilarityID: %s", vulnerability.similarity_id)
            else:
                vulnerabilities.append(vulnerability)

        if failed_detect_line:
            self.tracker.failed_detect_line()
        return vulnerabilities


def new_inspector(
    queries_source: QueriesSource,
    compiler: QueryCompiler,
    vulnerability_builder: VulnerabilityBuilder,
    tracker: Tracker,
    detector: LineDetector,
    query_filter: Optional[QuerySelectionFilter] = None,
    exclude_results: Optional[dict[str, bool]] = None,
    query_timeout: float = 60,
) -> Inspector:
    """Load and compile the selected queries; raise RuntimeError if none can be listed."""
    logger.debug("new_inspector()")
    try:
        queries = queries_source.get_queries(query_filter or QuerySelectionFilter())
    except Exception as exc:
        raise RuntimeError(f"failed to get queries: {exc}") from exc

    try:
        common_library = queries_source.get_query_library("common")
    except Exception as exc:  # noqa: BLE001
        logger.error("Inspector failed to get general query, query=common: %s", exc)
        common_library = ""

    prepared: list[PreparedQuery] = []
    for metadata in queries:
        try:
            platform_library = queries_source.get_query_library(metadata.platform)
        except Exception as exc:  # noqa: BLE001
            logger.error("Inspector failed to get generic query, query=%s: %s", metadata.query, exc)
            continue
        try:
            compiled = compiler.compile(metadata, common_library, platform_library)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Inspector failed to prepare query for evaluation, query=%s: %s", metadata.query, exc
            )
            continue
        tracker.track_query_load(metadata.aggregation)
        prepared.append(PreparedQuery(metadata=metadata, compiled=compiled))

    total = sum(query.metadata.aggregation for query in prepared)
    logger.info("Inspector initialized, number of queries=%d", total)
    timeout = float(query_timeout)
    logger.info("Query execution timeout=%ss", timeout)

    return Inspector(
        queries=prepared,
        compiler=compiler,
        tracker=tracker,
        detector=detector,
        vulnerability_builder=vulnerability_builder,
        exclude_results=dict(exclude_results or {}),
        query_exec_timeout=timeout,
    )