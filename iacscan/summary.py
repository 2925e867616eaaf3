"""Scan summaries: results grouped by query and counted by severity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from .model import CodeLine, IssueType, Severity, Vulnerability

logger = logging.getLogger(__name__)


@dataclass
class SeveritySummary:
    """How many vulnerabilities of each severity a scan found."""

    scan_id: str = ""
    severity_counters: dict[Union[Severity, str], int] = field(default_factory=dict)
    total_counter: int = 0


@dataclass
class VulnerableFile:
    """A vulnerable file and where in it the vulnerability was found."""

    file_name: str = ""
    similarity_id: str = ""
    line: int = 0
    vuln_lines: list[CodeLine] = field(default_factory=list)
    issue_type: Union[IssueType, str] = ""
    search_key: str = ""
    search_value: str = ""
    key_expected_value: str = ""
    key_actual_value: str = ""
    value: Optional[str] = None


@dataclass
class VulnerableQuery:
    """A query that found something, with the files it flagged."""

    query_name: str = ""
    query_id: str = ""
    query_uri: str = ""
    severity: Union[Severity, str] = ""
    platform: str = ""
    files: list[VulnerableFile] = field(default_factory=list)
    category: str = ""
    description: str = ""


@dataclass
class Counters:
    """File and query counts of a scan."""

    scanned_files: int = 0
    parsed_files: int = 0
    failed_to_scan_files: int = 0
    total_queries: int = 0
    failed_to_execute_queries: int = 0
    failed_similarity_id: int = 0


@dataclass
class Times:
    """Start and end time of a scan."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class Summary:
    """Report of a single scan."""

    counters: Counters = field(default_factory=Counters)
    queries: list[VulnerableQuery] = field(default_factory=list)
    severity_summary: SeveritySummary = field(default_factory=SeveritySummary)
    times: Times = field(default_factory=Times)
    scanned_paths: list[str] = field(default_factory=list)


_SEVERITY_ORDER = {
    Severity.HIGH: 0,
    Severity.MEDIUM: 1,
    Severity.LOW: 2,
    Severity.INFO: 3,
}


def create_summary(
    counters: Counters, vulnerabilities: list[Vulnerability], scan_id: str
) -> Summary:
    """Build the report of a scan from its vulnerabilities."""
    logger.debug("create_summary()")
    by_query: dict[str, VulnerableQuery] = {}
    for item in vulnerabilities:
        query = by_query.get(item.query_id)
        if query is None:
            query = VulnerableQuery(
                query_name=item.query_name,
                query_id=item.query_id,
                severity=item.severity,
                query_uri=item.query_uri,
                platform=item.platform,
                category=item.category,
                description=item.description,
            )
            by_query[item.query_id] = query
        query.files.append(
            VulnerableFile(
                file_name=item.file_name,
                similarity_id=item.similarity_id,
                line=item.line,
                vuln_lines=item.vuln_lines,
                issue_type=item.issue_type,
                search_key=item.search_key,
                search_value=item.search_value,
                key_expected_value=item.key_expected_value,
                key_actual_value=item.key_actual_value,
                value=item.value,
            )
        )

    counts: dict[Union[Severity, str], int] = {
        Severity.INFO: 0,
        Severity.LOW: 0,
        Severity.MEDIUM: 0,
        Severity.HIGH: 0,
    }
    total = 0
    for query in by_query.values():
        counts[query.severity] = counts.get(query.severity, 0) + len(query.files)
        total += len(query.files)

    queries = sorted(
        by_query.values(),
        key=lambda q: (_SEVERITY_ORDER.get(q.severity, 0), q.query_name),
    )

    return Summary(
        counters=counters,
        queries=queries,
        severity_summary=SeveritySummary(
            scan_id=scan_id, severity_counters=counts, total_counter=total
        ),
    )