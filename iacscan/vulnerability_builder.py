"""Turning raw query results into vulnerabilities."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Protocol

from .model import (
    ALL_SEVERITIES,
    Documents,
    FileMetadata,
    IssueType,
    QueryMetadata,
    Severity,
    Vulnerability,
    VulnerabilityLines,
)
from .similarity import compute_similarity_id

logger = logging.getLogger(__name__)

UNDETECTED_VULNERABILITY_LINE = -1
DEFAULT_QUERY_ID = "Undefined"
DEFAULT_QUERY_NAME = "Anonymous"
DEFAULT_QUERY_DESCRIPTION = "Undefined"
DEFAULT_QUERY_URI = "https://example.com/iacscan/"
DEFAULT_ISSUE_TYPE = IssueType.INCORRECT_VALUE


class NoResultError(Exception):
    """A query returned no result."""

    def __init__(self, message: str = "query: not result") -> None:
        super().__init__(message)


class InvalidResultError(Exception):
    """A query returned a result in an unexpected format."""

    def __init__(self, message: str = "query: invalid result format") -> None:
        super().__init__(message)


class Tracker(Protocol):
    """Receives counts of query loading and execution."""

    def track_query_load(self, query_aggregation: int) -> None: ...
    def track_query_executing(self, query_aggregation: int) -> None: ...
    def track_query_execution(self, query_aggregation: int) -> None: ...
    def failed_detect_line(self) -> None: ...
    def failed_compute_similarity_id(self) -> None: ...
    def get_output_lines(self) -> int: ...


class LineDetector(Protocol):
    """Finds the line of a file that a search key points to."""

    def detect_line(self, file: FileMetadata, search_key: str) -> VulnerabilityLines: ...


@dataclass
class PreparedQuery:
    """A query ready for evaluation together with its metadata."""

    metadata: QueryMetadata
    compiled: Any = None


@dataclass
class QueryContext:
    """Everything a single query evaluation needs."""

    scan_id: str
    files: dict[str, FileMetadata]
    query: PreparedQuery
    payload: Optional[Documents] = None
    base_scan_paths: list[str] = field(default_factory=list)


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return format(Decimal(repr(value)).normalize(), "f")


def map_key_to_string(m: dict[str, Any], key: str, allow_nil: bool) -> Optional[str]:
    """Return m[key] as text; raise KeyError if the key is absent."""
    if key not in m:
        raise KeyError(f"key '{key}' not found in map")
    value = m[key]
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if value is None:
        return None if allow_nil else "null"
    logger.debug("Detecting line. can't format item to string")
    return None if allow_nil else ""


def must_map_key_to_string(m: dict[str, Any], key: str) -> Optional[str]:
    """Return m[key] as text, or None when absent or null."""
    try:
        return map_key_to_string(m, key, True)
    except KeyError as exc:
        if key != "value":
            logger.warning("Failed to get key %s in map: %s", key, exc)
        return None


def merge_with_metadata(base: dict[str, Any], additional: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Add entries of additional missing from base, in place, and return base."""
    for k, v in (additional or {}).items():
        base.setdefault(k, v)
    return base


def _try_override(override_key: str, param: str, obj: dict[str, Any]) -> Optional[str]:
    if not override_key:
        return None
    override = obj.get("override")
    if not isinstance(override, dict):
        return None
    target = override.get(override_key)
    if not isinstance(target, dict) or param not in target:
        return None
    return map_key_to_string(target, param, True)


def _string_from_map(param: str, default: str, override_key: str, obj: dict[str, Any]) -> str:
    try:
        value = map_key_to_string(obj, param, False)
    except KeyError as exc:
        logger.error("Saving result. failed to detect %s: %s", param, exc)
        return default
    override = _try_override(override_key, param, obj)
    return override if override is not None else value  # type: ignore[return-value]


def _severity(text: str) -> Optional[Severity]:
    for severity in ALL_SEVERITIES:
        if text == severity.value:
            return severity
    return None


def _issue_type(text: str) -> IssueType | str:
    try:
        return IssueType(text)
    except ValueError:
        return text


def _to_json(obj: dict[str, Any]) -> str:
    text = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
                          ("\u2028", "\\u2028"), ("\u2029", "\\u2029")):
        text = text.replace(char, escaped)
    return text


def default_vulnerability_builder(
    ctx: QueryContext, tracker: Tracker, v: Any, detector: LineDetector
) -> Vulnerability:
    """Build a vulnerability from one item of a query's result."""
    if not isinstance(v, dict):
        raise InvalidResultError()
    obj = merge_with_metadata(v, ctx.query.metadata.metadata)

    try:
        output = _to_json(obj)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"failed to marshall query output: {exc}") from exc

    try:
        file_id = map_key_to_string(obj, "documentId", False)
    except KeyError as exc:
        raise ValueError(f"failed to recognize file id: {exc}") from exc
    file = ctx.files.get(file_id)  # type: ignore[arg-type]
    if file is None:
        raise LookupError("failed to find file from query response")

    lines = VulnerabilityLines(line=UNDETECTED_VULNERABILITY_LINE, vuln_lines=[])
    search_key = ""
    if "searchKey" in obj:
        search_key = str(obj["searchKey"])
        lines = detector.detect_line(file, search_key)
    else:
        logger.error("Saving result. failed to detect line")

    search_value = str(obj["searchValue"]) if "searchValue" in obj else ""
    override_key = str(obj["overrideKey"]) if "overrideKey" in obj else ""

    query_id = _string_from_map("id", DEFAULT_QUERY_ID, override_key, obj)

    severity = Severity.INFO
    try:
        raw = map_key_to_string(obj, "severity", False) or ""
    except KeyError:
        logger.info("Saving result. failed to detect severity")
    else:
        found = _severity(raw.upper())
        if found is None:
            logger.warning("Saving result. invalid severity constant value %s", raw)
        else:
            severity = found
            override = _try_override(override_key, "severity", obj)
            if override is not None:
                severity = _severity(override.upper()) or severity

    issue_type: IssueType | str = DEFAULT_ISSUE_TYPE
    raw_issue = must_map_key_to_string(obj, "issueType")
    if raw_issue is not None:
        issue_type = _issue_type(raw_issue)

    try:
        similarity_id = compute_similarity_id(
            ctx.base_scan_paths, file.file_name, query_id, search_key, search_value
        )
    except ValueError as exc:
        logger.error("%s", exc)
        tracker.failed_compute_similarity_id()
        similarity_id = ""

    return Vulnerability(
        id=0,
        similarity_id=similarity_id,
        scan_id=ctx.scan_id,
        file_id=file.id,
        file_name=file.file_name,
        query_name=_string_from_map("queryName", DEFAULT_QUERY_NAME, override_key, obj),
        query_id=query_id,
        query_uri=_string_from_map("descriptionUrl", DEFAULT_QUERY_URI, override_key, obj),
        category=_string_from_map("category", "", override_key, obj),
        description=_string_from_map("descriptionText", "", override_key, obj),
        severity=severity,
        platform=_string_from_map("platform", "", override_key, obj),
        line=lines.line,
        vuln_lines=lines.vuln_lines,
        issue_type=issue_type,
        search_key=search_key,
        search_value=search_value,
        key_expected_value=must_map_key_to_string(obj, "keyExpectedValue") or "",
        key_actual_value=must_map_key_to_string(obj, "keyActualValue") or "",
        value=must_map_key_to_string(obj, "value"),
        output=output,
    )