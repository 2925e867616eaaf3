"""Core data types shared by the scanner: files, queries and vulnerabilities."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

Document = dict[str, Any]


class FileKind(str, Enum):
    """Kind of file a document was parsed from."""

    TERRAFORM = "TF"
    JSON = "JSON"
    YAML = "YAML"
    DOCKER = "DOCKERFILE"
    COMMON = "*"
    HELM = "HELM"


class Severity(str, Enum):
    """Severity of a vulnerability."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


class IssueType(str, Enum):
    """Kind of issue a vulnerability describes."""

    MISSING_ATTRIBUTE = "MissingAttribute"
    REDUNDANT_ATTRIBUTE = "RedundantAttribute"
    INCORRECT_VALUE = "IncorrectValue"


ALL_SEVERITIES: tuple[Severity, ...] = (
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
)

ALL_ISSUE_TYPES_AS_STRING: tuple[str, ...] = tuple(t.value for t in IssueType)


@dataclass
class CodeLine:
    """A source line near a vulnerability, with its position."""

    position: int
    line: str


@dataclass
class VulnerabilityLines:
    """The detected line of an issue and the lines around it."""

    line: int
    vuln_lines: list[CodeLine] = field(default_factory=list)
    line_with_vulnerability: str = ""


@dataclass
class FileMetadata:
    """Basic information and content of a scanned file."""

    id: str = ""
    scan_id: str = ""
    document: Optional[Document] = None
    original_data: str = ""
    kind: Union[FileKind, str] = ""
    file_name: str = ""
    content: str = ""
    helm_id: str = ""
    id_info: Optional[dict[int, Any]] = None


@dataclass
class QueryMetadata:
    """General information about a query."""

    query: str = ""
    content: str = ""
    metadata: Optional[dict[str, Any]] = None
    platform: str = ""
    # number of queries aggregated into a single rego file
    aggregation: int = 0


@dataclass
class Vulnerability:
    """A vulnerability detected in a scanned file by a query."""

    id: int = 0
    scan_id: str = ""
    similarity_id: str = ""
    file_id: str = ""
    file_name: str = ""
    query_id: str = ""
    query_name: str = ""
    query_uri: str = ""
    category: str = ""
    description: str = ""
    platform: str = ""
    severity: Union[Severity, str] = ""
    line: int = 0
    vuln_lines: list[CodeLine] = field(default_factory=list)
    issue_type: Union[IssueType, str] = ""
    search_key: str = ""
    search_value: str = ""
    key_expected_value: str = ""
    key_actual_value: str = ""
    value: Optional[str] = None
    output: str = ""


@dataclass
class QueryConfig:
    """File kinds and platform of a query."""

    file_kind: list[Union[FileKind, str]] = field(default_factory=list)
    platform: str = ""


@dataclass
class ResolvedFile:
    """A file or template produced by a resolver."""

    file_name: str = ""
    content: bytes = b""
    original_data: bytes = b""
    split_id: str = ""
    id_info: Optional[dict[int, Any]] = None


@dataclass
class ResolvedFiles:
    """All files or templates produced by a resolver."""

    files: list[ResolvedFile] = field(default_factory=list)


class Extensions(dict):
    """Supported file extensions, mapped to whatever handles them."""

    def include(self, ext: str) -> bool:
        """Return True if the extension is supported."""
        return ext in self

    def matched_files_regex(self) -> str:
        """Return a regular expression matching files with a supported extension."""
        if not self:
            return "NO_MATCHED_FILES"
        parts = sorted("\\" + ext for ext in self)
        return "(.*)(" + "|".join(parts) + ")$"


@dataclass
class Documents:
    """A collection of parsed documents, serialised under the key "document"."""

    documents: Optional[list[Optional[Document]]] = field(default_factory=list)

    def to_json(self) -> str:
        """Serialise to JSON."""
        return json.dumps(
            {"document": self.documents}, separators=(",", ":"), ensure_ascii=False
        )

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Documents":
        """Parse JSON produced by :meth:`to_json`; unknown keys are ignored."""
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid documents JSON: {exc}") from exc
        if parsed is None:
            return cls(documents=None)
        if not isinstance(parsed, dict):
            raise ValueError("documents JSON must be an object")
        if "document" not in parsed:
            return cls(documents=None)
        raw = parsed["document"]
        if raw is None:
            return cls(documents=None)
        if not isinstance(raw, list):
            raise ValueError("'document' must be an array")
        for item in raw:
            if item is not None and not isinstance(item, dict):
                raise ValueError("each document must be an object")
        return cls(documents=list(raw))


class FileMetadatas(list):
    """A list of :class:`FileMetadata`."""

    def to_map(self) -> dict[str, FileMetadata]:
        """Map each file's id to its metadata."""
        return {meta.id: meta for meta in self}

    def combine(self) -> Documents:
        """Gather non-empty documents, tagging each with its file id and name."""
        documents: list[Optional[Document]] = []
        for meta in self:
            if not meta.document:
                continue
            meta.document["id"] = meta.id
            meta.document["file"] = meta.file_name
            documents.append(meta.document)
        return Documents(documents=documents)