"""Loading queries and their libraries from the file system."""

from __future__ import annotations

import json
import logging
import os
import posixpath
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from .model import QueryMetadata

logger = logging.getLogger(__name__)

QUERY_FILE_NAME = "query.rego"
METADATA_FILE_NAME = "metadata.json"
LIBRARY_FILE_NAME = "library.rego"
LIBRARIES_DEFAULT_BASE_PATH = "./assets/libraries/"

_SUPPORTED_PLATFORMS = {
    "Ansible": "ansible",
    "CloudFormation": "cloudformation",
    "Dockerfile": "dockerfile",
    "Kubernetes": "k8s",
    "Terraform": "terraform",
    "OpenAPI": "openapi",
}

_PLATFORM_MARKERS = ("common", "ansible", "cloudFormation", "dockerfile", "k8s", "terraform", "openAPI")


@dataclass
class IncludeQueries:
    """Query ids to include; inclusion takes precedence over exclusion."""

    by_ids: list[str] = field(default_factory=list)


@dataclass
class ExcludeQueries:
    """Query ids and categories to exclude."""

    by_ids: list[str] = field(default_factory=list)
    by_categories: list[str] = field(default_factory=list)


@dataclass
class QuerySelectionFilter:
    """Which queries to run."""

    include_queries: IncludeQueries = field(default_factory=IncludeQueries)
    exclude_queries: ExcludeQueries = field(default_factory=ExcludeQueries)


class QueriesSource(Protocol):
    """Provides queries and platform libraries."""

    def get_queries(self, query_filter: QuerySelectionFilter) -> list[QueryMetadata]: ...
    def get_query_library(self, platform: str) -> str: ...


def _from_slash(path: str) -> str:
    return path.replace("/", os.sep)


def list_supported_platforms() -> list[str]:
    """Return the names of supported platforms, sorted."""
    return sorted(_SUPPORTED_PLATFORMS)


def get_path_to_library(platform: str, relative_base_path: str) -> str:
    """Return the path of the library file for a platform."""
    marker = _from_slash("/queries")
    idx = relative_base_path.rfind(marker)
    if idx > -1:
        library_path = relative_base_path[:idx] + _from_slash("/libraries")
    else:
        library_path = os.path.normpath(os.path.join(relative_base_path, LIBRARIES_DEFAULT_BASE_PATH))

    library_file = _from_slash(f"{library_path}/common/{LIBRARY_FILE_NAME}")
    for sup in _SUPPORTED_PLATFORMS.values():
        if sup.upper() in platform.upper():
            library_file = _from_slash(f"{library_path}/{sup}/{LIBRARY_FILE_NAME}")
            break
    return library_file


def get_platform(query_path: str) -> str:
    """Infer the platform of a query from its directory path."""
    for marker in _PLATFORM_MARKERS:
        if marker in query_path:
            return marker
    return "unknown"


def read_metadata(query_dir: str) -> Optional[dict[str, Any]]:
    """Read a query's metadata file; None if missing or unreadable."""
    path = os.path.normpath(os.path.join(query_dir, METADATA_FILE_NAME))
    try:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        logger.warning("Queries provider can't find metadata, query=%s", os.path.basename(query_dir))
        return None
    except (OSError, ValueError) as exc:
        logger.error("Queries provider can't read metadata, query=%s: %s", os.path.basename(query_dir), exc)
        return None
    return data if isinstance(data, dict) else None


def read_query(query_dir: str) -> QueryMetadata:
    """Read a query directory; raise OSError if its query file cannot be read."""
    path = os.path.normpath(os.path.join(query_dir, QUERY_FILE_NAME))
    try:
        with open(path, encoding="utf-8") as handle:
            content = handle.read()
    except OSError as exc:
        raise OSError(f"failed to read query {os.path.basename(query_dir)}: {exc}") from exc

    metadata = read_metadata(query_dir)
    aggregation = 1
    if metadata and "aggregation" in metadata:
        aggregation = int(metadata["aggregation"])
    return QueryMetadata(
        query=posixpath.basename(query_dir.replace(os.sep, "/").rstrip("/")),
        content=content,
        metadata=metadata,
        platform=get_platform(query_dir),
        aggregation=aggregation,
    )


def _matches(value: Any, candidates: list[str]) -> bool:
    if not isinstance(value, str):
        logger.warning("Can't cast query metadata key = %r", value)
        return False
    return value in candidates


@dataclass
class FilesystemSource:
    """Queries stored in a directory tree, filtered by platform types."""

    source: str
    types: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.source = _from_slash(self.source)
        if not self.types:
            self.types = [""]

    def get_query_library(self, platform: str) -> str:
        """Return the library source for a platform; raise OSError if unreadable."""
        path = get_path_to_library(platform, self.source)
        try:
            with open(os.path.normpath(path), encoding="utf-8") as handle:
                return handle.read()
        except OSError:
            logger.error("Failed to get filesystem source rego library %s", path)
            raise

    def check_type(self, query_platform: Any) -> bool:
        """Return True if a query of this platform is selected by the types."""
        platform = query_platform if isinstance(query_platform, str) else ""
        if platform == "Common":
            return True
        if self.types[0] != "":
            return platform.upper() in ",".join(self.types).upper()
        return True

    def _query_dirs(self) -> list[str]:
        if not os.path.exists(self.source):
            raise FileNotFoundError(f"failed to get query Source: {self.source}")

        walk_errors: list[OSError] = []
        dirs = []
        for root, dirnames, filenames in os.walk(self.source, onerror=walk_errors.append):
            if walk_errors:
                break
            dirnames.sort()
            if QUERY_FILE_NAME in filenames:
                dirs.append(root)
        if walk_errors:
            raise OSError(f"failed to get query Source: {walk_errors[0]}") from walk_errors[0]
        return dirs

    def get_queries(self, query_filter: QuerySelectionFilter) -> list[QueryMetadata]:
        """Return every selected query under the source directory."""
        queries = []
        for query_dir in self._query_dirs():
            try:
                query = read_query(query_dir)
            except OSError as exc:
                logger.error("Query provider failed to read query, query=%s: %s", os.path.basename(query_dir), exc)
                continue
            meta = query.metadata or {}
            if not self.check_type(meta.get("platform")):
                continue
            if query_filter.include_queries.by_ids:
                if _matches(meta.get("id"), query_filter.include_queries.by_ids):
                    queries.append(query)
                continue
            excluded = query_filter.exclude_queries
            if _matches(meta.get("id"), excluded.by_ids) or _matches(meta.get("category"), excluded.by_categories):
                logger.debug("Excluding query ID: %s category: %s", meta.get("id"), meta.get("category"))
                continue
            queries.append(query)
        return queries