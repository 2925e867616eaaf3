"""Similarity identifiers: stable hashes that recognise the same finding across scans."""

from __future__ import annotations

import hashlib
import os
import posixpath
from collections.abc import Iterable


def _to_slash(path: str) -> str:
    """Replace the platform separator with forward slashes."""
    if os.sep == "/":
        return path
    return path.replace(os.sep, "/")


def _clean(path: str) -> str:
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _relative(base_path: str, target_path: str) -> str:
    """Return target_path relative to base_path, lexically."""
    base = _clean(base_path)
    target = _clean(target_path)
    if target == base:
        return "."
    if base == ".":
        base = ""
    base_abs = base.startswith("/")
    target_abs = target.startswith("/")
    if base_abs != target_abs:
        raise ValueError(f"Rel: can't make {target_path} relative to {base_path}")

    base_parts = [p for p in base.split("/") if p]
    target_parts = [p for p in target.split("/") if p and p != "."]
    common = 0
    for b, t in zip(base_parts, target_parts):
        if b != t:
            break
        common += 1
    remaining_base = base_parts[common:]
    if ".." in remaining_base:
        raise ValueError(f"Rel: can't make {target_path} relative to {base_path}")
    parts = [".."] * len(remaining_base) + target_parts[common:]
    return "/".join(parts) if parts else "."


def standardize_to_relative_path(base_path: str, path: str) -> str:
    """Clean path and express it relative to base_path with forward slashes."""
    standard_path = _to_slash(_clean(path))
    return _to_slash(_relative(_to_slash(base_path), standard_path))


def compute_similarity_id(
    base_paths: Iterable[str] | None,
    file_path: str,
    query_id: str,
    search_key: str,
    search_value: str,
) -> str:
    """Return the SHA-256 hex digest identifying a finding.

    Raises ValueError when the file path cannot be made relative to its base path.
    """
    base_path = ""
    for candidate in base_paths or ():
        if _to_slash(candidate) in _to_slash(file_path):
            base_path = _to_slash(candidate)
            break
    standardized = standardize_to_relative_path(base_path, file_path)
    node = standardized + query_id + search_key + search_value
    return hashlib.sha256(node.encode("utf-8")).hexdigest()