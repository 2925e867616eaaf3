"""Scanning engine for infrastructure-as-code files: model, queries, inspection, sources and scan service."""

__version__ = "0.1.0"

__all__ = [
    "model",
    "summary",
    "similarity",
    "vulnerability_builder",
    "query_source",
    "inspector",
    "provider",
    "service",
]