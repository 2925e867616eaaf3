"""The scan service: collects files from a source, parses them, runs the queries and stores results."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Iterable, Optional, Protocol

from .inspector import Inspector
from .model import (
    Document,
    FileKind,
    FileMetadata,
    FileMetadatas,
    ResolvedFiles,
    Vulnerability,
)
from .provider import SourceProvider
from .summary import SeveritySummary

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024
_MAX_SIZE_MB = 5

ProgressCallback = Callable[[float], None]


class FileSizeLimitError(Exception):
    """A file is larger than the scanner accepts."""

    def __init__(self, message: str = "file size limit exceeded") -> None:
        super().__init__(message)


class Storage(Protocol):
    """Keeps scanned files and the vulnerabilities found in them."""

    def save_file(self, metadata: FileMetadata) -> None: ...

    def save_vulnerabilities(self, vulnerabilities: list[Vulnerability]) -> None: ...

    def get_vulnerabilities(self, scan_id: str) -> list[Vulnerability]: ...

    def get_scan_summary(self, scan_ids: list[str]) -> Optional[list[SeveritySummary]]: ...


class FileTracker(Protocol):
    """Counts files found and files parsed."""

    def track_file_found(self) -> None: ...

    def track_file_parse(self) -> None: ...


class _Parser(Protocol):
    platform: list[str]

    def supported_extensions(self) -> Any: ...

    def parse(self, file_name: str, content: bytes) -> tuple[list[Document], Any]: ...


class _Resolver(Protocol):
    def get_type(self, file_name: str) -> Any: ...

    def resolve(self, file_name: str, kind: Any) -> ResolvedFiles: ...


def get_content(stream: BinaryIO) -> bytes:
    """Read a stream one megabyte at a time; raise FileSizeLimitError past the limit."""
    remaining = _MAX_SIZE_MB
    chunks: list[bytes] = []
    while True:
        if remaining < 0:
            raise FileSizeLimitError()
        chunk = stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= 1
    return b"".join(chunks)


def _wrap(message: str, exc: BaseException) -> RuntimeError:
    wrapped = RuntimeError(f"{message}: {exc}")
    wrapped.__cause__ = exc
    return wrapped


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _check_serialisable(document: Document) -> None:
    json.dumps(document, allow_nan=False)


@dataclass
class Service:
    """Ties together a source of files, a parser, an inspector, storage and a tracker."""

    source_provider: SourceProvider
    storage: Storage
    parser: _Parser
    inspector: Inspector
    tracker: FileTracker
    resolver: Optional[_Resolver] = None
    files: FileMetadatas = field(default_factory=FileMetadatas)

    def start_scan(
        self,
        scan_id: str,
        hide_progress: bool = True,
        progress: Optional[ProgressCallback] = None,
    ) -> list[Exception]:
        """Run a whole scan and store its vulnerabilities.

        Each stage runs even when an earlier one failed; the errors met on the
        way are returned in order.
        """
        logger.debug("Service.start_scan()")
        errors: list[Exception] = []
        try:
            self.source_provider.get_sources(
                self.parser.supported_extensions(),
                lambda name, stream: self.sink(name, scan_id, stream),
                lambda name: self.resolver_sink(name, scan_id),
            )
        except Exception as exc:  # noqa: BLE001 - the scan goes on with what was read
            errors.append(_wrap("failed to read sources", exc))

        vulnerabilities: list[Vulnerability] = []
        try:
            vulnerabilities = self.inspector.inspect(
                scan_id,
                self.files,
                self.source_provider.get_base_paths(),
                self.parser.platform,
                None if hide_progress else progress,
            )
        except Exception as exc:  # noqa: BLE001
            errors.append(_wrap("failed to inspect files", exc))

        try:
            self.storage.save_vulnerabilities(vulnerabilities)
        except Exception as exc:  # noqa: BLE001
            errors.append(_wrap("failed to save vulnerabilities", exc))
        return errors

    def get_vulnerabilities(self, scan_id: str) -> list[Vulnerability]:
        """Return the vulnerabilities stored for a scan."""
        return self.storage.get_vulnerabilities(scan_id)

    def get_scan_summary(self, scan_ids: list[str]) -> Optional[list[SeveritySummary]]:
        """Return how many vulnerabilities of each severity the scans found."""
        return self.storage.get_scan_summary(scan_ids)

    def sink(self, filename: str, scan_id: str, stream: BinaryIO) -> None:
        """Parse one file and keep each of its documents.

        Raises when the file cannot be read, or when its last document cannot
        be serialised.
        """
        self.tracker.track_file_found()
        try:
            content = get_content(stream)
        except Exception as exc:
            raise _wrap(f"failed to get file content: {filename}", exc) from exc

        try:
            documents, kind = self.parser.parse(filename, content)
        except Exception as exc:  # noqa: BLE001 - an unparsable file is skipped
            logger.error("failed to parse file content: %s: %s", filename, exc)
            return

        last_error: Optional[Exception] = None
        for document in documents:
            try:
                _check_serialisable(document)
            except (TypeError, ValueError) as exc:
                logger.error("failed to marshal content in file: %s: %s", filename, exc)
                last_error = exc
                continue
            last_error = None
            self._save_file(
                FileMetadata(
                    id=str(uuid.uuid4()),
                    scan_id=scan_id,
                    document=document,
                    original_data=_text(content),
                    kind=kind,
                    file_name=filename,
                )
            )
        self.tracker.track_file_parse()

        if last_error is not None:
            raise _wrap("failed to save file content", last_error)

    def resolver_sink(self, filename: str, scan_id: str) -> list[str]:
        """Render a template directory and keep the documents of every rendered file.

        Returns the names of the rendered files, so they are not scanned again.
        """
        if self.resolver is None:
            return []
        kind = self.resolver.get_type(filename)
        if kind == FileKind.COMMON:
            return []
        try:
            resolved = self.resolver.resolve(filename, kind)
        except Exception as exc:  # noqa: BLE001
            logger.error("failed to render file content: %s", exc)
            return []

        excluded: list[str] = []
        for rfile in resolved.files:
            self.tracker.track_file_found()
            excluded.append(rfile.file_name)
            try:
                documents, _ = self.parser.parse(rfile.file_name, rfile.content)
            except Exception as exc:  # noqa: BLE001
                logger.error("failed to parse file content: %s", exc)
                return []
            for document in documents:
                try:
                    _check_serialisable(document)
                except (TypeError, ValueError) as exc:
                    logger.error("failed to marshal content in file: %s: %s", rfile.file_name, exc)
                    continue
                self._save_file(
                    FileMetadata(
                        id=str(uuid.uuid4()),
                        scan_id=scan_id,
                        document=document,
                        original_data=_text(rfile.original_data),
                        kind=kind,
                        file_name=rfile.file_name,
                        content=_text(rfile.content),
                        helm_id=rfile.split_id,
                        id_info=rfile.id_info,
                    )
                )
            self.tracker.track_file_parse()
        return excluded

    def _save_file(self, metadata: FileMetadata) -> None:
        try:
            self.storage.save_file(metadata)
        except Exception as exc:  # noqa: BLE001
            logger.debug("file not saved: %s: %s", metadata.file_name, exc)
            return
        self.files.append(metadata)


def _documents(items: Iterable[Document]) -> list[Document]:
    return list(items)