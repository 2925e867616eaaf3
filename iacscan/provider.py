"""Finding the files to scan on the local file system."""

from __future__ import annotations

import glob
import logging
import os
import stat
from collections.abc import Iterable, Mapping
from typing import Any, BinaryIO, Callable, Optional, Protocol

from .model import Extensions

logger = logging.getLogger(__name__)

Sink = Callable[[str, BinaryIO], None]
ResolverSink = Callable[[str], list[str]]

_CHART_FILE = "Chart.yaml"


class NotSupportedFileError(Exception):
    """The file format is not supported."""

    def __init__(self, message: str = "invalid file format") -> None:
        super().__init__(message)


class SourceProvider(Protocol):
    """Supplies the files of a scan to sinks."""

    def get_base_paths(self) -> list[str]: ...

    def get_sources(
        self, extensions: Optional[Mapping[str, Any]], sink: Sink, resolver_sink: ResolverSink
    ) -> None: ...


def get_exclude_paths(path_expressions: str) -> list[str]:
    """Expand a glob pattern into matching paths; other expressions are returned as is."""
    if any(char in path_expressions for char in "*?["):
        return sorted(glob.glob(path_expressions))
    return [path_expressions]


def _from_slash(path: str) -> str:
    return path.replace("/", os.sep)


def _name(path: str) -> str:
    return os.path.basename(os.path.normpath(path))


def _extension(path: str) -> str:
    base = os.path.basename(path)
    dot = base.rfind(".")
    return base[dot:] if dot >= 0 else ""


def _supported(path: str, extensions: Extensions) -> bool:
    return extensions.include(_extension(path)) or extensions.include(os.path.basename(path))


def _open_scan_file(scan_path: str, extensions: Extensions) -> BinaryIO:
    if not _supported(scan_path, extensions):
        raise NotSupportedFileError()
    return open(scan_path, "rb")


class FileSystemSourceProvider:
    """Paths to scan, and files and directories to leave out."""

    def __init__(self, paths: Iterable[str], excludes: Iterable[str] = ()) -> None:
        logger.debug("FileSystemSourceProvider()")
        self._paths = [_from_slash(path) for path in paths]
        self.excludes: dict[str, list[os.stat_result]] = {}
        for exclude in excludes:
            self.add_excluded(get_exclude_paths(exclude))

    def add_excluded(self, exclude_paths: Iterable[str]) -> None:
        """Exclude existing files or directories; missing ones are ignored."""
        for path in exclude_paths:
            try:
                info = os.stat(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise OSError(f"failed to open excluded file: {exc}") from exc
            self.excludes.setdefault(_name(path), []).append(info)

    def get_base_paths(self) -> list[str]:
        """Return the paths to scan."""
        return list(self._paths)

    def get_sources(
        self, extensions: Optional[Mapping[str, Any]], sink: Sink, resolver_sink: ResolverSink
    ) -> None:
        """Feed every supported file under the paths to ``sink``.

        Directories holding a chart are passed to ``resolver_sink`` first; the
        files it returns are excluded from the walk.
        """
        exts = Extensions(extensions or {})
        for scan_path in self._paths:
            info = os.stat(scan_path)
            if not stat.S_ISDIR(info.st_mode):
                try:
                    handle = _open_scan_file(scan_path, exts)
                except NotSupportedFileError:
                    continue
                with handle:
                    sink(scan_path, handle)
                continue
            self._walk_dir(scan_path, sink, resolver_sink, exts)

    def _is_excluded(self, name: str, info: os.stat_result) -> bool:
        return any(os.path.samestat(known, info) for known in self.excludes.get(name, ()))

    def _check_conditions(
        self, path: str, info: os.stat_result, extensions: Extensions, resolved: bool
    ) -> tuple[bool, bool]:
        """Return (skip this entry, skip the whole directory)."""
        name = _name(path)
        if stat.S_ISDIR(info.st_mode):
            if self._is_excluded(name, info):
                logger.info("Directory ignored: %s", path)
                return True, True
            if resolved or not os.path.exists(os.path.join(path, _CHART_FILE)):
                return True, False
            return False, False

        if self._is_excluded(name, info):
            logger.debug("File ignored: %s", path)
            return True, False
        if not _supported(path, extensions):
            return True, False
        return False, False

    def _walk_dir(
        self, root: str, sink: Sink, resolver_sink: ResolverSink, extensions: Extensions
    ) -> None:
        resolved = False

        def visit(path: str) -> None:
            nonlocal resolved
            info = os.lstat(path)
            skip, skip_dir = self._check_conditions(path, info, extensions, resolved)
            if skip_dir:
                return

            if stat.S_ISDIR(info.st_mode):
                if not skip:
                    self._resolve(path, resolver_sink)
                    resolved = True if self._last_resolve_ok else resolved
                for child in sorted(os.listdir(path)):
                    visit(os.path.normpath(os.path.join(path, child)))
                return

            if skip:
                return
            with open(os.path.normpath(path), "rb") as handle:
                try:
                    sink(path.replace("\\", "/"), handle)
                except Exception as exc:  # noqa: BLE001 - one bad file must not stop the walk
                    logger.error(
                        "Filesystem files provider couldn't parse file, file=%s: %s", _name(path), exc
                    )

        visit(root)

    _last_resolve_ok = False

    def _resolve(self, path: str, resolver_sink: ResolverSink) -> None:
        self._last_resolve_ok = False
        try:
            excluded = resolver_sink(path.replace("\\", "/"))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Filesystem files provider couldn't Resolve Directory, file=%s: %s", _name(path), exc
            )
            return
        try:
            self.add_excluded(excluded)
        except OSError as exc:
            logger.error(
                "Filesystem files provider couldn't exclude rendered Chart files, Chart=%s: %s",
                _name(path),
                exc,
            )
        self._last_resolve_ok = True