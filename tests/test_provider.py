import os

import pytest

from iacscan.provider import FileSystemSourceProvider, get_exclude_paths

EXTENSIONS = {".dockerfile": None, "Dockerfile": None}


class Recorder:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def __call__(self, filename, stream):
        self.calls.append((filename, stream.read()))
        if self.fail:
            raise ValueError("cannot parse")


class ResolverRecorder:
    def __init__(self, result=None, fail=False):
        self.calls = []
        self.result = result or []
        self.fail = fail

    def __call__(self, filename):
        self.calls.append(filename)
        if self.fail:
            raise RuntimeError("cannot render")
        return list(self.result)


def write(path, text="FROM scratch"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "root"
    write(root / "a.dockerfile", "FROM a")
    write(root / "b.txt")
    write(root / "Dockerfile", "FROM d")
    write(root / "sub" / "c.dockerfile", "FROM c")
    write(root / "skip" / "d.dockerfile")
    return root


def relative_names(root, calls):
    prefix = str(root).replace("\\", "/") + "/"
    return [name[len(prefix):] for name, _ in calls]


def test_constructor_keeps_paths_and_ignores_missing_excludes():
    provider = FileSystemSourceProvider(["./test", "./test2"], [".tf"])
    assert provider.get_base_paths() == [os.path.join(".", "test"), os.path.join(".", "test2")]
    assert provider.excludes == {}


def test_get_base_paths_converts_slashes():
    provider = FileSystemSourceProvider(["a/b", "test"], [])
    assert provider.get_base_paths() == [os.path.join("a", "b"), "test"]


def test_walk_sinks_supported_files_in_order(tree):
    sink = Recorder()
    resolver = ResolverRecorder()
    FileSystemSourceProvider([str(tree)]).get_sources(EXTENSIONS, sink, resolver)
    assert relative_names(tree, sink.calls) == [
        "Dockerfile",
        "a.dockerfile",
        "skip/d.dockerfile",
        "sub/c.dockerfile",
    ]
    assert sink.calls[1][1] == b"FROM a"
    assert resolver.calls == []


def test_excluded_directory_is_skipped(tree):
    sink = Recorder()
    provider = FileSystemSourceProvider([str(tree)], [str(tree / "skip")])
    provider.get_sources(EXTENSIONS, sink, ResolverRecorder())
    assert "skip/d.dockerfile" not in relative_names(tree, sink.calls)
    assert list(provider.excludes) == ["skip"]


def test_excluded_glob_file_is_skipped(tree):
    sink = Recorder()
    provider = FileSystemSourceProvider([str(tree)], [str(tree / "a.*")])
    provider.get_sources(EXTENSIONS, sink, ResolverRecorder())
    assert relative_names(tree, sink.calls) == ["Dockerfile", "skip/d.dockerfile", "sub/c.dockerfile"]


def test_sink_errors_during_walk_are_suppressed(tree):
    sink = Recorder(fail=True)
    FileSystemSourceProvider([str(tree)]).get_sources(EXTENSIONS, sink, ResolverRecorder())
    assert len(sink.calls) == 4


def test_single_file_is_sunk(tree):
    sink = Recorder()
    path = str(tree / "a.dockerfile")
    FileSystemSourceProvider([path]).get_sources(EXTENSIONS, sink, ResolverRecorder())
    assert sink.calls == [(path, b"FROM a")]


def test_single_file_sink_error_propagates(tree):
    with pytest.raises(ValueError, match="cannot parse"):
        FileSystemSourceProvider([str(tree / "a.dockerfile")]).get_sources(
            EXTENSIONS, Recorder(fail=True), ResolverRecorder()
        )


def test_single_unsupported_file_is_skipped(tree):
    sink = Recorder()
    FileSystemSourceProvider([str(tree / "b.txt")]).get_sources(EXTENSIONS, sink, ResolverRecorder())
    assert sink.calls == []


def test_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileSystemSourceProvider([str(tmp_path / "no-path")]).get_sources(
            None, Recorder(), ResolverRecorder()
        )


def test_chart_directory_is_resolved_once(tmp_path):
    root = tmp_path / "charts"
    write(root / "chart" / "Chart.yaml", "name: chart")
    rendered = write(root / "chart" / "templates" / "e.dockerfile")
    write(root / "chart" / "values.dockerfile")
    write(root / "chart2" / "Chart.yaml", "name: chart2")
    write(root / "chart2" / "f.dockerfile")
    sink = Recorder()
    resolver = ResolverRecorder(result=[str(rendered)])

    FileSystemSourceProvider([str(root)]).get_sources(EXTENSIONS, sink, resolver)

    assert resolver.calls == [str(root / "chart").replace("\\", "/")]
    assert relative_names(root, sink.calls) == ["chart/values.dockerfile", "chart2/f.dockerfile"]


def test_resolver_error_does_not_stop_walk(tmp_path):
    root = tmp_path / "charts"
    write(root / "chart" / "Chart.yaml", "name: chart")
    write(root / "chart" / "templates" / "e.dockerfile")
    sink = Recorder()
    resolver = ResolverRecorder(fail=True)

    FileSystemSourceProvider([str(root)]).get_sources(EXTENSIONS, sink, resolver)

    assert len(resolver.calls) == 1
    assert relative_names(root, sink.calls) == ["chart/templates/e.dockerfile"]


def test_add_excluded_records_names(tmp_path):
    target = tmp_path / "fixtures" / "config_test"
    target.mkdir(parents=True)
    provider = FileSystemSourceProvider([str(tmp_path)])
    provider.add_excluded([str(target), str(tmp_path / "missing")])
    assert list(provider.excludes) == ["config_test"]
    assert len(provider.excludes["config_test"]) == 1


def test_get_exclude_paths_expands_glob(tmp_path):
    write(tmp_path / "install.sh")
    write(tmp_path / "other.txt")
    assert get_exclude_paths(str(tmp_path / "*.sh")) == [str(tmp_path / "install.sh")]


def test_get_exclude_paths_plain_expression():
    assert get_exclude_paths("does/not/exist.tf") == ["does/not/exist.tf"]