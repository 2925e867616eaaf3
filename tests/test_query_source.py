import json

import pytest

from iacscan.model import QueryMetadata
from iacscan.query_source import (
    ExcludeQueries,
    FilesystemSource,
    IncludeQueries,
    QuerySelectionFilter,
    get_path_to_library,
    get_platform,
    list_supported_platforms,
    read_metadata,
    read_query,
)

QUERY_ID = "57b9893d-33b1-4419-bcea-b828fb87e318"
META = {
    "category": "Access Control",
    "descriptionText": "Misconfigured S3 buckets can leak private information",
    "descriptionUrl": "#",
    "id": QUERY_ID,
    "queryName": "All Auth Users Get Read Access",
    "severity": "HIGH",
    "platform": "CloudFormation",
}
CONTENT = "package Cx\n\nCxPolicy[result] { false }\n"


@pytest.fixture
def query_root(tmp_path):
    qdir = tmp_path / "all_auth_users_get_read_access"
    qdir.mkdir()
    (qdir / "query.rego").write_text(CONTENT)
    (qdir / "metadata.json").write_text(json.dumps(META))
    return tmp_path


def _expected(root):
    return QueryMetadata(
        query="all_auth_users_get_read_access",
        content=CONTENT,
        metadata=META,
        platform="unknown",
        aggregation=1,
    )


def test_get_queries(query_root):
    assert FilesystemSource(str(query_root), [""]).get_queries(QuerySelectionFilter()) == [_expected(query_root)]


def test_get_queries_exclude_other_id(query_root):
    f = QuerySelectionFilter(exclude_queries=ExcludeQueries(by_ids=["57b9893d-33b1-4419-bcea-a717ea87e4449"]))
    assert FilesystemSource(str(query_root)).get_queries(f) == [_expected(query_root)]


def test_get_queries_exclude_id(query_root):
    f = QuerySelectionFilter(exclude_queries=ExcludeQueries(by_ids=[QUERY_ID]))
    assert FilesystemSource(str(query_root)).get_queries(f) == []


def test_get_queries_exclude_category(query_root):
    f = QuerySelectionFilter(exclude_queries=ExcludeQueries(by_categories=["Access Control"]))
    assert FilesystemSource(str(query_root)).get_queries(f) == []


def test_get_queries_include(query_root):
    f = QuerySelectionFilter(include_queries=IncludeQueries(by_ids=[QUERY_ID]))
    assert FilesystemSource(str(query_root)).get_queries(f) == [_expected(query_root)]
    f = QuerySelectionFilter(include_queries=IncludeQueries(by_ids=["57b9893d-33b1-4419-bcea-xxxxxxx"]))
    assert FilesystemSource(str(query_root)).get_queries(f) == []


def test_get_queries_missing_path(tmp_path):
    with pytest.raises(OSError):
        FilesystemSource(str(tmp_path / "no-path")).get_queries(QuerySelectionFilter())


def test_check_type_filters():
    src = FilesystemSource("x", ["terraform"])
    assert src.check_type("Terraform") is True
    assert src.check_type("Dockerfile") is False
    assert src.check_type("Common") is True


def test_read_metadata_missing(tmp_path):
    assert read_metadata(str(tmp_path / "error-path")) is None


def test_read_metadata_template(tmp_path):
    data = {"category": None, "id": "<ID>", "severity": "HIGH", "aggregation": 1}
    (tmp_path / "metadata.json").write_text(json.dumps(data))
    assert read_metadata(str(tmp_path)) == data


def test_read_query_aggregation(tmp_path):
    qdir = tmp_path / "terraform" / "q"
    qdir.mkdir(parents=True)
    (qdir / "query.rego").write_text("x")
    (qdir / "metadata.json").write_text(json.dumps({"aggregation": 3}))
    q = read_query(str(qdir))
    assert (q.query, q.platform, q.aggregation) == ("q", "terraform", 3)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("../test/common/test", "common"),
        ("../test/ansible/test", "ansible"),
        ("../test/cloudFormation/test", "cloudFormation"),
        ("../test/dockerfile/test", "dockerfile"),
        ("../test/k8s/test", "k8s"),
        ("../test/openAPI/test", "openAPI"),
        ("../test/terraform/test", "terraform"),
    ],
)
def test_get_platform(path, expected):
    assert get_platform(path) == expected


def test_list_supported_platforms():
    assert list_supported_platforms() == [
        "Ansible", "CloudFormation", "Dockerfile", "Kubernetes", "OpenAPI", "Terraform",
    ]


@pytest.mark.parametrize(
    "platform,library",
    [
        ("terraform", "terraform"),
        ("common", "common"),
        ("cloudFormation", "cloudformation"),
        ("ansible", "ansible"),
        ("dockerfile", "dockerfile"),
        ("k8s", "k8s"),
        ("unknown", "common"),
    ],
)
def test_get_query_library(tmp_path, platform, library):
    for name in ("terraform", "common", "cloudformation", "ansible", "dockerfile", "k8s"):
        d = tmp_path / "assets" / "libraries" / name
        d.mkdir(parents=True)
        (d / "library.rego").write_text(f"package generic.{name}")
    src = FilesystemSource(str(tmp_path / "assets" / "queries" / "template"))
    assert f"generic.{library}" in src.get_query_library(platform)


def test_get_query_library_missing(tmp_path):
    with pytest.raises(OSError):
        FilesystemSource(str(tmp_path / "queries")).get_query_library("terraform")


def test_get_path_to_library_default():
    assert get_path_to_library("terraform", "base") == "base/assets/libraries/terraform/library.rego"