import pytest

from iacscan.similarity import compute_similarity_id, standardize_to_relative_path

QID = "e96ccbb0-8d74-49ef-87f8-b9613b63b6a8"
KEY = "Resources.MySearchKeyExample"


@pytest.mark.parametrize(
    "first,second,equal",
    [
        ((["my/test"], "my/test/test.yaml", QID, KEY, "TCP,22"),
         (["my/test"], "my/test/test1.yaml", QID, KEY, "TCP,22"), False),
        ((["my/test", "my/other/test"], "my/test/test.yaml", QID, KEY, "TCP,22"),
         (["my/test"], "my/test/test1.yaml", QID, KEY, "TCP,22"), False),
        ((["my/test"], "my/test/test.yaml", QID, KEY, ""),
         (["my/test"], "my/test/test.yaml", "OTHER-8d74-49ef-87f8-b9613b63b6a8", KEY, ""), False),
        ((["my/test"], "my/test/test.yaml", QID, KEY, ""),
         (["my/test"], "my/test/test.yaml", QID, "Resources.MyOther.SearchKey", ""), False),
        ((["my/test"], "my/filesystem/test.yaml", QID, KEY, ""),
         (["my/test"], "my/filesystem/other/test.yaml", QID, KEY, ""), False),
        ((["my/test"], "my/test/directory/file.tf", QID, KEY, "TCP,22"),
         (["my/test"], "my/test/directory/file.tf", QID, KEY, "TCP,22"), True),
        (([".\\my\\test\\file.tf"], ".\\my\\test\\file.tf", QID, KEY, "TCP,22"),
         (["my/test/file.tf"], "my/test/file.tf", QID, KEY, "TCP,22"), True),
        ((["my/test"], "my/test/directory/../infra.tf", QID, KEY, ""),
         (["my/test"], "my/test/infra.tf", QID, KEY, ""), True),
        ((["my/test"], "../test/assets/queries/sample.dockerfile", QID, KEY, ""),
         (["my/test"], "../test/assets/queries/sample.dockerfile", QID, KEY, ""), True),
    ],
)
def test_compute_similarity_id(first, second, equal):
    a = compute_similarity_id(*first)
    b = compute_similarity_id(*second)
    assert len(a) == 64 and len(b) == 64
    assert (a == b) is equal


def test_known_hash():
    assert (
        compute_similarity_id(None, "", "Undefined", "testSearchKey", "")
        == "2fefa27cc667decf203d10f103b7ffdec232e9af16e361f47d626e72c72b8d63"
    )


def test_standardize_clean_input():
    assert standardize_to_relative_path("/test/my/project", "/test/my/project/test.yaml") == "test.yaml"


def test_standardize_resolves_parent():
    assert (
        standardize_to_relative_path("/test/my/project", "/test/my/project/../test.yaml")
        == "../test.yaml"
    )


def test_standardize_other_directory():
    assert (
        standardize_to_relative_path("/test/my/project", "/test/my/project/other/test.yaml")
        == "other/test.yaml"
    )


def test_standardize_relative_against_absolute_fails():
    with pytest.raises(ValueError):
        standardize_to_relative_path("D:/test/my/project", "/test/my/project/other/test.yaml")