import pytest

from lightstream.version import extract_version_quad


@pytest.mark.parametrize(
    "text, expected",
    [
        ("7.1.431.0", (7, 1, 431, 0)),
        ("7.1.431", (7, 1, 431, 0)),
        ("7.1", (7, 1, 0, 0)),
        ("7", (7, 0, 0, 0)),
        ("1.2.3.4.5", (1, 2, 3, 4)),
    ],
)
def test_parses_dotted_versions(text, expected):
    assert extract_version_quad(text) == expected


def test_empty_string_is_all_zero():
    assert extract_version_quad("") == (0, 0, 0, 0)


def test_non_numeric_components_are_zero():
    assert extract_version_quad("a.b") == (0, 0, 0, 0)


def test_non_numeric_middle_component():
    assert extract_version_quad("7.x.3") == (7, 0, 3, 0)


def test_signed_component():
    assert extract_version_quad("3.-2.1.0") == (3, -2, 1, 0)


def test_result_always_has_four_components():
    for text in ["", "1", "1.2.3.4.5.6", "junk"]:
        assert len(extract_version_quad(text)) == 4