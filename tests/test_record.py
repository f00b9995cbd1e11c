import pytest

from errors import RecordValidationError
from protocol import Record, escape_sentinel, validate


def test_set_then_get_leaves_other_keys_alone():
    record = Record({"a": "1", "b": "2"})
    updated = record.set("a", "changed")

    assert updated.get("a") == "changed"
    assert updated.get("b") == "2"
    assert record.get("a") == "1"


def test_set_replaces_heredoc_value():
    record = Record().set_multiline("output", "line one\nline two")
    record = record.set("output", "single")

    assert record.get("output") == "single"
    assert "<<EOF" not in record.to_text()


@pytest.mark.parametrize("text", ["", "suites_count=abc", "other=1"])
def test_array_count_defaults_to_zero(text):
    record = Record.parse(text)
    assert record.array_count("suites") == 0
    assert record.get_array("suites") == []


def test_append_grows_array_by_one():
    record = Record().replace_array("files", ["a", "b"])
    appended = record.append_to_array("files", "c")

    assert appended.array_count("files") == 3
    assert appended.get("files_2") == "c"
    assert appended.get_array("files") == ["a", "b", "c"]


def test_replace_array_drops_stale_elements():
    record = Record().replace_array("files", ["a", "b", "c"]).replace_array("files", ["z"])

    assert record.get_array("files") == ["z"]
    assert not record.has("files_1")
    assert not record.has("files_2")


def test_structured_items_keep_nested_arrays():
    suite = Record({"name": "unit"}).replace_array("files", ["tests/a.rs"])
    record = Record().set("suites_count", 0).append_item("suites", suite).append_item("suites", suite)

    assert record.get("suites_1_files_0") == "tests/a.rs"
    items = record.get_items("suites")
    assert [i.get("name") for i in items] == ["unit", "unit"]
    assert items[0].get_array("files") == ["tests/a.rs"]


def test_multiline_round_trips_through_text():
    record = Record({"name": "unit"}).set_multiline("output", "ok 1 first\nnot ok 2 second")
    text = record.to_text()

    assert "output<<EOF" in text
    assert Record.parse(text) == record
    assert validate(text)


def test_sentinel_inside_value_is_rejected():
    with pytest.raises(RecordValidationError):
        Record().set_multiline("output", "before\nEOF\nafter")
    with pytest.raises(RecordValidationError):
        Record({"output": "x\nEOF"})


def test_escape_sentinel_makes_output_storable():
    escaped = escape_sentinel("before\nEOF\nafter")
    record = Record().set_multiline("output", escaped)

    assert record.get_multiline("output") == "before\n EOF\nafter"


def test_parse_strips_quotes_and_skips_comments_and_sections():
    record = Record.parse('# comment\n[section]\nname="hello world"\ncount=3\n')

    assert record.get("name") == "hello world"
    assert record.get_int("count") == 3


@pytest.mark.parametrize(
    "text,expected",
    [
        ("a=1\nb=2\n", True),
        ("# only a comment\n", True),
        ("a=1\nnot a record line\n", False),
        ("out<<EOF\nanything = goes\nEOF\n", True),
        ("out<<EOF\nnever closed\n", False),
    ],
)
def test_validate(text, expected):
    assert validate(text) is expected


def test_parse_rejects_malformed_lines():
    with pytest.raises(RecordValidationError):
        Record.parse("just words")
    with pytest.raises(RecordValidationError):
        Record.parse("out<<EOF\nno terminator")


def test_set_rejects_invalid_keys():
    with pytest.raises(RecordValidationError):
        Record().set("bad key", "x")


def test_extract_and_prefixed_are_inverse():
    record = Record({"build_0_name": "rust", "build_0_image": "rust:1.70-slim", "other": "x"})
    sub = record.extract("build_0")

    assert sub.to_dict() == {"name": "rust", "image": "rust:1.70-slim"}
    assert sub.prefixed("build_0").to_dict() == {"build_0_name": "rust", "build_0_image": "rust:1.70-slim"}


def test_booleans_serialize_lowercase():
    record = Record({"requires_build": True, "detected": False})

    assert record.get("requires_build") == "true"
    assert record.get_bool("requires_build")
    assert not record.get_bool("detected")
