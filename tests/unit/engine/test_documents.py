"""Reading documents and building specs from their entries."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from specsheet.engine.documents import DocumentLoader, parse_document, read_document
from specsheet.engine.filter import CheckFilter
from specsheet.engine.rewrite import Rewrites
from specsheet.errors import LoadError

_DOCUMENT = """
[[cmd]]
name = "greeting"
tags = ["smoke", "fast"]
shell = "echo hi"

[[cmd]]
shell = "true"
tags = "slow"

[[fs]]
path = "/etc/hosts"
"""


@pytest.mark.unit
def test_parse_document_splits_metadata_from_parameters() -> None:
    document = parse_document("checks.toml", _DOCUMENT)

    assert [entry.check_type for entry in document.entries] == ["cmd", "cmd", "fs"]
    first = document.entries[0]
    assert first.name == "greeting"
    assert first.tags == frozenset({"smoke", "fast"})
    assert dict(first.table) == {"shell": "echo hi"}
    assert document.entries[1].tags == frozenset({"slow"})
    assert [entry.index for entry in document.entries] == [0, 1, 2]


@pytest.mark.unit
def test_invalid_toml_is_a_load_error() -> None:
    with pytest.raises(LoadError) as excinfo:
        parse_document("broken.toml", "[[cmd]\nshell =")

    assert excinfo.value.source == "broken.toml"
    assert str(excinfo.value).startswith("broken.toml: ")


@pytest.mark.unit
def test_top_level_value_must_be_an_array_of_tables() -> None:
    with pytest.raises(LoadError, match="'cmd' must be an array of tables"):
        parse_document("x.toml", 'cmd = "echo"')


@pytest.mark.unit
def test_missing_file_is_a_load_error(tmp_path: Path) -> None:
    with pytest.raises(LoadError) as excinfo:
        read_document(str(tmp_path / "absent.toml"))

    assert "No such file or directory" in excinfo.value.message


@pytest.mark.unit
def test_dash_reads_standard_input() -> None:
    document = read_document("-", stdin=io.StringIO('[[cmd]]\nshell = "true"\n'))

    assert document.source == "-"
    assert len(document.entries) == 1


@pytest.mark.unit
def test_file_directory_is_the_documents_parent(write_document) -> None:
    path = write_document("nested/checks.toml", _DOCUMENT)

    assert read_document(str(path)).directory == path.parent.resolve()


@pytest.mark.unit
def test_loader_builds_specs_in_document_order(write_document) -> None:
    path = write_document("checks.toml", _DOCUMENT)

    loaded = DocumentLoader().load(str(path))

    assert not loaded.has_errors
    assert [spec.check_type for spec in loaded.specs] == ["cmd", "cmd", "fs"]
    assert loaded.specs[0].name == "greeting"
    assert loaded.specs[0].source == str(path)


@pytest.mark.unit
def test_loader_captures_load_errors(tmp_path: Path) -> None:
    loaded = DocumentLoader().load(str(tmp_path / "absent.toml"))

    assert loaded.load_error is not None
    assert loaded.has_errors
    assert loaded.specs == ()


@pytest.mark.unit
def test_unknown_type_and_bad_parameters_are_read_errors() -> None:
    document = parse_document(
        "x.toml",
        '[[frobnicate]]\nthing = 1\n\n[[cmd]]\nshell = ""\n\n[[cmd]]\nshell = "ok"\n',
    )

    loaded = DocumentLoader().build(document)

    assert [str(error) for error in loaded.read_errors] == [
        '[frobnicate] Unknown check type "frobnicate"',
        "[cmd] Parameter 'shell' value '' is invalid (it must not be empty)",
    ]
    assert len(loaded.specs) == 1


@pytest.mark.unit
def test_bad_tags_are_reported_for_the_entry() -> None:
    document = parse_document("x.toml", '[[cmd]]\nshell = "true"\ntags = 4\n')

    loaded = DocumentLoader().build(document)

    assert [error.message for error in loaded.read_errors] == [
        "Parameter 'tags' value '4' is invalid (it must be a string or an array of strings)"
    ]


@pytest.mark.unit
def test_filtered_entries_are_never_validated() -> None:
    document = parse_document(
        "x.toml",
        '[[cmd]]\nshell = ""\ntags = "slow"\n\n[[cmd]]\nshell = "true"\ntags = "fast"\n',
    )
    loader = DocumentLoader(check_filter=CheckFilter.from_lists(skip_tags=["slow"]))

    loaded = loader.build(document)

    assert loaded.read_errors == ()
    assert [spec.tags for spec in loaded.specs] == [frozenset({"fast"})]


@pytest.mark.unit
def test_rewrites_apply_after_validation() -> None:
    document = parse_document("x.toml", '[[http]]\nurl = "http://prod.example/health"\n')
    loader = DocumentLoader(rewrites=Rewrites.parse(["http://prod.example->http://localhost:8080"]))

    loaded = loader.build(document)

    assert loaded.specs[0].params["url"] == "http://localhost:8080/health"
