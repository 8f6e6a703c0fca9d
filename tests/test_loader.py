import pytest

from aihub_query.engine.loader import (
    delimiter_for,
    load_dataset,
    parse_delimited,
    sanitize_column_names,
)
from aihub_query.engine.workspace import Workspace
from aihub_query.errors import LoadError
from aihub_query.types.query import DatasetReference
from tests.utils import FakeStorage


def _dataset(dataset_id="ds1", filename="ds1.csv", content_type="text/csv"):
    return DatasetReference(
        id=dataset_id,
        user_id="user-1",
        s3_key=f"uploads/user-1/{dataset_id}",
        content_type=content_type,
        filename=filename,
    )


def test_malformed_row_is_skipped():
    table = parse_delimited(b"a,b,c\n1,2,3\n4,5,6\n7,8\n")
    assert table.columns == ["a", "b", "c"]
    assert table.rows == [["1", "2", "3"], ["4", "5", "6"]]
    assert table.skipped == 1


def test_quoted_fields_keep_embedded_delimiters():
    raw = b'name,notes\n"Smith, J","said ""hi""\nthen left"\n'
    table = parse_delimited(raw)
    assert table.rows == [["Smith, J", 'said "hi"\nthen left']]
    assert table.skipped == 0


def test_bom_and_crlf_and_blank_lines():
    raw = "\ufeffid,value\r\n1,x\r\n\r\n2,y\r\n".encode("utf-8")
    table = parse_delimited(raw)
    assert table.columns == ["id", "value"]
    assert table.rows == [["1", "x"], ["2", "y"]]


def test_header_only_dataset_has_no_rows():
    table = parse_delimited(b"a,b\n")
    assert table.columns == ["a", "b"]
    assert table.rows == []


@pytest.mark.parametrize("raw", [b"", b"\n\n", b" , \n"])
def test_empty_dataset_is_a_load_error(raw):
    with pytest.raises(LoadError):
        parse_delimited(raw)


def test_non_utf8_is_a_load_error():
    with pytest.raises(LoadError):
        parse_delimited(b"a,b\n\xff\xfe,1\n")


def test_sanitize_column_names():
    assert sanitize_column_names(["a b", "a-b", "", "A_b", " price ($) "]) == [
        "a_b",
        "a_b_2",
        "column_3",
        "A_b_3",
        "price____",
    ]


def test_delimiter_for():
    assert delimiter_for(_dataset()) == ","
    assert delimiter_for(_dataset(filename="x.TSV")) == "\t"
    assert (
        delimiter_for(_dataset(filename="x", content_type="text/tab-separated-values"))
        == "\t"
    )


async def test_load_dataset_materializes_relation():
    storage = FakeStorage()
    storage.put("uploads/user-1/ds1", "a,b,c\n1,2,3\n4,5,6\n7,8\n")
    async with Workspace() as workspace:
        loaded = await load_dataset(workspace, "dataset_1", _dataset(), storage)
        assert loaded.row_count == 2
        assert loaded.columns == ["a", "b", "c"]
        assert loaded.skipped == 1
        result = workspace.execute("SELECT a, c FROM dataset_1 ORDER BY a", 100)
    assert result.rows == [("1", "3"), ("4", "6")]


async def test_load_tsv_dataset():
    storage = FakeStorage()
    storage.put("uploads/user-1/ds1", "a\tb\nx,y\tz\n")
    async with Workspace() as workspace:
        await load_dataset(workspace, "dataset_1", _dataset(filename="ds1.tsv"), storage)
        result = workspace.execute("SELECT a, b FROM dataset_1", 100)
    assert result.rows == [("x,y", "z")]


async def test_missing_object_is_a_load_error():
    async with Workspace() as workspace:
        with pytest.raises(LoadError):
            await load_dataset(workspace, "dataset_1", _dataset(), FakeStorage())
        assert workspace.relations == {}


async def test_oversized_dataset_is_rejected(monkeypatch):
    import aihub_query.engine.loader as loader

    monkeypatch.setattr(loader, "MAX_DATASET_BYTES", 10)
    storage = FakeStorage()
    storage.put("uploads/user-1/ds1", "a,b\n" + "1,2\n" * 10)
    async with Workspace() as workspace:
        with pytest.raises(LoadError) as exc_info:
            await load_dataset(workspace, "dataset_1", _dataset(), storage)
    assert "byte limit" in exc_info.value.message
