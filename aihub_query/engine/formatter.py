from aihub_query.engine.workspace import ResultSet
from aihub_query.types.query import OutputFormat

# header names containing these are quoted so the header stays aligned with the rows
_HEADER_SPECIALS = (",", '"', "\n", "\r")


def record_keys(columns: list[str]) -> list[str]:
    """Column names made unique, repeats get a `_n` suffix."""
    keys = []
    seen = set()
    for column in columns:
        key = column
        suffix = 2
        while key in seen:
            key = f"{column}_{suffix}"
            suffix += 1
        seen.add(key)
        keys.append(key)
    return keys


def to_records(result: ResultSet) -> list[dict]:
    keys = record_keys(result.columns)
    return [dict(zip(keys, row)) for row in result.rows]


def to_delimited(result: ResultSet) -> str:
    if not result.rows:
        return ""
    lines = [",".join(_header_name(c) for c in result.columns)]
    for row in result.rows:
        lines.append(",".join(_quote(value) for value in row))
    return "\n".join(lines)


def to_table(result: ResultSet) -> dict:
    return {"columns": list(result.columns), "rows": [list(row) for row in result.rows]}


def _header_name(name: str) -> str:
    if any(special in name for special in _HEADER_SPECIALS):
        return _quote(name)
    return name


def _quote(value) -> str:
    if value is None:
        return '""'
    return '"' + str(value).replace('"', '""') + '"'


FORMATTERS = {
    OutputFormat.json: to_records,
    OutputFormat.csv: to_delimited,
    OutputFormat.table: to_table,
}


def format_result(result: ResultSet, output_format: OutputFormat):
    return FORMATTERS[OutputFormat(output_format)](result)
