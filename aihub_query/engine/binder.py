"""Maps dataset ids onto workspace relation names and rewrites query text to use them."""

from dataclasses import dataclass
import re

RELATION_PREFIX = "dataset_"

_IDENTIFIER_CHAR = re.compile(r"[A-Za-z0-9_]")


@dataclass(frozen=True)
class Binding:
    dataset_id: str
    relation: str


@dataclass(frozen=True)
class BoundQuery:
    bindings: list[Binding]
    query: str

    def relation_for(self, dataset_id: str) -> str:
        for binding in self.bindings:
            if binding.dataset_id == dataset_id:
                return binding.relation
        raise KeyError(dataset_id)


def relation_name(position: int) -> str:
    return f"{RELATION_PREFIX}{position}"


def bind_datasets(
    dataset_ids: list[str], query_text: str, row_cap: int | None = None
) -> BoundQuery:
    bindings = []
    seen = set()
    for dataset_id in dataset_ids:
        if dataset_id in seen:
            continue
        seen.add(dataset_id)
        bindings.append(Binding(dataset_id, relation_name(len(bindings) + 1)))

    query = rewrite_query(query_text, {b.dataset_id: b.relation for b in bindings})
    if row_cap is not None:
        query = apply_row_cap(query, row_cap)
    return BoundQuery(bindings=bindings, query=query)


def apply_row_cap(query: str, row_cap: int) -> str:
    """Append a LIMIT right after the last code token.

    Trailing comments stay after the clause so it is never swallowed by them.
    """
    if "limit" in query.lower():
        return query
    end = _code_end(query)
    rest = query[end:]
    if not rest.strip(" \t\r\n;"):
        rest = ""
    return f"{query[:end]} LIMIT {int(row_cap)}{rest}"


def _code_end(query: str) -> int:
    """Index just past the last character that is neither a comment, whitespace nor `;`."""
    end = 0
    i = 0
    n = len(query)
    while i < n:
        ch = query[i]
        if ch in "'\"":
            i = _scan_quoted(query, i, ch)
            end = i
        elif query.startswith("--", i):
            newline = query.find("\n", i)
            i = n if newline == -1 else newline
        elif query.startswith("/*", i):
            close = query.find("*/", i + 2)
            i = n if close == -1 else close + 2
        else:
            if not ch.isspace() and ch != ";":
                end = i + 1
            i += 1
    return end


def rewrite_query(query: str, relations: dict[str, str]) -> str:
    """Replace whole-token occurrences of each dataset id in a single pass.

    String literals and comments are copied through untouched, a double-quoted
    identifier is replaced only when its full content is a dataset id, and
    replaced text is never rescanned.
    """
    if not relations:
        return query
    # longest first so an id that prefixes another id never wins the match
    ids = sorted(relations, key=len, reverse=True)
    out = []
    i = 0
    n = len(query)
    while i < n:
        ch = query[i]
        if ch == "'":
            end = _scan_quoted(query, i, "'")
            out.append(query[i:end])
            i = end
        elif ch == '"':
            end = _scan_quoted(query, i, '"')
            content = query[i + 1 : end - 1].replace('""', '"')
            out.append(relations.get(content, query[i:end]))
            i = end
        elif query.startswith("--", i):
            end = query.find("\n", i)
            end = n if end == -1 else end
            out.append(query[i:end])
            i = end
        elif query.startswith("/*", i):
            end = query.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append(query[i:end])
            i = end
        else:
            matched = _match_id(query, i, ids)
            if matched is not None:
                out.append(relations[matched])
                i += len(matched)
            else:
                out.append(ch)
                i += 1
    return "".join(out)


def _scan_quoted(query: str, start: int, quote: str) -> int:
    """Index just past the closing quote; doubled quotes are escapes."""
    i = start + 1
    n = len(query)
    while i < n:
        if query[i] == quote:
            if i + 1 < n and query[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _match_id(query: str, pos: int, ids: list[str]) -> str | None:
    if pos > 0 and _IDENTIFIER_CHAR.match(query[pos - 1]):
        return None
    for dataset_id in ids:
        if not query.startswith(dataset_id, pos):
            continue
        end = pos + len(dataset_id)
        if end < len(query) and _IDENTIFIER_CHAR.match(query[end]):
            continue
        return dataset_id
    return None
