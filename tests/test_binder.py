import pytest

from aihub_query.engine.binder import (
    apply_row_cap,
    bind_datasets,
    relation_name,
    rewrite_query,
)


def test_relation_names_follow_submission_order():
    bound = bind_datasets(["b", "a", "c"], "SELECT 1")
    assert [(b.dataset_id, b.relation) for b in bound.bindings] == [
        ("b", "dataset_1"),
        ("a", "dataset_2"),
        ("c", "dataset_3"),
    ]
    assert bound.relation_for("a") == "dataset_2"
    with pytest.raises(KeyError):
        bound.relation_for("missing")


def test_duplicate_ids_bind_once():
    bound = bind_datasets(["x1", "x1", "y2"], "SELECT * FROM x1 JOIN y2 USING (id)")
    assert [b.relation for b in bound.bindings] == ["dataset_1", "dataset_2"]
    assert bound.query == "SELECT * FROM dataset_1 JOIN dataset_2 USING (id)"


def test_every_bound_id_is_rewritten():
    ids = ["abc-1", "abc-2", "zzz"]
    bound = bind_datasets(ids, "SELECT * FROM abc-1, abc-2, zzz")
    for i in range(1, 4):
        assert relation_name(i) in bound.query
    for dataset_id in ids:
        assert dataset_id not in bound.query


def test_longer_id_wins_over_its_prefix():
    query = rewrite_query(
        "SELECT * FROM ds1 JOIN ds10 ON ds1.id = ds10.id",
        {"ds1": "dataset_1", "ds10": "dataset_2"},
    )
    assert query == "SELECT * FROM dataset_1 JOIN dataset_2 ON dataset_1.id = dataset_2.id"


def test_partial_tokens_are_left_alone():
    query = rewrite_query(
        "SELECT ds1_count, xds1 FROM ds1", {"ds1": "dataset_1"}
    )
    assert query == "SELECT ds1_count, xds1 FROM dataset_1"


def test_numeric_id_does_not_touch_other_numbers():
    query = rewrite_query(
        "SELECT * FROM 42 WHERE price > 420 AND code = 1421",
        {"42": "dataset_1"},
    )
    assert query == "SELECT * FROM dataset_1 WHERE price > 420 AND code = 1421"


def test_literals_and_comments_are_not_rewritten():
    query = rewrite_query(
        "SELECT 'ds1' AS name -- from ds1\nFROM ds1 /* ds1 */",
        {"ds1": "dataset_1"},
    )
    assert query == "SELECT 'ds1' AS name -- from ds1\nFROM dataset_1 /* ds1 */"


def test_quoted_identifier_is_rewritten_when_it_is_an_id():
    query = rewrite_query(
        'SELECT * FROM "f3a9-uuid" JOIN "other" USING (id)',
        {"f3a9-uuid": "dataset_1"},
    )
    assert query == 'SELECT * FROM dataset_1 JOIN "other" USING (id)'


def test_replacement_is_never_rescanned():
    # dataset_2 is both an id and a relation name
    query = rewrite_query(
        "SELECT * FROM a, dataset_2",
        {"a": "dataset_2", "dataset_2": "dataset_1"},
    )
    assert query == "SELECT * FROM dataset_2, dataset_1"


def test_row_cap_appended_when_absent():
    bound = bind_datasets(["ds1"], "SELECT * FROM ds1;  ", row_cap=5)
    assert bound.query == "SELECT * FROM dataset_1 LIMIT 5"


def test_row_cap_skipped_when_limit_present():
    assert apply_row_cap("select * from t Limit 3", 5) == "select * from t Limit 3"
    # substring check, so a column named "limited" also suppresses the cap
    assert apply_row_cap("select limited from t", 5) == "select limited from t"


def test_no_row_cap_leaves_query_alone():
    bound = bind_datasets(["ds1"], "SELECT * FROM ds1")
    assert bound.query == "SELECT * FROM dataset_1"


@pytest.mark.parametrize(
    "query,expected",
    [
        ("SELECT * FROM ds1 -- all rows", "SELECT * FROM dataset_1 LIMIT 5 -- all rows"),
        (
            "SELECT * FROM ds1; -- all rows",
            "SELECT * FROM dataset_1 LIMIT 5; -- all rows",
        ),
        (
            "SELECT * FROM ds1 /* every row */",
            "SELECT * FROM dataset_1 LIMIT 5 /* every row */",
        ),
        (
            "SELECT * FROM ds1\n-- first line\n-- second line\n",
            "SELECT * FROM dataset_1 LIMIT 5\n-- first line\n-- second line\n",
        ),
        (
            "SELECT '-- not a comment' AS c FROM ds1",
            "SELECT '-- not a comment' AS c FROM dataset_1 LIMIT 5",
        ),
    ],
)
def test_row_cap_lands_before_trailing_comments(query, expected):
    assert bind_datasets(["ds1"], query, row_cap=5).query == expected
