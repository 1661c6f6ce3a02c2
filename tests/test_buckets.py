import pandas as pd
import pytest
from sqlalchemy import text

from etl import buckets
from etl.buckets import AGE_GROUPS, SATISFACTION_SEGMENTS, WAIT_BUCKETS, assign, validate
from etl.settings import get_engine


@pytest.mark.parametrize("definition", [WAIT_BUCKETS, AGE_GROUPS, SATISFACTION_SEGMENTS])
def test_definitions_are_valid(definition):
    validate(definition)


def test_five_wait_buckets():
    assert buckets.labels(WAIT_BUCKETS) == ["0-15", "16-30", "31-45", "46-60", ">60"]


def test_every_wait_time_lands_in_exactly_one_bucket():
    for minutes in range(0, 500):
        hits = [label for label, lo, hi in WAIT_BUCKETS if minutes >= lo and (hi is None or minutes < hi)]
        assert len(hits) == 1, minutes
        assert assign(minutes, WAIT_BUCKETS) == hits[0]


@pytest.mark.parametrize("minutes, label", [
    (0, "0-15"), (15, "0-15"), (16, "16-30"), (30, "16-30"), (31, "31-45"),
    (45, "31-45"), (46, "46-60"), (60, "46-60"), (61, ">60"), (600, ">60"),
])
def test_wait_bucket_boundaries(minutes, label):
    assert assign(minutes, WAIT_BUCKETS) == label


def test_breach_starts_after_sixty_minutes():
    assert assign(buckets.BREACH_MINUTES, WAIT_BUCKETS) != assign(buckets.BREACH_MINUTES + 1, WAIT_BUCKETS)


def test_age_groups_cover_0_to_79():
    assert len(AGE_GROUPS) == 8
    assert assign(0, AGE_GROUPS) == "0-9"
    assert assign(79, AGE_GROUPS) == "70-79"
    with pytest.raises(ValueError):
        assign(80, AGE_GROUPS)


@pytest.mark.parametrize("score, segment", [
    (0, "Detractor"), (4, "Detractor"), (5, "Passive"), (7, "Passive"), (8, "Promoter"), (10, "Promoter"),
])
def test_satisfaction_segments(score, segment):
    assert assign(score, SATISFACTION_SEGMENTS) == segment


def test_assign_below_range_raises():
    with pytest.raises(ValueError):
        assign(-1, WAIT_BUCKETS)


def test_validate_rejects_gap():
    with pytest.raises(ValueError, match="not contiguous"):
        validate([("a", 0, 10), ("b", 11, 20)])


def test_validate_rejects_overlap():
    with pytest.raises(ValueError, match="not contiguous"):
        validate([("a", 0, 10), ("b", 5, 20)])


def test_validate_rejects_open_bucket_in_the_middle():
    with pytest.raises(ValueError, match="must be last"):
        validate([("a", 0, None), ("b", 10, 20)])


def test_validate_rejects_empty_and_duplicates():
    with pytest.raises(ValueError):
        validate([])
    with pytest.raises(ValueError, match="duplicate"):
        validate([("a", 0, 10), ("a", 10, 20)])
    with pytest.raises(ValueError, match="empty"):
        validate([("a", 5, 5)])


@pytest.mark.parametrize("column, values, bucket_set", [
    ("wait_time", range(0, 200), WAIT_BUCKETS),
    ("age", range(0, 80), AGE_GROUPS),
    ("satisfaction_score", range(0, 11), SATISFACTION_SEGMENTS),
])
def test_sql_case_agrees_with_assign(column, values, bucket_set):
    engine = get_engine()
    with engine.begin() as conn:
        pd.DataFrame({column: values}).to_sql("vals", conn, index=False)
    sql = f"SELECT {column}, {buckets.case_expression(column, bucket_set)} AS bucket, " \
          f"{buckets.order_expression(column, bucket_set)} AS pos FROM vals"
    with engine.connect() as conn:
        df = pd.read_sql(text(sql), conn)

    expected = [assign(v, bucket_set) for v in df[column]]
    assert df["bucket"].tolist() == expected
    assert df["bucket"].notna().all()
    # every bucket is reached and the SQL sort key follows declaration order
    positions = df.groupby("bucket")["pos"].first()
    assert [positions[label] for label in buckets.labels(bucket_set)] == list(range(len(bucket_set)))
