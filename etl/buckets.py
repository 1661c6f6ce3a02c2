"""
buckets.py
----------
Bucket definitions shared by the SQL queries and the Python side.

A bucket is (label, low, high) covering the half-open range [low, high).
high=None means the bucket is open-ended. Keeping the definitions in one
place means the SQL CASE expressions and `assign()` can never disagree.
"""

from typing import List, Optional, Tuple

Bucket = Tuple[str, int, Optional[int]]

# Wait time above this many minutes counts as a breach
BREACH_MINUTES = 60

# Wait times: 0-15, 16-30, 31-45, 46-60, >60 (whole minutes)
WAIT_BUCKETS: List[Bucket] = [
    ("0-15", 0, 16),
    ("16-30", 16, 31),
    ("31-45", 31, 46),
    ("46-60", 46, BREACH_MINUTES + 1),
    (f">{BREACH_MINUTES}", BREACH_MINUTES + 1, None),
]

# Age decades, ages are 0-79
AGE_GROUPS: List[Bucket] = [(f"{lo}-{lo + 9}", lo, lo + 10) for lo in range(0, 80, 10)]

# CSAT segments (0-10 scale)
SATISFACTION_SEGMENTS: List[Bucket] = [
    ("Detractor", 0, 5),
    ("Passive", 5, 8),
    ("Promoter", 8, 11),
]


def validate(buckets: List[Bucket]) -> None:
    """Raise ValueError if the buckets leave a gap, overlap, or are empty."""
    if not buckets:
        raise ValueError("bucket list is empty")
    labels = [b[0] for b in buckets]
    if len(set(labels)) != len(labels):
        raise ValueError(f"duplicate bucket labels: {labels}")
    for (label, lo, hi), (next_label, next_lo, _) in zip(buckets, buckets[1:]):
        if hi is None:
            raise ValueError(f"open-ended bucket {label!r} must be last")
        if hi != next_lo:
            raise ValueError(f"buckets {label!r} and {next_label!r} are not contiguous ({hi} != {next_lo})")
    for label, lo, hi in buckets:
        if hi is not None and hi <= lo:
            raise ValueError(f"bucket {label!r} is empty: [{lo}, {hi})")


def assign(value: float, buckets: List[Bucket]) -> str:
    """Return the label of the single bucket containing value."""
    for label, lo, hi in buckets:
        if value >= lo and (hi is None or value < hi):
            return label
    raise ValueError(f"{value!r} falls outside buckets {[b[0] for b in buckets]}")


def labels(buckets: List[Bucket]) -> List[str]:
    return [b[0] for b in buckets]


def case_expression(column: str, buckets: List[Bucket]) -> str:
    """Render a SQL CASE expression that maps column to bucket labels."""
    validate(buckets)
    whens = []
    for label, lo, hi in buckets:
        cond = f"{column} >= {lo}" if hi is None else f"{column} >= {lo} AND {column} < {hi}"
        whens.append(f"WHEN {cond} THEN '{label}'")
    return "CASE " + " ".join(whens) + " END"


def order_expression(column: str, buckets: List[Bucket]) -> str:
    """Render a SQL CASE expression that maps column to the bucket position (for ORDER BY)."""
    validate(buckets)
    whens = []
    for pos, (_, lo, hi) in enumerate(buckets):
        cond = f"{column} >= {lo}" if hi is None else f"{column} >= {lo} AND {column} < {hi}"
        whens.append(f"WHEN {cond} THEN {pos}")
    return "CASE " + " ".join(whens) + " END"
