"""
pipeline.py
-----------
End-to-end run of the Hospital ER encounter case study.

What it does:
1) EXTRACT : Reads the flat encounter CSV.
2) CLEAN   : Normalizes headers, drops malformed rows, coalesces nulls:
   - missing department referral -> 'None'
   - missing satisfaction score stays NULL and is left out of CSAT averages
3) LOAD    : Creates the `encounters` table in an in-memory SQLite database.
4) ANALYZE : Runs every aggregate query in etl/queries.py and prints the tables.
5) REPORT  : Renders the charts and writes the narrative report to OUTPUT_DIR.

Run with `python -m etl.pipeline`; configuration lives in etl/settings.py.
"""

import logging
from pathlib import Path
from typing import Dict, Tuple

import numpy as np
import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Engine

from etl import settings
from etl.charts import render_all
from etl.queries import pearson_from_stats, run_all, title
from etl.report import write_report

logger = logging.getLogger(__name__)

# Source files in the wild use a few different header spellings
COLUMN_ALIASES = {
    "patient_admission_date": "admission_date",
    "date": "admission_date",
    "patient_admission_time": "admission_time",
    "time": "admission_time",
    "patient_gender": "gender",
    "patient_age": "age",
    "patient_race": "race",
    "department": "department_referral",
    "patient_admission_flag": "admission_flag",
    "patient_sat_score": "satisfaction_score",
    "satisfaction": "satisfaction_score",
    "patient_waittime": "wait_time",
    "wait_time_minutes": "wait_time",
}

REQUIRED_COLUMNS = [
    "patient_id",
    "admission_date",
    "gender",
    "age",
    "race",
    "department_referral",
    "admission_flag",
    "satisfaction_score",
    "wait_time",
]

OUTPUT_COLUMNS = REQUIRED_COLUMNS[:2] + ["admission_time"] + REQUIRED_COLUMNS[2:]

ADMITTED_VALUES = {"1", "1.0", "true", "t", "yes", "y", "admitted"}
NOT_ADMITTED_VALUES = {"0", "0.0", "false", "f", "no", "n", "not admitted"}

NO_DEPARTMENT = "None"
UNKNOWN_RACE = "Declined to Identify"
UNKNOWN_GENDER = "Unknown"


def run_sql_file(path, engine: Engine) -> None:
    """Run a .sql file against the target database inside a transaction."""
    with open(path, "r") as f, engine.begin() as conn:
        # The SQLite driver executes one statement per call
        for statement in f.read().split(";"):
            if statement.strip():
                conn.execute(text(statement))


def extract(path: str = settings.ENCOUNTERS_CSV) -> pd.DataFrame:
    """Read the raw encounter CSV. Values are kept as text; clean() types them."""
    raw = pd.read_csv(path, dtype=str)
    logger.info("Read %d rows from %s", len(raw), path)
    return raw


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case, trim and underscore the headers, then map known aliases.

    When several headers map to the same column the first one wins; later
    duplicates keep their own name and are ignored by clean().
    """
    df = df.copy()
    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    if df.columns.duplicated().any():
        logger.warning("Ignoring repeated headers: %s", sorted(set(df.columns[df.columns.duplicated()])))
        df = df.loc[:, ~df.columns.duplicated()]

    taken = set(df.columns)
    renames = {}
    for name in df.columns:
        target = COLUMN_ALIASES.get(name)
        if target is not None and target not in taken:
            renames[name] = target
            taken.add(target)
    return df.rename(columns=renames)


def parse_admission_flag(values: pd.Series) -> pd.Series:
    """Map the admission flag to 1/0. Unrecognized values become NA."""
    lowered = values.astype(str).str.strip().str.lower()
    flag = pd.Series(pd.NA, index=values.index, dtype="Int64")
    flag[lowered.isin(ADMITTED_VALUES)] = 1
    flag[lowered.isin(NOT_ADMITTED_VALUES)] = 0
    return flag


def _blank_to_na(values: pd.Series) -> pd.Series:
    return values.where(values.isna() | (values.astype(str).str.strip() != ""), np.nan)


def clean(raw: pd.DataFrame) -> Tuple[pd.DataFrame, Dict]:
    """Type the raw table and apply the data-quality rules.

    Malformed rows are dropped (never repaired) and counted per rule:
    - missing_value       : no id, date, age or wait time
    - non_numeric         : age or wait time is not a number
    - unparseable_date    : admission date/time can't be parsed
    - age_out_of_range    : age outside 0-79
    - negative_wait       : wait time below zero
    - invalid_satisfaction: score present but not a number in 0-10
    - non_integer         : age, wait time or score is not a whole number
    - invalid_admission_flag

    Returns:
        (encounters_df, quality) where quality summarizes what was dropped/coalesced.
    """
    df = normalize_columns(raw)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Encounter file is missing required columns: {', '.join(missing)}")

    for col in ["patient_id", "admission_date", "age", "wait_time", "satisfaction_score", "department_referral",
                "race", "gender"]:
        df[col] = _blank_to_na(df[col])

    dropped = {}

    def drop(mask: pd.Series, rule: str) -> None:
        nonlocal df
        count = int(mask.sum())
        dropped[rule] = count
        if count:
            logger.warning("Dropping %d rows: %s", count, rule)
            df = df[~mask].copy()

    rows_read = len(df)

    # --- Required values ---
    drop(df[["patient_id", "admission_date", "age", "wait_time"]].isna().any(axis=1), "missing_value")

    age = pd.to_numeric(df["age"], errors="coerce")
    wait = pd.to_numeric(df["wait_time"], errors="coerce")
    drop(age.isna() | wait.isna(), "non_numeric")

    # --- Admission timestamp (separate date + time, or one combined column) ---
    if "admission_time" in df.columns:
        stamp = df["admission_date"].astype(str).str.strip() + " " + df["admission_time"].fillna("00:00:00").astype(str)
    else:
        stamp = df["admission_date"].astype(str)
    ts = pd.to_datetime(stamp, errors="coerce", format="mixed")
    drop(ts.isna(), "unparseable_date")
    ts = ts.loc[df.index]

    # --- Ranges ---
    age = pd.to_numeric(df["age"], errors="coerce")
    drop((age < 0) | (age > 79), "age_out_of_range")

    wait = pd.to_numeric(df["wait_time"], errors="coerce")
    drop(wait < 0, "negative_wait")

    sat = pd.to_numeric(df["satisfaction_score"], errors="coerce")
    bad_sat = df["satisfaction_score"].notna() & (sat.isna() | (sat < 0) | (sat > 10))
    drop(bad_sat, "invalid_satisfaction")

    # Fractional minutes or scores would be shifted across a bucket edge by rounding
    age = pd.to_numeric(df["age"], errors="coerce")
    wait = pd.to_numeric(df["wait_time"], errors="coerce")
    sat = pd.to_numeric(df["satisfaction_score"], errors="coerce")
    drop((age % 1 != 0) | (wait % 1 != 0) | (sat.notna() & (sat % 1 != 0)), "non_integer")

    flag = parse_admission_flag(df["admission_flag"])
    drop(flag.isna(), "invalid_admission_flag")

    # --- Build the typed table ---
    ts = ts.loc[df.index]
    out = pd.DataFrame(index=df.index)
    out["patient_id"] = df["patient_id"].astype(str).str.strip()
    out["admission_date"] = ts.dt.strftime("%Y-%m-%d")
    out["admission_time"] = ts.dt.strftime("%H:%M:%S")
    out["gender"] = df["gender"].fillna(UNKNOWN_GENDER).astype(str).str.strip()
    out["age"] = pd.to_numeric(df["age"]).astype(int)
    out["race"] = df["race"].fillna(UNKNOWN_RACE).astype(str).str.strip()
    out["department_referral"] = df["department_referral"].fillna(NO_DEPARTMENT).astype(str).str.strip()
    out["admission_flag"] = parse_admission_flag(df["admission_flag"]).astype(int)
    out["satisfaction_score"] = pd.to_numeric(df["satisfaction_score"]).astype("Int64")
    out["wait_time"] = pd.to_numeric(df["wait_time"]).astype(int)
    out = out[OUTPUT_COLUMNS].reset_index(drop=True)

    quality = {
        "rows_read": rows_read,
        "rows_kept": len(out),
        "rows_dropped": dropped,
        "null_satisfaction": int(out["satisfaction_score"].isna().sum()),
        "no_department": int((out["department_referral"] == NO_DEPARTMENT).sum()),
    }
    logger.info("Kept %d of %d rows (%d without a satisfaction score)",
                quality["rows_kept"], rows_read, quality["null_satisfaction"])
    return out, quality


def load(encounters: pd.DataFrame, engine: Engine) -> None:
    """Create the encounters table and load the cleaned rows."""
    run_sql_file(settings.SCHEMA_SQL, engine)
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM encounters"))
        encounters.to_sql("encounters", conn, if_exists="append", index=False)
    logger.info("Loaded %d encounters", len(encounters))


def build_engine(encounters: pd.DataFrame) -> Engine:
    """Fresh in-memory database holding the given encounters."""
    engine = settings.get_engine()
    load(encounters, engine)
    return engine


def print_results(results: Dict[str, pd.DataFrame]) -> None:
    """Print every result table, plus the finished correlation coefficient."""
    for name, df in results.items():
        print("=" * 70)
        print(title(name))
        print("-" * 70)
        print(df.to_string(index=False) if not df.empty else "(no rows)")
        if name == "wait_satisfaction_stats":
            print(f"\nPearson r (wait time vs satisfaction): {pearson_from_stats(df):.4f}")
        print()


def export_results(results: Dict[str, pd.DataFrame], out_dir: Path) -> None:
    tables_dir = Path(out_dir) / "tables"
    tables_dir.mkdir(parents=True, exist_ok=True)
    for name, df in results.items():
        df.to_csv(tables_dir / f"{name}.csv", index=False)
    logger.info("Exported %d result tables to %s", len(results), tables_dir)


def main():
    """Run the full case study: extract -> clean -> load -> analyze -> report."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    raw = extract(settings.ENCOUNTERS_CSV)
    encounters, quality = clean(raw)
    engine = build_engine(encounters)

    results = run_all(engine)
    print_results(results)

    out_dir = Path(settings.OUTPUT_DIR)
    out_dir.mkdir(parents=True, exist_ok=True)
    charts = render_all(results, encounters, out_dir)
    report_path = write_report(results, quality, charts, out_dir)
    if settings.EXPORT_CSV:
        export_results(results, out_dir)

    print(f"Analysis complete. {len(charts)} charts and {report_path.name} written to {out_dir}.")


if __name__ == "__main__":
    main()
