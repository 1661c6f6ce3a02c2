"""
synth_data.py
-------------
Synthetic data generator for the Hospital ER case study.
- One row per ER encounter: arrival date/time, demographics, referral,
  admission outcome, optional satisfaction score and wait time.
- Wait times are gamma-distributed (long tail past the 60 minute target) and
  satisfaction drifts down as the wait grows, so the correlation chart has
  something to show.

All data is fake; no PHI.
"""

import argparse
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pandas as pd

# Referral mix, roughly what an ER sees; 'None' means treated and released
DEPARTMENTS = [
    ("None", 0.58),
    ("General Practice", 0.17),
    ("Orthopedics", 0.11),
    ("Physiotherapy", 0.03),
    ("Cardiology", 0.03),
    ("Neurology", 0.02),
    ("Gastroenterology", 0.02),
    ("Renal", 0.04),
]

RACES = [
    ("White", 0.28),
    ("African American", 0.18),
    ("Two or More Races", 0.18),
    ("Asian", 0.12),
    ("Native American/Alaska Native", 0.06),
    ("Pacific Islander", 0.03),
    ("Declined to Identify", 0.15),
]

SURVEY_RESPONSE_RATE = 0.27


def _pick(rng: np.random.Generator, options):
    labels, weights = zip(*options)
    weights = np.asarray(weights, dtype=float)
    return labels[rng.choice(len(labels), p=weights / weights.sum())]


def gen_encounters(n_rows: int = 9216,
                   start_dt: datetime = datetime(2019, 4, 1),
                   end_dt: datetime = datetime(2020, 10, 31),
                   seed: int = 42) -> pd.DataFrame:
    """Generate the flat encounter table."""
    rng = np.random.default_rng(seed)
    span_minutes = int((end_dt - start_dt).total_seconds() // 60)

    rows = []
    for i in range(1, n_rows + 1):
        arrived = start_dt + timedelta(minutes=int(rng.integers(0, span_minutes)), seconds=int(rng.integers(0, 60)))
        # Wait sampled from a gamma distribution -> most under an hour, some well over
        wait = int(min(rng.gamma(shape=3.0, scale=12.0), 240))
        department = _pick(rng, DEPARTMENTS)

        score = None
        if rng.random() < SURVEY_RESPONSE_RATE:
            score = int(np.clip(round(rng.normal(8.0 - wait / 20.0, 2.0)), 0, 10))

        rows.append({
            "patient_id": f"{rng.integers(100, 999)}-{rng.integers(10, 99)}-{rng.integers(1000, 9999)}",
            "admission_date": arrived.strftime("%Y-%m-%d"),
            "admission_time": arrived.strftime("%H:%M:%S"),
            "gender": "M" if rng.random() < 0.49 else "F",
            "age": int(rng.integers(0, 80)),
            "race": _pick(rng, RACES),
            # Leave unreferred encounters blank, like the source export
            "department_referral": None if department == "None" else department,
            "admission_flag": bool(rng.random() < 0.5),
            "satisfaction_score": score,
            "wait_time": wait,
        })
    df = pd.DataFrame(rows)
    df["satisfaction_score"] = df["satisfaction_score"].astype("Int64")
    return df


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic Hospital ER encounter CSV.")
    parser.add_argument("--rows", type=int, default=9216, help="Number of encounters to generate")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--outdir", type=str, default=str(Path(__file__).resolve().parents[1] / "data"),
                        help="Output directory for the CSV")
    args = parser.parse_args()

    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    encounters = gen_encounters(args.rows, seed=args.seed)
    encounters.to_csv(outdir / "hospital_er.csv", index=False)

    print(f"Wrote: {outdir / 'hospital_er.csv'} ({len(encounters)} encounters)")


if __name__ == "__main__":
    main()
