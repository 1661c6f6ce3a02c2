"""
charts.py
---------
Summary charts for the ER encounter report.

Every chart is drawn straight from a query result (or, for the scatter plot,
from the cleaned encounter table) and saved as a PNG in the output directory.
"""

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib

matplotlib.use("Agg")  # headless: files only

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from etl.queries import pearson_from_stats

logger = logging.getLogger(__name__)

DPI = 150
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _bar(df: pd.DataFrame, x: str, y: str, title: str, xlabel: str, ylabel: str,
         path: Path, color: str = "steelblue", rotate: bool = False) -> Path:
    plt.figure(figsize=(10, 5))
    bars = plt.bar(df[x].astype(str), df[y], color=color)
    plt.bar_label(bars, fmt="%d", fontsize=8)
    plt.title(title)
    plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    if rotate:
        plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    plt.savefig(path, dpi=DPI)
    plt.close()
    return path


def department_volume(by_department: pd.DataFrame, out_dir: Path) -> Path:
    return _bar(by_department, "department_referral", "encounters",
                "Encounters by Referred Department", "Department", "Encounters",
                Path(out_dir) / "department_volume.png", rotate=True)


def wait_buckets(buckets: pd.DataFrame, out_dir: Path) -> Path:
    return _bar(buckets, "wait_bucket", "encounters",
                "Wait Time Distribution", "Wait time (minutes)", "Encounters",
                Path(out_dir) / "wait_buckets.png", color="darkorange")


def age_group_volume(by_age: pd.DataFrame, out_dir: Path) -> Path:
    return _bar(by_age, "age_group", "encounters",
                "Encounters by Age Group", "Age group", "Encounters",
                Path(out_dir) / "age_group_volume.png", color="seagreen")


def satisfaction_segments(segments: pd.DataFrame, out_dir: Path) -> Path:
    return _bar(segments, "segment", "patients",
                "Satisfaction Segments (surveyed patients)", "Segment", "Patients",
                Path(out_dir) / "satisfaction_segments.png", color="slateblue")


def monthly_volume(monthly: pd.DataFrame, out_dir: Path) -> Path:
    return _bar(monthly, "month", "encounters",
                "Monthly Encounter Volume", "Month", "Encounters",
                Path(out_dir) / "monthly_volume.png", rotate=True)


def weekday_hour_heatmap(matrix: pd.DataFrame, out_dir: Path) -> Path:
    """Heatmap of encounter counts, days of week down the side, hours across."""
    pivot = (
        matrix.pivot_table(index="weekday", columns="hour", values="encounters", aggfunc="sum")
        .reindex(index=WEEKDAYS, columns=range(24))
        .fillna(0)
        .astype(int)
    )
    path = Path(out_dir) / "weekday_hour_heatmap.png"
    plt.figure(figsize=(14, 5))
    sns.heatmap(pivot, cmap="YlOrRd", linewidths=0.5, cbar_kws={"label": "Encounters"})
    plt.title("ER Arrivals by Day of Week and Hour")
    plt.xlabel("Hour of admission")
    plt.ylabel("")
    plt.tight_layout()
    plt.savefig(path, dpi=DPI)
    plt.close()
    return path


def wait_vs_satisfaction(encounters: pd.DataFrame, r: float, out_dir: Path) -> Path:
    """Scatter of wait time against CSAT for surveyed patients, with a least-squares line."""
    surveyed = encounters.dropna(subset=["satisfaction_score"])
    x = surveyed["wait_time"].astype(float).to_numpy()
    y = surveyed["satisfaction_score"].astype(float).to_numpy()

    path = Path(out_dir) / "wait_vs_satisfaction.png"
    plt.figure(figsize=(8, 6))
    plt.scatter(x, y, alpha=0.3, s=12, color="steelblue", label="Surveyed encounter")
    if len(x) >= 2 and np.ptp(x) > 0:
        slope, intercept = np.polyfit(x, y, 1)
        xs = np.linspace(x.min(), x.max(), 100)
        plt.plot(xs, slope * xs + intercept, color="crimson", linewidth=2, label="Least-squares fit")
    r_text = "n/a" if np.isnan(r) else f"{r:.3f}"
    plt.title(f"Wait Time vs Satisfaction (Pearson r = {r_text})")
    plt.xlabel("Wait time (minutes)")
    plt.ylabel("Satisfaction score (0-10)")
    plt.ylim(-0.5, 10.5)
    plt.legend(loc="upper right")
    plt.tight_layout()
    plt.savefig(path, dpi=DPI)
    plt.close()
    return path


def render_all(results: Dict[str, pd.DataFrame], encounters: pd.DataFrame, out_dir: Path) -> List[Path]:
    """Render every chart; returns the written file paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    r = pearson_from_stats(results["wait_satisfaction_stats"])

    paths = [
        department_volume(results["by_department"], out_dir),
        wait_buckets(results["wait_buckets"], out_dir),
        age_group_volume(results["by_age_group"], out_dir),
        satisfaction_segments(results["satisfaction_segments"], out_dir),
        monthly_volume(results["monthly_volume"], out_dir),
    ]
    if results["weekday_hour_matrix"].empty:
        logger.warning("No encounters to place on the day/hour heatmap, skipping it")
    else:
        paths.append(weekday_hour_heatmap(results["weekday_hour_matrix"], out_dir))
    paths.append(wait_vs_satisfaction(encounters, r, out_dir))

    logger.info("Wrote %d charts to %s", len(paths), out_dir)
    return paths
