"""
report.py
---------
Narrative Markdown report for the ER encounter case study.

The template holds {{PLACEHOLDER}} markers; `build_values()` turns the query
results into the headline numbers and the sentences that interpret them.
"""

import logging
import math
from pathlib import Path
from typing import Dict, List, Tuple

import pandas as pd

from etl.buckets import BREACH_MINUTES
from etl.queries import pearson_from_stats

logger = logging.getLogger(__name__)

# Recommendations are only written when a KPI is past these levels
BREACH_ALERT_PCT = 10
DETRACTOR_ALERT_PCT = 20

REPORT_TEMPLATE = """
# Hospital ER Performance Report

**Scope:** {{TOTAL}} ER encounters ({{UNIQUE_PATIENTS}} distinct patient IDs), {{FIRST_MONTH}} to {{LAST_MONTH}}.

## Headline KPIs
- Admission rate: {{ADMISSION_RATE}}%
- Average wait: {{AVG_WAIT}} minutes
- Wait breaches (> {{BREACH_MINUTES}} min): {{BREACHES}} ({{BREACH_RATE}}%)
- Average satisfaction (surveyed only): {{AVG_CSAT}} / 10 from {{SURVEYED}} responses ({{SURVEY_RATE}}% response rate)
- Detractors (score 0-4): {{DETRACTOR_SHARE}}% of surveyed patients

## Findings
- **Demand:** {{DEPARTMENT_FINDING}}
- **Timing:** {{TIMING_FINDING}}
- **Waits:** {{WAIT_FINDING}}
- **Experience:** {{CSAT_FINDING}}
- **Wait vs satisfaction:** {{CORRELATION_FINDING}}

## Recommendations
{{RECOMMENDATIONS}}

## Data quality
{{QUALITY}}

## Charts
{{CHARTS}}
"""


def render(template: str, values: Dict[str, object]) -> str:
    out = template
    for key, value in values.items():
        out = out.replace("{{" + key + "}}", str(value))
    return out.strip() + "\n"


def _top(df: pd.DataFrame, label_col: str, value_col: str) -> Tuple[str, float]:
    """Label and value of the row with the largest value_col, or ('n/a', 0)."""
    df = df.dropna(subset=[value_col])
    if df.empty:
        return "n/a", 0
    idx = df[value_col].idxmax()
    return str(df.loc[idx, label_col]), df.loc[idx, value_col]


def _fmt(value, digits: int = 2) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "n/a"
    return f"{value:,.{digits}f}"


def format_kpi(value, digits: int = 1, suffix: str = "") -> str:
    """Metric text for the dashboard. An empty table gives NULL averages, shown as n/a."""
    if value is None or pd.isna(value):
        return "n/a"
    return f"{value:,.{digits}f}{suffix}"


def describe_correlation(r: float) -> str:
    """Plain-language reading of a Pearson coefficient."""
    if r is None or math.isnan(r):
        return "the correlation cannot be computed (too few surveyed encounters or no variation)."
    size = abs(r)
    if size < 0.1:
        strength = "no meaningful"
    elif size < 0.3:
        strength = "a weak"
    elif size < 0.5:
        strength = "a moderate"
    else:
        strength = "a strong"
    direction = "negative" if r < 0 else "positive"
    if strength == "no meaningful":
        return f"r = {r:.3f}: there is no meaningful linear relationship between wait time and satisfaction."
    return f"r = {r:.3f}: {strength} {direction} linear relationship between wait time and satisfaction."


def build_values(results: Dict[str, pd.DataFrame], quality: Dict, charts: List[Path]) -> Dict[str, object]:
    overview = results["overview"].iloc[0]
    total = int(overview["total_encounters"] or 0)
    surveyed = int(overview["surveyed"] or 0)
    breaches = int(overview["breaches"] or 0)

    by_dept = results["by_department"]
    referred = by_dept[by_dept["department_referral"] != "None"]
    top_dept, top_dept_n = _top(referred, "department_referral", "encounters")
    unreferred = by_dept.loc[by_dept["department_referral"] == "None", "pct_of_total"]
    unreferred_pct = float(unreferred.iloc[0]) if not unreferred.empty else 0.0

    busiest_hour, busiest_hour_n = _top(results["hourly_volume"], "hour", "encounters")
    busiest_day, _ = _top(results["weekday_volume"], "weekday", "encounters")
    worst_breach_dept, worst_breach_rate = _top(results["breach_by_department"], "department_referral",
                                                "breach_rate_pct")
    worst_detractor_dept, worst_detractor_rate = _top(results["detractors_by_department"], "department_referral",
                                                      "detractor_rate_pct")

    segments = results["satisfaction_segments"].set_index("segment")["pct_of_total"]
    detractor_share = float(segments.get("Detractor", 0.0))
    promoter_share = float(segments.get("Promoter", 0.0))

    months = results["monthly_volume"]["month"]
    r = pearson_from_stats(results["wait_satisfaction_stats"])

    breach_rate = breaches * 100.0 / total if total else float("nan")
    recommendations = []
    if total and breach_rate > BREACH_ALERT_PCT:
        recommendations.append(
            f"- Breach rate is {_fmt(breach_rate)}% (above {BREACH_ALERT_PCT}%): review triage staffing for "
            f"{worst_breach_dept} and the {busiest_hour}:00 arrival peak."
        )
    if surveyed and detractor_share > DETRACTOR_ALERT_PCT:
        recommendations.append(
            f"- Detractors make up {_fmt(detractor_share)}% of responses (above {DETRACTOR_ALERT_PCT}%): "
            f"follow up on {worst_detractor_dept} first."
        )
    if total - surveyed > 0:
        recommendations.append(
            f"- Raise survey coverage; {total - surveyed:,} encounters have no satisfaction score."
        )
    if not recommendations:
        recommendations.append("- No KPI is past its alert threshold.")

    dropped = quality.get("rows_dropped", {})
    quality_lines = [
        f"- Rows read: {quality.get('rows_read', total)}; rows analysed: {quality.get('rows_kept', total)}",
    ]
    quality_lines += [f"- Dropped ({rule.replace('_', ' ')}): {n}" for rule, n in dropped.items() if n]
    quality_lines += [
        f"- Encounters without a satisfaction score (excluded from CSAT figures): {quality.get('null_satisfaction', 0)}",
        f"- Encounters without a department referral (labelled 'None'): {quality.get('no_department', 0)}",
    ]

    return {
        "TOTAL": f"{total:,}",
        "UNIQUE_PATIENTS": f"{int(overview['unique_patients'] or 0):,}",
        "FIRST_MONTH": months.min() if not months.empty else "n/a",
        "LAST_MONTH": months.max() if not months.empty else "n/a",
        "ADMISSION_RATE": _fmt(overview["admission_rate_pct"]),
        "AVG_WAIT": _fmt(overview["avg_wait_minutes"]),
        "BREACH_MINUTES": BREACH_MINUTES,
        "BREACHES": f"{breaches:,}",
        "BREACH_RATE": _fmt(breach_rate),
        "AVG_CSAT": _fmt(overview["avg_satisfaction"]),
        "SURVEYED": f"{surveyed:,}",
        "SURVEY_RATE": _fmt(surveyed * 100.0 / total if total else float("nan")),
        "DETRACTOR_SHARE": _fmt(detractor_share),
        "DEPARTMENT_FINDING": (
            f"{unreferred_pct:.2f}% of patients were not referred to any department. "
            f"Among referrals, {top_dept} receives the most ({int(top_dept_n):,} encounters)."
        ),
        "TIMING_FINDING": (
            f"Arrivals peak at {busiest_hour}:00 ({int(busiest_hour_n):,} encounters) and "
            f"{busiest_day} is the busiest day of the week."
        ),
        "WAIT_FINDING": (
            f"{_fmt(breach_rate)}% of patients waited longer than "
            f"{BREACH_MINUTES} minutes; {worst_breach_dept} has the highest breach rate ({_fmt(worst_breach_rate)}%)."
        ),
        "CSAT_FINDING": (
            f"{_fmt(promoter_share)}% of respondents are promoters (8-10) and {_fmt(detractor_share)}% detractors; "
            f"{worst_detractor_dept} has the highest detractor rate ({_fmt(worst_detractor_rate)}%)."
        ),
        "CORRELATION_FINDING": describe_correlation(r),
        "RECOMMENDATIONS": "\n".join(recommendations),
        "QUALITY": "\n".join(quality_lines),
        "CHARTS": "\n".join(f"![{Path(p).stem.replace('_', ' ')}]({Path(p).name})" for p in charts) or "(none)",
    }


def write_report(results: Dict[str, pd.DataFrame], quality: Dict, charts: List[Path], out_dir: Path) -> Path:
    """Render the report template and write report.md into out_dir."""
    path = Path(out_dir) / "report.md"
    path.write_text(render(REPORT_TEMPLATE, build_values(results, quality, charts)), encoding="utf-8")
    logger.info("Report written to %s", path)
    return path
