"""
queries.py
----------
The fixed set of aggregate queries behind the ER encounter report.

Every query reads only the `encounters` table and is independent of the
others. Queries are kept in a single ordered registry so the pipeline, the
dashboard and the tests all run exactly the same SQL.

Dialect: SQLite (window functions need SQLite >= 3.25).
"""

import logging
from typing import Dict, Tuple

import numpy as np
import pandas as pd
from sqlalchemy import text
from sqlalchemy.engine import Engine

from etl.buckets import (
    AGE_GROUPS,
    BREACH_MINUTES,
    SATISFACTION_SEGMENTS,
    WAIT_BUCKETS,
    case_expression,
    order_expression,
)

logger = logging.getLogger(__name__)

# ---------------------------
# Reusable SQL fragments
# ---------------------------
AGE_GROUP = case_expression("age", AGE_GROUPS)
AGE_ORDER = order_expression("age", AGE_GROUPS)
WAIT_BUCKET = case_expression("wait_time", WAIT_BUCKETS)
WAIT_ORDER = order_expression("wait_time", WAIT_BUCKETS)
CSAT_SEGMENT = case_expression("satisfaction_score", SATISFACTION_SEGMENTS)
CSAT_ORDER = order_expression("satisfaction_score", SATISFACTION_SEGMENTS)

# Upper bound (exclusive) of the Detractor segment and lower bound of Promoter
DETRACTOR_BELOW = SATISFACTION_SEGMENTS[0][2]
PROMOTER_FROM = SATISFACTION_SEGMENTS[-1][1]

PCT_OF_TOTAL = "ROUND(COUNT(*) * 100.0 / SUM(COUNT(*)) OVER (), 2)"
IS_BREACH = f"CASE WHEN wait_time > {BREACH_MINUTES} THEN 1 ELSE 0 END"
HOUR = "CAST(substr(admission_time, 1, 2) AS INTEGER)"
# strftime('%w') is 0 for Sunday; shift so Monday is 0
DAY_INDEX = "((CAST(strftime('%w', admission_date) AS INTEGER) + 6) % 7)"
WEEKDAY_NAME = (
    f"CASE {DAY_INDEX} WHEN 0 THEN 'Monday' WHEN 1 THEN 'Tuesday' WHEN 2 THEN 'Wednesday' "
    "WHEN 3 THEN 'Thursday' WHEN 4 THEN 'Friday' WHEN 5 THEN 'Saturday' ELSE 'Sunday' END"
)

# ---------------------------
# Query registry: name -> (title, sql)
# ---------------------------
QUERIES: Dict[str, Tuple[str, str]] = {
    "overview": ("Overall ER Metrics", f"""
        SELECT
            COUNT(*) AS total_encounters,
            COUNT(DISTINCT patient_id) AS unique_patients,
            SUM(admission_flag) AS admitted,
            ROUND(AVG(admission_flag) * 100.0, 2) AS admission_rate_pct,
            ROUND(AVG(wait_time), 2) AS avg_wait_minutes,
            SUM({IS_BREACH}) AS breaches,
            COUNT(satisfaction_score) AS surveyed,
            ROUND(AVG(satisfaction_score), 2) AS avg_satisfaction
        FROM encounters
    """),

    "by_gender": ("Encounters by Gender", f"""
        SELECT gender,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total
        FROM encounters
        GROUP BY gender
        ORDER BY encounters DESC, gender
    """),

    "by_race": ("Encounters by Race", f"""
        SELECT race,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total,
               ROUND(AVG(satisfaction_score), 2) AS avg_satisfaction
        FROM encounters
        GROUP BY race
        ORDER BY encounters DESC, race
    """),

    "by_age_group": ("Encounters by Age Group", f"""
        SELECT {AGE_GROUP} AS age_group,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total,
               ROUND(AVG(admission_flag) * 100.0, 2) AS admission_rate_pct,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes
        FROM encounters
        GROUP BY age_group
        ORDER BY MIN({AGE_ORDER})
    """),

    "by_department": ("Encounters by Referred Department", f"""
        SELECT department_referral,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total,
               ROUND(AVG(admission_flag) * 100.0, 2) AS admission_rate_pct,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes,
               ROUND(AVG(satisfaction_score), 2) AS avg_satisfaction
        FROM encounters
        GROUP BY department_referral
        ORDER BY encounters DESC, department_referral
    """),

    "wait_buckets": ("Wait Time Distribution", f"""
        SELECT {WAIT_BUCKET} AS wait_bucket,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total
        FROM encounters
        GROUP BY wait_bucket
        ORDER BY MIN({WAIT_ORDER})
    """),

    "breach_by_department": (f"Wait Breaches (> {BREACH_MINUTES} min) by Department", f"""
        SELECT department_referral,
               COUNT(*) AS encounters,
               SUM({IS_BREACH}) AS breaches,
               ROUND(SUM({IS_BREACH}) * 100.0 / COUNT(*), 2) AS breach_rate_pct
        FROM encounters
        GROUP BY department_referral
        ORDER BY breach_rate_pct DESC, department_referral
    """),

    "satisfaction_segments": ("Satisfaction Segments (surveyed patients)", f"""
        SELECT {CSAT_SEGMENT} AS segment,
               COUNT(*) AS patients,
               {PCT_OF_TOTAL} AS pct_of_total
        FROM encounters
        WHERE satisfaction_score IS NOT NULL
        GROUP BY segment
        ORDER BY MIN({CSAT_ORDER})
    """),

    "satisfaction_by_wait_bucket": ("Satisfaction by Wait Time", f"""
        SELECT {WAIT_BUCKET} AS wait_bucket,
               COUNT(*) AS surveyed,
               ROUND(AVG(satisfaction_score), 2) AS avg_satisfaction
        FROM encounters
        WHERE satisfaction_score IS NOT NULL
        GROUP BY wait_bucket
        ORDER BY MIN({WAIT_ORDER})
    """),

    "detractors_by_department": ("Detractors by Department", f"""
        SELECT department_referral,
               COUNT(satisfaction_score) AS surveyed,
               SUM(CASE WHEN satisfaction_score < {DETRACTOR_BELOW} THEN 1 ELSE 0 END) AS detractors,
               ROUND(SUM(CASE WHEN satisfaction_score < {DETRACTOR_BELOW} THEN 1 ELSE 0 END) * 100.0
                     / NULLIF(COUNT(satisfaction_score), 0), 2) AS detractor_rate_pct
        FROM encounters
        GROUP BY department_referral
        ORDER BY detractor_rate_pct DESC, department_referral
    """),

    "monthly_volume": ("Monthly Encounter Volume", """
        SELECT strftime('%Y-%m', admission_date) AS month,
               COUNT(*) AS encounters,
               SUM(admission_flag) AS admissions,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes
        FROM encounters
        GROUP BY month
        ORDER BY month
    """),

    "weekday_volume": ("Encounters by Day of Week", f"""
        SELECT {WEEKDAY_NAME} AS weekday,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes
        FROM encounters
        GROUP BY {DAY_INDEX}
        ORDER BY {DAY_INDEX}
    """),

    "hourly_volume": ("Encounters by Hour of Admission", f"""
        SELECT {HOUR} AS hour,
               COUNT(*) AS encounters,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes
        FROM encounters
        GROUP BY hour
        ORDER BY hour
    """),

    "weekday_hour_matrix": ("Encounters by Day and Hour", f"""
        SELECT {DAY_INDEX} AS day_index,
               {WEEKDAY_NAME} AS weekday,
               {HOUR} AS hour,
               COUNT(*) AS encounters
        FROM encounters
        GROUP BY day_index, hour
        ORDER BY day_index, hour
    """),

    "weekend_vs_weekday": ("Weekend vs Weekday", f"""
        SELECT CASE WHEN strftime('%w', admission_date) IN ('0', '6') THEN 'Weekend' ELSE 'Weekday' END AS day_type,
               COUNT(*) AS encounters,
               {PCT_OF_TOTAL} AS pct_of_total,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes,
               ROUND(AVG(admission_flag) * 100.0, 2) AS admission_rate_pct
        FROM encounters
        GROUP BY day_type
        ORDER BY day_type
    """),

    "gender_by_department": ("Gender Mix within each Department", """
        SELECT department_referral,
               gender,
               COUNT(*) AS encounters,
               ROUND(COUNT(*) * 100.0 / SUM(COUNT(*)) OVER (PARTITION BY department_referral), 2)
                   AS pct_of_department
        FROM encounters
        GROUP BY department_referral, gender
        ORDER BY department_referral, gender
    """),

    "admission_by_age_and_gender": ("Admission Rate by Age Group and Gender", f"""
        SELECT {AGE_GROUP} AS age_group,
               gender,
               COUNT(*) AS encounters,
               SUM(admission_flag) AS admitted,
               ROUND(AVG(admission_flag) * 100.0, 2) AS admission_rate_pct
        FROM encounters
        GROUP BY age_group, gender
        ORDER BY MIN({AGE_ORDER}), gender
    """),

    "wait_satisfaction_stats": ("Wait Time vs Satisfaction (correlation inputs)", """
        SELECT COUNT(*) AS n,
               SUM(wait_time * 1.0) AS sum_x,
               SUM(satisfaction_score * 1.0) AS sum_y,
               SUM(wait_time * satisfaction_score * 1.0) AS sum_xy,
               SUM(wait_time * wait_time * 1.0) AS sum_xx,
               SUM(satisfaction_score * satisfaction_score * 1.0) AS sum_yy
        FROM encounters
        WHERE satisfaction_score IS NOT NULL
    """),

    "patient_funnel": ("Patient Experience Funnel", f"""
        WITH stages AS (
            SELECT 1 AS stage_order, 'All encounters' AS stage, COUNT(*) AS encounters
            FROM encounters
            UNION ALL
            SELECT 2, 'Surveyed', COUNT(*)
            FROM encounters WHERE satisfaction_score IS NOT NULL
            UNION ALL
            SELECT 3, 'Not a detractor', COUNT(*)
            FROM encounters WHERE satisfaction_score >= {DETRACTOR_BELOW}
            UNION ALL
            SELECT 4, 'Promoter', COUNT(*)
            FROM encounters WHERE satisfaction_score >= {PROMOTER_FROM}
        )
        SELECT stage,
               encounters,
               ROUND(encounters * 100.0 / NULLIF(FIRST_VALUE(encounters) OVER (ORDER BY stage_order), 0), 2)
                   AS pct_of_total,
               ROUND(encounters * 100.0 / NULLIF(LAG(encounters) OVER (ORDER BY stage_order), 0), 2)
                   AS pct_of_previous
        FROM stages
        ORDER BY stage_order
    """),

    "top_wait_days": ("Ten Days with the Longest Average Wait", """
        SELECT admission_date,
               COUNT(*) AS encounters,
               ROUND(AVG(wait_time), 2) AS avg_wait_minutes
        FROM encounters
        GROUP BY admission_date
        ORDER BY AVG(wait_time) DESC, admission_date
        LIMIT 10
    """),

    "breach_by_hour": (f"Wait Breaches (> {BREACH_MINUTES} min) by Hour", f"""
        SELECT {HOUR} AS hour,
               COUNT(*) AS encounters,
               SUM({IS_BREACH}) AS breaches,
               ROUND(SUM({IS_BREACH}) * 100.0 / COUNT(*), 2) AS breach_rate_pct
        FROM encounters
        GROUP BY hour
        ORDER BY hour
    """),
}


def run_query(engine: Engine, name: str) -> pd.DataFrame:
    """Run one named query and return its result as a DataFrame.

    Raises KeyError for an unknown query name.
    """
    _, sql = QUERIES[name]
    with engine.connect() as conn:
        df = pd.read_sql(text(sql), conn)
    logger.debug("Query %s returned %d rows", name, len(df))
    return df


def run_all(engine: Engine) -> Dict[str, pd.DataFrame]:
    """Run every registered query, in registry order."""
    return {name: run_query(engine, name) for name in QUERIES}


def title(name: str) -> str:
    return QUERIES[name][0]


def pearson_from_stats(stats: pd.DataFrame) -> float:
    """Finish the Pearson coefficient from the sums in `wait_satisfaction_stats`.

    SQLite has no SQRT, so the query returns the raw sums and the final ratio
    is computed here. Returns NaN when fewer than two rows or a variable is
    constant.
    """
    row = stats.iloc[0]
    n = float(row["n"] or 0)
    if n < 2:
        return float("nan")
    sx, sy = float(row["sum_x"]), float(row["sum_y"])
    cov = n * float(row["sum_xy"]) - sx * sy
    var_x = n * float(row["sum_xx"]) - sx * sx
    var_y = n * float(row["sum_yy"]) - sy * sy
    if var_x <= 0 or var_y <= 0:
        return float("nan")
    r = cov / np.sqrt(var_x * var_y)
    # guard against floating point drift just outside [-1, 1]
    return float(np.clip(r, -1.0, 1.0))
