import numpy as np
import pandas as pd
import pytest

from etl.pipeline import build_engine, clean
from etl.queries import QUERIES, pearson_from_stats, run_all, run_query
from etl.synth_data import gen_encounters

# query name -> count column, for every query that partitions the whole table
PARTITIONS = {
    "by_gender": "encounters",
    "by_race": "encounters",
    "by_age_group": "encounters",
    "by_department": "encounters",
    "wait_buckets": "encounters",
    "breach_by_department": "encounters",
    "monthly_volume": "encounters",
    "weekday_volume": "encounters",
    "hourly_volume": "encounters",
    "weekday_hour_matrix": "encounters",
    "weekend_vs_weekday": "encounters",
    "gender_by_department": "encounters",
    "admission_by_age_and_gender": "encounters",
    "breach_by_hour": "encounters",
}

PCT_OF_TOTAL = ["by_gender", "by_race", "by_age_group", "by_department", "wait_buckets",
                "satisfaction_segments", "weekday_volume", "weekend_vs_weekday"]


def test_registry_has_all_queries(results):
    assert len(QUERIES) >= 20
    assert list(results) == list(QUERIES)


def test_overview(results):
    row = results["overview"].iloc[0]
    assert row["total_encounters"] == 10
    assert row["unique_patients"] == 9
    assert row["admitted"] == 5
    assert row["admission_rate_pct"] == pytest.approx(50.0)
    assert row["avg_wait_minutes"] == pytest.approx(39.4)
    assert row["breaches"] == 2
    assert row["surveyed"] == 7
    assert row["avg_satisfaction"] == pytest.approx(5.86)


@pytest.mark.parametrize("name, count_col", PARTITIONS.items())
def test_group_counts_sum_to_total(results, name, count_col):
    assert results[name][count_col].sum() == 10


@pytest.mark.parametrize("name", PCT_OF_TOTAL)
def test_percentages_sum_to_100(results, name):
    assert results[name]["pct_of_total"].sum() == pytest.approx(100.0, abs=0.05)


def test_gender_share_within_each_department_sums_to_100(results):
    sums = results["gender_by_department"].groupby("department_referral")["pct_of_department"].sum()
    assert sums.tolist() == pytest.approx([100.0] * len(sums), abs=0.05)


def test_department_nulls_coalesced(results):
    dept = results["by_department"].set_index("department_referral")["encounters"]
    assert dept.to_dict() == {"None": 4, "General Practice": 3, "Orthopedics": 2, "Cardiology": 1}


def test_wait_buckets(results):
    df = results["wait_buckets"]
    assert df["wait_bucket"].tolist() == ["0-15", "16-30", "31-45", "46-60", ">60"]
    assert df["encounters"].tolist() == [2, 2, 2, 2, 2]
    assert df["pct_of_total"].tolist() == pytest.approx([20.0] * 5)


def test_age_groups_in_order(results):
    df = results["by_age_group"]
    assert df["age_group"].tolist() == ["0-9", "10-19", "20-29", "30-39", "40-49", "50-59", "60-69", "70-79"]
    assert df.loc[df["age_group"] == "0-9", "encounters"].iloc[0] == 3


def test_breach_by_department(results):
    df = results["breach_by_department"].set_index("department_referral")
    assert df.loc["Orthopedics", "breaches"] == 1
    assert df.loc["Orthopedics", "breach_rate_pct"] == pytest.approx(50.0)
    assert df.loc["None", "breach_rate_pct"] == pytest.approx(25.0)
    assert df.loc["General Practice", "breaches"] == 0
    assert results["breach_by_department"]["department_referral"].iloc[0] == "Orthopedics"


def test_satisfaction_segments_exclude_unsurveyed(results):
    df = results["satisfaction_segments"].set_index("segment")
    assert df["patients"].to_dict() == {"Detractor": 3, "Passive": 1, "Promoter": 3}
    assert df["patients"].sum() == 7


def test_detractors_by_department(results):
    df = results["detractors_by_department"].set_index("department_referral")
    assert df.loc["Orthopedics", "surveyed"] == 2
    assert df.loc["Orthopedics", "detractors"] == 2
    assert df.loc["Orthopedics", "detractor_rate_pct"] == pytest.approx(100.0)
    # no survey responses -> rate is undefined, not zero
    assert df.loc["Cardiology", "surveyed"] == 0
    assert pd.isna(df.loc["Cardiology", "detractor_rate_pct"])


def test_satisfaction_by_wait_bucket_counts_only_surveyed(results):
    assert results["satisfaction_by_wait_bucket"]["surveyed"].sum() == 7


def test_calendar_queries(results):
    monthly = results["monthly_volume"]
    assert monthly["month"].tolist() == ["2020-03", "2020-04"]
    assert monthly["encounters"].tolist() == [5, 5]

    weekday = results["weekday_volume"].set_index("weekday")["encounters"]
    assert list(weekday.index) == ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
    assert weekday.to_dict() == {"Monday": 2, "Tuesday": 1, "Wednesday": 2, "Thursday": 1,
                                 "Friday": 2, "Saturday": 1, "Sunday": 1}

    split = results["weekend_vs_weekday"].set_index("day_type")["encounters"]
    assert split.to_dict() == {"Weekday": 8, "Weekend": 2}

    hourly = results["hourly_volume"].set_index("hour")["encounters"]
    assert hourly.to_dict() == {0: 1, 8: 2, 9: 1, 12: 1, 14: 2, 20: 2, 23: 1}


def test_top_wait_days(results):
    df = results["top_wait_days"]
    assert df["admission_date"].iloc[0] == "2020-04-02"
    assert df["avg_wait_minutes"].iloc[0] == pytest.approx(61.0)
    assert df["avg_wait_minutes"].is_monotonic_decreasing


def test_patient_funnel(results):
    df = results["patient_funnel"]
    assert df["stage"].tolist() == ["All encounters", "Surveyed", "Not a detractor", "Promoter"]
    assert df["encounters"].tolist() == [10, 7, 4, 3]
    assert df["encounters"].is_monotonic_decreasing
    assert df["pct_of_total"].tolist() == pytest.approx([100.0, 70.0, 40.0, 30.0])
    assert pd.isna(df["pct_of_previous"].iloc[0])
    assert df["pct_of_previous"].iloc[3] == pytest.approx(75.0)


def test_correlation_matches_numpy(results, encounters):
    r = pearson_from_stats(results["wait_satisfaction_stats"])
    surveyed = encounters.dropna(subset=["satisfaction_score"])
    expected = np.corrcoef(surveyed["wait_time"].astype(float), surveyed["satisfaction_score"].astype(float))[0, 1]
    assert -1.0 <= r <= 1.0
    assert r == pytest.approx(expected)


def test_correlation_undefined_cases():
    too_few = pd.DataFrame([{"n": 1, "sum_x": 10.0, "sum_y": 5.0, "sum_xy": 50.0, "sum_xx": 100.0, "sum_yy": 25.0}])
    assert np.isnan(pearson_from_stats(too_few))
    # constant wait time -> zero variance
    constant = pd.DataFrame([{"n": 3, "sum_x": 30.0, "sum_y": 6.0, "sum_xy": 60.0, "sum_xx": 300.0, "sum_yy": 14.0}])
    assert np.isnan(pearson_from_stats(constant))


def test_perfect_correlation_is_clipped_to_one():
    # x = 1, 2, 3 ; y = 2, 4, 6
    stats = pd.DataFrame([{"n": 3, "sum_x": 6.0, "sum_y": 12.0, "sum_xy": 28.0, "sum_xx": 14.0, "sum_yy": 56.0}])
    assert pearson_from_stats(stats) == pytest.approx(1.0)
    assert pearson_from_stats(stats) <= 1.0


def test_unknown_query_raises(engine):
    with pytest.raises(KeyError):
        run_query(engine, "no_such_query")


def test_properties_hold_on_synthetic_data(tmp_path):
    path = tmp_path / "er.csv"
    gen_encounters(600, seed=7).to_csv(path, index=False)
    encounters, _ = clean(pd.read_csv(path, dtype=str))
    results = run_all(build_engine(encounters))

    total = len(encounters)
    for name, count_col in PARTITIONS.items():
        assert results[name][count_col].sum() == total, name
    for name in PCT_OF_TOTAL:
        assert results[name]["pct_of_total"].sum() == pytest.approx(100.0, abs=0.1), name

    r = pearson_from_stats(results["wait_satisfaction_stats"])
    assert -1.0 <= r <= 1.0
    # satisfaction is generated to fall as waits grow
    assert r < 0
