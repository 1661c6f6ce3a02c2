"""
streamlit_app.py
----------------
Interactive view of the ER encounter KPIs.

How to use:
1) Point ENCOUNTERS_CSV at the encounter file (or generate one with etl/synth_data.py).
2) Launch Streamlit with: `streamlit run dashboard/streamlit_app.py`
3) Explore KPIs and charts.

The dashboard runs the same queries as etl/pipeline.py against its own
in-memory copy of the CSV; nothing is written anywhere.
"""

import streamlit as st

from etl import settings
from etl.pipeline import build_engine, clean, extract
from etl.queries import pearson_from_stats, run_all
from etl.report import format_kpi

# Configure Streamlit page
st.set_page_config(page_title="Hospital ER KPIs", layout="wide")


@st.cache_resource
def load_data(path: str):
    """Clean the CSV once per session and load it into an in-memory engine."""
    encounters, quality = clean(extract(path))
    return build_engine(encounters), encounters, quality


@st.cache_data
def load_results(path: str):
    engine, _, _ = load_data(path)
    return run_all(engine)


# ---------------------------
# Header + Intro
# ---------------------------
st.title("🏥 Hospital ER Dashboard")
csv_path = st.sidebar.text_input("Encounter CSV", settings.ENCOUNTERS_CSV)
st.caption(f"Aggregates computed with pandas + SQLAlchemy over `{csv_path}`.")

try:
    _, encounters, quality = load_data(csv_path)
except FileNotFoundError:
    st.error(f"File not found: {csv_path}. Generate sample data with `python etl/synth_data.py`.")
    st.stop()

results = load_results(csv_path)
overview = results["overview"].iloc[0]

# ---------------------------
# Top-level KPIs
# ---------------------------
col1, col2, col3, col4 = st.columns(4)
col1.metric("Encounters", format_kpi(overview["total_encounters"], digits=0))
col2.metric("Admission Rate", format_kpi(overview["admission_rate_pct"], suffix="%"))
col3.metric("Average Wait (min)", format_kpi(overview["avg_wait_minutes"]))
col4.metric("Average CSAT", format_kpi(overview["avg_satisfaction"], digits=2))

if quality["rows_kept"] < quality["rows_read"]:
    st.warning(f"{quality['rows_read'] - quality['rows_kept']} malformed rows were left out of the analysis.")

st.divider()

# ---------------------------
# Department + wait time
# ---------------------------
left, right = st.columns(2)
with left:
    st.subheader("Encounters by Referred Department")
    st.bar_chart(results["by_department"].set_index("department_referral")["encounters"])
with right:
    st.subheader("Wait Time Distribution")
    st.bar_chart(results["wait_buckets"].set_index("wait_bucket")["encounters"])

st.subheader("Breach Rate by Department")
st.dataframe(results["breach_by_department"], hide_index=True)

st.divider()

# ---------------------------
# Patient experience
# ---------------------------
st.subheader("Patient Experience Funnel")
st.dataframe(results["patient_funnel"], hide_index=True)

r = pearson_from_stats(results["wait_satisfaction_stats"])
st.metric("Wait vs Satisfaction (Pearson r)", format_kpi(r, digits=3))

st.subheader("Monthly Volume")
st.line_chart(results["monthly_volume"].set_index("month")["encounters"])

with st.expander("Cleaned encounter rows"):
    st.dataframe(encounters.head(200), hide_index=True)

st.divider()
st.caption("Run `python -m etl.pipeline` to render the static charts and the written report.")
