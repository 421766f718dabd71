import os
import streamlit as st
import pandas as pd
from sqlalchemy import create_engine, text as sqltext
from datetime import datetime, timedelta
import plotly.express as px

st.set_page_config(page_title="Fabric Production Dashboard", layout="wide")

DB_HOST = os.getenv("DB_HOST","localhost")
DB_PORT = int(os.getenv("DB_PORT","3306"))
DB_NAME = os.getenv("DB_NAME","fabtrack")
DB_USER = os.getenv("DB_USER","app")
DB_PASS = os.getenv("DB_PASS","app123")
DATABASE_URL = os.getenv("DATABASE_URL") or f"mysql+pymysql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}?charset=utf8mb4"

engine = create_engine(DATABASE_URL)

st.sidebar.header("Filters")
company = st.sidebar.text_input("Company ID", os.getenv("COMPANY_ID", ""))
today = datetime.now().date()
start_date = st.sidebar.date_input("From", today - timedelta(days=30))
end_date = st.sidebar.date_input("To", today)

st.sidebar.markdown("---")
st.sidebar.header("Actions")
api_host = os.getenv("API_HOST", "api")  # service name inside docker
api_port = int(os.getenv("API_PORT", "8000"))
api_headers = {"X-Company-Id": company, "X-Token": os.getenv("API_TOKEN", "")}
resync_day = st.sidebar.date_input("Resync day", today)
if st.sidebar.button("Recompute summary for day"):
    import requests
    try:
        r = requests.post(f"http://{api_host}:{api_port}/api/production/summary/{resync_day}/resync",
                          headers=api_headers, timeout=120)
        st.sidebar.success(f"Triggered: {r.status_code} {r.text[:200]}")
    except Exception as e:
        st.sidebar.error(f"Trigger failed: {e}")

def load_summaries():
    q = "SELECT * FROM daily_summaries WHERE company_id=:c AND date>=:st AND date<=:ed ORDER BY date"
    return pd.read_sql(sqltext(q), engine, params={"c": company, "st": str(start_date), "ed": str(end_date)})

def load_review_queue():
    q = ("SELECT id, date, shift, machine_id, status, overall_confidence, processing_error, created_at "
         "FROM screenshot_records WHERE company_id=:c AND status IN ('manual_review','failed') "
         "ORDER BY created_at DESC LIMIT 200")
    return pd.read_sql(sqltext(q), engine, params={"c": company})

st.title("Fabric Production Dashboard")

if not company:
    st.info("Enter a company ID in the sidebar.")
    st.stop()

tabs = st.tabs(["Overview", "Electricity", "Screenshot review"])

with tabs[0]:
    dm = load_summaries()
    if dm.empty:
        st.info("No summaries in this range yet.")
    else:
        eff = dm.melt(id_vars="date", value_vars=["day_efficiency", "night_efficiency", "total_efficiency"],
                      var_name="series", value_name="efficiency")
        st.plotly_chart(px.line(eff, x="date", y="efficiency", color="series", markers=True), use_container_width=True)
        meters = dm.melt(id_vars="date", value_vars=["day_meter", "night_meter"], var_name="shift", value_name="meter")
        st.plotly_chart(px.bar(meters, x="date", y="meter", color="shift"), use_container_width=True)
        st.metric("Avg weighted efficiency (%)", f"{dm['total_efficiency'].mean():.2f}")
        st.metric("Total meter", f"{dm['total_meter'].sum():,.0f}")
        st.download_button(
            "Download summaries (CSV)",
            dm.to_csv(index=False).encode("utf-8"),
            "summaries_filtered.csv",
            "text/csv",
        )

with tabs[1]:
    dm = load_summaries()
    if dm.empty:
        st.info("No data")
    else:
        st.plotly_chart(px.bar(dm, x="date", y="total_units_consumed"), use_container_width=True)
        st.plotly_chart(px.line(dm, x="date", y="units_per_meter", markers=True), use_container_width=True)
        units = dm["total_units_consumed"].sum()
        meter = dm["total_meter"].sum()
        st.write(f"Units: {units:,.1f}, units/meter: {(units / meter) if meter else 0:.4f}")

with tabs[2]:
    rq = load_review_queue()
    if rq.empty:
        st.info("Nothing waiting for review.")
    else:
        st.write("Extractions below the confidence threshold or failed; verify them through the API.")
        st.dataframe(rq)


st.caption("Total efficiency weights day shift 14h and night shift 10h. Double machines count twice for meter and pick.")
