#!/usr/bin/env python3
"""
Streamlit dashboard for the KPC conversational-AI usage survey.

Run locally:
    streamlit run kpc_dashboard.py

The page follows the published Google Sheets CSV export and re-fetches it
every minute (``KPC_REFRESH_SECONDS``), or summarises a CSV you upload or
point the sidebar at on disk.
"""
from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Dict, List, Optional

import plotly.graph_objects as go
import streamlit as st

from dashboard_config import DEFAULT_DATA_FILE, DashboardSettings
from survey_aggregator import (
    GROUP_LABELS,
    Group,
    ResolvedColumns,
    SurveySummary,
    summarize,
)
from survey_source import (
    SheetAccessError,
    SnapshotStore,
    SurveyLoadError,
    load_sheet,
    read_table,
    refresh,
)

SOURCE_SHEET = "구글 시트 (자동 갱신)"
SOURCE_UPLOAD = "CSV 업로드"
SOURCE_PATH = "디스크 경로"

GROUP_COLORS = {
    Group.NEW: "#a78bfa",
    Group.EXISTING: "#f472b6",
}

PIE_COLORS = [
    "#6366f1",
    "#a855f7",
    "#ec4899",
    "#f59e0b",
    "#10b981",
    "#06b6d4",
    "#3b82f6",
    "#ef4444",
    "#84cc16",
    "#64748b",
]

FIELD_LABELS = {
    "affiliation": "소속 (Q1)",
    "major": "전공 (Q3)",
    "usage": "대화형 AI 사용 (Q4)",
    "paid": "유료 결제 (Q5)",
}

STORE_KEY = "kpc_snapshot_store"
LOADING_MESSAGE = "불러오는 중…"


def build_tool_usage_figure(summary: SurveySummary) -> go.Figure:
    frame = summary.tool_usage_frame()
    bars = [
        go.Bar(
            name=GROUP_LABELS[group],
            x=frame["tool"],
            y=frame[GROUP_LABELS[group]],
            marker=dict(color=GROUP_COLORS[group]),
            hovertemplate=f"<b>%{{x}}</b><br>{GROUP_LABELS[group]}: %{{y}}<extra></extra>",
        )
        for group in (Group.NEW, Group.EXISTING)
    ]
    fig = go.Figure(bars)
    fig.update_layout(
        barmode="group",
        title="대화형 AI 사용 (신입 vs 기존)",
        xaxis=dict(title=None),
        yaxis=dict(title="응답 수", rangemode="tozero"),
        height=380,
        margin=dict(l=40, r=20, t=60, b=40),
        legend=dict(orientation="h", y=1.12, x=0.5, xanchor="center"),
        template="plotly_white",
    )
    return fig


def build_major_pie_figure(summary: SurveySummary, top_n: int = 10) -> go.Figure:
    frame = summary.major_frame()
    fig = go.Figure(
        go.Pie(
            labels=frame["name"],
            values=frame["value"],
            marker=dict(colors=PIE_COLORS[: len(frame)]),
            textinfo="label+value",
            sort=False,
        )
    )
    fig.update_layout(
        title=f"전공 분포 (상위 {top_n})",
        height=380,
        margin=dict(l=20, r=20, t=60, b=20),
        template="plotly_white",
    )
    return fig


def build_conversion_markup(summary: SurveySummary) -> str:
    if not summary.conversion:
        return (
            "<div class='conversion-empty'>"
            "데이터가 아직 없거나 헤더가 달라서 집계가 0일 수 있음."
            "</div>"
        )

    rows: List[str] = []
    for entry in summary.conversion:
        width = max(0.0, min(100.0, float(entry.rate)))
        rows.append(
            f"""
        <div class="conversion-row">
            <div style="display:flex;justify-content:space-between;font-size:14px;">
                <strong>{escape(entry.tool)}</strong>
                <span>{entry.paid}/{entry.users} · {entry.rate:g}%</span>
            </div>
            <div style="height:10px;border-radius:5px;background:#e4e7ec;overflow:hidden;">
                <div style="height:100%;width:{width}%;background:#a855f7;"></div>
            </div>
        </div>
        """
        )
    return "<div class='conversion-list'>" + "".join(rows) + "</div>"


def describe_missing_columns(columns: ResolvedColumns) -> Optional[str]:
    missing = columns.missing()
    if not missing:
        return None
    labels = ", ".join(FIELD_LABELS[name] for name in missing)
    return f"다음 항목의 열을 찾지 못해 0 또는 '미응답'으로 집계됩니다: {labels}"


def source_caption(source: str, loaded_at) -> str:
    stamp = loaded_at.strftime("%H:%M:%S") if loaded_at else "N/A"
    return f"Source: {source or 'N/A'} | Last updated: {stamp}"


def render_metrics(summary: SurveySummary) -> None:
    cols = st.columns(3)
    cols[0].metric("총 응답자 수", summary.total)
    cols[1].metric("신입사원", summary.new_count)
    cols[2].metric("기존직원", summary.existing_count)


def render_summary(summary: SurveySummary, settings: DashboardSettings) -> None:
    warning = describe_missing_columns(summary.columns)
    if warning and summary.total:
        st.warning(warning)

    render_metrics(summary)
    st.plotly_chart(build_tool_usage_figure(summary), width="stretch")

    left, right = st.columns(2)
    with left:
        st.plotly_chart(build_major_pie_figure(summary, settings.top_n), width="stretch")
    with right:
        st.subheader("AI 도구별 유료 전환율")
        st.markdown(build_conversion_markup(summary), unsafe_allow_html=True)


def summarize_for_page(table, settings: DashboardSettings) -> SurveySummary:
    return summarize(
        table, top_n=settings.top_n, rate_decimals=settings.rate_decimals
    )


def get_store() -> SnapshotStore:
    if STORE_KEY not in st.session_state:
        st.session_state[STORE_KEY] = SnapshotStore()
    return st.session_state[STORE_KEY]


def refresh_sheet(store: SnapshotStore, fetch, url: str, spinner=st.spinner) -> bool:
    with spinner(LOADING_MESSAGE):
        return refresh(store, fetch, source=url)


def render_sheet(settings: DashboardSettings) -> None:
    store = get_store()
    url = settings.csv_url

    def fetch():
        return load_sheet(url, timeout=settings.fetch_timeout)

    @st.fragment(run_every=settings.refresh_seconds)
    def live_view() -> None:
        st.button("지금 새로고침")
        refresh_sheet(store, fetch, url)

        snapshot = store.snapshot()
        if isinstance(snapshot.error, SheetAccessError):
            st.error(str(snapshot.error))
        elif snapshot.error is not None:
            st.error(f"에러: {snapshot.error}")

        if snapshot.table is None:
            st.info("아직 불러온 데이터가 없습니다.")
            return

        st.caption(source_caption(snapshot.source, snapshot.loaded_at))
        render_summary(summarize_for_page(snapshot.table, settings), settings)

    st.caption(
        f"구글 시트 CSV 자동 연동 ({settings.refresh_seconds}초 갱신) · {url}"
    )
    live_view()


def load_local(uploaded, manual_path: str) -> Dict[str, object]:
    if uploaded is not None:
        return {"table": read_table(uploaded), "label": uploaded.name}
    if manual_path:
        candidate = Path(manual_path).expanduser()
        if candidate.exists():
            return {"table": read_table(candidate), "label": candidate.name}
        st.sidebar.error(f"No file found at {candidate}")
    return {"table": None, "label": ""}


def render_local(settings: DashboardSettings, mode: str) -> None:
    uploaded = None
    manual_path = ""
    if mode == SOURCE_UPLOAD:
        uploaded = st.sidebar.file_uploader(
            "Upload CSV export", type="csv", accept_multiple_files=False
        )
    else:
        default_path = DEFAULT_DATA_FILE if DEFAULT_DATA_FILE.exists() else None
        manual_path = st.sidebar.text_input(
            "…or load from a path on disk", value=str(default_path) if default_path else ""
        )

    try:
        loaded = load_local(uploaded, manual_path)
    except SurveyLoadError as exc:
        st.error(f"Error reading the file: {exc}")
        return

    if loaded["table"] is None:
        st.info("Provide a CSV via the uploader or sidebar path to populate the dashboard.")
        return

    st.caption(f"Source file: {loaded['label'] or 'uploaded file'}")
    render_summary(summarize_for_page(loaded["table"], settings), settings)


def main() -> None:
    st.set_page_config(page_title="KPC AI Dashboard", layout="wide")
    st.title("KPC AI Dashboard")

    try:
        settings = DashboardSettings.from_env()
    except ValueError as exc:
        st.error(f"Invalid configuration: {exc}")
        st.stop()

    st.sidebar.header("Data source")
    mode = st.sidebar.radio(
        "데이터 소스", [SOURCE_SHEET, SOURCE_UPLOAD, SOURCE_PATH], index=0
    )

    if mode == SOURCE_SHEET:
        render_sheet(settings)
    else:
        render_local(settings, mode)


if __name__ == "__main__":
    main()
