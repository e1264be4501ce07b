import html

import streamlit as st


def _esc(value) -> str:
    if value is None:
        return "--"
    return html.escape(str(value))


def metric_card(
    icon: str,
    label: str,
    value: str,
    subvalue: str | None = None,
    badge: str | None = None,
    value_class: str | None = None,
):
    sub_html = f"<div class=\"metric-sub\">{_esc(subvalue)}</div>" if subvalue else ""
    badge_html = f"<div><span class=\"calibration-badge\">{_esc(badge)}</span></div>" if badge else ""
    value_cls = f"metric-value {value_class}" if value_class else "metric-value"
    st.markdown(
        f"""
        <div class="card metric-card">
          <div class="metric-icon">{_esc(icon)}</div>
          <div class="metric-body">
            <div class="metric-label">{_esc(label)}</div>
            <div class="{value_cls}">{_esc(value)}</div>
            {sub_html}
            {badge_html}
          </div>
        </div>
        """,
        unsafe_allow_html=True,
    )


def chart_card(title: str | None, body_renderer):
    if title and title.strip():
        st.markdown(f"<div class=\"chart-label\">{_esc(title)}</div>", unsafe_allow_html=True)
    with st.container(border=True):
        body_renderer()


def alert_banner(kind: str, title: str, text: str):
    st.markdown(
        f"""
        <div class="alert-banner {_esc(kind)}">
          <strong>{_esc(title)}</strong><br/>
          <span>{_esc(text)}</span>
        </div>
        """,
        unsafe_allow_html=True,
    )
