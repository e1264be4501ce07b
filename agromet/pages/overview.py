from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import streamlit as st

from agromet.calibration import HUMIDITY_SENSOR_KEY, TEMP_SENSOR_KEY, calibrate_series, sensor_offset
from agromet.live_feed import LoadStatus
from agromet.series import aggregate, latest, to_frame
from agromet.settings import TIME_RANGES, range_window
from agromet.status import derive_status, format_age, status_class
from agromet.ui.cards import alert_banner, chart_card, metric_card
from agromet.ui.charts import humidity_chart, temperature_chart
from agromet.ui.shell import render_header_strip


def fmt_value(value, fmt_str="{:.1f}", suffix="", fallback="--"):
    if value is None:
        return fallback
    return f"{fmt_str.format(value)}{suffix}"


def fmt_local(dt_value: datetime | None, tz_name: str) -> str:
    if dt_value is None:
        return "--"
    return dt_value.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d %H:%M")


def offset_badge(offset: float, unit: str) -> str | None:
    if offset == 0:
        return None
    return f"Calibrated {offset:+.1f}{unit}"


def render_controls(stations, prefs):
    ids = [s.id for s in stations]
    default_station = prefs.get("station_id") if prefs.get("station_id") in ids else ids[0]
    range_labels = [label for label, _ in TIME_RANGES]
    default_range = prefs.get("range") if prefs.get("range") in range_labels else "24h"

    left, right = st.columns([2, 3])
    with left:
        station_id = st.selectbox(
            "Station",
            ids,
            index=ids.index(default_station),
            format_func=lambda sid: next(s.name for s in stations if s.id == sid),
            key="overview_station",
        )
    with right:
        range_label = st.radio(
            "Time range",
            range_labels,
            index=range_labels.index(default_range),
            horizontal=True,
            key="overview_range",
        )
    return station_id, range_label


def render(ctx):
    stations = ctx.get("stations") or []
    tz_name = ctx.get("tz_name", "UTC")
    if not stations:
        st.info("No stations configured yet.")
        return

    prefs = ctx.get("prefs") or {}
    station_id, range_label = render_controls(stations, prefs)
    if prefs.get("station_id") != station_id or prefs.get("range") != range_label:
        ctx["save_prefs"]({"station_id": station_id, "range": range_label})

    station = next(s for s in stations if s.id == station_id)
    feed = ctx["feed"]
    feed.select(station.id, range_window(range_label))
    if feed.due_for_poll():
        feed.poll()

    now = datetime.now(timezone.utc)
    points = calibrate_series(feed.snapshot(), station.sensors_config)
    summary = aggregate(points)
    last = latest(summary.points)
    status = derive_status(last, now)

    render_header_strip(
        "Agrometeorological panel",
        f"{station.name} · updated {fmt_local(status.last_seen, tz_name)} ({format_age(last, now)})",
    )

    if feed.status == LoadStatus.FAILED:
        st.error(f"Could not load measurements: {feed.error or 'unknown error'}")
        if st.button("Retry", key="overview_retry"):
            feed.reload()
            st.rerun()
    elif feed.status == LoadStatus.LOADING:
        st.info("Loading measurements...")
    elif not points:
        st.info(f"No measurements from {station.name} in the last {range_label}.")

    if status.offline and points:
        alert_banner(
            "offline",
            "Station offline",
            f"No reading for more than 30 minutes (last {format_age(last, now)}).",
        )
    if status.frost:
        alert_banner("frost", "Frost risk", f"Air temperature is {last.temperature:.1f}°C. Protect blossoms and young shoots.")
    if status.fungus:
        alert_banner(
            "fungus",
            "Fungal infection risk",
            f"Humidity {last.humidity:.0f}% at {last.temperature:.1f}°C favours fungal diseases.",
        )

    temp_offset = sensor_offset(station.sensors_config, TEMP_SENSOR_KEY)
    hum_offset = sensor_offset(station.sensors_config, HUMIDITY_SENSOR_KEY)
    cols = st.columns(4)
    with cols[0]:
        metric_card(
            "T",
            "Temperature",
            fmt_value(last.temperature if last else None, suffix="°C"),
            subvalue=(
                f"min {fmt_value(summary.min_temperature, suffix='°C')} · "
                f"max {fmt_value(summary.max_temperature, suffix='°C')}"
            ),
            badge=offset_badge(temp_offset, "°C"),
        )
    with cols[1]:
        metric_card(
            "H",
            "Humidity",
            fmt_value(last.humidity if last else None, fmt_str="{:.0f}", suffix="%"),
            badge=offset_badge(hum_offset, "%"),
        )
    with cols[2]:
        metric_card(
            "B",
            "Battery",
            fmt_value(status.battery_pct, fmt_str="{}", suffix="%"),
            subvalue=f"{fmt_value(last.battery_voltage if last else None, fmt_str='{:.2f}', suffix=' V')} · {status.battery_label}",
            value_class=f"status-{status_class(status.battery_label)}",
        )
    with cols[3]:
        metric_card(
            "S",
            "Signal",
            status.signal_label.title(),
            subvalue=f"CSQ {fmt_value(last.signal_strength if last else None, fmt_str='{}')}",
            value_class=f"status-{status_class(status.signal_label)}",
        )

    df = to_frame(summary.points, tz_name)
    chart_cols = st.columns(2)
    with chart_cols[0]:
        chart = temperature_chart(df)
        chart_card("Temperature history", lambda: st.altair_chart(chart, use_container_width=True) if chart else st.caption("No data"))
    with chart_cols[1]:
        chart_h = humidity_chart(df)
        chart_card("Humidity history", lambda: st.altair_chart(chart_h, use_container_width=True) if chart_h else st.caption("No data"))

    with st.expander("Raw readings", expanded=False):
        if df.empty:
            st.caption("No readings in this window.")
        else:
            st.dataframe(df.sort_values("time", ascending=False), use_container_width=True, hide_index=True)
