import streamlit as st

from agromet.applog import log
from agromet.backend import BackendError
from agromet.calibration import add_sensor, config_to_rows, remove_sensor, rows_to_config, update_sensor

ROWS_KEY = "settings_sensor_rows"
ROWS_STATION_KEY = "settings_sensor_rows_station"


def load_rows(station) -> None:
    st.session_state[ROWS_KEY] = config_to_rows(station.sensors_config)
    st.session_state[ROWS_STATION_KEY] = station.id


def render_sensor_rows(rows):
    """Draws one editable line per sensor and returns the rows as edited."""
    edited = list(rows)
    for row in rows:
        name_col, offset_col, remove_col = st.columns([4, 2, 1])
        with name_col:
            name = st.text_input("Sensor name", value=row.name, key=f"sensor_name_{row.key}")
            st.caption(f"key: {row.key}")
        with offset_col:
            offset = st.number_input("Offset", value=float(row.offset), step=0.1, format="%.1f", key=f"sensor_offset_{row.key}")
        with remove_col:
            st.write("")
            if st.button("Remove", key=f"sensor_remove_{row.key}", help="Remove sensor from the configuration"):
                edited = remove_sensor(edited, row.key)
                continue
        edited = update_sensor(edited, row.key, "name", name)
        edited = update_sensor(edited, row.key, "offset", offset)
    return edited


def render(ctx):
    stations = ctx.get("stations") or []
    backend = ctx["backend"]
    st.markdown("<div class='section-title'>Station settings</div>", unsafe_allow_html=True)
    if not stations:
        st.info("No stations configured yet.")
        return

    ids = [s.id for s in stations]
    station_id = st.selectbox(
        "Station",
        ids,
        format_func=lambda sid: f"{next(s.name for s in stations if s.id == sid)} (ID: {sid})",
        key="settings_station",
    )
    station = next(s for s in stations if s.id == station_id)
    if st.session_state.get(ROWS_STATION_KEY) != station.id:
        load_rows(station)

    st.markdown("<div class='section-title'>Sensor calibration</div>", unsafe_allow_html=True)
    before = st.session_state[ROWS_KEY]
    rows = render_sensor_rows(before)
    if len(rows) < len(before):
        st.session_state[ROWS_KEY] = rows
        st.rerun()
    if not rows:
        st.caption('No sensors configured. Click "Add sensor" to start.')

    add_col, save_col = st.columns([1, 1])
    with add_col:
        if st.button("Add sensor", use_container_width=True):
            st.session_state[ROWS_KEY] = add_sensor(rows)
            st.rerun()
    st.session_state[ROWS_KEY] = rows

    with save_col:
        save = st.button("Save settings", type="primary", use_container_width=True)
    if save:
        config = rows_to_config(rows)
        try:
            backend.update_station_config(station.id, config)
        except BackendError as exc:
            log(f"Saving config for station={station.id} failed: {exc}")
            st.error("Saving failed. Your changes are still here; try again.")
            return
        station.sensors_config = config
        log(f"Saved config for station={station.id} sensors={sorted(config)}")
        st.success("Settings saved.")
