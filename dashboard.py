import streamlit as st
from streamlit_autorefresh import st_autorefresh

from agromet.applog import log
from agromet.backend import BackendError
from agromet.live_feed import LiveFeed
from agromet.local_store import load_prefs, save_prefs
from agromet.pages import login as page_login
from agromet.pages import overview as page_overview
from agromet.pages import settings as page_settings
from agromet.settings import (
    BACKEND_KIND,
    CONTROL_REFRESH_SECONDS,
    LOCAL_TZ,
    build_clients,
    refresh_policy,
    resolve_db_path,
)
from agromet.ui.apply_styles import apply_styles
from agromet.ui.shell import render_left_rail

st.set_page_config(page_title="AgroMet", page_icon="🌱", layout="wide")
apply_styles()

# ------------------------
# Per-session clients
# ------------------------
if "clients" not in st.session_state:
    st.session_state.clients = build_clients()
    log(f"New session using backend={BACKEND_KIND}")
backend, auth = st.session_state.clients

if "feed" not in st.session_state:
    st.session_state.feed = LiveFeed(backend, refresh_policy())
feed = st.session_state.feed

if "page" not in st.session_state:
    st.session_state.page = "dashboard"


def logout():
    feed.close()
    try:
        auth.sign_out()
    finally:
        for key in list(st.session_state.keys()):
            if key != "clients":
                del st.session_state[key]
    st.rerun()


# ------------------------
# Auth gate
# ------------------------
user = auth.current_user()
if user is None:
    if "user" in st.session_state:
        # token expired or revoked server-side
        feed.close()
        del st.session_state["user"]
    page_login.render({"auth": auth})
    st.stop()

if CONTROL_REFRESH_SECONDS > 0 and st.session_state.page == "dashboard":
    st_autorefresh(
        interval=CONTROL_REFRESH_SECONDS * 1000,
        key="dashboard_autorefresh",
    )

render_left_rail(st.session_state.page, user.email, logout)

try:
    stations = backend.list_stations()
except BackendError as exc:
    log(f"Listing stations failed: {exc}")
    st.error("Could not load the station list. Try again in a moment.")
    stations = []

db_path = resolve_db_path()

page_ctx = {
    "backend": backend,
    "auth": auth,
    "feed": feed,
    "stations": stations,
    "tz_name": LOCAL_TZ,
    "prefs": load_prefs(db_path, user.id),
    "save_prefs": lambda prefs: save_prefs(db_path, user.id, prefs),
}

page = st.session_state.page
if page == "settings":
    page_settings.render(page_ctx)
else:
    page_overview.render(page_ctx)
