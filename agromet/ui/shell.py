import html

import streamlit as st

NAV_OPTIONS = ["dashboard", "settings"]


def render_left_rail(page: str, user_email: str, on_logout):
    with st.sidebar:
        st.markdown("<div class='section-title'>AgroMet</div>", unsafe_allow_html=True)
        selection = st.radio(
            "Navigation",
            NAV_OPTIONS,
            index=NAV_OPTIONS.index(page) if page in NAV_OPTIONS else 0,
            format_func=lambda opt: opt.title(),
            label_visibility="collapsed",
        )
        st.session_state.page = selection
        st.caption(f"Signed in as {user_email}")
        if st.button("Log out", use_container_width=True):
            on_logout()


def render_header_strip(title: str, subtitle: str):
    st.markdown(
        f"<div class='header-strip'><h1>{html.escape(title)}</h1><span>{html.escape(subtitle)}</span></div>",
        unsafe_allow_html=True,
    )
