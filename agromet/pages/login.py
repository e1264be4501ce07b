import streamlit as st

from agromet.applog import log
from agromet.backend import AuthError

LOGIN_ERROR = "Invalid e-mail or password."


def render(ctx):
    auth = ctx["auth"]
    _, center, _ = st.columns([1, 2, 1])
    with center:
        st.markdown("<div class='section-title'>AgroMet</div>", unsafe_allow_html=True)
        st.subheader("Sign in to the station panel")
        with st.form("login_form", clear_on_submit=False):
            email = st.text_input("E-mail", placeholder="grower@example.com")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in", use_container_width=True)

        if not submitted:
            return
        if not email or not password:
            st.error(LOGIN_ERROR)
            return
        with st.spinner("Signing in..."):
            try:
                user = auth.sign_in(email, password)
            except AuthError as exc:
                log(f"Sign-in failed for {email}: {exc}")
                st.error(LOGIN_ERROR)
                return
        st.session_state.user = user
        st.session_state.page = "dashboard"
        st.rerun()
