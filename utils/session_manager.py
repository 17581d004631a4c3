import asyncio

import streamlit as st

import auth
from infrastructure.storage.browser_storage import BrowserCookieStorage
from use_cases.route_guard import DEFAULT_ROUTES, RouteGuard

"""
SESSION STATE CONTRACT

Streamlit session state keys owned by the auth core.

session_store: SessionStore | None
    the Session context object for this browser session
    default: None (created lazily by get_session_store)
    owner: auth/session_manager

route_guard: RouteGuard | None
    navigation gate bound to session_store
    default: None
    owner: auth/session_manager

current_path: str
    portal route being shown
    default: "/"
    owner: app

otp_phone: str
    phone typed on the login form, kept between reruns
    default: ""
    owner: views/login_view

flash_notice: tuple[str, str] | None
    (level, message) shown once after the next rerun, e.g. after a redirect
    default: None
    owner: app
"""


@st.cache_resource
def get_auth_config() -> auth.AuthConfig:
    # Resolved once per process; OTP_DEV_BYPASS cannot flip mid-session.
    return auth.load_auth_config()


def init_session_state():
    if "session_store" not in st.session_state:
        st.session_state.session_store = None
    if "route_guard" not in st.session_state:
        st.session_state.route_guard = None
    if "current_path" not in st.session_state:
        st.session_state.current_path = "/"
    if "otp_phone" not in st.session_state:
        st.session_state.otp_phone = ""
    if "flash_notice" not in st.session_state:
        st.session_state.flash_notice = None


def run(coro):
    """Drive one store coroutine to completion from the synchronous script thread."""
    return asyncio.run(coro)


def get_session_store():
    if st.session_state.get("session_store") is None:
        st.session_state.session_store = auth.build_session_store(
            get_auth_config(),
            storage=BrowserCookieStorage(),
        )
        st.session_state.route_guard = RouteGuard(st.session_state.session_store, DEFAULT_ROUTES)
    return st.session_state.session_store


def get_route_guard() -> RouteGuard:
    get_session_store()
    return st.session_state.route_guard


def navigate(path: str):
    st.session_state.current_path = path
    st.query_params["page"] = path


def logout():
    store = st.session_state.get("session_store")
    if store is not None:
        store.logout()
    # The Session context is replaced wholesale, never reused after logout.
    st.session_state.session_store = None
    st.session_state.route_guard = None
    st.session_state.otp_phone = ""
    navigate("/login")
    st.rerun()
