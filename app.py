import streamlit as st
from datetime import datetime, timezone

from infrastructure.observability import setup_observability
setup_observability()

from use_cases import auth_flow, bootstrap, rbac_policy
from use_cases.route_guard import DEFAULT_ROUTES
from use_cases.session_models import is_admin
from utils import session_manager
from utils.phone import mask_phone
from views import login_view

st.set_page_config(page_title="Patient Portal", layout="wide", initial_sidebar_state="expanded")

# Health Check (Basic load-balancer heartbeat)
if st.query_params.get("health") == "1":
    st.write({"status": "ok", "uptime": datetime.now(timezone.utc).isoformat()})
    st.stop()

# --- STARTUP ORCHESTRATION ---
startup_result = bootstrap.run_startup()
if startup_result.status == "STOP":
    st.stop()

# Shown on every page for as long as real OTP checks are disabled.
if startup_result.dev_bypass:
    login_view.render_dev_bypass_banner()

# --- ROUTE GUARD ---
requested_path = st.query_params.get("page") or st.session_state.current_path
auth_result = auth_flow.ensure_route_access(requested_path)

if auth_result.status == "WAIT":
    st.info("Checking your session...")
    st.stop()

if auth_result.status == "REDIRECT":
    if auth_result.notice:
        st.session_state.flash_notice = (auth_result.notice_level, auth_result.notice)
    session_manager.navigate(auth_result.target)
    st.rerun()

st.session_state.current_path = auth_result.path

if st.session_state.flash_notice:
    level, message = st.session_state.flash_notice
    getattr(st, level if level in ("info", "success", "warning", "error") else "info")(message)
    st.session_state.flash_notice = None

store = session_manager.get_session_store()
user = store.user

# --- SIDEBAR ---
with st.sidebar:
    st.markdown("### Patient Portal")
    if user is not None:
        st.caption(f"{mask_phone(user.phone)}" + (" (Admin)" if is_admin(user) else ""))
        for label, path in rbac_policy.visible_nav_items(user):
            if st.button(label, key=f"nav_{path}", use_container_width=True):
                session_manager.navigate(path)
                st.rerun()
        st.divider()
        if st.button("Logout", key="logout_btn", type="secondary"):
            session_manager.logout()
    elif st.button("Login", key="login_btn"):
        session_manager.navigate(DEFAULT_ROUTES.login_path)
        st.rerun()
    if startup_result.dev_bypass:
        st.caption("⚠️ Developer mode")

# --- PAGES ---
path = auth_result.path
if DEFAULT_ROUTES.is_login_page(path):
    login_view.render_auth_screen(store)
elif DEFAULT_ROUTES.is_protected(path):
    action = rbac_policy.action_for_path(path)
    if action is not None and not rbac_policy.enforce(user, action):
        st.error("Administrator access required.")
    else:
        variant = "Administrator" if is_admin(user) else "Patient"
        st.title(f"{variant} dashboard" if path == DEFAULT_ROUTES.landing_path else path.strip("/").replace("-", " ").title())
        st.info("Records and reports are served by the records module.")
else:
    st.title("Patient Portal")
    st.write("Secure access to your medical reports.")
