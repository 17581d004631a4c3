import streamlit as st

from use_cases.route_guard import DEFAULT_ROUTES
from utils import session_manager

DEV_BYPASS_BANNER = (
    "**Developer mode active.** OTP verification is bypassed: any code is accepted "
    "and a patient profile is created if none exists. Never enable this in production."
)


def render_dev_bypass_banner():
    st.warning(DEV_BYPASS_BANNER, icon="⚠️")


def render_auth_screen(store):
    st.title("Login with OTP")

    if store.dev_bypass:
        st.caption("Developer mode: enter any code to log in.")

    if not store.otp_sent:
        with st.form("otp_request_form", clear_on_submit=False):
            phone = st.text_input("Phone Number", value=st.session_state.otp_phone, placeholder="Enter your phone number")
            submitted = st.form_submit_button("Send OTP", disabled=store.is_loading)
            if submitted:
                st.session_state.otp_phone = phone
                if session_manager.run(store.request_code(phone)):
                    st.session_state.flash_notice = ("success", "OTP sent to your phone number.")
                    st.rerun()
                else:
                    st.error(store.error)
        return

    st.caption(f"Code sent to {st.session_state.otp_phone}")
    with st.form("otp_verify_form", clear_on_submit=True):
        code = st.text_input("OTP Code", placeholder="Enter OTP code")
        submitted = st.form_submit_button("Verify OTP", disabled=store.is_loading)
        if submitted:
            user = session_manager.run(store.verify_code(st.session_state.otp_phone, code))
            if user is None:
                st.error(store.error)
            else:
                role = user.profile_type.value
                st.session_state.flash_notice = ("success", f"Welcome {role}! Redirecting to dashboard...")
                session_manager.navigate(DEFAULT_ROUTES.landing_path)
                st.rerun()

    if st.button("Use a different number", type="secondary"):
        store.reset_otp_flow()
        st.rerun()
