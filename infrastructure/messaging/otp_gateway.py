"""
OTP gateway clients.

Twilio Verify owns the code lifecycle (generation, SMS delivery, checking);
nothing here stores codes. Both calls raise GatewayError on any failure and
return None on success.
"""

import logging

import requests

from auth import GatewayError
from utils.phone import mask_phone

log = logging.getLogger(__name__)

VERIFY_BASE_URL = "https://verify.twilio.com/v2/Services"


class TwilioVerifyGateway:
    def __init__(self, account_sid: str, auth_token: str, service_sid: str, timeout: float = 15.0):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.service_sid = service_sid
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.service_sid)

    def _post(self, endpoint: str, data: dict) -> requests.Response:
        if not self.is_configured:
            raise GatewayError("SMS gateway is not configured.")
        url = f"{VERIFY_BASE_URL}/{self.service_sid}/{endpoint}"
        try:
            response = requests.post(
                url,
                data=data,
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error(f"Twilio {endpoint} request failed: {e}")
            raise GatewayError() from e
        if response.status_code >= 400:
            log.error(f"Twilio {endpoint} error {response.status_code}: {response.text[:300]}")
            raise GatewayError()
        return response

    def send(self, phone: str) -> None:
        self._post("Verifications", {"To": phone, "Channel": "sms"})
        log.info(f"OTP sent to {mask_phone(phone)}")

    def verify(self, phone: str, code: str) -> None:
        response = self._post("VerificationChecks", {"To": phone, "Code": code})
        try:
            status = response.json().get("status")
        except ValueError as e:
            raise GatewayError() from e
        if status != "approved":
            log.info(f"OTP for {mask_phone(phone)} not approved (status={status})")
            raise GatewayError("Invalid or expired code. Please try again.")


class DevBypassGateway:
    """Accepts every phone and every code. Never the default; see OTP_DEV_BYPASS."""

    def __init__(self):
        log.warning("DevBypassGateway active: any OTP code will be accepted")

    def send(self, phone: str) -> None:
        log.info(f"Dev bypass: pretending to send OTP to {mask_phone(phone)}")

    def verify(self, phone: str, code: str) -> None:
        log.info(f"Dev bypass: accepting OTP for {mask_phone(phone)}")
