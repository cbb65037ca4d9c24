#Purpose: The voice-call collaborator client (Ringg).
#Sole responsibility: start outbound driver calls over HTTP and return a call handle.
#Two call flavours:
#load assignment: Bearer auth, {phone, metadata} payload
#detour/redzone: X-API-KEY auth, agent id + from number, custom args for the
#agent script, call config with retries and a calling-hours window
#Outcomes arrive later through the webhook (see call_outcomes.py).
#It should not decide who to call or what to do with the answer.

from dotenv import load_dotenv
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import requests

from routing.models import GeoPoint

# Example in .env:
# RINGG_API_KEY=...
# RINGG_FROM_NUMBER=+9180...
# RINGG_AGENT_ID=...
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CALL_ENDPOINT = "https://api.ringg.ai/v1/calls"
DEFAULT_DETOUR_ENDPOINT = "https://prod-api.ringg.ai/ca/api/v0/calling/outbound/individual"

CALL_WINDOW_START = "08:00"
CALL_WINDOW_END = "20:00"
CALL_TIMEZONE = "Asia/Kolkata"


class CallTriggerError(Exception):
    """The calling service could not be reached or refused the call."""
    pass


class CallPurpose(str, Enum):
    LOAD_ASSIGNMENT = "LOAD_ASSIGNMENT"
    DETOUR = "DETOUR"


class CallOutcome(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    NO_ANSWER = "NO_ANSWER"
    BUSY = "BUSY"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class CallHandle:
    """A call the vendor accepted. call_id is what the webhook will refer to."""
    call_id: str
    purpose: CallPurpose
    subject_id: str  # load id or zone id
    message: Optional[str] = None


def normalize_phone(number: str) -> str:
    """Vendor wants E.164 style numbers: ensure a leading '+'."""
    number = number.strip()
    return number if number.startswith("+") else f"+{number}"


class RinggClient:
    """
    Ringg adapter / client.

    Constructor arguments win over the environment. The API key is required
    for every call; agent id and from number only for detour calls.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        call_endpoint: Optional[str] = None,
        detour_endpoint: Optional[str] = None,
        from_number: Optional[str] = None,
        agent_id: Optional[str] = None,
        timeout: int = 15,
    ):
        self.api_key = api_key or os.getenv("RINGG_API_KEY")
        self.call_endpoint = call_endpoint or os.getenv("RINGG_CALL_ENDPOINT") or DEFAULT_CALL_ENDPOINT
        self.detour_endpoint = detour_endpoint or os.getenv("RINGG_DETOUR_ENDPOINT") or DEFAULT_DETOUR_ENDPOINT
        self.from_number = from_number or os.getenv("RINGG_FROM_NUMBER")
        self.agent_id = agent_id or os.getenv("RINGG_AGENT_ID")
        self.timeout = timeout

        if not self.api_key:
            raise ValueError("Ringg API key not set. Please set RINGG_API_KEY in the .env file.")

        #----------------
        # Payloads
        #----------------
    def build_load_call_payload(
        self,
        journey_id: str,
        load_id: str,
        driver_name: str,
        driver_phone: str,
        vehicle_number: str,
        current_location: Optional[GeoPoint] = None,
        eta_minutes: Optional[float] = None,
    ) -> Dict[str, Any]:
        # the script itself lives in the vendor dashboard, only context goes out
        return {
            "phone": driver_phone,
            "metadata": {
                "journeyId": journey_id,
                "loadId": load_id,
                "driverName": driver_name,
                "vehicleNumber": vehicle_number,
                "currentLocation": current_location.to_dict() if current_location else None,
                "etaMinutes": round(eta_minutes, 1) if eta_minutes is not None else None,
            },
        }

    def build_detour_call_payload(
        self,
        driver_name: str,
        driver_phone: str,
        zone_name: Optional[str] = None,
        current_position: Optional[GeoPoint] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if not self.from_number:
            raise ValueError("Ringg from number not set. Please set RINGG_FROM_NUMBER in the .env file.")
        if not self.agent_id:
            raise ValueError("Ringg agent id not set. Please set RINGG_AGENT_ID in the .env file.")

        mobile_number = normalize_phone(driver_phone)
        callee_name = driver_name.upper()
        scheduled_at = scheduled_at or datetime.now(timezone.utc)

        custom_args: Dict[str, Any] = {
            "callee_name": callee_name,
            "mobile_number": mobile_number,
            "zone_name": zone_name or "Redzone",
        }
        if current_position is not None:
            custom_args["current_position"] = f"{current_position.lat},{current_position.lng}"

        return {
            "name": callee_name,
            "mobile_number": mobile_number,
            "agent_id": self.agent_id,
            "from_number": normalize_phone(self.from_number),
            "custom_args_values": custom_args,
            "call_config": {
                "idle_timeout_warning": 10,
                "idle_timeout_end": 15,
                "max_call_length": 300,
                "call_retry_config": {
                    "retry_count": 3,
                    "retry_busy": 30,
                    "retry_not_picked": 30,
                    "retry_failed": 30,
                },
                "call_time": {
                    "call_start_time": CALL_WINDOW_START,
                    "call_end_time": CALL_WINDOW_END,
                    "timezone": CALL_TIMEZONE,
                    "scheduled_at": scheduled_at.isoformat(),
                },
            },
        }

        #----------------
        # Calls
        #----------------
    def initiate_load_call(
        self,
        journey_id: str,
        load_id: str,
        driver_name: str,
        driver_phone: str,
        vehicle_number: str,
        current_location: Optional[GeoPoint] = None,
        eta_minutes: Optional[float] = None,
    ) -> CallHandle:
        """
        Ask the driver to take load `load_id` after this journey.

        Raises:
            CallTriggerError: network failure, non-2xx status, or bad response.
        """
        payload = self.build_load_call_payload(
            journey_id, load_id, driver_name, driver_phone, vehicle_number, current_location, eta_minutes
        )
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        data = self._post(self.call_endpoint, payload, headers)
        return CallHandle(
            call_id=self._extract_call_id(data),
            purpose=CallPurpose.LOAD_ASSIGNMENT,
            subject_id=load_id,
            message=data.get("message", "Call initiated successfully"),
        )

    def initiate_detour_call(
        self,
        zone_id: str,
        driver_name: str,
        driver_phone: str,
        zone_name: Optional[str] = None,
        current_position: Optional[GeoPoint] = None,
    ) -> CallHandle:
        """
        Warn the driver about a redzone ahead and ask whether to detour.

        Raises:
            CallTriggerError: network failure, non-2xx status, or bad response.
        """
        payload = self.build_detour_call_payload(driver_name, driver_phone, zone_name, current_position)
        headers = {"Content-Type": "application/json", "X-API-KEY": self.api_key}
        data = self._post(self.detour_endpoint, payload, headers)
        return CallHandle(
            call_id=self._extract_call_id(data),
            purpose=CallPurpose.DETOUR,
            subject_id=zone_id,
            message=data.get("message", "Detour call initiated successfully"),
        )

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise CallTriggerError(f"Failed to initiate call: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise CallTriggerError(f"Invalid response format: {response.text[:200]}") from e

        if not response.ok:
            reason = None
            if isinstance(data, dict):
                reason = data.get("error") or data.get("message") or data.get("detail")
            raise CallTriggerError(reason or f"API error: {response.status_code}")

        if not isinstance(data, dict):
            raise CallTriggerError(f"Unexpected response: {str(data)[:200]}")
        return data

    @staticmethod
    def _extract_call_id(data: Dict[str, Any]) -> str:
        nested = data.get("data") if isinstance(data.get("data"), dict) else {}
        call_id = (
            data.get("call_id")
            or data.get("callId")
            or data.get("id")
            or nested.get("call_id")
            or nested.get("id")
        )
        if not call_id:
            raise CallTriggerError(f"No call id in response: {str(data)[:200]}")
        return str(call_id)
