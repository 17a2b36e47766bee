"""
Bridges to the hosted functions: venue assistant, text-to-speech, and
transactional email (booking invites, one-time passcodes).

Assistant and speech calls are request/response and raise
``BackendUnavailableError`` when the function cannot answer. Email sends are
fire-and-forget: failures are logged and reported as ``False``.
"""
from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from app.core.config import settings
from app.core.errors import BackendUnavailableError, InvalidInputError
from app.schemas.assistant import AssistantReply

logger = logging.getLogger(__name__)

ASSISTANT_TYPES = ("chat", "venue", "voice", "welcome")


class AssistantClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.FUNCTIONS_BASE_URL).rstrip("/")
        self.api_key = settings.FUNCTIONS_API_KEY if api_key is None else api_key
        self.timeout = timeout or settings.FUNCTIONS_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    def _call(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with self._client() as client:
                response = client.post(f"/{function}", json=body)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("%s returned %s: %s", function, exc.response.status_code, exc.response.text[:200])
            raise BackendUnavailableError(f"The {function} service returned an error")
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("%s call failed: %s", function, exc)
            raise BackendUnavailableError(f"The {function} service is unavailable")

    # ------------------------------------------------------------------
    # Assistant
    # ------------------------------------------------------------------

    def ask(self, query: str, venue_id=None, type: str = "chat") -> AssistantReply:
        query = (query or "").strip()
        if not query:
            raise InvalidInputError("Please enter a question")
        if type not in ASSISTANT_TYPES:
            raise InvalidInputError(f"Unknown assistant type: {type}")

        body: Dict[str, Any] = {"query": query, "type": type}
        if venue_id:
            body["venueId"] = str(venue_id)
        data = self._call("venue-assistant", body)
        if data.get("error"):
            logger.error("venue-assistant error for %r: %s", query[:80], data["error"])
            raise BackendUnavailableError("The assistant could not answer right now")
        return AssistantReply(answer=str(data.get("answer") or ""), venues=data.get("venues"))

    def text_to_speech(self, text: str, voice: Optional[str] = None) -> bytes:
        text = (text or "").strip()
        if not text:
            raise InvalidInputError("Nothing to read out")
        body: Dict[str, Any] = {"text": text}
        if voice:
            body["voice"] = voice
        data = self._call("text-to-speech", body)
        encoded = data.get("audioContent") or data.get("audio")
        if not encoded:
            raise BackendUnavailableError("No audio data received")
        try:
            return base64.b64decode(encoded)
        except ValueError:
            logger.error("text-to-speech returned undecodable audio")
            raise BackendUnavailableError("No audio data received")

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def _fire(self, function: str, body: Dict[str, Any]) -> bool:
        try:
            self._call(function, body)
        except BackendUnavailableError:
            logger.warning("%s not sent", function)
            return False
        return True

    def send_booking_invite(self, booking, emails: Iterable[str], message: Optional[str] = None,
                            host_name: Optional[str] = None, address: Optional[str] = None,
                            invite_link: Optional[str] = None) -> bool:
        """One invite email per address; True only if every send went out."""
        sent_all = True
        for email in emails:
            email = email.strip()
            if not email:
                continue
            body = {
                "email": email,
                "venueName": booking.venue_name,
                "bookingDate": booking.booking_date.isoformat(),
                "startTime": booking.start_time or "",
                "endTime": booking.end_time or "",
                "venueId": str(booking.venue_id),
                "guests": booking.guests,
                "inviteLink": invite_link or f"/venue/{booking.venue_id}",
            }
            if address:
                body["address"] = address
            if host_name:
                body["hostName"] = host_name
            if message:
                body["specialRequests"] = message
            sent_all = self._fire("send-booking-invite", body) and sent_all
        return sent_all

    def send_otp_email(self, email: str, otp: str) -> bool:
        if not email or not otp:
            raise InvalidInputError("Email and OTP are required")
        return self._fire("send-otp-email", {"email": email, "otp": otp})


def get_assistant_client() -> AssistantClient:
    return AssistantClient()
