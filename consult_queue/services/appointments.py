import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import NotFoundError, UpstreamUnavailableError
from ..schemas.queue import AppointmentInfo

logger = logging.getLogger(__name__)


class AppointmentLookup(ABC):
    """Source of patient details for an appointment."""

    @abstractmethod
    def get_appointment(self, appointment_id: str) -> AppointmentInfo:
        raise NotImplementedError


class HttpAppointmentLookup(AppointmentLookup):
    """Fetches appointments from the appointment service over HTTP."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or settings.APPOINTMENT_SERVICE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.APPOINTMENT_SERVICE_TIMEOUT
        self.client = client or httpx.Client(timeout=self.timeout)

    def get_appointment(self, appointment_id: str) -> AppointmentInfo:
        url = f"{self.base_url}/appointments/{appointment_id}"
        try:
            response = self.client.get(url)
        except httpx.HTTPError as exc:
            logger.warning(f"Appointment lookup for {appointment_id} failed: {exc}")
            raise UpstreamUnavailableError(
                f"Appointment service unreachable: {exc}"
            ) from exc

        if response.status_code == 404:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        if response.status_code != 200:
            raise UpstreamUnavailableError(
                f"Appointment service returned {response.status_code}"
            )

        try:
            payload = response.json()
            # Some deployments wrap the document as {"appointment": {...}}
            if isinstance(payload, dict) and isinstance(payload.get("appointment"), dict):
                payload = payload["appointment"]
            return AppointmentInfo.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise UpstreamUnavailableError(
                f"Malformed appointment payload for {appointment_id}"
            ) from exc

    def close(self):
        self.client.close()
