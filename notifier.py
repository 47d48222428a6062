"""Best-effort alerts to a patient's emergency contacts.

Nothing in here may fail a booking: every delivery error is logged and
dropped at this boundary.
"""
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Mapping, Optional

import requests

from schemas import EmergencyContact

logger = logging.getLogger(__name__)

EMERGENCY_TEMPLATE = (
    "EMERGENCY ALERT: {patient_name} has been taken to {hospital_name} "
    "located at {hospital_address}. Please contact them immediately."
)


def render_message(template_data: Mapping[str, str]) -> str:
    return EMERGENCY_TEMPLATE.format(**template_data)


class Notifier(ABC):
    def notify(self, contacts: Iterable[EmergencyContact], template_data: Mapping[str, str]) -> None:
        contacts = list(contacts)
        if not contacts:
            logger.info("No emergency contacts to notify")
            return
        try:
            message = render_message(template_data)
            self.deliver([c.phone for c in contacts], message)
        except Exception:
            logger.exception("Error sending emergency alert")

    @abstractmethod
    def deliver(self, phones: List[str], message: str) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """For deployments with no delivery channel: log what would be sent."""

    def deliver(self, phones, message):
        logger.info("SMS not supported here. Message would be: %s", message)
        logger.info("Recipients: %s", ", ".join(phones))


class HttpSmsNotifier(Notifier):
    def __init__(self, gateway_url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.gateway_url = gateway_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def deliver(self, phones, message):
        response = self.session.post(
            self.gateway_url,
            json={"to": phones, "text": message},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            logger.warning("SMS gateway returned %s: %s", response.status_code, response.text[:200])
            return
        logger.info("Emergency SMS sent to: %s", ", ".join(phones))


def build_notifier(settings) -> Notifier:
    if settings.sms_gateway_url:
        return HttpSmsNotifier(settings.sms_gateway_url)
    return LogNotifier()
