import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

INFLUENCER_CONGRATULATIONS = "influencer_congratulations"

TEMPLATES = {
    INFLUENCER_CONGRATULATIONS: {
        "subject": "Congratulations! You are now a LottoWin Influencer",
        "body": (
            "You have reached {referral_count} completed referrals and your account "
            "has been upgraded to Influencer. Thank you for growing the syndicate!"
        ),
    },
}


def render(template: str, context: dict) -> dict:
    fields = TEMPLATES[template]
    return {"subject": fields["subject"].format(**context), "body": fields["body"].format(**context)}


class Notifier(ABC):
    @abstractmethod
    def send(self, email: str, template: str, context: Optional[dict] = None) -> bool:
        """Deliver a templated message. Returns False on failure instead of raising."""

    def close(self) -> None:
        pass


class LoggingNotifier(Notifier):
    def __init__(self):
        self.sent: list[dict] = []

    def send(self, email: str, template: str, context: Optional[dict] = None) -> bool:
        message = render(template, context or {})
        self.sent.append({"email": email, "template": template, **message})
        logger.info("Would send '%s' email to %s", template, email)
        return True


class HttpNotifier(Notifier):
    """POSTs `{to, template, subject, body}` to an email relay."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, email: str, template: str, context: Optional[dict] = None) -> bool:
        payload = {"to": email, "template": template, **render(template, context or {})}
        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to send '%s' email to %s: %s", template, email, e)
            return False
        logger.info("Sent '%s' email to %s", template, email)
        return True

    def close(self) -> None:
        self.client.close()
