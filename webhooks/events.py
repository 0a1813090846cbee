import json
import logging
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class PaymentStatus(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


# Provider payment_status -> our status. Unlisted values are failures.
PROVIDER_PAYMENT_STATUS = {
    "paid": PaymentStatus.PAID,
    "no_payment_required": PaymentStatus.PAID,
    "unpaid": PaymentStatus.PENDING,
}


class MalformedEvent(Exception):
    pass


class PaymentEvent(BaseModel):
    event_id: str
    event_type: str
    user_id: str
    amount_cents: int = Field(..., ge=0, description="Amount in the currency's minor unit")
    status: PaymentStatus
    payment_intent_id: str
    currency: Optional[str] = None

    model_config = ConfigDict(frozen=True)


def _require(container: Mapping[str, Any], key: str, path: str, expected: type) -> Any:
    value = container.get(key)
    # bool is an int subclass; a boolean amount is still malformed
    if value is None or isinstance(value, bool) or not isinstance(value, expected):
        raise MalformedEvent(f"Missing or invalid field '{path}'")
    if expected is str and not value:
        raise MalformedEvent(f"Missing or invalid field '{path}'")
    return value


def _parse_checkout_completed(event: Mapping[str, Any]) -> PaymentEvent:
    data = _require(event, "data", "data", dict)
    session = _require(data, "object", "data.object", dict)
    metadata = _require(session, "metadata", "data.object.metadata", dict)

    amount_total = _require(session, "amount_total", "data.object.amount_total", int)
    if amount_total < 0:
        raise MalformedEvent("Field 'data.object.amount_total' must not be negative")

    payment_status = _require(session, "payment_status", "data.object.payment_status", str)
    currency = session.get("currency")

    return PaymentEvent(
        event_id=_require(event, "id", "id", str),
        event_type=CHECKOUT_SESSION_COMPLETED,
        user_id=_require(metadata, "user_id", "data.object.metadata.user_id", str),
        amount_cents=amount_total,
        status=PROVIDER_PAYMENT_STATUS.get(payment_status, PaymentStatus.FAILED),
        payment_intent_id=_require(session, "payment_intent", "data.object.payment_intent", str),
        currency=currency.lower() if isinstance(currency, str) and currency else None,
    )


class EventNormalizer:
    def __init__(self):
        self.parsers: dict[str, Callable[[Mapping[str, Any]], PaymentEvent]] = {
            CHECKOUT_SESSION_COMPLETED: _parse_checkout_completed,
        }

    def is_recognized(self, event_type: Optional[str]) -> bool:
        return event_type in self.parsers

    def normalize(self, payload: Union[bytes, str, Mapping[str, Any]]) -> Optional[PaymentEvent]:
        """
        Turn a verified provider payload into a PaymentEvent.

        Returns None for event kinds without a parser so new provider event
        types are acknowledged instead of rejected.
        """
        event = self._load(payload)
        event_type = event.get("type")

        parser = self.parsers.get(event_type) if isinstance(event_type, str) else None
        if parser is None:
            logger.info("Ignoring unhandled event type: %s", event_type)
            return None

        return parser(event)

    def _load(self, payload: Union[bytes, str, Mapping[str, Any]]) -> Mapping[str, Any]:
        if isinstance(payload, Mapping):
            return payload
        try:
            event = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedEvent(f"Payload is not valid JSON: {e}") from e
        if not isinstance(event, dict):
            raise MalformedEvent("Payload is not a JSON object")
        return event
