import json
import time
from typing import Optional

import pytest

from ledger.storage import InMemoryStorage
from promotion.models import AccountType, ReferralStatus
from webhooks.signature import build_signature_header

WEBHOOK_SECRET = "whsec_test_secret"


def checkout_completed_event(
    user_id: str = "u1",
    amount_total: int = 2500,
    payment_intent: str = "pi_1",
    payment_status: str = "paid",
    event_id: str = "evt_1",
) -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "amount_total": amount_total,
                "currency": "kes",
                "payment_intent": payment_intent,
                "payment_status": payment_status,
                "metadata": {"user_id": user_id},
            }
        },
    }


def signed(event: dict, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> tuple[bytes, str]:
    payload = json.dumps(event).encode("utf-8")
    return payload, build_signature_header(payload, secret, timestamp or int(time.time()))


def seed_referrals(storage: InMemoryStorage, referrer_id: str, completed: int, pending: int = 0) -> None:
    for i in range(completed):
        storage.insert_referral({
            "referrer_id": referrer_id, "referee_id": f"{referrer_id}-done-{i}",
            "status": ReferralStatus.COMPLETED,
        })
    for i in range(pending):
        storage.insert_referral({"referrer_id": referrer_id, "referee_id": f"{referrer_id}-pending-{i}"})


@pytest.fixture
def storage() -> InMemoryStorage:
    storage = InMemoryStorage()
    storage.upsert_profile({"id": "u1", "email": "player@example.com"})
    storage.upsert_profile({"id": "ref-1", "email": "referrer@example.com", "account_type": AccountType.STANDARD})
    return storage
