import logging
from typing import Optional

from pydantic import BaseModel

from ledger.models import TransactionRecord
from ledger.service import LedgerService
from promotion.engine import PromotionEngine, PromotionError
from promotion.models import PromotionResult
from promotion.referrals import ReferralCounter

from .events import EventNormalizer, PaymentEvent, PaymentStatus
from .signature import SignatureVerifier

logger = logging.getLogger(__name__)


class WebhookOutcome(BaseModel):
    event: Optional[PaymentEvent] = None
    transaction: Optional[TransactionRecord] = None
    completed_referral_for: Optional[str] = None
    promotion: Optional[PromotionResult] = None

    @property
    def ignored(self) -> bool:
        return self.event is None


class WebhookProcessor:
    """
    Verify -> normalize -> record -> complete referral -> check promotion.

    Raises SignatureError, MalformedEvent and PersistenceError for the HTTP
    layer to map. Promotion failures are logged and do not fail the delivery:
    the deposit is already recorded and the next status check retries it.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        ledger: LedgerService,
        normalizer: Optional[EventNormalizer] = None,
        referrals: Optional[ReferralCounter] = None,
        promotion: Optional[PromotionEngine] = None,
    ):
        self.verifier = verifier
        self.ledger = ledger
        self.normalizer = normalizer or EventNormalizer()
        self.referrals = referrals
        self.promotion = promotion

    def handle(self, payload: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        self.verifier.verify(payload, signature_header)

        event = self.normalizer.normalize(payload)
        if event is None:
            return WebhookOutcome()

        if event.status != PaymentStatus.PAID:
            logger.info("Payment intent %s is %s; nothing to record", event.payment_intent_id, event.status.value)
            return WebhookOutcome(event=event)

        transaction = self.ledger.record(event)
        outcome = WebhookOutcome(event=event, transaction=transaction)

        if self.referrals is None:
            return outcome

        referrer_id = self.referrals.complete_for_referee(event.user_id)
        outcome.completed_referral_for = referrer_id
        if referrer_id and self.promotion is not None:
            try:
                outcome.promotion = self.promotion.check(referrer_id)
            except PromotionError:
                logger.exception("Influencer check for referrer %s failed after deposit %s",
                                 referrer_id, transaction.id)
        return outcome
