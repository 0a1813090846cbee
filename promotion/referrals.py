import logging
from typing import Optional

from ledger.service import PersistenceError
from ledger.storage import Storage, StorageError

from .models import ReferralStatus

logger = logging.getLogger(__name__)


class ReferralCounter:
    def __init__(self, storage: Storage):
        self.storage = storage

    def count(self, user_id: str) -> int:
        """Completed referrals made by `user_id`, read fresh from storage on every call."""
        return self.storage.count_referrals(user_id, ReferralStatus.COMPLETED)

    def complete_for_referee(self, referee_id: str) -> Optional[str]:
        """
        Mark the pending referral of `referee_id` completed.

        Returns the referrer id when this call made the transition, None when
        there was no pending referral (already completed or never referred).
        """
        try:
            referrer_id = self.storage.complete_referral(referee_id)
        except StorageError as e:
            raise PersistenceError(f"Could not complete referral for {referee_id}: {e}") from e

        if referrer_id:
            logger.info("Referral of %s by %s completed", referee_id, referrer_id)
        return referrer_id
