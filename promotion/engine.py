import logging
from typing import Optional

from ledger.storage import InMemoryStorage, Storage, StorageError

from .models import AccountType, Profile, PromotionResult
from .notifier import INFLUENCER_CONGRATULATIONS, LoggingNotifier, Notifier
from .referrals import ReferralCounter
from .rules import influencer_eligibility

logger = logging.getLogger(__name__)

DEFAULT_INFLUENCER_THRESHOLD = 100


class PromotionError(Exception):
    pass


class PromotionEngine:
    """
    Promotes a standard account to influencer once its completed referrals
    reach the threshold, and sends the congratulations message once.

    The profile/count check here is only a fast path that avoids calling the
    storage procedure on every status poll. The tier flip itself happens in
    `Storage.check_and_promote`, which re-checks both under one atomic step and
    reports True only to the caller that performed it. A repeat call therefore
    sees `became_influencer=False` and sends nothing.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        notifier: Optional[Notifier] = None,
        threshold: int = DEFAULT_INFLUENCER_THRESHOLD,
        counter: Optional[ReferralCounter] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.notifier = notifier or LoggingNotifier()
        self.threshold = threshold
        self.counter = counter or ReferralCounter(self.storage)
        self.eligibility = influencer_eligibility(threshold)

    def check(self, user_id: str) -> PromotionResult:
        try:
            return self._check(user_id)
        except StorageError as e:
            raise PromotionError(f"Influencer check failed for user {user_id}: {e}") from e

    def _check(self, user_id: str) -> PromotionResult:
        logger.info("Checking influencer status for user %s", user_id)
        profile = self._get_profile(user_id)
        if profile is None:
            logger.warning("No profile for user %s; nothing to promote", user_id)
            return PromotionResult(user_id=user_id, became_influencer=False, referral_count=0)

        referral_count = self.counter.count(user_id)
        context = {
            "profile": {"account_type": profile.account_type.value},
            "referrals": {"completed": referral_count},
        }
        if not self.eligibility.evaluate(context):
            return PromotionResult(
                user_id=user_id, became_influencer=False,
                referral_count=referral_count, account_type=profile.account_type,
            )

        became_influencer = self.storage.check_and_promote(user_id, self.threshold)
        if not became_influencer:
            # Another caller promoted first, or the count moved since our read
            return PromotionResult(
                user_id=user_id, became_influencer=False,
                referral_count=referral_count, account_type=self._current_account_type(user_id, profile),
            )

        logger.info("User %s has become an influencer with %d referrals", user_id, referral_count)
        notified = self._notify(user_id, referral_count)
        return PromotionResult(
            user_id=user_id, became_influencer=True, referral_count=referral_count,
            account_type=AccountType.INFLUENCER, notified=notified,
        )

    def _get_profile(self, user_id: str) -> Optional[Profile]:
        row = self.storage.get_profile(user_id)
        return Profile(**row) if row else None

    def _current_account_type(self, user_id: str, fallback: Profile) -> AccountType:
        profile = self._get_profile(user_id)
        return (profile or fallback).account_type

    def _notify(self, user_id: str, referral_count: int) -> bool:
        # The promotion is already committed; nothing below may undo or fail it
        try:
            profile = self._get_profile(user_id)
        except StorageError as e:
            logger.warning("Could not fetch email for new influencer %s: %s. Skipping notification.", user_id, e)
            return False

        if profile is None or not profile.email:
            logger.warning("New influencer %s has no email on file. Skipping notification.", user_id)
            return False

        try:
            return self.notifier.send(
                profile.email, INFLUENCER_CONGRATULATIONS, {"referral_count": referral_count},
            )
        except Exception:
            logger.exception("Notifier raised while congratulating influencer %s", user_id)
            return False
