import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from promotion.models import AccountType, ReferralStatus

from .merge import merge
from .models import TransactionStatus


PROFILE_DEFAULTS = {"account_type": AccountType.STANDARD, "email": None}


class StorageError(Exception):
    pass


class DuplicateKeyError(StorageError):
    pass


class Storage(ABC):
    """
    Persistence collaborator for the payment pipeline.

    Implementations must enforce the payment_intent_id uniqueness themselves
    and run check_and_promote as one atomic read-modify-write.
    """

    @abstractmethod
    def insert_transaction(self, data: dict) -> dict: ...

    @abstractmethod
    def get_transaction(self, transaction_id: UUID) -> Optional[dict]: ...

    @abstractmethod
    def get_transaction_by_payment_intent(self, payment_intent_id: str) -> Optional[dict]: ...

    @abstractmethod
    def update_transaction_details(self, transaction_id: UUID, details: dict) -> Optional[dict]: ...

    @abstractmethod
    def update_transaction_status(
        self, transaction_id: UUID, expected_status: TransactionStatus, status: TransactionStatus, details: dict,
    ) -> bool: ...

    @abstractmethod
    def insert_referral(self, data: dict) -> dict: ...

    @abstractmethod
    def count_referrals(self, referrer_id: str, status: ReferralStatus) -> int: ...

    @abstractmethod
    def complete_referral(self, referee_id: str) -> Optional[str]: ...

    @abstractmethod
    def check_and_promote(self, user_id: str, threshold: int) -> bool: ...

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[dict]: ...

    @abstractmethod
    def upsert_profile(self, data: dict) -> dict: ...


class InMemoryStorage(Storage):
    def __init__(self):
        self.transactions: dict[UUID, dict] = {}
        self.payment_intent_index: dict[str, UUID] = {}
        self.referrals: list[dict] = []
        self.profiles: dict[str, dict] = {}
        self._lock = threading.RLock()

    def insert_transaction(self, data: dict) -> dict:
        payment_intent_id = data.get("payment_intent_id")
        with self._lock:
            if payment_intent_id is not None and payment_intent_id in self.payment_intent_index:
                raise DuplicateKeyError(f"Transaction for payment intent {payment_intent_id} already exists")
            row = dict(data)
            self.transactions[row["id"]] = row
            if payment_intent_id is not None:
                self.payment_intent_index[payment_intent_id] = row["id"]
            return dict(row)

    def get_transaction(self, transaction_id: UUID) -> Optional[dict]:
        with self._lock:
            row = self.transactions.get(transaction_id)
            return dict(row) if row else None

    def get_transaction_by_payment_intent(self, payment_intent_id: str) -> Optional[dict]:
        with self._lock:
            transaction_id = self.payment_intent_index.get(payment_intent_id)
            if transaction_id is None:
                return None
            return dict(self.transactions[transaction_id])

    def update_transaction_details(self, transaction_id: UUID, details: dict) -> Optional[dict]:
        with self._lock:
            row = self.transactions.get(transaction_id)
            if row is None:
                return None
            row["details"] = dict(details)
            return dict(row)

    def update_transaction_status(
        self, transaction_id: UUID, expected_status: TransactionStatus, status: TransactionStatus, details: dict,
    ) -> bool:
        with self._lock:
            row = self.transactions.get(transaction_id)
            if row is None or row["status"] != expected_status:
                return False
            row["status"] = status
            row["details"] = dict(details)
            return True

    def insert_referral(self, data: dict) -> dict:
        row = {
            "status": ReferralStatus.PENDING,
            "created_at": datetime.now(timezone.utc),
            "completed_at": None,
            **data,
        }
        with self._lock:
            self.referrals.append(row)
            return dict(row)

    def count_referrals(self, referrer_id: str, status: ReferralStatus) -> int:
        with self._lock:
            return sum(1 for r in self.referrals if r["referrer_id"] == referrer_id and r["status"] == status)

    def complete_referral(self, referee_id: str) -> Optional[str]:
        with self._lock:
            for row in self.referrals:
                if row["referee_id"] == referee_id and row["status"] == ReferralStatus.PENDING:
                    row["status"] = ReferralStatus.COMPLETED
                    row["completed_at"] = datetime.now(timezone.utc)
                    return row["referrer_id"]
        return None

    def check_and_promote(self, user_id: str, threshold: int) -> bool:
        with self._lock:
            profile = self.profiles.get(user_id)
            if profile is None or profile["account_type"] != AccountType.STANDARD:
                return False
            if self.count_referrals(user_id, ReferralStatus.COMPLETED) < threshold:
                return False
            profile["account_type"] = AccountType.INFLUENCER
            return True

    def get_profile(self, user_id: str) -> Optional[dict]:
        with self._lock:
            row = self.profiles.get(user_id)
            return dict(row) if row else None

    def upsert_profile(self, data: dict) -> dict:
        with self._lock:
            existing = merge(PROFILE_DEFAULTS, self.profiles.get(data["id"]))
            row = merge(existing, data)
            self.profiles[row["id"]] = row
            return dict(row)
