import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from webhooks.events import PaymentEvent

from .merge import DocumentInput, merge
from .models import TransactionRecord, TransactionStatus, TransactionType
from .storage import DuplicateKeyError, InMemoryStorage, Storage, StorageError

logger = logging.getLogger(__name__)


class LedgerServiceError(Exception):
    pass


class PersistenceError(LedgerServiceError):
    pass


class TransactionNotFoundError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class LedgerService:
    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage or InMemoryStorage()

    def record(self, event: PaymentEvent) -> TransactionRecord:
        """
        Write the deposit for a payment event, at most once per payment intent.

        A redelivered event returns the record written by the first delivery.
        """
        existing = self.get_by_payment_intent(event.payment_intent_id)
        if existing is not None:
            logger.info(
                "Duplicate delivery for payment intent %s (event %s); returning transaction %s",
                event.payment_intent_id, event.event_id, existing.id,
            )
            return existing

        transaction_data = {
            "id": uuid4(),
            "user_id": event.user_id,
            "amount_cents": event.amount_cents,
            "type": TransactionType.DEPOSIT,
            "status": TransactionStatus.COMPLETED,
            "payment_intent_id": event.payment_intent_id,
            "currency": event.currency,
            "details": {"provider_event_id": event.event_id, "provider_event_type": event.event_type},
            "created_at": datetime.now(timezone.utc),
        }

        try:
            row = self.storage.insert_transaction(transaction_data)
        except DuplicateKeyError:
            # A concurrent delivery won the unique index
            winner = self.get_by_payment_intent(event.payment_intent_id)
            if winner is None:
                raise PersistenceError(f"Transaction for payment intent {event.payment_intent_id} vanished")
            logger.info("Concurrent delivery for payment intent %s resolved to transaction %s",
                        event.payment_intent_id, winner.id)
            return winner
        except StorageError as e:
            raise PersistenceError(f"Could not record payment intent {event.payment_intent_id}: {e}") from e

        record = TransactionRecord(**row)
        logger.info(
            "Recorded deposit of %d minor units for user %s (payment intent %s)",
            record.amount_cents, record.user_id, record.payment_intent_id,
        )
        return record

    def get_by_payment_intent(self, payment_intent_id: str) -> Optional[TransactionRecord]:
        try:
            row = self.storage.get_transaction_by_payment_intent(payment_intent_id)
        except StorageError as e:
            raise PersistenceError(f"Could not read payment intent {payment_intent_id}: {e}") from e
        return TransactionRecord(**row) if row else None

    def update_details(self, transaction_id: UUID, patch: DocumentInput) -> TransactionRecord:
        try:
            row = self.storage.get_transaction(transaction_id)
            if row is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

            details = merge(row.get("details"), patch)
            updated = self.storage.update_transaction_details(transaction_id, details)
        except StorageError as e:
            raise PersistenceError(f"Could not update transaction {transaction_id}: {e}") from e

        if updated is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        return TransactionRecord(**updated)

    def request_withdrawal(self, user_id: str, amount_cents: int, details: DocumentInput = None) -> TransactionRecord:
        if amount_cents <= 0:
            raise LedgerServiceError("Withdrawal amount must be positive")

        transaction_data = {
            "id": uuid4(),
            "user_id": user_id,
            "amount_cents": amount_cents,
            "type": TransactionType.WITHDRAWAL,
            "status": TransactionStatus.PENDING,
            "payment_intent_id": None,
            "currency": None,
            "details": merge({"requested_at": datetime.now(timezone.utc).isoformat()}, details),
            "created_at": datetime.now(timezone.utc),
        }
        try:
            row = self.storage.insert_transaction(transaction_data)
        except StorageError as e:
            raise PersistenceError(f"Could not record withdrawal for user {user_id}: {e}") from e

        logger.info("Withdrawal of %d minor units requested by user %s", amount_cents, user_id)
        return TransactionRecord(**row)

    def settle_withdrawal(
        self, transaction_id: UUID, succeeded: bool, failure_reason: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Move a pending withdrawal to completed or failed.

        A failed payout records `failure_reason` in the transaction details.
        Only pending withdrawals can be settled, and only once.
        """
        try:
            row = self.storage.get_transaction(transaction_id)
            if row is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

            record = TransactionRecord(**row)
            if record.type != TransactionType.WITHDRAWAL:
                raise InvalidStateTransitionError(f"Transaction {transaction_id} is a {record.type.value}, not a withdrawal")
            if record.status != TransactionStatus.PENDING:
                raise InvalidStateTransitionError(
                    f"Cannot settle withdrawal in {record.status.value} state. Only pending withdrawals can be settled."
                )

            status = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED
            details = record.details
            if not succeeded:
                details = merge(details, {"failure_reason": failure_reason or "Payment processor error"})

            if not self.storage.update_transaction_status(transaction_id, TransactionStatus.PENDING, status, details):
                raise InvalidStateTransitionError(f"Withdrawal {transaction_id} was settled concurrently")
            updated = self.storage.get_transaction(transaction_id)
        except StorageError as e:
            raise PersistenceError(f"Could not settle withdrawal {transaction_id}: {e}") from e

        logger.info("Withdrawal %s settled as %s", transaction_id, status.value)
        return TransactionRecord(**updated)
