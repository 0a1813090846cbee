"""
Unit Tests for the Ledger Service

Tests cover:
1. Recording a paid checkout as a completed deposit
2. Idempotency on payment_intent_id (redelivery and concurrent writers)
3. Storage failures surfacing as PersistenceError
4. Merging patches into transaction details
5. Withdrawal settlement (pending -> completed | failed)
6. Profile upserts keeping defaults
"""

import threading
from uuid import UUID

import pytest

from conftest import checkout_completed_event
from ledger.models import TransactionStatus, TransactionType
from ledger.service import (
    InvalidStateTransitionError,
    LedgerService,
    LedgerServiceError,
    PersistenceError,
    TransactionNotFoundError,
)
from ledger.merge import InvalidDocument
from ledger.storage import DuplicateKeyError, InMemoryStorage, StorageError
from promotion.models import AccountType
from webhooks.events import EventNormalizer


def make_event(**kwargs):
    return EventNormalizer().normalize(checkout_completed_event(**kwargs))


class FailingStorage(InMemoryStorage):
    def insert_transaction(self, data: dict) -> dict:
        raise StorageError("connection reset")


class RacingStorage(InMemoryStorage):
    """Simulates a concurrent writer committing between our lookup and insert."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    def get_transaction_by_payment_intent(self, payment_intent_id: str):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return super().get_transaction_by_payment_intent(payment_intent_id)

    def insert_transaction(self, data: dict) -> dict:
        if not self.payment_intent_index:
            super().insert_transaction({**data, "id": UUID("00000000-0000-0000-0000-0000000000aa")})
        return super().insert_transaction(data)


class TestRecordDeposit:
    """Tests for recording payment events."""

    def test_checkout_becomes_completed_deposit(self):
        """A paid checkout of 2500 cents is stored as-is in minor units."""
        service = LedgerService()

        record = service.record(make_event(user_id="u1", amount_total=2500, payment_intent="pi_1"))

        assert record.user_id == "u1"
        assert record.amount_cents == 2500
        assert record.type == TransactionType.DEPOSIT
        assert record.status == TransactionStatus.COMPLETED
        assert record.payment_intent_id == "pi_1"
        assert record.currency == "kes"
        assert record.details["provider_event_id"] == "evt_1"

    def test_different_payment_intents_create_separate_records(self):
        """Distinct payment intents are distinct deposits."""
        service = LedgerService()

        first = service.record(make_event(payment_intent="pi_1"))
        second = service.record(make_event(payment_intent="pi_2", event_id="evt_2"))

        assert first.id != second.id
        assert len(service.storage.transactions) == 2


class TestIdempotency:
    """Tests for at-most-once recording per payment intent."""

    def test_redelivery_returns_existing_record(self):
        """The same event delivered twice yields one record."""
        service = LedgerService()
        event = make_event()

        first = service.record(event)
        second = service.record(event)

        assert second.id == first.id
        assert len(service.storage.transactions) == 1

    def test_new_event_id_same_payment_intent_is_still_duplicate(self):
        """The idempotency key is the payment intent, not the provider event id."""
        service = LedgerService()

        first = service.record(make_event(event_id="evt_1"))
        second = service.record(make_event(event_id="evt_retry"))

        assert second.id == first.id
        assert second.details["provider_event_id"] == "evt_1"

    def test_storage_enforces_unique_payment_intent(self):
        """The unique index rejects a second row even without the service check."""
        storage = InMemoryStorage()
        row = {"id": UUID(int=1), "payment_intent_id": "pi_1"}
        storage.insert_transaction(row)

        with pytest.raises(DuplicateKeyError):
            storage.insert_transaction({"id": UUID(int=2), "payment_intent_id": "pi_1"})

    def test_lost_race_returns_winner(self):
        """A writer that loses the unique index returns the winner's record."""
        service = LedgerService(RacingStorage())

        record = service.record(make_event())

        assert record.id == UUID("00000000-0000-0000-0000-0000000000aa")
        assert len(service.storage.transactions) == 1

    def test_concurrent_deliveries_write_once(self):
        """Parallel deliveries of one event produce a single record."""
        service = LedgerService()
        event = make_event()
        results = []

        threads = [threading.Thread(target=lambda: results.append(service.record(event))) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(service.storage.transactions) == 1
        assert len({r.id for r in results}) == 1


class TestPersistenceErrors:
    """Tests for storage failure handling."""

    def test_storage_failure_raises_persistence_error(self):
        """Insert failures are reported as retryable persistence errors."""
        service = LedgerService(FailingStorage())

        with pytest.raises(PersistenceError):
            service.record(make_event())


class TestUpdateDetails:
    """Tests for merging into transaction details."""

    def test_patch_overrides_and_preserves(self):
        """Patch keys win; keys only in the stored details survive."""
        service = LedgerService()
        record = service.record(make_event())

        updated = service.update_details(record.id, {"provider_event_id": "evt_new", "note": "reconciled"})

        assert updated.details == {
            "provider_event_id": "evt_new",
            "provider_event_type": "checkout.session.completed",
            "note": "reconciled",
        }

    def test_text_patch_is_parsed(self):
        """Serialized patches are parsed before merging."""
        service = LedgerService()
        record = service.record(make_event())

        updated = service.update_details(record.id, '{"failure_reason": "card_declined"}')

        assert updated.details["failure_reason"] == "card_declined"

    def test_unknown_transaction(self):
        """Updating a missing transaction fails."""
        service = LedgerService()

        with pytest.raises(TransactionNotFoundError):
            service.update_details(UUID(int=0), {"a": 1})

    def test_malformed_patch(self):
        """Malformed text patches are rejected and nothing changes."""
        service = LedgerService()
        record = service.record(make_event())

        with pytest.raises(InvalidDocument):
            service.update_details(record.id, "{not json")

        assert service.get_by_payment_intent("pi_1").details == record.details


class TestSettleWithdrawal:
    """Tests for settling pending withdrawals."""

    def test_success_completes_withdrawal(self):
        """A successful payout completes the withdrawal without a failure reason."""
        service = LedgerService()
        pending = service.request_withdrawal("u1", 1500)

        settled = service.settle_withdrawal(pending.id, succeeded=True)

        assert settled.status == TransactionStatus.COMPLETED
        assert settled.type == TransactionType.WITHDRAWAL
        assert "failure_reason" not in settled.details

    def test_failure_records_reason(self):
        """A failed payout merges the reason into the existing details."""
        service = LedgerService()
        pending = service.request_withdrawal("u1", 1500, {"destination": "mpesa"})

        settled = service.settle_withdrawal(pending.id, succeeded=False, failure_reason="account_closed")

        assert settled.status == TransactionStatus.FAILED
        assert settled.details["failure_reason"] == "account_closed"
        assert settled.details["destination"] == "mpesa"
        assert settled.details["requested_at"] == pending.details["requested_at"]

    def test_failure_without_reason_uses_default(self):
        service = LedgerService()
        pending = service.request_withdrawal("u1", 1500)

        settled = service.settle_withdrawal(pending.id, succeeded=False)

        assert settled.details["failure_reason"] == "Payment processor error"

    def test_settled_withdrawal_cannot_be_settled_again(self):
        """Only pending withdrawals move; the first outcome stands."""
        service = LedgerService()
        pending = service.request_withdrawal("u1", 1500)
        service.settle_withdrawal(pending.id, succeeded=True)

        with pytest.raises(InvalidStateTransitionError):
            service.settle_withdrawal(pending.id, succeeded=False, failure_reason="late bounce")

        stored = service.storage.get_transaction(pending.id)
        assert stored["status"] == TransactionStatus.COMPLETED
        assert "failure_reason" not in stored["details"]

    def test_deposit_cannot_be_settled(self):
        service = LedgerService()
        deposit = service.record(make_event())

        with pytest.raises(InvalidStateTransitionError):
            service.settle_withdrawal(deposit.id, succeeded=False)

    def test_unknown_withdrawal(self):
        with pytest.raises(TransactionNotFoundError):
            LedgerService().settle_withdrawal(UUID(int=0), succeeded=True)

    def test_concurrent_settlement_applies_once(self):
        """Parallel settlements of one withdrawal leave exactly one winner."""
        service = LedgerService()
        pending = service.request_withdrawal("u1", 1500)
        outcomes = []

        def settle(succeeded):
            try:
                outcomes.append(service.settle_withdrawal(pending.id, succeeded=succeeded).status)
            except InvalidStateTransitionError:
                outcomes.append(None)

        threads = [threading.Thread(target=settle, args=(i % 2 == 0,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [o for o in outcomes if o is not None]
        assert len(winners) == 1
        assert service.storage.get_transaction(pending.id)["status"] == winners[0]

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(LedgerServiceError):
            LedgerService().request_withdrawal("u1", amount)


class TestProfileUpsert:
    """Tests for merging profile rows in storage."""

    def test_new_profile_gets_defaults(self):
        storage = InMemoryStorage()

        row = storage.upsert_profile({"id": "p1"})

        assert row == {"id": "p1", "account_type": AccountType.STANDARD, "email": None}

    def test_patch_overrides_email_and_keeps_account_type(self):
        """A partial upsert only replaces the keys it carries."""
        storage = InMemoryStorage()
        storage.upsert_profile({"id": "p1", "account_type": AccountType.INFLUENCER, "email": "a@example.com"})

        row = storage.upsert_profile({"id": "p1", "email": "b@example.com"})

        assert row["email"] == "b@example.com"
        assert row["account_type"] == AccountType.INFLUENCER
        assert storage.get_profile("p1") == row


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
