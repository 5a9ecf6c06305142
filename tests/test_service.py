"""
Integration tests for the ledger service.

Runs the full write/read flows against in-memory storage.
"""

import asyncio
from decimal import Decimal

import pytest

from shared_ledger.audit import AuditLogger
from shared_ledger.models import AuditEventType, FilterCriteria, TransactionType, UserIdentity
from shared_ledger.orchestrator import (
    LedgerPoller,
    LedgerService,
    TransactionRejectedError,
    create_app_components,
)
from shared_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    NotFoundError,
    StorageError,
)
from shared_ledger.validation import TransactionValidator


ALICE = UserIdentity(email="alice@x.com", display_name="Alice")
BOB = UserIdentity(email="bob@x.com", display_name="Bob")
CAROL_EMAIL = "carol@x.com"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def storage():
    return InMemoryTransactionStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def service(storage, audit_storage):
    return LedgerService(
        storage=storage,
        validator=TransactionValidator(max_amount=100000, future_tolerance_days=1),
        audit_logger=AuditLogger(audit_storage),
    )


def dinner(**overrides):
    fields = {
        "userEmail": BOB.email,
        "name": "Bob",
        "type": "debit",
        "amount": "100",
        "description": "Dinner",
        "phone": "5551234",
    }
    fields.update(overrides)
    return fields


class TestAddTransaction:
    """Every shared transaction lands in both ledgers."""

    def test_owner_row_and_mirror(self, service, storage):
        stored = run(service.add_transaction(ALICE, dinner()))
        assert stored.row_index == 0

        alice_rows = run(storage.list_transactions(ALICE.email))
        bob_rows = run(storage.list_transactions(BOB.email))
        assert len(alice_rows) == 1
        assert len(bob_rows) == 1

        mine, theirs = alice_rows[0], bob_rows[0]
        assert mine.id == theirs.id == stored.id
        assert mine.user_email == BOB.email
        assert mine.type == TransactionType.DEBIT
        assert theirs.user_email == ALICE.email
        assert theirs.name == "Alice"
        assert theirs.type == TransactionType.CREDIT
        assert theirs.amount == mine.amount
        assert theirs.phone is None

    def test_both_sides_see_opposite_balances(self, service):
        run(service.add_transaction(ALICE, dinner()))
        run(service.add_transaction(BOB, dinner(userEmail=ALICE.email, type="debit", amount="30")))

        alice_view = run(service.load_view(ALICE.email))
        bob_view = run(service.load_view(BOB.email))
        assert alice_view.closing_balance == Decimal("-70")
        assert bob_view.closing_balance == Decimal("70")

    def test_stored_balance_is_pairwise(self, service, storage):
        run(service.add_transaction(ALICE, dinner()))
        run(service.add_transaction(ALICE, dinner(userEmail=CAROL_EMAIL, type="credit", amount="500")))
        run(service.add_transaction(ALICE, dinner(type="credit", amount="40")))

        assert storage.stored_balance(ALICE.email, 2) == Decimal("-60")
        assert storage.stored_balance(BOB.email, 1) == Decimal("60")
        assert storage.stored_balance(CAROL_EMAIL, 0) == Decimal("-500")

    def test_audited_under_one_correlation_id(self, service, audit_storage):
        run(service.add_transaction(ALICE, dinner()))

        types = [e.event_type for e in audit_storage.events]
        assert types == [AuditEventType.TRANSACTION_ADDED, AuditEventType.TRANSACTION_MIRRORED]
        added, mirrored = audit_storage.events
        assert added.correlation_id == mirrored.correlation_id
        assert added.ledger_owner == ALICE.email
        assert mirrored.ledger_owner == BOB.email

    def test_self_entry_not_mirrored(self, service, storage, audit_storage):
        run(service.add_transaction(ALICE, dinner(userEmail=ALICE.email)))

        assert len(run(storage.list_transactions(ALICE.email))) == 1
        assert [e.event_type for e in audit_storage.events] == [AuditEventType.TRANSACTION_ADDED]

    def test_rejected_payload_writes_nothing(self, service, storage, audit_storage):
        with pytest.raises(TransactionRejectedError) as exc_info:
            run(service.add_transaction(ALICE, dinner(amount="0")))

        assert exc_info.value.result.has_errors
        assert "greater than zero" in str(exc_info.value)
        assert run(storage.list_transactions(ALICE.email)) == []
        assert run(storage.list_transactions(BOB.email)) == []
        assert [e.event_type for e in audit_storage.events] == [AuditEventType.VALIDATION_FAILED]


class TestUpdateTransaction:
    def test_edit_updates_both_rows(self, service, storage):
        run(service.add_transaction(ALICE, dinner()))
        updated = run(service.update_transaction(ALICE, 0, {"amount": "150"}))

        assert updated.amount == Decimal("150")
        assert updated.description == "Dinner"
        assert run(storage.list_transactions(BOB.email))[0].amount == Decimal("150")
        assert storage.stored_balance(ALICE.email, 0) == Decimal("-150")
        assert storage.stored_balance(BOB.email, 0) == Decimal("150")

    def test_type_change_flips_mirror(self, service, storage):
        run(service.add_transaction(ALICE, dinner()))
        run(service.update_transaction(ALICE, 0, {"type": "credit"}))

        assert run(storage.list_transactions(BOB.email))[0].type == TransactionType.DEBIT
        assert run(service.load_view(BOB.email)).closing_balance == Decimal("-100")

    def test_id_never_changes(self, service, storage):
        stored = run(service.add_transaction(ALICE, dinner()))
        updated = run(service.update_transaction(ALICE, 0, {"id": "other", "name": "Robert"}))
        assert updated.id == stored.id
        assert updated.name == "Robert"

    def test_counterparty_change_moves_mirror(self, service, storage):
        run(service.add_transaction(ALICE, dinner()))
        run(service.update_transaction(ALICE, 0, {"userEmail": CAROL_EMAIL, "name": "Carol"}))

        assert run(storage.list_transactions(BOB.email)) == []
        carol_rows = run(storage.list_transactions(CAROL_EMAIL))
        assert len(carol_rows) == 1
        assert carol_rows[0].user_email == ALICE.email

    def test_missing_row(self, service):
        with pytest.raises(NotFoundError):
            run(service.update_transaction(ALICE, 5, {"amount": "1"}))

    def test_rejected_edit_leaves_row(self, service, storage):
        run(service.add_transaction(ALICE, dinner()))
        with pytest.raises(TransactionRejectedError):
            run(service.update_transaction(ALICE, 0, {"amount": "-3"}))
        assert run(storage.list_transactions(ALICE.email))[0].amount == Decimal("100")


class TestDeleteTransaction:
    def test_deletes_both_rows(self, service, storage, audit_storage):
        run(service.add_transaction(ALICE, dinner()))
        assert run(service.delete_transaction(ALICE, 0)) is True

        assert run(storage.list_transactions(ALICE.email)) == []
        assert run(storage.list_transactions(BOB.email)) == []
        deleted = [e for e in audit_storage.events if e.event_type == AuditEventType.TRANSACTION_DELETED]
        assert {e.ledger_owner for e in deleted} == {ALICE.email, BOB.email}

    def test_only_the_shared_row_goes(self, service, storage):
        run(service.add_transaction(BOB, dinner(userEmail=ALICE.email, amount="5")))
        run(service.add_transaction(ALICE, dinner()))
        run(service.delete_transaction(ALICE, 1))

        bob_rows = run(storage.list_transactions(BOB.email))
        assert [r.amount for r in bob_rows] == [Decimal("5")]

    def test_missing_row(self, service):
        assert run(service.delete_transaction(ALICE, 0)) is False


class TestViews:
    def test_apply_filters(self, service, audit_storage):
        run(service.add_transaction(ALICE, dinner()))
        run(service.add_transaction(ALICE, dinner(type="credit", amount="60")))

        view = run(service.apply_filters(ALICE.email, {"type": "credit", "name": ""}))
        assert [e.transaction.amount for e in view.entries] == [Decimal("60")]
        assert view.criteria == FilterCriteria(type="credit")
        assert any(e.event_type == AuditEventType.FILTERS_APPLIED for e in audit_storage.events)

    def test_empty_filter_form(self, service):
        run(service.add_transaction(ALICE, dinner()))
        view = run(service.apply_filters(ALICE.email, {"type": "all", "amountMin": "abc"}))
        assert view.criteria is None
        assert len(view.entries) == 1

    def test_loose_filter_values_degrade(self, service):
        run(service.add_transaction(ALICE, dinner()))
        run(service.add_transaction(ALICE, dinner(type="credit", amount="60", phone="777")))

        view = run(service.apply_filters(ALICE.email, {"type": "Debit", "phone": 5551234}))
        assert [e.transaction.amount for e in view.entries] == [Decimal("100")]

        view = run(service.apply_filters(ALICE.email, {"type": "pending"}))
        assert view.criteria is None
        assert len(view.entries) == 2

    def test_view_for_unknown_user(self, service):
        view = run(service.load_view("nobody@x.com"))
        assert view.is_empty

    def test_balances_by_counterparty(self, service):
        run(service.add_transaction(ALICE, dinner()))
        run(service.add_transaction(ALICE, dinner(userEmail=CAROL_EMAIL, type="credit", amount="25")))
        assert run(service.balances_by_counterparty(ALICE.email)) == {
            BOB.email: Decimal("-100"),
            CAROL_EMAIL: Decimal("25"),
        }


class FailingStorage(InMemoryTransactionStorage):
    async def list_transactions(self, owner_email):
        raise StorageError("sheet unavailable")


class TestLedgerPoller:
    def test_poll_once_delivers_view(self, service):
        run(service.add_transaction(ALICE, dinner()))
        views = []
        poller = LedgerPoller(service, ALICE.email, views.append, interval_seconds=60)

        view = run(poller.poll_once())
        assert views == [view]
        assert poller.last_view is view
        assert view.closing_balance == Decimal("-100")

    def test_async_callback_and_criteria(self, service):
        run(service.add_transaction(ALICE, dinner()))
        run(service.add_transaction(ALICE, dinner(type="credit", amount="10")))
        views = []

        async def on_refresh(view):
            views.append(view)

        poller = LedgerPoller(service, ALICE.email, on_refresh, interval_seconds=60)
        poller.set_criteria(FilterCriteria(type="credit"))
        run(poller.poll_once())
        assert len(views[0].entries) == 1

    def test_failed_poll_is_skipped(self, audit_storage):
        service = LedgerService(
            FailingStorage(),
            validator=TransactionValidator(),
            audit_logger=AuditLogger(audit_storage),
        )
        views = []
        poller = LedgerPoller(service, ALICE.email, views.append, interval_seconds=60)

        assert run(poller.poll_once()) is None
        assert views == []
        assert [e.event_type for e in audit_storage.events] == [
            AuditEventType.EXTERNAL_SERVICE_ERROR
        ]
        assert audit_storage.events[0].details == {"service": "FailingStorage"}

    def test_run_until_stopped(self, service):
        views = []

        def on_refresh(view):
            views.append(view)
            if len(views) == 2:
                poller.stop()

        poller = LedgerPoller(service, ALICE.email, on_refresh, interval_seconds=0.01)
        run(poller.run())

        assert len(views) == 2
        assert poller.is_running is False

    def test_failing_callback_does_not_stop_run(self, service):
        """Test the loop keeps ticking after the consumer raises."""
        calls = []

        def on_refresh(view):
            calls.append(view)
            if len(calls) == 3:
                poller.stop()
            raise RuntimeError("display went away")

        poller = LedgerPoller(service, ALICE.email, on_refresh, interval_seconds=0.01)
        run(poller.run())

        assert len(calls) == 3
        assert poller.last_view is calls[-1]
        assert poller.is_running is False

    def test_failing_callback_still_returns_view(self, service):
        async def on_refresh(view):
            raise ValueError("bad consumer")

        poller = LedgerPoller(service, ALICE.email, on_refresh, interval_seconds=60)
        assert run(poller.poll_once()) is not None

    def test_interval_from_settings(self, service):
        poller = LedgerPoller(service, ALICE.email, lambda view: None)
        assert poller.interval_seconds == 10.0


class TestCreateAppComponents:
    def test_in_memory(self):
        service, sheets_client = create_app_components(use_storage=False)
        assert isinstance(service, LedgerService)
        assert sheets_client is None
