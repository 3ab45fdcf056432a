"""
Tests for CreditLedgerService.

Unit tests with a mocked session. Database behavior (atomicity,
concurrency) is covered in test_ledger_integration.py.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from autonest.db.models import Account, CreditTransaction
from autonest.exceptions import (
    AccountNotFoundError,
    ConfigurationError,
    CreditReconciliationError,
    InsufficientCreditsError,
    PaymentNotCompletedError,
    ValidationError,
)
from autonest.models.api import RunStatus, TransactionType
from autonest.models.domain import UserIdentity
from autonest.services.ledger import (
    PURCHASE_WORKFLOW_ID,
    CreditLedgerService,
    credits_to_amount,
)
from autonest.services.run_logger import RunLogger


def scalar_result(value: object) -> MagicMock:
    """Execute() result whose scalar_one_or_none returns value."""
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=value)
    return result


def create_mock_account(
    uid: str = "firebase-uid-123",
    credits: int = 500,
    email: str | None = "user@example.com",
    is_admin: bool = False,
) -> MagicMock:
    """Create a mock Account with given parameters."""
    account = MagicMock(spec=Account)
    account.id = uid
    account.email = email
    account.display_name = "Test User"
    account.photo_url = None
    account.credits = credits
    account.is_admin = is_admin
    account.created_at = datetime.now(UTC)
    return account


def added_transactions(db_session: AsyncMock) -> list[CreditTransaction]:
    """CreditTransaction rows passed to session.add."""
    return [
        call.args[0]
        for call in db_session.add.call_args_list
        if isinstance(call.args[0], CreditTransaction)
    ]


class TestCreditsToAmount:
    """Tests for credit pricing."""

    def test_default_rate(self) -> None:
        """100 credits per dollar."""
        assert credits_to_amount(1000, 100) == Decimal("10.00")

    def test_rounds_to_cents(self) -> None:
        """Fractional cents round half up."""
        assert credits_to_amount(1, 200) == Decimal("0.01")


class TestDebit:
    """Tests for debit operations."""

    async def test_debit_success(self, db_session: AsyncMock, test_settings) -> None:
        """Debit returns the balance from the UPDATE and records a transaction."""
        db_session.execute = AsyncMock(return_value=scalar_result(450))
        service = CreditLedgerService(db_session, settings=test_settings)

        new_balance = await service.debit("firebase-uid-123", 50, description="Tool run")

        assert new_balance == 450
        db_session.commit.assert_awaited_once()
        (transaction,) = added_transactions(db_session)
        assert transaction.transaction_type == TransactionType.DEBIT
        assert transaction.amount == 50
        assert transaction.balance_before == 500
        assert transaction.balance_after == 450

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_debit_rejects_non_positive_amount(
        self, db_session: AsyncMock, test_settings, amount: int
    ) -> None:
        """Non-positive debits never reach the database."""
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(ValidationError):
            await service.debit("firebase-uid-123", amount)

        db_session.execute.assert_not_awaited()

    async def test_debit_insufficient_credits(self, db_session: AsyncMock, test_settings) -> None:
        """Guarded UPDATE matching no row with an existing account means insufficient credits."""
        db_session.execute = AsyncMock(side_effect=[scalar_result(None), scalar_result(30)])
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await service.debit("firebase-uid-123", 50)

        assert exc_info.value.balance == 30
        assert exc_info.value.required == 50
        assert str(exc_info.value) == "Insufficient credits. Balance: 30, Required: 50"
        db_session.rollback.assert_awaited()
        db_session.commit.assert_not_awaited()
        assert added_transactions(db_session) == []

    async def test_debit_unknown_account(self, db_session: AsyncMock, test_settings) -> None:
        """No row and no account means AccountNotFoundError."""
        db_session.execute = AsyncMock(side_effect=[scalar_result(None), scalar_result(None)])
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(AccountNotFoundError):
            await service.debit("missing-uid", 1)

    async def test_debit_database_error_rolls_back(
        self, db_session: AsyncMock, test_settings
    ) -> None:
        """A failed commit rolls back and propagates."""
        db_session.execute = AsyncMock(return_value=scalar_result(450))
        db_session.commit = AsyncMock(
            side_effect=OperationalError("COMMIT", {}, Exception("database is locked"))
        )
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(OperationalError):
            await service.debit("firebase-uid-123", 50)

        db_session.rollback.assert_awaited_once()


class TestCredit:
    """Tests for credit operations."""

    async def test_credit_success_with_reference(
        self, db_session: AsyncMock, test_settings
    ) -> None:
        """Credit returns the new balance and keeps the external reference."""
        db_session.execute = AsyncMock(return_value=scalar_result(600))
        service = CreditLedgerService(db_session, settings=test_settings)

        new_balance = await service.credit(
            "firebase-uid-123", 100, description="Manual credit", reference="CAPTURE-1"
        )

        assert new_balance == 600
        (transaction,) = added_transactions(db_session)
        assert transaction.transaction_type == TransactionType.CREDIT
        assert transaction.balance_before == 500
        assert transaction.external_reference == "CAPTURE-1"

    async def test_credit_unknown_account(self, db_session: AsyncMock, test_settings) -> None:
        """Crediting an unknown account raises AccountNotFoundError."""
        db_session.execute = AsyncMock(side_effect=[scalar_result(None), scalar_result(None)])
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(AccountNotFoundError):
            await service.credit("missing-uid", 10)

    async def test_credit_rejects_zero(self, db_session: AsyncMock, test_settings) -> None:
        """Zero credits is invalid."""
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(ValidationError):
            await service.credit("firebase-uid-123", 0)


class TestCreateOrder:
    """Tests for purchase order creation."""

    async def test_create_order_success(
        self, db_session: AsyncMock, test_settings, stub_gateway
    ) -> None:
        """Matching amount and credits creates a gateway order."""
        service = CreditLedgerService(db_session, gateway=stub_gateway, settings=test_settings)

        order = await service.create_order(Decimal("10.00"), 1000)

        assert order.order_id == "ORDER-1"
        assert stub_gateway.created == [(Decimal("10.00"), 1000)]
        db_session.execute.assert_not_awaited()

    async def test_create_order_twice_yields_two_orders(
        self, db_session: AsyncMock, test_settings, stub_gateway
    ) -> None:
        """Order creation has no idempotency of its own."""
        service = CreditLedgerService(db_session, gateway=stub_gateway, settings=test_settings)

        first = await service.create_order(Decimal("10"), 1000)
        second = await service.create_order(Decimal("10"), 1000)

        assert first.order_id != second.order_id

    async def test_create_order_price_mismatch(
        self, db_session: AsyncMock, test_settings, stub_gateway
    ) -> None:
        """An amount that does not match the credit price is rejected."""
        service = CreditLedgerService(db_session, gateway=stub_gateway, settings=test_settings)

        with pytest.raises(ValidationError):
            await service.create_order(Decimal("1.00"), 1000)

        assert stub_gateway.created == []

    async def test_create_order_non_positive(
        self, db_session: AsyncMock, test_settings, stub_gateway
    ) -> None:
        """Zero credits is rejected."""
        service = CreditLedgerService(db_session, gateway=stub_gateway, settings=test_settings)

        with pytest.raises(ValidationError):
            await service.create_order(Decimal("10.00"), 0)

    async def test_create_order_without_gateway(
        self, db_session: AsyncMock, test_settings
    ) -> None:
        """No gateway configured is a configuration error."""
        service = CreditLedgerService(db_session, settings=test_settings)

        with pytest.raises(ConfigurationError):
            await service.create_order(Decimal("10.00"), 1000)


class TestCaptureAndCredit:
    """Tests for capture-and-credit with a mocked session."""

    @pytest.fixture
    def mock_run_logger(self) -> AsyncMock:
        """Run logger that records nothing."""
        run_logger = AsyncMock(spec=RunLogger)
        run_logger.record = AsyncMock(return_value="run-id")
        return run_logger

    async def test_unknown_account_checked_before_capture(
        self, db_session: AsyncMock, test_settings, stub_gateway, mock_run_logger
    ) -> None:
        """The gateway is never called for an unknown account."""
        service = CreditLedgerService(
            db_session, gateway=stub_gateway, run_logger=mock_run_logger, settings=test_settings
        )

        with pytest.raises(AccountNotFoundError):
            await service.capture_and_credit("ORDER-1", 1000, "missing-uid")

        assert stub_gateway.captured == []

    async def test_missing_order_id(
        self, db_session: AsyncMock, test_settings, stub_gateway
    ) -> None:
        """Empty orderId is a validation error."""
        service = CreditLedgerService(db_session, gateway=stub_gateway, settings=test_settings)

        with pytest.raises(ValidationError):
            await service.capture_and_credit("", 1000, "firebase-uid-123")

    async def test_not_completed_status_credits_nothing(
        self, db_session: AsyncMock, test_settings, make_gateway, mock_run_logger
    ) -> None:
        """PENDING captures raise PaymentNotCompletedError and log a failed purchase."""
        gateway = make_gateway(capture_status="PENDING")
        db_session.execute = AsyncMock(return_value=scalar_result(500))
        service = CreditLedgerService(
            db_session, gateway=gateway, run_logger=mock_run_logger, settings=test_settings
        )

        with pytest.raises(PaymentNotCompletedError) as exc_info:
            await service.capture_and_credit("ORDER-1", 1000, "firebase-uid-123")

        assert exc_info.value.status == "PENDING"
        assert exc_info.value.capture_id == "CAPTURE-ORDER-1"
        db_session.commit.assert_not_awaited()
        entry = mock_run_logger.record.await_args.args[0]
        assert entry.workflow_id == PURCHASE_WORKFLOW_ID
        assert entry.status == RunStatus.FAILED

    async def test_declined_instrument_propagates(
        self, db_session: AsyncMock, test_settings, make_gateway, mock_run_logger
    ) -> None:
        """Declined instruments surface with instrument_declined set."""
        gateway = make_gateway(
            capture_error=PaymentNotCompletedError("DECLINED", instrument_declined=True)
        )
        db_session.execute = AsyncMock(return_value=scalar_result(500))
        service = CreditLedgerService(
            db_session, gateway=gateway, run_logger=mock_run_logger, settings=test_settings
        )

        with pytest.raises(PaymentNotCompletedError) as exc_info:
            await service.capture_and_credit("ORDER-1", 1000, "firebase-uid-123")

        assert exc_info.value.instrument_declined is True
        db_session.commit.assert_not_awaited()

    async def test_ledger_failure_after_capture_is_reconciliation_error(
        self, db_session: AsyncMock, test_settings, stub_gateway, mock_run_logger
    ) -> None:
        """A database failure after a completed capture carries the capture id."""
        db_session.execute = AsyncMock(
            side_effect=[
                scalar_result(500),
                OperationalError("UPDATE", {}, Exception("connection reset")),
            ]
        )
        service = CreditLedgerService(
            db_session, gateway=stub_gateway, run_logger=mock_run_logger, settings=test_settings
        )

        with pytest.raises(CreditReconciliationError) as exc_info:
            await service.capture_and_credit("ORDER-1", 1000, "firebase-uid-123")

        assert exc_info.value.capture_id == "CAPTURE-ORDER-1"
        assert exc_info.value.credits == 1000
        db_session.rollback.assert_awaited()
        entry = mock_run_logger.record.await_args.args[0]
        assert entry.status == RunStatus.FAILED
        assert "CAPTURE-ORDER-1" in entry.error_details

    async def test_completed_capture_credits_account(
        self, db_session: AsyncMock, test_settings, stub_gateway, mock_run_logger
    ) -> None:
        """A completed capture credits once and returns the committed balance."""
        db_session.execute = AsyncMock(side_effect=[scalar_result(500), scalar_result(1500)])
        service = CreditLedgerService(
            db_session, gateway=stub_gateway, run_logger=mock_run_logger, settings=test_settings
        )

        outcome = await service.capture_and_credit(
            "ORDER-1", 1000, "firebase-uid-123", user_email="user@example.com"
        )

        assert outcome.capture_id == "CAPTURE-ORDER-1"
        assert outcome.status == "COMPLETED"
        assert outcome.credits_added == 1000
        assert outcome.new_balance == 1500
        (transaction,) = added_transactions(db_session)
        assert transaction.transaction_type == TransactionType.PURCHASE
        assert transaction.external_reference == "CAPTURE-ORDER-1"
        entry = mock_run_logger.record.await_args.args[0]
        assert entry.status == RunStatus.COMPLETED
        assert entry.full_output["newBalance"] == 1500


class TestEnsureAccount:
    """Tests for account provisioning on first sign-in."""

    async def test_existing_account_returned(self, db_session: AsyncMock, test_settings) -> None:
        """Existing accounts are returned unchanged."""
        db_session.get = AsyncMock(return_value=create_mock_account(credits=42))
        service = CreditLedgerService(db_session, settings=test_settings)

        account = await service.ensure_account(UserIdentity(uid="firebase-uid-123"))

        assert account.credits == 42
        db_session.add.assert_not_called()

    async def test_new_account_gets_default_credits(
        self, db_session: AsyncMock, test_settings
    ) -> None:
        """New accounts start with 500 credits and a welcome transaction."""
        service = CreditLedgerService(db_session, settings=test_settings)

        account = await service.ensure_account(
            UserIdentity(uid="new-uid", email="jane@example.com")
        )

        assert account.credits == 500
        assert account.display_name == "jane"
        assert account.is_admin is False
        (transaction,) = added_transactions(db_session)
        assert transaction.amount == 500
        assert transaction.balance_after == 500
        db_session.commit.assert_awaited_once()

    async def test_concurrent_first_sign_in(self, db_session: AsyncMock, test_settings) -> None:
        """A lost insert race falls back to the row the other request created."""
        db_session.get = AsyncMock(side_effect=[None, create_mock_account(uid="new-uid")])
        db_session.commit = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("duplicate key"))
        )
        service = CreditLedgerService(db_session, settings=test_settings)

        account = await service.ensure_account(UserIdentity(uid="new-uid"))

        assert account.uid == "new-uid"
        db_session.rollback.assert_awaited_once()
